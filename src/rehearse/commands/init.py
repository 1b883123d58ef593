"""Init command implementation."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from rehearse.core.config.main import CONFIG_FILE_NAME, RehearseConfig

console = Console()

EXAMPLE_SCHEMA = """\
name: user
fields:
  first_name: first-name
  last_name: last-name
  email: email
  age:
    kind: integer-range
    min: 18
    max: 99
  plan:
    kind: enum-choice
    choices: [free, pro, enterprise]
"""

EXAMPLE_TEST = '''\
"""Example end-to-end test."""

import pytest

from rehearse.core.sync import element_visible

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def test_home_page_loads(rehearse_page) -> None:
    await rehearse_page.goto("/")
    await rehearse_page.wait_for(element_visible("body"))
'''


def init_command(
    base_url: str | None = typer.Option(None, "--base-url", help="Base URL of the application under test"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration"),
) -> None:
    """Write a default rehearse.yaml and an example test layout."""
    config_path = RehearseConfig.get_config_path()
    if config_path.exists() and not force:
        console.print(f"[yellow]{CONFIG_FILE_NAME} already exists[/yellow] (use --force to overwrite)")
        raise typer.Exit(1)

    config = RehearseConfig()
    config.project.name = Path.cwd().name
    config.project.base_url = base_url
    config.save(config_path)
    console.print(f"[green]✅ Created[/green] [bold]{config_path.name}[/bold]")

    tests_dir = Path(config.project.test_directory)
    schemas_dir = tests_dir / "schemas"
    schemas_dir.mkdir(parents=True, exist_ok=True)

    for path, content in (
        (schemas_dir / "user.yaml", EXAMPLE_SCHEMA),
        (tests_dir / "test_example.py", EXAMPLE_TEST),
    ):
        if path.exists():
            console.print(f"Skipping existing [bold]{path}[/bold]")
            continue
        path.write_text(content, encoding="utf-8")
        console.print(f"[green]✅ Created[/green] [bold]{path}[/bold]")

    console.print("\nRun the suite with [bold]rehearse run[/bold]")
