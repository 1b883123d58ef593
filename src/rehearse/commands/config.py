"""Config inspection commands."""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.syntax import Syntax

from rehearse.core.config.main import RehearseConfig
from rehearse.core.errors import ConfigError

console = Console()
app = typer.Typer(help="Inspect configuration")


@app.command("show")
def show_command(
    path: Path | None = typer.Option(None, "--config", "-c", help="Path to rehearse.yaml"),
) -> None:
    """Print the effective configuration (file plus REHEARSE_* overrides)."""
    try:
        config = RehearseConfig.load_config(path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    rendered = yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False)
    console.print(Syntax(rendered, "yaml", background_color="default"))
