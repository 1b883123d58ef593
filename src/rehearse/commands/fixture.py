"""Fixture generation and validation commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from rehearse.core.data.factory import DataFactory
from rehearse.core.data.schema import FixtureSchema
from rehearse.core.data.serializer import dump_fixture, load_fixture
from rehearse.core.errors import ConfigError, MalformedFixture

console = Console()
app = typer.Typer(help="Generate and validate JSON fixtures")


def _load_schema(path: Path) -> FixtureSchema:
    try:
        return FixtureSchema.load(path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e


@app.command("generate")
def generate_command(
    schema_path: Path = typer.Argument(..., help="YAML schema describing the fixture fields"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON here (a directory when --count > 1)"),
    seed: int | None = typer.Option(None, "--seed", "-s", help="Seed for reproducible values"),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of fixtures to generate"),
) -> None:
    """Generate fixtures from a schema."""
    schema = _load_schema(schema_path)
    factory = DataFactory(seed)
    fixtures = factory.create_many(schema, count)

    if output is None:
        table = Table(title=f"{schema.name} (seed {factory.seed})")
        for name in schema.fields:
            table.add_column(name)
        for fixture in fixtures:
            table.add_row(*(str(value) for value in fixture.values()))
        console.print(table)
        return

    if count == 1:
        path = dump_fixture(fixtures[0], output)
        console.print(f"[green]✅ Wrote[/green] [bold]{path}[/bold] (seed {factory.seed})")
        return

    for index, fixture in enumerate(fixtures, start=1):
        dump_fixture(fixture, output / f"{schema.name}-{index}.json")
    console.print(f"[green]✅ Wrote {count} fixtures[/green] to [bold]{output}[/bold] (seed {factory.seed})")


@app.command("validate")
def validate_command(
    files: list[Path] = typer.Argument(..., help="Fixture JSON files to check"),
    schema_path: Path | None = typer.Option(None, "--schema", help="YAML schema the fixtures must satisfy"),
) -> None:
    """Validate fixture files; exits 1 if any is malformed."""
    schema = _load_schema(schema_path) if schema_path is not None else None
    failed = 0
    for path in files:
        try:
            load_fixture(path, schema)
        except MalformedFixture as e:
            failed += 1
            console.print(f"[red]❌ {e}[/red]")
        else:
            console.print(f"[green]✅ {path}[/green]")

    if failed:
        console.print(f"\n[red]{failed} of {len(files)} fixtures are malformed[/red]")
        raise typer.Exit(1)
