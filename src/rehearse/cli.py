"""Main CLI application for Rehearse."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from . import __version__

console = Console()
app = typer.Typer(
    name="rehearse",
    help="Flake-resistant browser end-to-end testing on Playwright",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"Rehearse v{__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
    )
    if not verbose:
        logging.getLogger("faker").setLevel(logging.WARNING)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version information",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """
    Rehearse: browser end-to-end test orchestration.

    Isolated browser contexts per test, polling waits instead of sleeps,
    reproducible test data and bounded retries for eventually-consistent UIs.
    """
    setup_logging(verbose)


# Import and register commands after app creation to avoid circular imports
def register_commands() -> None:
    """Register CLI commands."""
    from .commands import config as config_commands
    from .commands import fixture as fixture_commands
    from .commands.init import init_command
    from .commands.run import run_command

    app.command("init", help="Initialize Rehearse in your project")(init_command)
    app.command("run", help="Run the end-to-end suite with pytest")(run_command)
    app.add_typer(config_commands.app, name="config")
    app.add_typer(fixture_commands.app, name="fixture")


register_commands()


if __name__ == "__main__":
    app()
