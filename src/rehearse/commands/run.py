"""Run tests command implementation."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import typer
from rich.console import Console

from rehearse.core.config.main import RehearseConfig
from rehearse.core.errors import ConfigError

console = Console()


def _resolve_tests_root(config_path: Path | None = None) -> Path:
    """Resolve the directory to run tests from.

    Priority:
    - rehearse.yaml -> project.test_directory
    - ./tests
    - current working directory
    """
    path = config_path or RehearseConfig.get_config_path()
    if path.exists():
        try:
            cfg = RehearseConfig.load_config(path)
            return Path(cfg.project.test_directory).resolve()
        except ConfigError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1) from e

    tests = Path.cwd() / "tests"
    return tests.resolve() if tests.exists() else Path.cwd()


def _pytest_args(
    target: Path,
    *,
    config_path: Path | None,
    engine: str | None,
    headed: bool,
    seed: int | None,
    extra: list[str],
) -> list[str]:
    args = [str(target)]
    if config_path is not None:
        args += ["--rehearse-config", str(config_path)]
    if engine:
        args += ["--rehearse-engine", engine]
    if headed:
        args.append("--rehearse-headed")
    if seed is not None:
        args += ["--rehearse-seed", str(seed)]
    return args + extra


def _run_via_pytest_module(args: list[str]) -> int | None:
    """Try running tests via pytest Python API, return exit code or None if unavailable."""
    try:
        import pytest
    except ImportError:
        return None

    try:
        return int(pytest.main(args))
    except SystemExit as e:  # pytest may call sys.exit
        return int(getattr(e, "code", 1) or 0)


def _run_via_executable(args: list[str]) -> int | None:
    """Try running tests via a pytest executable or uv fallback; return exit code or None if not found."""
    if shutil.which("pytest"):
        return subprocess.call(["pytest", *args])
    if shutil.which("uv"):
        return subprocess.call(["uv", "run", "pytest", *args])
    return None


def run_command(
    pytest_args: list[str] | None = typer.Argument(None, help="Extra arguments passed through to pytest"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to rehearse.yaml"),
    engine: str | None = typer.Option(None, "--engine", "-e", help="Browser engine (playwright or fake)"),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window"),
    seed: int | None = typer.Option(None, "--seed", help="Replay test data generated with this seed"),
) -> None:
    """Run the suite using pytest and exit with its return code."""
    console.print("\n[bold blue]🧪 Running tests with pytest[/bold blue]")

    target = _resolve_tests_root(config)
    if not target.exists():
        console.print(f"[red]No tests directory found at {target}[/red]")
        raise typer.Exit(1)

    try:
        shown = target.relative_to(Path.cwd())
    except ValueError:
        shown = target
    console.print(f"📁 Test root: [bold]{shown}[/bold]")

    args = _pytest_args(target, config_path=config, engine=engine, headed=headed, seed=seed, extra=pytest_args or [])

    # Prefer Python API to avoid external dependency on executables
    code = _run_via_pytest_module(args)
    if code is None:
        code = _run_via_executable(args)

    if code is None:
        console.print("[red]pytest is not available.[/red]")
        console.print("Install it or run via uv: [bold]uv run pytest[/bold]")
        raise typer.Exit(1)

    raise typer.Exit(code)
