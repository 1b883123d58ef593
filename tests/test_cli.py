"""Tests for CLI commands."""

import json
import os
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from rehearse.cli import app

runner = CliRunner()

SCHEMA = {
    "name": "user",
    "fields": {
        "name": "name",
        "email": "email",
        "age": {"kind": "integer-range", "min": 18, "max": 99},
        "plan": {"kind": "enum-choice", "choices": ["free", "pro"]},
    },
}


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in [n for n in os.environ if n.startswith("REHEARSE_")]:
        monkeypatch.delenv(name)
    return tmp_path


@pytest.fixture
def schema_file(project: Path) -> Path:
    path = project / "user.yaml"
    path.write_text(yaml.safe_dump(SCHEMA))
    return path


def test_version_command() -> None:
    """Test version command works."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "Rehearse v" in result.stdout


def test_help_command() -> None:
    """Test help command works."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "browser end-to-end" in result.stdout


def test_init_help() -> None:
    """Test init command help."""
    result = runner.invoke(app, ["init", "--help"])
    assert result.exit_code == 0
    assert "Initialize Rehearse in your project" in result.stdout


def test_init_creates_project(project: Path) -> None:
    """Test init writes config, an example schema and an example test."""
    result = runner.invoke(app, ["init", "--base-url", "http://localhost:3000"])
    assert result.exit_code == 0, result.stdout

    config = yaml.safe_load((project / "rehearse.yaml").read_text())
    assert config["project"]["base_url"] == "http://localhost:3000"
    assert (project / "tests" / "schemas" / "user.yaml").exists()
    assert (project / "tests" / "test_example.py").exists()


def test_init_refuses_to_overwrite(project: Path) -> None:
    (project / "rehearse.yaml").write_text("project: {name: mine}\n")

    result = runner.invoke(app, ["init"])

    assert result.exit_code == 1
    assert "already exists" in result.stdout
    assert "mine" in (project / "rehearse.yaml").read_text()


def test_config_show(project: Path) -> None:
    (project / "rehearse.yaml").write_text("session: {concurrency_limit: 7}\n")

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0, result.stdout
    assert "concurrency_limit: 7" in result.stdout


def test_config_show_rejects_unknown_key(project: Path) -> None:
    (project / "rehearse.yaml").write_text("browser: {turbo: true}\n")

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 1
    assert "turbo" in result.stdout


class TestFixtureCommands:
    def test_generate_is_reproducible(self, project: Path, schema_file: Path) -> None:
        first = runner.invoke(app, ["fixture", "generate", str(schema_file), "--seed", "42", "-o", "a.json"])
        second = runner.invoke(app, ["fixture", "generate", str(schema_file), "--seed", "42", "-o", "b.json"])

        assert first.exit_code == 0, first.stdout
        assert second.exit_code == 0, second.stdout
        a = json.loads((project / "a.json").read_text())
        assert a == json.loads((project / "b.json").read_text())
        assert set(a) == {"name", "email", "age", "plan"}

    def test_generate_many(self, project: Path, schema_file: Path) -> None:
        result = runner.invoke(app, ["fixture", "generate", str(schema_file), "-n", "3", "-o", "out"])

        assert result.exit_code == 0, result.stdout
        assert sorted(p.name for p in (project / "out").iterdir()) == ["user-1.json", "user-2.json", "user-3.json"]

    def test_generate_prints_table(self, schema_file: Path) -> None:
        result = runner.invoke(app, ["fixture", "generate", str(schema_file), "--seed", "1"])

        assert result.exit_code == 0, result.stdout
        assert "seed 1" in result.stdout

    def test_validate(self, project: Path, schema_file: Path) -> None:
        good = project / "good.json"
        good.write_text(json.dumps({"name": "Ada", "email": "ada@example.com", "age": 30, "plan": "pro"}))
        bad = project / "bad.json"
        bad.write_text(json.dumps({"name": "Ada", "email": "ada@example.com", "age": "30", "plan": "pro"}))

        ok = runner.invoke(app, ["fixture", "validate", str(good), "--schema", str(schema_file)])
        assert ok.exit_code == 0, ok.stdout

        failed = runner.invoke(app, ["fixture", "validate", str(good), str(bad), "--schema", str(schema_file)])
        assert failed.exit_code == 1
        assert "1 of 2 fixtures are malformed" in failed.stdout

    def test_bad_schema(self, project: Path) -> None:
        path = project / "broken.yaml"
        path.write_text(yaml.safe_dump({"fields": {"age": {"kind": "integer-range"}}}))

        result = runner.invoke(app, ["fixture", "generate", str(path)])

        assert result.exit_code == 1
