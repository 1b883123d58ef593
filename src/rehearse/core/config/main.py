"""Configuration management for Rehearse."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rehearse.core.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

CONFIG_FILE_NAME = "rehearse.yaml"
ENV_PREFIX = "REHEARSE_"


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ViewportConfig(_StrictModel):
    """Viewport configuration settings."""

    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)

    def as_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}


class BrowserConfig(_StrictModel):
    """Browser configuration settings."""

    engine: str = "playwright"
    browser: Literal["chromium", "firefox", "webkit"] = "chromium"
    channel: str | None = None
    headless: bool = True
    slow_mo: float = Field(default=0.0, ge=0)  # milliseconds
    launch_args: list[str] = Field(default_factory=list)
    viewport: ViewportConfig | None = Field(default_factory=ViewportConfig)
    locale: str = "en-US"
    trace: bool = False


class SessionConfig(_StrictModel):
    """Session pool settings."""

    concurrency_limit: int = Field(default=4, ge=1)
    acquire_attempts: int = Field(default=3, ge=1)
    acquire_backoff: float = Field(default=0.5, ge=0)  # seconds, doubled per attempt
    acquire_max_backoff: float = Field(default=8.0, ge=0)


class TimeoutsConfig(_StrictModel):
    """Default timeouts, all in seconds."""

    wait: float = Field(default=5.0, gt=0)
    poll_interval: float = Field(default=0.1, gt=0)
    action: float = Field(default=10.0, gt=0)
    navigation: float = Field(default=30.0, gt=0)
    suite: float | None = Field(default=None, gt=0)
    teardown_grace: float = Field(default=5.0, ge=0)


class RetryConfig(_StrictModel):
    """Default policy for eventually-consistent assertions."""

    max_attempts: int = Field(default=3, ge=1)
    backoff: Literal["fixed", "exponential"] = "exponential"
    delay: float = Field(default=0.2, ge=0)
    max_delay: float = Field(default=2.0, ge=0)
    attempt_timeout: float | None = Field(default=None, gt=0)


class ApiConfig(_StrictModel):
    """Defaults for the backend API client.

    ``base_url`` falls back to ``project.base_url``. ``max_retries`` only covers
    connection failures; an error status is a response, not a retry.
    """

    base_url: str | None = None
    extra_headers: dict[str, str] = Field(default_factory=dict)
    max_retries: int = Field(default=0, ge=0)
    fail_on_status_code: bool = False
    ignore_https_errors: bool = False


class ProjectConfig(_StrictModel):
    """Project configuration settings."""

    name: str = "rehearse-project"
    base_url: str | None = None
    test_directory: str = "tests"
    artifacts_directory: str = "artifacts"


class ContextConfig(_StrictModel):
    """Options for one isolated browsing context.

    ``viewport=None`` leaves the window size to the browser, which together
    with ``--start-maximized`` in the launch args gives a maximized window.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    headless: bool = True
    viewport: ViewportConfig | None = Field(default_factory=ViewportConfig)
    locale: str = "en-US"
    trace: bool = False
    base_url: str | None = None
    storage_state: Path | None = None
    record_video_dir: Path | None = None
    video_size: ViewportConfig | None = None
    dialogs: Literal["accept", "dismiss"] = "dismiss"
    prompt_text: str | None = None


class RehearseConfig(_StrictModel):
    """Main Rehearse configuration."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the path to the configuration file."""
        return Path.cwd() / CONFIG_FILE_NAME

    @classmethod
    def load_config(cls, path: Path | None = None, env: Mapping[str, str] | None = None) -> Self:
        """Load configuration from rehearse.yaml and REHEARSE_* environment variables.

        A missing file means defaults. Unknown keys in either source raise
        ``ConfigError`` right away.
        """
        config_path = path or cls.get_config_path()
        data: dict[str, Any] = {}

        if config_path.exists():
            try:
                with open(config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Could not read {config_path}: {e}") from e
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"{config_path} must contain a mapping, got {type(loaded).__name__}")
            data = loaded or {}
        elif path is not None:
            raise ConfigError(f"Config file {config_path} does not exist")

        _apply_env_overrides(cls, data, os.environ if env is None else env)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from e

    def save(self, path: Path | None = None) -> Path:
        """Save configuration to rehearse.yaml."""
        config_path = path or self.get_config_path()
        try:
            with open(config_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Could not write {config_path}: {e}") from e
        return config_path

    def context_config(self, **overrides: Any) -> ContextConfig:
        """Build the default ContextConfig for this project."""
        values: dict[str, Any] = {
            "headless": self.browser.headless,
            "viewport": self.browser.viewport,
            "locale": self.browser.locale,
            "trace": self.browser.trace,
            "base_url": self.project.base_url,
        }
        values.update(overrides)
        return ContextConfig(**values)

    def api_config(self, **overrides: Any) -> ApiConfig:
        """Build the API client config, inheriting ``project.base_url`` when unset."""
        values = self.api.model_dump()
        if values["base_url"] is None:
            values["base_url"] = self.project.base_url
        values.update(overrides)
        return ApiConfig(**values)


def _apply_env_overrides(model: type[BaseModel], data: dict[str, Any], env: Mapping[str, str]) -> None:
    """Merge REHEARSE_SECTION__KEY=value variables into raw config data.

    Values are parsed as YAML scalars so ``false``, ``4`` and ``[a, b]``
    arrive typed.
    """
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        parts = [p.lower() for p in name[len(ENV_PREFIX) :].split("__") if p]
        if not parts:
            raise ConfigError(f"Unrecognized configuration variable {name}")

        current_model: type[BaseModel] | None = model
        target = data
        for i, part in enumerate(parts):
            if current_model is None or part not in current_model.model_fields:
                raise ConfigError(f"Unrecognized configuration variable {name}")
            annotation = current_model.model_fields[part].annotation
            is_last = i == len(parts) - 1
            if is_last:
                try:
                    target[part] = yaml.safe_load(raw) if raw != "" else None
                except yaml.YAMLError as e:
                    raise ConfigError(f"Cannot parse {name}={raw!r}: {e}") from e
                break
            current_model = _nested_model(annotation)
            node = target.get(part)
            if not isinstance(node, dict):
                node = {}
                target[part] = node
            target = node


def _nested_model(annotation: Any) -> type[BaseModel] | None:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    for arg in getattr(annotation, "__args__", ()):
        if isinstance(arg, type) and issubclass(arg, BaseModel):
            return arg
    return None
