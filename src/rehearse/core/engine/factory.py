"""Factory for creating browser engines."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rehearse.core.errors import ConfigError

from .fake import FakeEngine
from .playwright import PlaywrightEngine

if TYPE_CHECKING:
    from rehearse.core.config.main import RehearseConfig

    from .base import Engine

# Registry of available engines
ENGINE_REGISTRY: dict[str, type[Engine]] = {
    "playwright": PlaywrightEngine,
    "real": PlaywrightEngine,  # Alias
    "fake": FakeEngine,
}


def create_engine(config: RehearseConfig, name: str | None = None) -> Engine:
    """Create the engine named by ``name`` or by ``config.browser.engine``.

    Raises:
        ConfigError: If the engine name is not registered
    """
    engine_name = (name or config.browser.engine).lower()
    if engine_name not in ENGINE_REGISTRY:
        available = ", ".join(ENGINE_REGISTRY)
        raise ConfigError(f"Unsupported engine '{engine_name}'. Available: {available}")
    return ENGINE_REGISTRY[engine_name](config.browser, config.timeouts)


def get_available_engines() -> list[str]:
    """Get list of registered engine names."""
    return list(ENGINE_REGISTRY)
