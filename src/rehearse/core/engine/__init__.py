from .base import Engine, EngineContext, EnginePage, EngineSession
from .factory import ENGINE_REGISTRY, create_engine, get_available_engines

__all__ = [
    "ENGINE_REGISTRY",
    "Engine",
    "EngineContext",
    "EnginePage",
    "EngineSession",
    "create_engine",
    "get_available_engines",
]
