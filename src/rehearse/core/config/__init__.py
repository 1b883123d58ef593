from .main import (
    BrowserConfig,
    ContextConfig,
    ProjectConfig,
    RehearseConfig,
    RetryConfig,
    SessionConfig,
    TimeoutsConfig,
    ViewportConfig,
)

__all__ = [
    "BrowserConfig",
    "ContextConfig",
    "ProjectConfig",
    "RehearseConfig",
    "RetryConfig",
    "SessionConfig",
    "TimeoutsConfig",
    "ViewportConfig",
]
