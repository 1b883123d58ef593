"""Engine interface hiding the native browser process.

Two variants implement it: ``PlaywrightEngine`` drives a real browser and
``FakeEngine`` keeps everything in memory so the session, synchronization and
retry layers can be exercised without spawning a browser.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from rehearse.core.api import ApiResponse
    from rehearse.core.config.main import ApiConfig, BrowserConfig, ContextConfig, TimeoutsConfig


class EnginePage(ABC):
    """A single document view inside an engine context."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Current page URL."""

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        """Whether the page has been closed."""

    @abstractmethod
    async def goto(self, url: str) -> None: ...

    @abstractmethod
    async def reload(self) -> None: ...

    @abstractmethod
    async def title(self) -> str: ...

    @abstractmethod
    async def content(self) -> str:
        """Full HTML of the current document."""

    @abstractmethod
    async def click(self, selector: str) -> None: ...

    @abstractmethod
    async def fill(self, selector: str, value: str) -> None: ...

    @abstractmethod
    async def press(self, selector: str, key: str) -> None: ...

    @abstractmethod
    async def is_visible(self, selector: str) -> bool: ...

    @abstractmethod
    async def text_content(self, selector: str) -> str | None:
        """Text of the first match, or None when nothing matches."""

    @abstractmethod
    async def count(self, selector: str) -> int: ...

    @abstractmethod
    async def get_local_storage(self, key: str) -> str | None: ...

    @abstractmethod
    async def set_local_storage(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def clear_local_storage(self) -> None: ...

    @abstractmethod
    async def pending_requests(self) -> int:
        """Number of network requests started but not yet finished."""

    @abstractmethod
    async def running_animations(self) -> int: ...

    @abstractmethod
    async def screenshot(self, path: Path) -> Path: ...

    @abstractmethod
    async def expect_popup(self, action: Callable[[], Awaitable[Any]]) -> EnginePage:
        """Run ``action`` and return the page it opened in a new tab or window."""

    @abstractmethod
    async def close(self) -> None: ...


class EngineContext(ABC):
    """An isolated cookie/storage sandbox."""

    @property
    @abstractmethod
    def pages(self) -> list[EnginePage]: ...

    @abstractmethod
    async def new_page(self) -> EnginePage: ...

    @abstractmethod
    async def cookies(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None: ...

    @abstractmethod
    async def clear_cookies(self) -> None: ...

    @abstractmethod
    async def storage_state(self, path: Path) -> dict[str, Any]:
        """Persist cookies and local storage to ``path`` and return them."""

    @abstractmethod
    async def route_fulfill(self, pattern: str, body: str, status: int, content_type: str) -> None:
        """Answer every request matching ``pattern`` with a canned response."""

    @abstractmethod
    async def start_tracing(self) -> None: ...

    @abstractmethod
    async def stop_tracing(self, path: Path) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class EngineSession(ABC):
    """One running browser process."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """False once the browser process has exited or crashed."""

    @abstractmethod
    async def new_context(self, config: ContextConfig) -> EngineContext: ...

    @abstractmethod
    async def close(self) -> None: ...


class EngineRequestContext(ABC):
    """An HTTP client on the engine's network stack, detached from any browser context."""

    @abstractmethod
    async def fetch(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
        fail_on_status_code: bool = False,
        max_retries: int = 0,
    ) -> ApiResponse:
        """Send one request and read its body.

        ``max_retries`` repeats the request on connection failures only.
        Raises EngineError on connection failure, or on an error status when
        ``fail_on_status_code`` is set.
        """

    @abstractmethod
    async def dispose(self) -> None: ...


class Engine(ABC):
    """Launches browser sessions."""

    name: str = "engine"

    def __init__(self, config: BrowserConfig, timeouts: TimeoutsConfig | None = None) -> None:
        self.config = config
        self.timeouts = timeouts

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def launch(self, headless: bool) -> EngineSession:
        """Start a browser process. Raises SessionUnavailable when it cannot."""

    @abstractmethod
    async def new_request_context(self, config: ApiConfig) -> EngineRequestContext: ...

    @abstractmethod
    async def stop(self) -> None: ...
