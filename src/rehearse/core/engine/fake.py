"""In-memory engine for unit tests.

Pages hold a flat ``selector -> FakeElement`` map instead of a DOM. Tests
shape page state directly (``set_element``, ``pending_request_count``) or
register a site loader that populates a page on navigation.
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
import json
import zipfile
from dataclasses import dataclass
from html import escape
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urljoin, urlsplit

from rehearse.core.api import ApiResponse
from rehearse.core.errors import EngineError, SessionUnavailable

from .base import Engine, EngineContext, EnginePage, EngineRequestContext, EngineSession

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from rehearse.core.config.main import ApiConfig, ContextConfig


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass
class FakeElement:
    text: str = ""
    visible: bool = True
    value: str = ""
    on_click: Callable[[FakePage], Any] | None = None


@dataclass
class FakeResponse:
    status: int
    body: str
    content_type: str


@dataclass
class FakeApiRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None = None

    def json(self) -> Any:
        return None if self.body is None else json.loads(self.body)


class FakePage(EnginePage):
    def __init__(self, context: FakeContext) -> None:
        self.context = context
        self.elements: dict[str, list[FakeElement]] = {}
        self.page_title = ""
        self.pending_request_count = 0
        self.running_animation_count = 0
        self.actions: list[tuple[str, Any]] = []
        self.last_response: FakeResponse | None = None
        self._url = "about:blank"
        self._closed = False

    # -- test helpers ---------------------------------------------------

    def set_element(self, selector: str, text: str = "", *, visible: bool = True, count: int = 1) -> FakeElement:
        elements = [FakeElement(text=text, visible=visible) for _ in range(count)]
        self.elements[selector] = elements
        return elements[0] if elements else FakeElement()

    def remove_element(self, selector: str) -> None:
        self.elements.pop(selector, None)

    def after(self, delay: float, callback: Callable[[FakePage], Any]) -> asyncio.TimerHandle:
        """Run ``callback(page)`` after ``delay`` seconds on the running loop."""
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, callback, self)

    # -- EnginePage -----------------------------------------------------

    def _check_open(self, action: str) -> None:
        if self._closed:
            raise EngineError(f"{action} failed: page is closed")
        self.context.check_open(action)

    def _first(self, selector: str) -> FakeElement | None:
        matches = self.elements.get(selector) or []
        return matches[0] if matches else None

    @property
    def url(self) -> str:
        return self._url

    @property
    def origin(self) -> str:
        parts = urlsplit(self._url)
        return f"{parts.scheme}://{parts.netloc}" if parts.netloc else ""

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def goto(self, url: str) -> None:
        self._check_open(f"goto {url}")
        base_url = self.context.config.base_url
        if base_url and not urlsplit(url).scheme:
            url = urljoin(base_url, url)
        self.actions.append(("goto", url))
        self._url = url
        self.elements = {}
        self.page_title = ""
        self.last_response = self.context.match_route(url)
        await self.context.engine.load_site(self)

    async def reload(self) -> None:
        await self.goto(self._url)

    async def title(self) -> str:
        self._check_open("title")
        return self.page_title

    async def content(self) -> str:
        self._check_open("content")
        body = "".join(
            f'<div data-selector="{escape(selector)}">{escape(el.text)}</div>'
            for selector, matches in self.elements.items()
            for el in matches
            if el.visible
        )
        return (
            f"<html><head><title>{escape(self.page_title)}</title>"
            f"<script>var hidden = 'script text';</script></head><body>{body}</body></html>"
        )

    async def click(self, selector: str) -> None:
        self._check_open(f"click {selector}")
        element = self._first(selector)
        if element is None or not element.visible:
            raise EngineError(f"click {selector} failed: element not visible")
        self.actions.append(("click", selector))
        if element.on_click is not None:
            await _maybe_await(element.on_click(self))

    async def fill(self, selector: str, value: str) -> None:
        self._check_open(f"fill {selector}")
        element = self._first(selector)
        if element is None:
            raise EngineError(f"fill {selector} failed: no such element")
        self.actions.append(("fill", (selector, value)))
        element.value = value

    async def press(self, selector: str, key: str) -> None:
        self._check_open(f"press {key}")
        if self._first(selector) is None:
            raise EngineError(f"press {key} on {selector} failed: no such element")
        self.actions.append(("press", (selector, key)))

    async def is_visible(self, selector: str) -> bool:
        self._check_open(f"is_visible {selector}")
        element = self._first(selector)
        return element is not None and element.visible

    async def text_content(self, selector: str) -> str | None:
        self._check_open(f"text_content {selector}")
        element = self._first(selector)
        return None if element is None else element.text

    async def count(self, selector: str) -> int:
        self._check_open(f"count {selector}")
        return len(self.elements.get(selector) or [])

    def _storage(self) -> dict[str, str]:
        if not self.origin:
            raise EngineError(f"localStorage is not available on {self._url}")
        return self.context.local_storage.setdefault(self.origin, {})

    async def get_local_storage(self, key: str) -> str | None:
        self._check_open("localStorage.getItem")
        return self._storage().get(key)

    async def set_local_storage(self, key: str, value: str) -> None:
        self._check_open("localStorage.setItem")
        self._storage()[key] = value

    async def clear_local_storage(self) -> None:
        self._check_open("localStorage.clear")
        self._storage().clear()

    async def pending_requests(self) -> int:
        self._check_open("pending_requests")
        return self.pending_request_count

    async def running_animations(self) -> int:
        self._check_open("getAnimations")
        return self.running_animation_count

    async def screenshot(self, path: Path) -> Path:
        self._check_open("screenshot")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG\r\n\x1a\n")
        return path

    async def expect_popup(self, action: Callable[[], Awaitable[Any]]) -> EnginePage:
        self._check_open("expect_popup")
        before = set(map(id, self.context.pages))
        await action()
        opened = [p for p in self.context.pages if id(p) not in before]
        if not opened:
            raise EngineError("expect_popup failed: action did not open a new page")
        return opened[-1]

    async def close(self) -> None:
        self._closed = True


class FakeContext(EngineContext):
    def __init__(self, session: FakeSession, config: ContextConfig) -> None:
        self.session = session
        self.engine = session.engine
        self.config = config
        self.cookie_jar: list[dict[str, Any]] = []
        self.local_storage: dict[str, dict[str, str]] = {}
        self.routes: dict[str, FakeResponse] = {}
        self.tracing = False
        self.closed = False
        self._pages: list[FakePage] = []
        if config.storage_state is not None:
            self._load_storage_state(config.storage_state)

    def _load_storage_state(self, path: Path) -> None:
        try:
            state = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise EngineError(f"Cannot load storage state {path}: {e}") from e
        self.cookie_jar = list(state.get("cookies", []))
        for origin in state.get("origins", []):
            self.local_storage[origin["origin"]] = {
                item["name"]: item["value"] for item in origin.get("localStorage", [])
            }

    def check_open(self, action: str) -> None:
        if self.closed:
            raise EngineError(f"{action} failed: context is closed")
        if not self.session.is_connected:
            raise EngineError(f"{action} failed: browser has crashed")

    def match_route(self, url: str) -> FakeResponse | None:
        for pattern, response in self.routes.items():
            if fnmatch.fnmatch(url, pattern):
                return response
        return None

    @property
    def pages(self) -> list[EnginePage]:
        return [p for p in self._pages if not p.is_closed]

    async def new_page(self) -> FakePage:
        self.check_open("new_page")
        page = FakePage(self)
        self._pages.append(page)
        return page

    async def cookies(self) -> list[dict[str, Any]]:
        self.check_open("cookies")
        return [dict(c) for c in self.cookie_jar]

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.check_open("add_cookies")
        self.cookie_jar.extend(dict(c) for c in cookies)

    async def clear_cookies(self) -> None:
        self.check_open("clear_cookies")
        self.cookie_jar.clear()

    async def storage_state(self, path: Path) -> dict[str, Any]:
        self.check_open("storage_state")
        state = {
            "cookies": [dict(c) for c in self.cookie_jar],
            "origins": [
                {"origin": origin, "localStorage": [{"name": k, "value": v} for k, v in items.items()]}
                for origin, items in self.local_storage.items()
            ],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(state, indent=2), encoding="utf-8")
        return state

    async def route_fulfill(self, pattern: str, body: str, status: int, content_type: str) -> None:
        self.check_open(f"route {pattern}")
        self.routes[pattern] = FakeResponse(status=status, body=body, content_type=content_type)

    async def start_tracing(self) -> None:
        self.check_open("tracing.start")
        self.tracing = True

    async def stop_tracing(self, path: Path) -> None:
        if not self.tracing:
            raise EngineError("tracing.stop failed: tracing was not started")
        self.tracing = False
        path.parent.mkdir(parents=True, exist_ok=True)
        actions = [{"page": i, "actions": p.actions} for i, p in enumerate(self._pages)]
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("trace.json", json.dumps(actions, default=str))

    async def close(self) -> None:
        self.closed = True
        for page in self._pages:
            await page.close()


class FakeSession(EngineSession):
    def __init__(self, engine: FakeEngine, headless: bool) -> None:
        self.engine = engine
        self.headless = headless
        self.contexts: list[FakeContext] = []
        self.closed = False
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return self._connected and not self.closed

    def crash(self) -> None:
        """Simulate the browser process dying."""
        self._connected = False

    @property
    def open_contexts(self) -> list[FakeContext]:
        return [c for c in self.contexts if not c.closed]

    async def new_context(self, config: ContextConfig) -> FakeContext:
        if not self.is_connected:
            raise EngineError("new_context failed: browser has crashed")
        context = FakeContext(self, config)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class FakeRequestContext(EngineRequestContext):
    """Answers requests from the handlers registered on the engine.

    A handler raising ``ConnectionError`` stands in for a refused connection,
    which is the only failure ``max_retries`` repeats.
    """

    def __init__(self, engine: FakeEngine, config: ApiConfig) -> None:
        self.engine = engine
        self.config = config
        self.disposed = False

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
        if self.disposed:
            raise EngineError(f"{method} {url} failed: request context has been disposed")
        if self.config.base_url and not urlsplit(url).scheme:
            url = urljoin(self.config.base_url, url)
        if params:
            url = f"{url}{'&' if urlsplit(url).query else '?'}{urlencode(params)}"
        request = FakeApiRequest(method, url, {**self.config.extra_headers, **(headers or {})}, data)

        for attempt in range(max_retries + 1):
            self.engine.api_requests.append(request)
            try:
                response = await self.engine.answer_api(request)
                break
            except ConnectionError as e:
                if attempt == max_retries:
                    raise EngineError(f"{method} {url} failed: {e}") from e

        if fail_on_status_code and not 200 <= response.status < 400:
            raise EngineError(f"{method} {url} failed: {response.status} {response.body[:100]}")
        return ApiResponse(
            url=url,
            status=response.status,
            headers={"content-type": response.content_type},
            body=response.body.encode("utf-8"),
        )

    async def dispose(self) -> None:
        self.disposed = True


class FakeEngine(Engine):
    name = "fake"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.sessions: list[FakeSession] = []
        self.sites: dict[str, Callable[[FakePage], Any]] = {}
        self.apis: list[tuple[str, str, Callable[[FakeApiRequest], Any]]] = []
        self.api_requests: list[FakeApiRequest] = []
        self.request_contexts: list[FakeRequestContext] = []
        self.fail_next_launches = 0
        self.started = False

    def register_site(self, url_pattern: str, loader: Callable[[FakePage], Any]) -> None:
        """Populate pages whose URL matches ``url_pattern`` (glob) on navigation."""
        self.sites[url_pattern] = loader

    def register_api(self, method: str, url_pattern: str, handler: Callable[[FakeApiRequest], Any]) -> None:
        """Answer ``method`` requests whose URL matches ``url_pattern`` (glob).

        The handler returns a ``FakeResponse`` or a ``(status, body)`` pair;
        a body that is not a string is sent as JSON. ``method="*"`` matches any.
        """
        self.apis.append((method.upper(), url_pattern, handler))

    async def answer_api(self, request: FakeApiRequest) -> FakeResponse:
        for method, pattern, handler in self.apis:
            if method in ("*", request.method) and fnmatch.fnmatch(request.url, pattern):
                result = await _maybe_await(handler(request))
                if isinstance(result, FakeResponse):
                    return result
                status, body = result
                if isinstance(body, str):
                    return FakeResponse(status, body, "text/plain")
                return FakeResponse(status, json.dumps(body), "application/json")
        return FakeResponse(404, "Not Found", "text/plain")

    async def load_site(self, page: FakePage) -> None:
        for pattern, loader in self.sites.items():
            if fnmatch.fnmatch(page.url, pattern):
                await _maybe_await(loader(page))
                return

    async def start(self) -> None:
        self.started = True

    async def launch(self, headless: bool) -> FakeSession:
        if self.fail_next_launches > 0:
            self.fail_next_launches -= 1
            raise SessionUnavailable("Fake browser refused to launch", crashed=True)
        session = FakeSession(self, headless)
        self.sessions.append(session)
        return session

    async def new_request_context(self, config: ApiConfig) -> FakeRequestContext:
        context = FakeRequestContext(self, config)
        self.request_contexts.append(context)
        return context

    async def stop(self) -> None:
        self.started = False
