"""Browser session management.

``SessionPool`` owns the engine, lazily launches one browser session per
headless mode and hands out isolated ``Context`` objects, one per test. The
number of contexts alive at once is capped by ``session.concurrency_limit``;
the free-slot count is only ever changed while holding the pool lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from rehearse.core.api import ApiClient
from rehearse.core.cancel import CancellationToken
from rehearse.core.errors import EngineError, SessionUnavailable
from rehearse.core.guard import ensure_mutation_allowed
from rehearse.core.page import Page

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from rehearse.core.config.main import ApiConfig, ContextConfig, RehearseConfig, TimeoutsConfig
    from rehearse.core.engine.base import Engine, EngineContext, EnginePage, EngineSession

log = logging.getLogger(__name__)


def _slug(label: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", label).strip("_")[:100] or "context"


class Session:
    """One browser process and the contexts derived from it."""

    def __init__(self, engine_session: EngineSession, headless: bool) -> None:
        self.engine_session = engine_session
        self.headless = headless
        self.contexts: set[Context] = set()
        self.retired = False

    @property
    def is_connected(self) -> bool:
        return self.engine_session.is_connected


class Context:
    """An isolated browsing context owned by exactly one test."""

    def __init__(
        self,
        engine_context: EngineContext,
        session: Session,
        config: ContextConfig,
        *,
        timeouts: TimeoutsConfig,
        label: str | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.label = label or f"context-{self.id}"
        self.engine_context = engine_context
        self.session = session
        self.config = config
        self.timeouts = timeouts
        self.token = token or CancellationToken()
        self.released = False
        self.trace_path: Path | None = None
        self._pages: list[Page] = []

    def __repr__(self) -> str:
        return f"<Context {self.label} released={self.released}>"

    def _check_live(self, action: str) -> None:
        if self.released:
            raise EngineError(f"{action} failed: context {self.label} has been released")

    @property
    def pages(self) -> list[Page]:
        return [p for p in self._pages if not p.is_closed]

    def adopt(self, engine_page: EnginePage) -> Page:
        """Return the ``Page`` wrapping ``engine_page``, creating it on first sight."""
        for page in self._pages:
            if page.engine_page is engine_page:
                return page
        page = Page(engine_page, self)
        self._pages.append(page)
        return page

    async def new_page(self) -> Page:
        ensure_mutation_allowed("new_page")
        self._check_live("new_page")
        return self.adopt(await self.engine_context.new_page())

    async def cookies(self) -> list[dict[str, Any]]:
        self._check_live("cookies")
        return await self.engine_context.cookies()

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        ensure_mutation_allowed("add_cookies")
        self._check_live("add_cookies")
        await self.engine_context.add_cookies(cookies)

    async def clear_cookies(self) -> None:
        ensure_mutation_allowed("clear_cookies")
        self._check_live("clear_cookies")
        await self.engine_context.clear_cookies()

    async def save_storage_state(self, path: str | Path) -> dict[str, Any]:
        """Persist cookies and local storage so a later context can start logged in."""
        self._check_live("save_storage_state")
        return await self.engine_context.storage_state(Path(path))

    async def mock_route(
        self,
        pattern: str,
        body: str | dict[str, Any] | list[Any],
        *,
        status: int = 200,
        content_type: str = "application/json",
    ) -> None:
        ensure_mutation_allowed(f"mock_route {pattern}")
        self._check_live("mock_route")
        if not isinstance(body, str):
            body = json.dumps(body)
        await self.engine_context.route_fulfill(pattern, body, status, content_type)


class SessionPool:
    """Hands out isolated contexts and guarantees their teardown."""

    def __init__(self, engine: Engine, config: RehearseConfig, *, artifacts_dir: Path | None = None) -> None:
        self.engine = engine
        self.config = config
        self.artifacts_dir = Path(artifacts_dir or config.project.artifacts_directory)
        self.capacity = config.session.concurrency_limit
        self._lock = asyncio.Lock()
        self._available = self.capacity
        self._sessions: dict[bool, Session] = {}
        self._retired: list[Session] = []
        self._contexts: set[Context] = set()
        self._api_clients: set[ApiClient] = set()
        self._engine_started = False
        self._closed = False

    @property
    def available_slots(self) -> int:
        return self._available

    @property
    def active_contexts(self) -> list[Context]:
        return list(self._contexts)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def acquire_context(
        self,
        config: ContextConfig | None = None,
        *,
        label: str | None = None,
        token: CancellationToken | None = None,
    ) -> Context:
        """Acquire a fresh context, retrying ``SessionUnavailable`` with exponential backoff.

        Raises:
            SessionUnavailable: The browser kept crashing or no slot freed up
                within ``session.acquire_attempts`` attempts.
            OperationCancelled: ``token`` was cancelled while backing off.
        """
        config = config or self.config.context_config()
        settings = self.config.session
        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.acquire_attempts),
            wait=wait_exponential(multiplier=settings.acquire_backoff, max=settings.acquire_max_backoff),
            retry=retry_if_exception_type(SessionUnavailable),
            before_sleep=before_sleep_log(log, logging.WARNING),
            sleep=token.sleep if token is not None else asyncio.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if token is not None:
                    token.raise_if_cancelled()
                context = await self._try_acquire(config, label, token)
        return context

    async def _try_acquire(
        self, config: ContextConfig, label: str | None, token: CancellationToken | None
    ) -> Context:
        async with self._lock:
            if self._closed:
                raise EngineError("Session pool is closed")
            if self._available <= 0:
                raise SessionUnavailable(f"Concurrent context limit of {self.capacity} reached")
            session = await self._session_for(config.headless)
            self._available -= 1

        engine_context: EngineContext | None = None
        try:
            engine_context = await session.engine_session.new_context(config)
            if config.trace:
                await engine_context.start_tracing()
        except BaseException as e:
            if engine_context is not None:
                await self._close_quietly(engine_context)
            async with self._lock:
                self._available += 1
            if isinstance(e, EngineError) and self._closed:
                raise EngineError(f"Session pool closed while creating a context: {e}") from e
            if isinstance(e, EngineError) and not session.is_connected:
                await self._retire(session)
                raise SessionUnavailable(f"Browser crashed while creating a context: {e}", crashed=True) from e
            raise

        context = Context(
            engine_context,
            session,
            config,
            timeouts=self.config.timeouts,
            label=label,
            token=token,
        )
        async with self._lock:
            closed_meanwhile = self._closed
            if not closed_meanwhile:
                self._contexts.add(context)
                session.contexts.add(context)
        if closed_meanwhile:
            context.released = True
            await self._teardown(context)
            async with self._lock:
                self._available += 1
            raise EngineError("Session pool closed while creating a context")
        log.debug("Acquired %s (%d/%d slots free)", context.label, self._available, self.capacity)
        return context

    async def _session_for(self, headless: bool) -> Session:
        # Caller holds self._lock
        session = self._sessions.get(headless)
        if session is not None and not session.is_connected:
            log.warning("Browser session (headless=%s) crashed, relaunching on next attempt", headless)
            await self._retire(session)
            raise SessionUnavailable("Browser session crashed", crashed=True)
        if session is None:
            await self._start_engine()
            session = Session(await self.engine.launch(headless), headless)
            self._sessions[headless] = session
            log.info("Launched %s browser session (headless=%s)", self.engine.name, headless)
        return session

    async def _start_engine(self) -> None:
        # Caller holds self._lock
        if not self._engine_started:
            await self.engine.start()
            self._engine_started = True

    async def _retire(self, session: Session) -> None:
        if self._sessions.get(session.headless) is session:
            del self._sessions[session.headless]
        if session.retired:
            return
        session.retired = True
        if session.contexts:
            # closed once its last context is released
            self._retired.append(session)
        else:
            await self._close_session(session)

    async def release_context(self, context: Context) -> None:
        """Tear down ``context`` and reclaim its slot. Safe to call more than once."""
        async with self._lock:
            if context.released:
                return
            context.released = True

        try:
            await self._teardown(context)
        finally:
            async with self._lock:
                self._available += 1
                self._contexts.discard(context)
                context.session.contexts.discard(context)
                orphaned = context.session.retired and not context.session.contexts
                if orphaned and context.session in self._retired:
                    self._retired.remove(context.session)
            if orphaned:
                await self._close_session(context.session)
            log.debug("Released %s (%d/%d slots free)", context.label, self._available, self.capacity)

    async def _teardown(self, context: Context) -> None:
        engine_context = context.engine_context
        if context.config.trace:
            path = self.artifacts_dir / "traces" / f"trace-{_slug(context.label)}.zip"
            try:
                await engine_context.stop_tracing(path)
                context.trace_path = path
                log.info("Trace for %s saved to %s", context.label, path)
            except EngineError as e:
                log.warning("Could not save trace for %s: %s", context.label, e)
        for page in engine_context.pages:
            try:
                await page.close()
            except EngineError as e:
                log.warning("Error closing page in %s: %s", context.label, e)
        await self._close_quietly(engine_context)

    async def _close_quietly(self, engine_context: EngineContext) -> None:
        try:
            await engine_context.close()
        except EngineError as e:
            log.warning("Error closing browser context: %s", e)

    async def _close_session(self, session: Session) -> None:
        try:
            await session.engine_session.close()
        except EngineError as e:
            log.warning("Error closing browser session: %s", e)

    @asynccontextmanager
    async def context(
        self,
        config: ContextConfig | None = None,
        *,
        label: str | None = None,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[Context]:
        """Scoped acquisition; the context is released on every exit path."""
        context = await self.acquire_context(config, label=label, token=token)
        try:
            yield context
        finally:
            await asyncio.shield(self.release_context(context))

    async def open_api(self, config: ApiConfig | None = None) -> ApiClient:
        """Create a backend API client. It does not count against the context limit."""
        config = config or self.config.api_config()
        async with self._lock:
            if self._closed:
                raise EngineError("Session pool is closed")
            await self._start_engine()
            client = ApiClient(await self.engine.new_request_context(config), config)
            self._api_clients.add(client)
        log.debug("Opened API client for %s", config.base_url)
        return client

    async def dispose_api(self, client: ApiClient) -> None:
        async with self._lock:
            self._api_clients.discard(client)
        try:
            await client.dispose()
        except EngineError as e:
            log.warning("Error disposing API client: %s", e)

    @asynccontextmanager
    async def api(self, config: ApiConfig | None = None) -> AsyncIterator[ApiClient]:
        client = await self.open_api(config)
        try:
            yield client
        finally:
            await asyncio.shield(self.dispose_api(client))

    async def close(self) -> None:
        """Release outstanding contexts and API clients, then close sessions, then stop the engine."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            outstanding = list(self._contexts)
            clients = list(self._api_clients)

        for context in outstanding:
            await self.release_context(context)
        for client in clients:
            await self.dispose_api(client)
        sessions = list(self._sessions.values()) + self._retired
        self._sessions.clear()
        self._retired.clear()
        for session in sessions:
            await self._close_session(session)
        if self._engine_started:
            await self.engine.stop()
            self._engine_started = False
        log.debug("Session pool closed")
