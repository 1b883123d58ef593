"""Test-facing page handle.

Wraps an ``EnginePage`` so that state-changing actions go through the
read-only guard and waits pick up the owning context's timeouts and
cancellation token.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from rehearse.core.diagnostics import PageSnapshot, capture_snapshot
from rehearse.core.guard import ensure_mutation_allowed
from rehearse.core.sync.waiter import wait_for

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rehearse.core.engine.base import EnginePage
    from rehearse.core.outcome import Outcome
    from rehearse.core.session import Context
    from rehearse.core.sync.predicates import Predicate


class Page:
    def __init__(self, engine_page: EnginePage, context: Context) -> None:
        self.engine_page = engine_page
        self.context = context

    def __repr__(self) -> str:
        return f"<Page {self.url} context={self.context.id}>"

    # Navigation and interaction

    async def goto(self, url: str) -> None:
        ensure_mutation_allowed(f"goto {url}")
        await self.engine_page.goto(url)

    async def reload(self) -> None:
        ensure_mutation_allowed("reload")
        await self.engine_page.reload()

    async def click(self, selector: str) -> None:
        ensure_mutation_allowed(f"click {selector}")
        await self.engine_page.click(selector)

    async def fill(self, selector: str, value: str) -> None:
        ensure_mutation_allowed(f"fill {selector}")
        await self.engine_page.fill(selector, value)

    async def press(self, selector: str, key: str) -> None:
        ensure_mutation_allowed(f"press {key}")
        await self.engine_page.press(selector, key)

    async def expect_popup(self, action: Callable[[], Awaitable[Any]]) -> Page:
        """Run ``action`` and return the tab or window it opened."""
        ensure_mutation_allowed("expect_popup")
        popup = await self.engine_page.expect_popup(action)
        return self.context.adopt(popup)

    async def close(self) -> None:
        ensure_mutation_allowed("close page")
        await self.engine_page.close()

    # Reads

    @property
    def url(self) -> str:
        return self.engine_page.url

    @property
    def is_closed(self) -> bool:
        return self.engine_page.is_closed

    async def title(self) -> str:
        return await self.engine_page.title()

    async def content(self) -> str:
        return await self.engine_page.content()

    async def text_content(self, selector: str) -> str | None:
        return await self.engine_page.text_content(selector)

    async def is_visible(self, selector: str) -> bool:
        return await self.engine_page.is_visible(selector)

    async def count(self, selector: str) -> int:
        return await self.engine_page.count(selector)

    async def pending_requests(self) -> int:
        return await self.engine_page.pending_requests()

    async def running_animations(self) -> int:
        return await self.engine_page.running_animations()

    # Local storage

    async def get_local_storage(self, key: str) -> str | None:
        return await self.engine_page.get_local_storage(key)

    async def set_local_storage(self, key: str, value: str) -> None:
        ensure_mutation_allowed(f"localStorage.setItem({key!r})")
        await self.engine_page.set_local_storage(key, value)

    async def clear_local_storage(self) -> None:
        ensure_mutation_allowed("localStorage.clear()")
        await self.engine_page.clear_local_storage()

    # Synchronization and diagnostics

    async def wait_for(
        self,
        predicate: Predicate,
        timeout: float | None = None,
        *,
        poll_interval: float | None = None,
    ) -> Outcome:
        timeouts = self.context.timeouts
        return await wait_for(
            self,
            predicate,
            timeouts.wait if timeout is None else timeout,
            poll_interval=timeouts.poll_interval if poll_interval is None else poll_interval,
            token=self.context.token,
        )

    async def snapshot(self) -> PageSnapshot | None:
        return await capture_snapshot(self.engine_page)

    async def screenshot(self, path: str | Path) -> Path:
        return await self.engine_page.screenshot(Path(path))
