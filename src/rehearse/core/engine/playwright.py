"""Playwright-backed engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from rehearse.core.api import ApiResponse
from rehearse.core.errors import EngineError, SessionUnavailable

from .base import Engine, EngineContext, EnginePage, EngineRequestContext, EngineSession

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from playwright.async_api import (
        APIRequestContext,
        Browser,
        BrowserContext,
        Dialog,
        Page,
        Playwright,
        Request,
        Route,
    )

    from rehearse.core.config.main import ApiConfig, ContextConfig

log = logging.getLogger(__name__)

_RUNNING_ANIMATIONS_JS = "() => document.getAnimations().filter(a => a.playState === 'running').length"


@asynccontextmanager
async def _translate_errors(action: str) -> AsyncIterator[None]:
    try:
        yield
    except PlaywrightError as e:
        raise EngineError(f"{action} failed: {e.message}") from e


class PlaywrightPage(EnginePage):
    def __init__(self, page: Page, config: ContextConfig) -> None:
        self._page = page
        self._config = config
        self._in_flight = 0
        page.on("request", self._on_request_started)
        page.on("requestfinished", self._on_request_done)
        page.on("requestfailed", self._on_request_done)
        page.on("dialog", self._on_dialog)

    def _on_request_started(self, _request: Request) -> None:
        self._in_flight += 1

    def _on_request_done(self, _request: Request) -> None:
        self._in_flight = max(0, self._in_flight - 1)

    async def _on_dialog(self, dialog: Dialog) -> None:
        log.debug("Dialog (%s) on %s: %s", dialog.type, self._page.url, dialog.message)
        try:
            if self._config.dialogs == "accept":
                await dialog.accept(self._config.prompt_text or "")
            else:
                await dialog.dismiss()
        except PlaywrightError as e:
            log.warning("Failed to handle dialog: %s", e.message)

    @property
    def url(self) -> str:
        return self._page.url

    @property
    def is_closed(self) -> bool:
        return self._page.is_closed()

    async def goto(self, url: str) -> None:
        async with _translate_errors(f"goto {url}"):
            await self._page.goto(url)

    async def reload(self) -> None:
        async with _translate_errors("reload"):
            await self._page.reload()

    async def title(self) -> str:
        async with _translate_errors("title"):
            return await self._page.title()

    async def content(self) -> str:
        async with _translate_errors("content"):
            return await self._page.content()

    async def click(self, selector: str) -> None:
        async with _translate_errors(f"click {selector}"):
            await self._page.locator(selector).first.click()

    async def fill(self, selector: str, value: str) -> None:
        async with _translate_errors(f"fill {selector}"):
            await self._page.locator(selector).first.fill(value)

    async def press(self, selector: str, key: str) -> None:
        async with _translate_errors(f"press {key} on {selector}"):
            await self._page.locator(selector).first.press(key)

    async def is_visible(self, selector: str) -> bool:
        async with _translate_errors(f"is_visible {selector}"):
            return await self._page.locator(selector).first.is_visible()

    async def text_content(self, selector: str) -> str | None:
        async with _translate_errors(f"text_content {selector}"):
            locator = self._page.locator(selector)
            if await locator.count() == 0:
                return None
            return await locator.first.text_content()

    async def count(self, selector: str) -> int:
        async with _translate_errors(f"count {selector}"):
            return await self._page.locator(selector).count()

    async def get_local_storage(self, key: str) -> str | None:
        async with _translate_errors("localStorage.getItem"):
            return await self._page.evaluate("k => window.localStorage.getItem(k)", key)

    async def set_local_storage(self, key: str, value: str) -> None:
        async with _translate_errors("localStorage.setItem"):
            await self._page.evaluate("([k, v]) => window.localStorage.setItem(k, v)", [key, value])

    async def clear_local_storage(self) -> None:
        async with _translate_errors("localStorage.clear"):
            await self._page.evaluate("() => window.localStorage.clear()")

    async def pending_requests(self) -> int:
        return self._in_flight

    async def running_animations(self) -> int:
        async with _translate_errors("getAnimations"):
            return int(await self._page.evaluate(_RUNNING_ANIMATIONS_JS))

    async def screenshot(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with _translate_errors("screenshot"):
            await self._page.screenshot(path=str(path), full_page=False)
        return path

    async def expect_popup(self, action: Callable[[], Awaitable[Any]]) -> EnginePage:
        async with _translate_errors("expect_popup"):
            async with self._page.expect_popup() as popup_info:
                await action()
            popup = await popup_info.value
            await popup.wait_for_load_state()
        return PlaywrightPage(popup, self._config)

    async def close(self) -> None:
        if self._page.is_closed():
            return
        async with _translate_errors("close page"):
            await self._page.close()


class PlaywrightContext(EngineContext):
    def __init__(self, context: BrowserContext, config: ContextConfig) -> None:
        self._context = context
        self._config = config
        self._pages: list[PlaywrightPage] = []

    @property
    def pages(self) -> list[EnginePage]:
        return [p for p in self._pages if not p.is_closed]

    async def new_page(self) -> EnginePage:
        async with _translate_errors("new_page"):
            page = PlaywrightPage(await self._context.new_page(), self._config)
        self._pages.append(page)
        return page

    async def cookies(self) -> list[dict[str, Any]]:
        async with _translate_errors("cookies"):
            return [dict(c) for c in await self._context.cookies()]

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        async with _translate_errors("add_cookies"):
            await self._context.add_cookies(cookies)  # type: ignore[arg-type]

    async def clear_cookies(self) -> None:
        async with _translate_errors("clear_cookies"):
            await self._context.clear_cookies()

    async def storage_state(self, path: Path) -> dict[str, Any]:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with _translate_errors("storage_state"):
            return dict(await self._context.storage_state(path=str(path)))

    async def route_fulfill(self, pattern: str, body: str, status: int, content_type: str) -> None:
        async def _handler(route: Route) -> None:
            await route.fulfill(status=status, body=body, content_type=content_type)

        async with _translate_errors(f"route {pattern}"):
            await self._context.route(pattern, _handler)

    async def start_tracing(self) -> None:
        async with _translate_errors("tracing.start"):
            await self._context.tracing.start(screenshots=True, snapshots=True, sources=True)

    async def stop_tracing(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with _translate_errors("tracing.stop"):
            await self._context.tracing.stop(path=str(path))

    async def close(self) -> None:
        async with _translate_errors("close context"):
            await self._context.close()


class PlaywrightSession(EngineSession):
    def __init__(self, browser: Browser, engine: PlaywrightEngine) -> None:
        self._browser = browser
        self._engine = engine

    @property
    def is_connected(self) -> bool:
        return self._browser.is_connected()

    async def new_context(self, config: ContextConfig) -> EngineContext:
        options: dict[str, Any] = {"locale": config.locale}
        if config.viewport is None:
            options["no_viewport"] = True
        else:
            options["viewport"] = config.viewport.as_dict()
        if config.base_url:
            options["base_url"] = config.base_url
        if config.storage_state is not None:
            options["storage_state"] = str(config.storage_state)
        if config.record_video_dir is not None:
            options["record_video_dir"] = str(config.record_video_dir)
            if config.video_size is not None:
                options["record_video_size"] = config.video_size.as_dict()

        async with _translate_errors("new_context"):
            context = await self._browser.new_context(**options)
        timeouts = self._engine.timeouts
        if timeouts is not None:
            context.set_default_timeout(timeouts.action * 1000)
            context.set_default_navigation_timeout(timeouts.navigation * 1000)
        return PlaywrightContext(context, config)

    async def close(self) -> None:
        if not self._browser.is_connected():
            return
        async with _translate_errors("close browser"):
            await self._browser.close()


class PlaywrightRequestContext(EngineRequestContext):
    def __init__(self, context: APIRequestContext) -> None:
        self._context = context

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
        async with _translate_errors(f"{method} {url}"):
            response = await self._context.fetch(
                url,
                method=method,
                params=params,
                headers=headers,
                data=data,
                fail_on_status_code=fail_on_status_code,
                max_retries=max_retries,
            )
            try:
                return ApiResponse(
                    url=response.url,
                    status=response.status,
                    headers=dict(response.headers),
                    body=await response.body(),
                )
            finally:
                await response.dispose()

    async def dispose(self) -> None:
        async with _translate_errors("dispose request context"):
            await self._context.dispose()


class PlaywrightEngine(Engine):
    name = "playwright"

    _playwright: Playwright | None = None

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def launch(self, headless: bool) -> EngineSession:
        await self.start()
        assert self._playwright is not None
        browser_type = getattr(self._playwright, self.config.browser)
        options: dict[str, Any] = {
            "headless": headless,
            "args": list(self.config.launch_args),
        }
        if self.config.channel:
            options["channel"] = self.config.channel
        if self.config.slow_mo:
            options["slow_mo"] = self.config.slow_mo

        try:
            browser = await browser_type.launch(**options)
        except PlaywrightError as e:
            raise SessionUnavailable(f"Could not launch {self.config.browser}: {e.message}") from e

        log.info("Launched %s %s (headless=%s)", self.config.browser, browser.version, headless)
        browser.on("disconnected", lambda _: log.warning("Browser %s disconnected", self.config.browser))
        return PlaywrightSession(browser, self)

    async def new_request_context(self, config: ApiConfig) -> EngineRequestContext:
        await self.start()
        assert self._playwright is not None
        options: dict[str, Any] = {
            "extra_http_headers": dict(config.extra_headers),
            "ignore_https_errors": config.ignore_https_errors,
        }
        if config.base_url:
            options["base_url"] = config.base_url
        if self.timeouts is not None:
            options["timeout"] = self.timeouts.action * 1000
        async with _translate_errors("request.new_context"):
            context = await self._playwright.request.new_context(**options)
        return PlaywrightRequestContext(context)

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
