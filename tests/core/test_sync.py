"""Tests for predicates and the polling wait."""

import asyncio
import re
from collections.abc import AsyncIterator

import pytest

from rehearse.core.cancel import CancellationToken
from rehearse.core.engine.fake import FakePage
from rehearse.core.errors import EngineError, OperationCancelled, SyncTimeout
from rehearse.core.outcome import OutcomeStatus
from rehearse.core.page import Page
from rehearse.core.session import SessionPool
from rehearse.core.sync import (
    MIN_POLL_INTERVAL,
    all_of,
    element_count,
    element_hidden,
    element_visible,
    local_storage_equals,
    network_idle,
    no_pending_animation,
    predicate,
    text_present,
    url_matches,
    wait_for,
)


@pytest.fixture
async def page(pool: SessionPool) -> AsyncIterator[Page]:
    async with pool.context() as ctx:
        page = await ctx.new_page()
        await page.goto("/search")
        yield page


def fake(page: Page) -> FakePage:
    assert isinstance(page.engine_page, FakePage)
    return page.engine_page


class TestWaitFor:
    async def test_returns_once_predicate_holds(self, page: Page) -> None:
        """Test that the wait ends as soon as the element appears."""
        fake(page).after(0.15, lambda p: p.set_element("#results", "3 results"))

        outcome = await wait_for(page, element_visible("#results"), timeout=2, poll_interval=0.05)

        assert outcome.status is OutcomeStatus.PASSED
        assert outcome.passed
        assert 0.1 <= outcome.elapsed_s < 1.0
        assert outcome.polls >= 2

    async def test_immediate_success_polls_once(self, page: Page) -> None:
        fake(page).set_element("#ready")
        outcome = await wait_for(page, element_visible("#ready"), timeout=1)
        assert outcome.polls == 1

    async def test_timeout_carries_observation_and_snapshot(self, page: Page) -> None:
        fake(page).page_title = "Search"
        fake(page).set_element("h1", "Nothing here yet")

        with pytest.raises(SyncTimeout) as exc_info:
            await wait_for(page, element_visible("#results"), timeout=0.2, poll_interval=0.05)

        err = exc_info.value
        assert err.timeout == 0.2
        assert err.polls >= 2
        assert err.observations[-1]["satisfied"] is False
        assert err.snapshot is not None
        assert err.snapshot.url == "https://app.test/search"
        assert err.snapshot.title == "Search"
        assert "Nothing here yet" in err.snapshot.text_excerpt
        assert "script text" not in err.snapshot.text_excerpt

    @pytest.mark.parametrize(("timeout", "interval"), [(0.3, 0.1), (0.2, 0.05), (0.0, 0.1)])
    async def test_never_blocks_past_timeout_plus_interval(self, page: Page, timeout: float, interval: float) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()

        with pytest.raises(SyncTimeout):
            await wait_for(page, element_visible("#never"), timeout=timeout, poll_interval=interval)

        # small allowance for scheduler jitter
        assert loop.time() - start <= timeout + interval + 0.05

    async def test_slow_evaluation_is_bounded(self, page: Page) -> None:
        async def hangs(_: Page) -> bool:
            await asyncio.sleep(10)
            return True

        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(SyncTimeout) as exc_info:
            await wait_for(page, predicate(hangs), timeout=0.1, poll_interval=0.05)

        assert loop.time() - start <= 0.1 + 0.05 + 0.05
        assert "did not finish" in str(exc_info.value.observations[-1]["observed"])

    async def test_poll_interval_is_clamped(self, page: Page) -> None:
        calls: list[float] = []
        loop = asyncio.get_running_loop()

        def record(_: Page) -> bool:
            calls.append(loop.time())
            return False

        with pytest.raises(SyncTimeout):
            await wait_for(page, predicate(record), timeout=0.3, poll_interval=0.001)

        gaps = [b - a for a, b in zip(calls, calls[1:])]
        assert len(calls) <= int(0.3 / MIN_POLL_INTERVAL) + 2
        # only the final sleep may be shortened to land on the deadline
        assert sum(1 for gap in gaps if gap < MIN_POLL_INTERVAL * 0.9) <= 1

    async def test_engine_errors_mean_not_yet(self, page: Page) -> None:
        attempts = 0

        def flaky(_: Page) -> bool:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise EngineError("execution context was destroyed")
            return True

        outcome = await wait_for(page, predicate(flaky), timeout=1, poll_interval=0.05)
        assert outcome.polls == 3

    async def test_other_errors_propagate(self, page: Page) -> None:
        def broken(_: Page) -> bool:
            raise ValueError("bug in predicate")

        with pytest.raises(ValueError, match="bug in predicate"):
            await wait_for(page, predicate(broken), timeout=1)

    async def test_cancellation_aborts_wait(self, page: Page) -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.1, token.cancel, "suite timeout")

        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(OperationCancelled, match="suite timeout"):
            await wait_for(page, element_visible("#never"), timeout=5, poll_interval=1, token=token)
        assert loop.time() - start < 0.5

    async def test_cancellation_aborts_running_evaluation(self, page: Page) -> None:
        """Test that a cancel arriving mid-evaluation ends the wait without waiting for the deadline."""
        token = CancellationToken()
        finished = False

        async def slow(_: Page) -> bool:
            nonlocal finished
            await asyncio.sleep(3)
            finished = True
            return True

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, token.cancel, "suite timeout")
        start = loop.time()
        with pytest.raises(OperationCancelled, match="suite timeout"):
            await wait_for(page, predicate(slow), timeout=2.5, poll_interval=0.05, token=token)

        assert loop.time() - start < 0.5
        assert not finished

    async def test_cancellation_aborts_snapshot(self, page: Page, monkeypatch: pytest.MonkeyPatch) -> None:
        token = CancellationToken()

        async def hanging_snapshot() -> None:
            token.cancel("user abort")
            await asyncio.sleep(5)

        monkeypatch.setattr(page, "snapshot", hanging_snapshot)
        loop = asyncio.get_running_loop()
        start = loop.time()
        with pytest.raises(OperationCancelled, match="user abort"):
            await wait_for(page, element_visible("#never"), timeout=0.1, poll_interval=0.05, token=token)
        assert loop.time() - start < 0.5

    async def test_negative_timeout_rejected(self, page: Page) -> None:
        with pytest.raises(ValueError):
            await wait_for(page, element_visible("#x"), timeout=-1)

    async def test_page_wait_for_uses_context_token(self, page: Page) -> None:
        page.context.token.cancel("stop")
        with pytest.raises(OperationCancelled):
            await page.wait_for(element_visible("#never"))


class TestPredicates:
    async def test_element_visible_and_hidden(self, page: Page) -> None:
        fake(page).set_element("#spinner", visible=True)
        assert (await element_visible("#spinner").probe(page)).satisfied
        assert not (await element_hidden("#spinner").probe(page)).satisfied

        fake(page).set_element("#spinner", visible=False)
        assert (await element_hidden("#spinner").probe(page)).satisfied
        assert (await element_hidden("#absent").probe(page)).satisfied

    async def test_text_present(self, page: Page) -> None:
        fake(page).set_element("h1", "  Welcome back, Ada  ")

        assert (await text_present("h1", "Ada").probe(page)).satisfied
        assert (await text_present("h1", "Welcome back, Ada", exact=True).probe(page)).satisfied
        assert not (await text_present("h1", "Ada", exact=True).probe(page)).satisfied
        assert not (await text_present("#missing", "Ada").probe(page)).satisfied

    async def test_element_count(self, page: Page) -> None:
        fake(page).set_element("li.result", "row", count=3)

        observation = await element_count("li.result", 3).probe(page)
        assert observation.satisfied
        assert observation.observed == {"count": 3}
        assert not (await element_count("li.result", 2).probe(page)).satisfied

    async def test_url_matches_glob_and_regex(self, page: Page) -> None:
        assert (await url_matches("**/search").probe(page)).satisfied
        assert (await url_matches(re.compile(r"/search$")).probe(page)).satisfied
        assert not (await url_matches("**/checkout").probe(page)).satisfied

    async def test_network_idle(self, page: Page) -> None:
        fake(page).pending_request_count = 2
        assert not (await network_idle().probe(page)).satisfied
        assert (await network_idle(max_pending=2).probe(page)).satisfied

    async def test_no_pending_animation(self, page: Page) -> None:
        fake(page).running_animation_count = 1
        assert not (await no_pending_animation().probe(page)).satisfied
        fake(page).running_animation_count = 0
        assert (await no_pending_animation().probe(page)).satisfied

    async def test_local_storage_equals(self, page: Page) -> None:
        await page.set_local_storage("theme", "dark")
        assert (await local_storage_equals("theme", "dark").probe(page)).satisfied
        assert (await local_storage_equals("missing", None).probe(page)).satisfied

    async def test_custom_async_predicate(self, page: Page) -> None:
        async def title_is_search(p: Page) -> bool:
            return await p.title() == "Search"

        fake(page).page_title = "Search"
        check = predicate(title_is_search)
        assert check.description == "title_is_search"
        assert (await check.probe(page)).satisfied


class TestAllOf:
    async def test_and_semantics(self, page: Page) -> None:
        fake(page).set_element("#results", "ok")
        fake(page).after(0.1, lambda p: setattr(p, "pending_request_count", 0))
        fake(page).pending_request_count = 1

        combined = element_visible("#results") & network_idle()
        outcome = await wait_for(page, combined, timeout=1, poll_interval=0.05)

        assert outcome.passed
        assert "AND" in combined.description

    async def test_nested_all_of_flattens(self) -> None:
        a, b, c = element_visible("#a"), element_visible("#b"), element_visible("#c")
        assert all_of(all_of(a, b), c).predicates == [a, b, c]
        assert (a & b & c).predicates == [a, b, c]

    async def test_every_predicate_evaluated_before_short_circuit(self, page: Page) -> None:
        calls: list[str] = []

        def tracked(name: str, result: bool):
            def fn(_: Page) -> bool:
                calls.append(name)
                return result

            return predicate(fn, name)

        combined = all_of(tracked("first", False), tracked("second", False), tracked("third", True))
        memo: dict = {}

        first = await combined.evaluate(page, memo)
        assert calls == ["first", "second", "third"]
        assert not first.satisfied
        assert len(first.observed) == 3

        calls.clear()
        second = await combined.evaluate(page, memo)
        assert calls == ["first"]
        assert not second.satisfied

    async def test_fresh_wait_starts_over(self, page: Page) -> None:
        calls: list[str] = []

        def never(_: Page) -> bool:
            calls.append("never")
            return False

        def other(_: Page) -> bool:
            calls.append("other")
            return True

        combined = all_of(predicate(never), predicate(other))
        await combined.evaluate(page, {})
        await combined.evaluate(page, {})
        assert calls == ["never", "other", "never", "other"]

    async def test_empty_all_of_rejected(self) -> None:
        with pytest.raises(ValueError):
            all_of()
