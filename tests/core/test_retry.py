"""Tests for assert_eventually and the read-only guard."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from rehearse.core.cancel import CancellationToken
from rehearse.core.config.main import RetryConfig
from rehearse.core.errors import AssertionExhausted, MutationInCheck, OperationCancelled, SyncTimeout
from rehearse.core.guard import active_check, mutating, read_only
from rehearse.core.outcome import OutcomeStatus
from rehearse.core.page import Page
from rehearse.core.retry import RetryPolicy, assert_eventually
from rehearse.core.session import Context, SessionPool

FAST = RetryPolicy(max_attempts=3, delay=0)


def failing_then_passing(failures: int, exc: BaseException | None = None):
    calls = 0

    async def check() -> None:
        nonlocal calls
        calls += 1
        if calls <= failures:
            raise exc or AssertionError(f"not yet ({calls})")

    return check


async def test_passes_first_time() -> None:
    outcome = await assert_eventually(failing_then_passing(0), FAST)

    assert outcome.status is OutcomeStatus.PASSED
    assert outcome.retry_count == 0
    assert outcome.history == []


async def test_flaked_records_retry_count() -> None:
    """Test that two failures then a pass is reported as flaked with retry count 2."""
    outcome = await assert_eventually(failing_then_passing(2), FAST)

    assert outcome.status is OutcomeStatus.FLAKED
    assert outcome.passed
    assert outcome.retry_count == 2
    assert [f.attempt for f in outcome.history] == [1, 2]
    assert [f.message for f in outcome.history] == ["not yet (1)", "not yet (2)"]


async def test_exhaustion_carries_full_history() -> None:
    with pytest.raises(AssertionExhausted) as exc_info:
        await assert_eventually(failing_then_passing(10), RetryPolicy(max_attempts=4, delay=0), description="cart total")

    err = exc_info.value
    assert len(err.history) == 4
    assert [f.attempt for f in err.history] == [1, 2, 3, 4]
    assert all(f.error_type == "AssertionError" for f in err.history)
    assert "cart total failed after 4 attempts" in str(err)
    assert "#4: AssertionError: not yet (4)" in str(err)
    assert isinstance(err.__cause__, AssertionError)


async def test_falsy_result_is_a_failure() -> None:
    results = iter([False, False, True])

    outcome = await assert_eventually(lambda: next(results), FAST)

    assert outcome.retry_count == 2
    assert "returned False" in outcome.history[0].message


async def test_none_result_is_success() -> None:
    outcome = await assert_eventually(lambda: None, FAST)
    assert outcome.status is OutcomeStatus.PASSED


async def test_sync_timeout_is_retried() -> None:
    outcome = await assert_eventually(failing_then_passing(1, SyncTimeout("#results is visible", 0.5)), FAST)

    assert outcome.retry_count == 1
    assert outcome.history[0].error_type == "SyncTimeout"


async def test_attempt_timeout() -> None:
    calls = 0

    async def slow_then_fast() -> bool:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(5)
        return True

    outcome = await assert_eventually(slow_then_fast, RetryPolicy(max_attempts=2, delay=0, attempt_timeout=0.05))

    assert outcome.retry_count == 1
    assert outcome.history[0].error_type == "TimeoutError"


async def test_other_errors_are_not_retried() -> None:
    calls = 0

    async def broken() -> None:
        nonlocal calls
        calls += 1
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await assert_eventually(broken, FAST)
    assert calls == 1


async def test_cancellation_stops_retrying() -> None:
    token = CancellationToken()
    calls = 0

    async def check() -> None:
        nonlocal calls
        calls += 1
        token.cancel("suite timeout")
        raise AssertionError("nope")

    with pytest.raises(OperationCancelled):
        await assert_eventually(check, RetryPolicy(max_attempts=5, delay=1), token=token)
    assert calls == 1


def test_policy_from_config() -> None:
    policy = RetryPolicy.from_config(RetryConfig(max_attempts=5, backoff="fixed", delay=0.3))

    assert policy.max_attempts == 5
    assert policy.backoff == "fixed"
    assert policy.delay == 0.3


@pytest.mark.parametrize(
    ("policy", "expected"),
    [
        (RetryPolicy(backoff="fixed", delay=0.3), [0.3, 0.3, 0.3]),
        (RetryPolicy(backoff="exponential", delay=0.1, max_delay=0.3), [0.1, 0.2, 0.3]),
    ],
)
def test_wait_strategy(policy: RetryPolicy, expected: list[float]) -> None:
    strategy = policy.wait_strategy()

    class State:
        def __init__(self, attempt_number: int) -> None:
            self.attempt_number = attempt_number

    assert [round(strategy(State(n)), 3) for n in (1, 2, 3)] == expected  # type: ignore[arg-type]


class TestReadOnlyGuard:
    @pytest.fixture
    async def context(self, pool: SessionPool) -> AsyncIterator[Context]:
        async with pool.context() as ctx:
            yield ctx

    @pytest.fixture
    async def page(self, context: Context) -> Page:
        page = await context.new_page()
        await page.goto("/cart")
        return page

    async def test_reads_are_allowed(self, page: Page) -> None:
        page.engine_page.set_element("#total", "$10")  # type: ignore[attr-defined]

        async def total_is_ten() -> None:
            assert await page.text_content("#total") == "$10"
            assert await page.is_visible("#total")

        outcome = await assert_eventually(total_is_ten, FAST)
        assert outcome.passed

    @pytest.mark.parametrize(
        "action",
        [
            lambda page: page.click("#checkout"),
            lambda page: page.fill("#qty", "2"),
            lambda page: page.press("#qty", "Enter"),
            lambda page: page.goto("/other"),
            lambda page: page.reload(),
            lambda page: page.set_local_storage("k", "v"),
            lambda page: page.clear_local_storage(),
            lambda page: page.context.new_page(),
            lambda page: page.context.add_cookies([]),
            lambda page: page.context.clear_cookies(),
            lambda page: page.context.mock_route("**/api", "{}"),
        ],
    )
    async def test_mutations_raise_and_are_not_retried(self, page: Page, action) -> None:
        calls = 0

        async def clicks_inside_check() -> None:
            nonlocal calls
            calls += 1
            await action(page)

        with pytest.raises(MutationInCheck):
            await assert_eventually(clicks_inside_check, FAST)
        assert calls == 1
        assert page.engine_page.actions == [("goto", "https://app.test/cart")]  # type: ignore[attr-defined]

    async def test_custom_mutating_helper(self) -> None:
        @mutating
        async def place_order() -> str:
            return "ordered"

        async def check() -> None:
            await place_order()

        with pytest.raises(MutationInCheck, match="place_order"):
            await assert_eventually(check, FAST, description="order placed")

        assert await place_order() == "ordered"

    def test_sync_mutating_helper(self) -> None:
        @mutating
        def reset_db() -> int:
            return 1

        assert reset_db() == 1
        with read_only("db is clean"), pytest.raises(MutationInCheck, match="db is clean"):
            reset_db()

    def test_guard_resets_after_check(self) -> None:
        with read_only("outer"):
            assert active_check() == "outer"
        assert active_check() is None
