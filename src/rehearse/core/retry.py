"""Bounded retries for eventually-consistent assertions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_fixed

from rehearse.core.errors import AssertionExhausted, SyncTimeout
from rehearse.core.guard import read_only
from rehearse.core.outcome import AttemptFailure, Outcome

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tenacity.wait import wait_base

    from rehearse.core.cancel import CancellationToken
    from rehearse.core.config.main import RetryConfig

log = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """How often and how patiently a check is retried."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    backoff: Literal["fixed", "exponential"] = "exponential"
    delay: float = Field(default=0.2, ge=0)
    max_delay: float = Field(default=2.0, ge=0)
    attempt_timeout: float | None = Field(default=None, gt=0)

    @classmethod
    def from_config(cls, config: RetryConfig) -> Self:
        return cls.model_validate(config.model_dump())

    def wait_strategy(self) -> wait_base:
        if self.backoff == "fixed":
            return wait_fixed(self.delay)
        return wait_exponential(multiplier=self.delay, max=self.max_delay)


class _CheckFailed(Exception):
    """One unsuccessful attempt; wraps the original cause."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.cause = cause


async def _attempt(
    check: Callable[[], Any], description: str, attempt_timeout: float | None
) -> BaseException | None:
    """Run one attempt. Returns the failure, or None when the check passed."""
    try:
        with read_only(description):
            result = check()
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=attempt_timeout)
    except (AssertionError, SyncTimeout) as e:
        return e
    except TimeoutError:
        return TimeoutError(f"attempt exceeded {attempt_timeout}s")
    if result is False:
        return AssertionError(f"{description} returned False")
    return None


async def assert_eventually(
    check: Callable[[], Awaitable[Any] | Any],
    policy: RetryPolicy | None = None,
    *,
    token: CancellationToken | None = None,
    description: str | None = None,
) -> Outcome:
    """Run a read-only ``check`` until it passes or the policy gives up.

    An attempt fails when the check raises ``AssertionError`` or
    ``SyncTimeout``, exceeds ``policy.attempt_timeout``, or returns ``False``.
    The check runs under the read-only guard, so a mutating page or context
    action raises ``MutationInCheck``; that and every other exception
    propagates immediately and is never retried.

    Returns:
        ``passed`` on first success, ``flaked`` (with the failures) when an
        earlier attempt failed.

    Raises:
        AssertionExhausted: Every attempt failed. Carries the full history.
    """
    policy = policy or RetryPolicy()
    description = description or getattr(check, "__name__", "check")
    history: list[AttemptFailure] = []
    loop = asyncio.get_running_loop()
    start = loop.time()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(_CheckFailed),
        sleep=token.sleep if token is not None else asyncio.sleep,
    )
    try:
        async for attempt in retrying:
            with attempt:
                if token is not None:
                    token.raise_if_cancelled()
                number = attempt.retry_state.attempt_number
                attempt_start = loop.time()
                failure = await _attempt(check, description, policy.attempt_timeout)
                if failure is not None:
                    history.append(AttemptFailure.from_exception(number, failure, loop.time() - attempt_start))
                    log.debug("%s attempt %d failed: %s", description, number, failure)
                    raise _CheckFailed(failure)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise AssertionExhausted(description, history) from getattr(last, "cause", last)

    elapsed = loop.time() - start
    if history:
        log.info("%s passed after %d retries", description, len(history))
    return Outcome.success(description, history=history, elapsed_s=elapsed)
