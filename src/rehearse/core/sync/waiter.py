"""Polling wait for eventually-consistent page state."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from rehearse.core.errors import SyncTimeout
from rehearse.core.outcome import Outcome

from .predicates import Observation

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from rehearse.core.cancel import CancellationToken
    from rehearse.core.page import Page

    from .predicates import Predicate

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.1
MIN_POLL_INTERVAL = 0.05

T = TypeVar("T")


async def _bounded(awaitable: Awaitable[T], budget: float, token: CancellationToken | None) -> T:
    """Await ``awaitable`` for at most ``budget`` seconds, aborting as soon as ``token`` fires.

    Raises:
        TimeoutError: The budget ran out first.
        OperationCancelled: The token was cancelled first.
    """
    if token is None:
        return await asyncio.wait_for(awaitable, timeout=budget)

    task = asyncio.ensure_future(awaitable)
    cancelled = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, cancelled}, timeout=budget, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancelled.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    if task in done:
        return task.result()
    token.raise_if_cancelled()
    raise TimeoutError


async def wait_for(
    page: Page,
    predicate: Predicate,
    timeout: float | None = None,
    *,
    poll_interval: float | None = None,
    token: CancellationToken | None = None,
) -> Outcome:
    """Poll ``predicate`` until it holds or ``timeout`` seconds elapse.

    The predicate is evaluated at least once, and once more at the deadline.
    Every evaluation is bounded by the time left plus one interval, so the
    call never blocks past ``timeout + poll_interval``. Cancelling ``token``
    aborts a running evaluation too, not only the sleep between polls.

    Raises:
        SyncTimeout: The predicate never held. Carries the last observation
            and a page snapshot.
        OperationCancelled: ``token`` was cancelled while waiting.
    """
    timeout = DEFAULT_TIMEOUT if timeout is None else timeout
    if timeout < 0:
        raise ValueError(f"timeout must be >= 0, got {timeout}")
    interval = max(poll_interval or DEFAULT_POLL_INTERVAL, MIN_POLL_INTERVAL)

    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout
    memo: dict[int, Any] = {}
    polls = 0
    last: Observation

    while True:
        if token is not None:
            token.raise_if_cancelled()

        budget = max(deadline - loop.time(), 0.0) + interval
        try:
            last = await _bounded(predicate.evaluate(page, memo), budget, token)
        except TimeoutError:
            polls += 1
            last = Observation(False, predicate.description, f"evaluation did not finish within {budget:.2f}s")
            break
        polls += 1

        if last.satisfied:
            elapsed = loop.time() - start
            log.debug("Waited %.3fs for %s (%d polls)", elapsed, predicate.description, polls)
            return Outcome.success(predicate.description, elapsed_s=elapsed, polls=polls, detail=last.as_dict())

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        delay = min(interval, remaining)
        if token is not None:
            await token.sleep(delay)
        else:
            await asyncio.sleep(delay)

    snapshot = None
    snapshot_budget = deadline + interval - loop.time()
    if snapshot_budget > 0:
        try:
            snapshot = await _bounded(page.snapshot(), snapshot_budget, token)
        except TimeoutError:
            log.debug("Snapshot for %s did not finish in time", predicate.description)

    raise SyncTimeout(predicate.description, timeout, observations=[last.as_dict()], snapshot=snapshot, polls=polls)
