"""Concurrent suite execution.

Each ``SuiteCase`` runs as its own task with its own context. A semaphore
bounds how many run at once. When the global timeout fires, the root
cancellation token is cancelled first so in-flight waits return promptly,
and tasks still running after the teardown grace period are cancelled
outright. Contexts are released on every path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from rehearse.core.cancel import CancellationToken
from rehearse.core.diagnostics import DiagnosticRecord, PageSnapshot, save_record
from rehearse.core.outcome import Outcome

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from rehearse.core.config.main import ContextConfig
    from rehearse.core.session import Context, SessionPool

log = logging.getLogger(__name__)


@dataclass
class SuiteCase:
    name: str
    body: Callable[[Context], Awaitable[Any]]
    context_config: ContextConfig | None = None
    fixture_seed: int | None = None


class CaseResult(BaseModel):
    test_id: str
    outcome: Outcome
    diagnostic: DiagnosticRecord | None = None
    diagnostic_path: Path | None = None

    @property
    def passed(self) -> bool:
        return self.outcome.passed


async def _last_snapshot(context: Context) -> PageSnapshot | None:
    pages = context.pages
    return await pages[-1].snapshot() if pages else None


async def _run_case(pool: SessionPool, case: SuiteCase, token: CancellationToken, artifacts_dir: Path) -> CaseResult:
    loop = asyncio.get_running_loop()
    start = loop.time()
    context: Context | None = None
    error: Exception | None = None
    snapshot: PageSnapshot | None = None
    result: Any = None

    try:
        async with pool.context(case.context_config, label=case.name, token=token) as context:
            try:
                result = await case.body(context)
            except Exception as e:  # noqa: BLE001
                error = e
                snapshot = await _last_snapshot(context)
    except Exception as e:  # noqa: BLE001
        # acquisition failed, or teardown raised after the body finished
        error = error or e
    elapsed = loop.time() - start

    if error is None:
        if isinstance(result, Outcome):
            return CaseResult(test_id=case.name, outcome=result)
        return CaseResult(test_id=case.name, outcome=Outcome.success(case.name, elapsed_s=elapsed))

    record = DiagnosticRecord.from_exception(
        case.name,
        error,
        snapshot=snapshot,
        elapsed_s=elapsed,
        fixture_seed=case.fixture_seed,
        trace_path=str(context.trace_path) if context is not None and context.trace_path else None,
    )
    path = save_record(record, artifacts_dir)
    outcome = Outcome.failure(
        case.name,
        history=record.retry_history,
        elapsed_s=elapsed,
        detail={"error_type": record.error_type, "error": record.error_message},
    )
    return CaseResult(test_id=case.name, outcome=outcome, diagnostic=record, diagnostic_path=path)


def _cancelled_result(case: SuiteCase, timeout: float | None) -> CaseResult:
    message = f"cancelled after suite timeout of {timeout}s" if timeout else "cancelled"
    record = DiagnosticRecord(test_id=case.name, error_type="CancelledError", error_message=message)
    outcome = Outcome.failure(case.name, detail={"error_type": "CancelledError", "error": message})
    return CaseResult(test_id=case.name, outcome=outcome, diagnostic=record)


async def run_suite(
    pool: SessionPool,
    cases: Sequence[SuiteCase],
    *,
    concurrency: int | None = None,
    global_timeout: float | None = None,
    token: CancellationToken | None = None,
    artifacts_dir: Path | None = None,
) -> list[CaseResult]:
    """Run ``cases`` concurrently and return one result per case, in order.

    A failing case never affects the others; its diagnostics are written to
    ``<artifacts_dir>/diagnostics``.
    """
    if not cases:
        return []

    config = pool.config
    limit = min(concurrency or config.session.concurrency_limit, pool.capacity)
    timeout = global_timeout if global_timeout is not None else config.timeouts.suite
    root = token or CancellationToken()
    artifacts = Path(artifacts_dir) if artifacts_dir is not None else pool.artifacts_dir
    semaphore = asyncio.Semaphore(limit)

    async def bounded(case: SuiteCase) -> CaseResult:
        async with semaphore:
            case_token = root.child()
            try:
                return await _run_case(pool, case, case_token, artifacts)
            finally:
                root.detach(case_token)

    log.info("Running %d tests (concurrency=%d)", len(cases), limit)
    tasks = [asyncio.create_task(bounded(case), name=f"rehearse:{case.name}") for case in cases]

    try:
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            log.error("Suite timed out after %.1fs with %d tests still running", timeout, len(pending))
            root.cancel("suite timeout")
            _, stuck = await asyncio.wait(pending, timeout=config.timeouts.teardown_grace)
            for task in stuck:
                task.cancel()
            if stuck:
                await asyncio.wait(stuck)
    except asyncio.CancelledError:
        root.cancel("suite cancelled")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    results = [
        _cancelled_result(case, timeout) if task.cancelled() else task.result() for case, task in zip(cases, tasks)
    ]
    failed = sum(1 for r in results if not r.passed)
    log.info("Suite finished: %d passed, %d failed", len(results) - failed, failed)
    return results
