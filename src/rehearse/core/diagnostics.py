"""Structured failure diagnostics.

A ``DiagnosticRecord`` is what a failed test leaves behind: which test, what
the page looked like last, every retry that was attempted and how long it all
took. Snapshot capture is best-effort and never raises, so it can run on any
failure path without masking the original error.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from rehearse.core.errors import AssertionExhausted, EngineError, SyncTimeout
from rehearse.core.outcome import AttemptFailure

if TYPE_CHECKING:
    from rehearse.core.engine.base import EnginePage

log = logging.getLogger(__name__)

DEFAULT_EXCERPT_CHARS = 500
_INVISIBLE_TAGS = ["script", "style", "noscript", "template", "head"]


class PageSnapshot(BaseModel):
    url: str = ""
    title: str = ""
    text_excerpt: str = ""
    captured_at: float = Field(default_factory=time.time)


class DiagnosticRecord(BaseModel):
    test_id: str
    error_type: str = ""
    error_message: str = ""
    snapshot: PageSnapshot | None = None
    retry_history: list[AttemptFailure] = Field(default_factory=list)
    elapsed_s: float = 0.0
    fixture_seed: int | None = None
    trace_path: str | None = None
    timestamp: float = Field(default_factory=time.time)

    @classmethod
    def from_exception(
        cls,
        test_id: str,
        exc: BaseException | None,
        *,
        snapshot: PageSnapshot | None = None,
        elapsed_s: float = 0.0,
        **extra: Any,
    ) -> DiagnosticRecord:
        history: list[AttemptFailure] = []
        if isinstance(exc, AssertionExhausted):
            history = list(exc.history)
        if snapshot is None and isinstance(exc, SyncTimeout):
            snapshot = exc.snapshot
        return cls(
            test_id=test_id,
            error_type=type(exc).__name__ if exc is not None else "",
            error_message=str(exc) if exc is not None else "",
            snapshot=snapshot,
            retry_history=history,
            elapsed_s=round(elapsed_s, 4),
            **extra,
        )


def visible_text(html: str, limit: int = DEFAULT_EXCERPT_CHARS) -> str:
    """Extract whitespace-normalized visible text from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_INVISIBLE_TAGS):
        tag.decompose()
    text = " ".join(soup.get_text(" ", strip=True).split())
    if len(text) > limit:
        return text[: max(limit - 1, 0)] + "…"
    return text


async def capture_snapshot(page: EnginePage | None, limit: int = DEFAULT_EXCERPT_CHARS) -> PageSnapshot | None:
    """Best-effort capture of the page's URL, title and visible text. Never raises."""
    if page is None:
        return None

    snapshot = PageSnapshot()
    try:
        snapshot.url = page.url
    except Exception:  # noqa: BLE001
        pass
    if page.is_closed:
        return snapshot
    try:
        snapshot.title = await page.title()
    except EngineError:
        pass
    try:
        snapshot.text_excerpt = visible_text(await page.content(), limit)
    except EngineError:
        pass
    return snapshot


def _safe_name(test_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", test_id).strip("_")[:120] or "unknown"


def save_record(record: DiagnosticRecord, artifacts_dir: Path) -> Path | None:
    """Write ``record`` to ``<artifacts_dir>/diagnostics`` as JSON. Returns the path or None."""
    try:
        out_dir = Path(artifacts_dir) / "diagnostics"
        out_dir.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime(record.timestamp))
        path = out_dir / f"{stamp}_{_safe_name(record.test_id)}.json"
        path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
    except OSError as e:
        log.warning("Failed to save diagnostic record for %s: %s", record.test_id, e)
        return None
    log.error(
        "Test %s failed with %s (elapsed %.2fs, %d retries); diagnostics at %s",
        record.test_id,
        record.error_type or "error",
        record.elapsed_s,
        len(record.retry_history),
        path,
    )
    return path
