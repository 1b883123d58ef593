"""Outcome of a wait or an assertion."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field


class OutcomeStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    FLAKED = "flaked"  # passed after at least one retry


class AttemptFailure(BaseModel):
    """One failed attempt of a retried check."""

    attempt: int
    error_type: str
    message: str
    elapsed_s: float = 0.0

    @classmethod
    def from_exception(cls, attempt: int, exc: BaseException, elapsed_s: float = 0.0) -> Self:
        return cls(
            attempt=attempt,
            error_type=type(exc).__name__,
            message=str(exc) or repr(exc),
            elapsed_s=round(elapsed_s, 4),
        )


class Outcome(BaseModel):
    status: OutcomeStatus
    description: str = ""
    retry_count: int = 0
    history: list[AttemptFailure] = Field(default_factory=list)
    elapsed_s: float = 0.0
    polls: int = 0
    detail: dict[str, Any] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    @classmethod
    def success(
        cls,
        description: str,
        *,
        history: list[AttemptFailure] | None = None,
        elapsed_s: float = 0.0,
        polls: int = 0,
        detail: dict[str, Any] | None = None,
    ) -> Self:
        history = history or []
        return cls(
            status=OutcomeStatus.FLAKED if history else OutcomeStatus.PASSED,
            description=description,
            retry_count=len(history),
            history=history,
            elapsed_s=round(elapsed_s, 4),
            polls=polls,
            detail=detail or {},
        )

    @classmethod
    def failure(
        cls,
        description: str,
        *,
        history: list[AttemptFailure] | None = None,
        elapsed_s: float = 0.0,
        detail: dict[str, Any] | None = None,
    ) -> Self:
        history = history or []
        return cls(
            status=OutcomeStatus.FAILED,
            description=description,
            retry_count=max(len(history) - 1, 0),
            history=history,
            elapsed_s=round(elapsed_s, 4),
            detail=detail or {},
        )
