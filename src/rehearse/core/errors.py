"""Error taxonomy shared by every rehearse component.

Components raise these and never swallow them; the test boundary (pytest
plugin or suite runner) is the only place that turns them into a verdict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from rehearse.core.diagnostics import PageSnapshot
    from rehearse.core.outcome import AttemptFailure


class RehearseError(Exception):
    """Base class for all rehearse errors."""

    retryable: bool = False


class ConfigError(RehearseError):
    """Configuration could not be loaded or contains unrecognized options."""


class EngineError(RehearseError):
    """The browser engine failed to perform an operation."""


class SessionUnavailable(RehearseError):
    """No browser context can be handed out right now.

    Raised when the engine process crashed or the concurrent-context limit is
    reached. Callers retry with backoff before treating it as fatal.
    """

    retryable = True

    def __init__(self, message: str, *, crashed: bool = False) -> None:
        super().__init__(message)
        self.crashed = crashed


class SyncTimeout(RehearseError):
    """The page never reached the awaited state within the timeout."""

    def __init__(
        self,
        description: str,
        timeout: float,
        *,
        observations: list[dict[str, Any]] | None = None,
        snapshot: PageSnapshot | None = None,
        polls: int = 0,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.observations = observations or []
        self.snapshot = snapshot
        self.polls = polls
        super().__init__(f"Timed out after {timeout:.2f}s waiting for {description} ({polls} polls)")


class MalformedFixture(RehearseError):
    """A fixture document violates its schema. Never retried."""

    def __init__(self, message: str, *, path: Path | None = None, errors: list[str] | None = None) -> None:
        self.path = path
        self.errors = errors or []
        location = f"{path}: " if path else ""
        details = "".join(f"\n  - {err}" for err in self.errors)
        super().__init__(f"{location}{message}{details}")


class AssertionExhausted(RehearseError):
    """A check kept failing after every attempt the retry policy allowed."""

    def __init__(self, description: str, history: list[AttemptFailure]) -> None:
        self.description = description
        self.history = history
        lines = "".join(f"\n  #{f.attempt}: {f.error_type}: {f.message}" for f in history)
        super().__init__(f"{description} failed after {len(history)} attempts:{lines}")


class MutationInCheck(RehearseError):
    """A retried check tried to change application state."""

    def __init__(self, action: str, check: str) -> None:
        self.action = action
        self.check = check
        super().__init__(f"'{action}' mutates application state and cannot run inside retried check '{check}'")


class OperationCancelled(RehearseError):
    """The owning test run was aborted while an operation was in flight."""
