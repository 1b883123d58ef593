"""Read-only guard for retried checks.

Retrying a state mutation hides real defects, so while a check runs under
``read_only`` every mutating page or context action raises
``MutationInCheck`` instead of executing.
"""

from __future__ import annotations

import functools
import inspect
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, TypeVar

from rehearse.core.errors import MutationInCheck

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

F = TypeVar("F", bound="Callable[..., Any]")

_active_check: ContextVar[str | None] = ContextVar("rehearse_active_check", default=None)


@contextmanager
def read_only(check: str) -> Iterator[None]:
    token = _active_check.set(check)
    try:
        yield
    finally:
        _active_check.reset(token)


def active_check() -> str | None:
    return _active_check.get()


def ensure_mutation_allowed(action: str) -> None:
    check = _active_check.get()
    if check is not None:
        raise MutationInCheck(action, check)


def mutating(func: F) -> F:
    """Mark a helper as state-changing so it refuses to run inside a retried check."""
    name = getattr(func, "__qualname__", repr(func))

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            ensure_mutation_allowed(name)
            return await func(*args, **kwargs)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        ensure_mutation_allowed(name)
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
