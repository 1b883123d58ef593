"""Predicates over live page state.

A predicate probes the page once per poll and reports an ``Observation``.
``all_of`` composes predicates with AND semantics; it keeps evaluating every
sub-predicate until each has been observed at least once in the current
wait, and only then starts short-circuiting on the first failure.
"""

from __future__ import annotations

import fnmatch
import inspect
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rehearse.core.errors import EngineError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rehearse.core.page import Page


@dataclass
class Observation:
    satisfied: bool
    description: str
    observed: Any = None

    def as_dict(self) -> dict[str, Any]:
        return {"predicate": self.description, "satisfied": self.satisfied, "observed": self.observed}


class Predicate(ABC):
    description: str = "predicate"

    @abstractmethod
    async def probe(self, page: Page) -> Observation:
        """Inspect the page once."""

    async def evaluate(self, page: Page, memo: dict[int, Any]) -> Observation:
        """Probe the page; engine errors mean "not yet" rather than failure.

        ``memo`` is scratch space private to one ``wait_for`` call.
        """
        try:
            return await self.probe(page)
        except EngineError as e:
            return Observation(False, self.description, f"error: {e}")

    def __and__(self, other: Predicate) -> AllOf:
        return all_of(self, other)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.description}>"


class AllOf(Predicate):
    def __init__(self, predicates: list[Predicate]) -> None:
        if not predicates:
            raise ValueError("all_of() needs at least one predicate")
        self.predicates = predicates
        self.description = " AND ".join(p.description for p in predicates)

    async def probe(self, page: Page) -> Observation:
        return await self.evaluate(page, {})

    async def evaluate(self, page: Page, memo: dict[int, Any]) -> Observation:
        seen: set[int] = memo.setdefault(id(self), set())
        observations: list[Observation] = []
        for index, sub in enumerate(self.predicates):
            observation = await sub.evaluate(page, memo)
            seen.add(index)
            observations.append(observation)
            if not observation.satisfied and len(seen) == len(self.predicates):
                break
        satisfied = len(observations) == len(self.predicates) and all(o.satisfied for o in observations)
        return Observation(satisfied, self.description, [o.as_dict() for o in observations])


def all_of(*predicates: Predicate) -> AllOf:
    flat: list[Predicate] = []
    for p in predicates:
        # nested all_of flattens into one conjunction
        flat.extend(p.predicates if isinstance(p, AllOf) else [p])
    return AllOf(flat)


class _Probe(Predicate):
    def __init__(self, description: str, fn: Callable[[Page], Awaitable[tuple[bool, Any]]]) -> None:
        self.description = description
        self._fn = fn

    async def probe(self, page: Page) -> Observation:
        satisfied, observed = await self._fn(page)
        return Observation(satisfied, self.description, observed)


def element_visible(selector: str) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        visible = await page.is_visible(selector)
        return visible, {"visible": visible}

    return _Probe(f"{selector} is visible", _probe)


def element_hidden(selector: str) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        visible = await page.is_visible(selector)
        return not visible, {"visible": visible}

    return _Probe(f"{selector} is hidden", _probe)


def text_present(selector: str, text: str, *, exact: bool = False) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        actual = await page.text_content(selector)
        if actual is None:
            return False, {"text": None}
        matched = actual.strip() == text if exact else text in actual
        return matched, {"text": actual}

    verb = "equals" if exact else "contains"
    return _Probe(f"{selector} text {verb} {text!r}", _probe)


def element_count(selector: str, expected: int) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        actual = await page.count(selector)
        return actual == expected, {"count": actual}

    return _Probe(f"{selector} count == {expected}", _probe)


def url_matches(pattern: str | re.Pattern[str]) -> Predicate:
    """Match the page URL against a glob (``**/search*``) or a compiled regex."""

    async def _probe(page: Page) -> tuple[bool, Any]:
        url = page.url
        if isinstance(pattern, re.Pattern):
            return pattern.search(url) is not None, {"url": url}
        return fnmatch.fnmatch(url, pattern), {"url": url}

    shown = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
    return _Probe(f"url matches {shown!r}", _probe)


def network_idle(max_pending: int = 0) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        pending = await page.pending_requests()
        return pending <= max_pending, {"pending_requests": pending}

    return _Probe("network idle", _probe)


def no_pending_animation() -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        running = await page.running_animations()
        return running == 0, {"running_animations": running}

    return _Probe("no pending animation", _probe)


def local_storage_equals(key: str, value: str | None) -> Predicate:
    async def _probe(page: Page) -> tuple[bool, Any]:
        actual = await page.get_local_storage(key)
        return actual == value, {"value": actual}

    return _Probe(f"localStorage[{key!r}] == {value!r}", _probe)


def predicate(fn: Callable[[Page], bool | Awaitable[bool]], description: str | None = None) -> Predicate:
    """Wrap a custom ``fn(page) -> bool`` (sync or async) as a predicate."""

    async def _probe(page: Page) -> tuple[bool, Any]:
        result = fn(page)
        if inspect.isawaitable(result):
            result = await result
        return bool(result), result

    return _Probe(description or getattr(fn, "__name__", "custom predicate"), _probe)
