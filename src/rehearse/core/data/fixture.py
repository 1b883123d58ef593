"""Immutable test fixtures."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from rehearse.core.errors import MalformedFixture

FixtureValue = str | int

# ints this wide may exceed the interpreter's int-to-str digit limit
_WIDE_INT_BITS = 10_000


def _check_text(name: str, text: str) -> None:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise MalformedFixture(
            f"Field {name!r} is not valid UTF-8 text: {e.reason} at position {e.start}",
            errors=[f"{name}: {e.reason}"],
        ) from e


def check_value(name: str, value: Any) -> FixtureValue:
    # bool is an int subclass but never a valid fixture value
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedFixture(
            f"Field {name!r} must be a string or integer, got {type(value).__name__}",
            errors=[f"{name}: unsupported value {value!r}"],
        )
    _check_text(name, name)
    if isinstance(value, str):
        _check_text(name, value)
    elif value.bit_length() > _WIDE_INT_BITS:
        try:
            str(value)
        except ValueError as e:
            raise MalformedFixture(
                f"Field {name!r} holds an integer too large to serialize", errors=[f"{name}: {e}"]
            ) from e
    return value


class Fixture(Mapping[str, FixtureValue]):
    """Read-only mapping of field name to ``str``/``int`` value.

    Two fixtures are equal when their values are equal; the schema name and
    generation seed are metadata and do not take part in comparison.
    """

    __slots__ = ("_values", "schema_name", "seed")

    def __init__(
        self, values: Mapping[str, Any], *, schema_name: str | None = None, seed: int | None = None
    ) -> None:
        checked = {str(name): check_value(str(name), value) for name, value in values.items()}
        self._values = MappingProxyType(checked)
        self.schema_name = schema_name
        self.seed = seed

    def __getitem__(self, key: str) -> FixtureValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Fixture):
            return dict(self._values) == dict(other._values)
        if isinstance(other, Mapping):
            return dict(self._values) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._values.items()))

    def __repr__(self) -> str:
        return f"Fixture({dict(self._values)!r}, schema_name={self.schema_name!r}, seed={self.seed!r})"

    def to_dict(self) -> dict[str, FixtureValue]:
        return dict(self._values)

    def with_values(self, **changes: Any) -> Fixture:
        """Return a copy with some fields replaced. The seed is dropped."""
        return Fixture({**self._values, **changes}, schema_name=self.schema_name)
