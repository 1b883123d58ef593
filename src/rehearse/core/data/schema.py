"""Fixture schemas: field name to generator kind."""

from __future__ import annotations

from enum import StrEnum
from functools import cached_property
from pathlib import Path
from typing import Any, Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, create_model, model_validator

from rehearse.core.errors import ConfigError

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class FieldKind(StrEnum):
    NAME = "name"
    EMAIL = "email"
    INTEGER_RANGE = "integer-range"
    ENUM_CHOICE = "enum-choice"
    FIRST_NAME = "first-name"
    LAST_NAME = "last-name"
    PHONE = "phone"
    ADDRESS = "address"
    CITY = "city"
    COUNTRY_CODE = "country-code"
    POSTCODE = "postcode"
    DATE = "date"
    PASSWORD = "password"
    UUID = "uuid"


class FieldSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: FieldKind
    min: int | None = None
    max: int | None = None
    choices: tuple[str, ...] | None = None
    required: bool = True

    @model_validator(mode="after")
    def _check_parameters(self) -> Self:
        if self.kind is FieldKind.INTEGER_RANGE:
            if self.min is None or self.max is None:
                raise ValueError("integer-range needs both 'min' and 'max'")
            if self.min > self.max:
                raise ValueError(f"integer-range min {self.min} is greater than max {self.max}")
        elif self.min is not None or self.max is not None:
            raise ValueError(f"'min'/'max' only apply to integer-range, not {self.kind}")
        if self.kind is FieldKind.ENUM_CHOICE:
            if not self.choices:
                raise ValueError("enum-choice needs a non-empty 'choices' list")
        elif self.choices is not None:
            raise ValueError(f"'choices' only apply to enum-choice, not {self.kind}")
        return self

    @property
    def value_type(self) -> type:
        return int if self.kind is FieldKind.INTEGER_RANGE else str


class FixtureSchema(BaseModel):
    """Named set of field specs.

    Fields may be given in short form (``email: email``) or long form
    (``age: {kind: integer-range, min: 18, max: 99}``).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = "fixture"
    fields: dict[str, FieldSpec] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _expand_short_form(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("fields"), dict):
            data = dict(data)
            data["fields"] = {
                name: {"kind": spec} if isinstance(spec, str) else spec for name, spec in data["fields"].items()
            }
        return data

    @classmethod
    def load(cls, path: Path) -> Self:
        """Load a schema from a YAML file."""
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read schema {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Schema {path} must contain a mapping")
        raw.setdefault("name", Path(path).stem)
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid schema {path}: {e}") from e

    @cached_property
    def validator(self) -> type[BaseModel]:
        """Strict pydantic model checking a fixture document against this schema."""
        definitions: dict[str, Any] = {}
        for index, (name, spec) in enumerate(self.fields.items()):
            annotation: Any
            constraints: dict[str, Any] = {}
            if spec.kind is FieldKind.INTEGER_RANGE:
                annotation = StrictInt
                constraints = {"ge": spec.min, "le": spec.max}
            elif spec.kind is FieldKind.ENUM_CHOICE:
                annotation = Literal[tuple(spec.choices or ())]
            elif spec.kind is FieldKind.EMAIL:
                annotation = StrictStr
                constraints = {"pattern": EMAIL_PATTERN}
            else:
                annotation = StrictStr
            # optional fields may be omitted but are never null
            default = ... if spec.required else None
            # field names may not be valid identifiers, so validate by alias
            definitions[f"f_{index}"] = (annotation, Field(default, alias=name, **constraints))
        return create_model(
            f"{self.name.title().replace('-', '').replace('_', '')}Fixture",
            __config__=ConfigDict(extra="forbid", strict=True),
            **definitions,
        )
