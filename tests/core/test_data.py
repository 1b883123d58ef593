"""Tests for schemas, fixtures and the data factory."""

import re
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from rehearse.core.data import DataFactory, FieldKind, Fixture, FixtureSchema, generate
from rehearse.core.errors import ConfigError, MalformedFixture

USER_SCHEMA = FixtureSchema.model_validate(
    {
        "name": "user",
        "fields": {
            "name": "name",
            "email": "email",
            "age": {"kind": "integer-range", "min": 18, "max": 65},
            "plan": {"kind": "enum-choice", "choices": ["free", "pro", "enterprise"]},
        },
    }
)


def _spec(kind: FieldKind) -> dict:
    if kind is FieldKind.INTEGER_RANGE:
        return {"kind": kind, "min": 1, "max": 3}
    if kind is FieldKind.ENUM_CHOICE:
        return {"kind": kind, "choices": ("a", "b")}
    return {"kind": kind}


ALL_KINDS_SCHEMA = FixtureSchema(name="everything", fields={kind.value: _spec(kind) for kind in FieldKind})


class TestSchema:
    def test_short_form_expands(self) -> None:
        assert USER_SCHEMA.fields["email"].kind is FieldKind.EMAIL
        assert USER_SCHEMA.fields["age"].min == 18

    @pytest.mark.parametrize(
        "spec",
        [
            {"kind": "integer-range"},
            {"kind": "integer-range", "min": 5, "max": 1},
            {"kind": "enum-choice"},
            {"kind": "enum-choice", "choices": []},
            {"kind": "name", "min": 1},
            {"kind": "email", "choices": ["x"]},
            {"kind": "colour"},
        ],
    )
    def test_invalid_field_specs(self, spec: dict) -> None:
        with pytest.raises(ValidationError):
            FixtureSchema.model_validate({"fields": {"f": spec}})

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "customer.yaml"
        path.write_text(yaml.safe_dump({"fields": {"email": "email", "zip": "postcode"}}))

        schema = FixtureSchema.load(path)

        assert schema.name == "customer"
        assert schema.fields["zip"].kind is FieldKind.POSTCODE

    def test_load_invalid_yaml_schema(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"fields": {"age": {"kind": "integer-range", "min": 1}}}))

        with pytest.raises(ConfigError, match="Invalid schema"):
            FixtureSchema.load(path)


class TestFixture:
    def test_is_immutable(self) -> None:
        fixture = Fixture({"name": "Ada"})
        with pytest.raises(TypeError):
            fixture["name"] = "Grace"  # type: ignore[index]
        with pytest.raises(AttributeError):
            fixture.new_attribute = 1  # type: ignore[attr-defined]

    @pytest.mark.parametrize("value", [True, 1.5, None, [1], {"a": 1}])
    def test_rejects_unsupported_values(self, value: object) -> None:
        with pytest.raises(MalformedFixture):
            Fixture({"field": value})

    def test_equality_ignores_metadata(self) -> None:
        a = Fixture({"name": "Ada", "age": 36}, schema_name="user", seed=1)
        b = Fixture({"age": 36, "name": "Ada"}, seed=2)

        assert a == b
        assert hash(a) == hash(b)
        assert a == {"name": "Ada", "age": 36}
        assert a != Fixture({"name": "Ada", "age": 37})

    def test_with_values(self) -> None:
        original = Fixture({"name": "Ada", "age": 36}, seed=5)
        changed = original.with_values(age=37)

        assert changed["age"] == 37
        assert original["age"] == 36
        assert changed.seed is None


class TestGenerate:
    def test_same_seed_same_fixture(self) -> None:
        assert generate(USER_SCHEMA, seed=1234) == generate(USER_SCHEMA, seed=1234)

    def test_different_seeds_differ(self) -> None:
        fixtures = {tuple(generate(USER_SCHEMA, seed=s).items()) for s in range(10)}
        assert len(fixtures) > 1

    def test_values_respect_schema(self) -> None:
        for seed in range(50):
            fixture = generate(USER_SCHEMA, seed=seed)
            assert set(fixture) == {"name", "email", "age", "plan"}
            assert 18 <= fixture["age"] <= 65
            assert fixture["plan"] in {"free", "pro", "enterprise"}
            assert re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", str(fixture["email"]))
            assert isinstance(fixture["name"], str) and fixture["name"]

    def test_seed_is_recorded(self) -> None:
        fixture = generate(USER_SCHEMA)
        assert fixture.seed is not None
        assert generate(USER_SCHEMA, seed=fixture.seed) == fixture

    def test_every_kind_generates(self) -> None:
        fixture = generate(ALL_KINDS_SCHEMA, seed=7)

        assert set(fixture) == {kind.value for kind in FieldKind}
        assert isinstance(fixture[FieldKind.INTEGER_RANGE.value], int)
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", str(fixture[FieldKind.DATE.value]))
        assert len(str(fixture[FieldKind.UUID.value])) == 36
        assert len(str(fixture[FieldKind.COUNTRY_CODE.value])) == 2
        assert generate(ALL_KINDS_SCHEMA, seed=7) == fixture

    def test_generated_fixture_passes_its_own_schema(self) -> None:
        for seed in range(20):
            USER_SCHEMA.validator.model_validate(generate(USER_SCHEMA, seed=seed).to_dict())


class TestDataFactory:
    def test_sequence_is_reproducible(self) -> None:
        first = DataFactory(99).create_many(USER_SCHEMA, 5)
        second = DataFactory(99).create_many(USER_SCHEMA, 5)

        assert first == second

    def test_fixtures_in_sequence_differ(self) -> None:
        fixtures = DataFactory(3).create_many(USER_SCHEMA, 5)
        assert len({f.seed for f in fixtures}) == 5

    def test_each_fixture_replays_from_its_seed(self) -> None:
        factory = DataFactory(11)
        fixture = factory.create(USER_SCHEMA)
        assert fixture.seed is not None
        assert generate(USER_SCHEMA, seed=fixture.seed) == fixture

    def test_unseeded_factory_draws_seed(self) -> None:
        assert isinstance(DataFactory().seed, int)
