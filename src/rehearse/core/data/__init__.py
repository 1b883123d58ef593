from .factory import DataFactory, generate
from .fixture import Fixture
from .schema import FieldKind, FieldSpec, FixtureSchema
from .serializer import dump_fixture, load_fixture

__all__ = [
    "DataFactory",
    "FieldKind",
    "FieldSpec",
    "Fixture",
    "FixtureSchema",
    "dump_fixture",
    "generate",
    "load_fixture",
]
