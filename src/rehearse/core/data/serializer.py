"""Fixture file I/O.

Fixture files are UTF-8 JSON holding a single object whose keys are the
schema's field names.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from rehearse.core.errors import MalformedFixture

from .fixture import Fixture

if TYPE_CHECKING:
    from .schema import FixtureSchema


def dump_fixture(fixture: Fixture, path: str | Path) -> Path:
    """Write ``fixture`` as pretty-printed UTF-8 JSON.

    The file is replaced atomically; a failed dump leaves any previous file
    at ``path`` untouched.
    """
    path = Path(path)
    data = (json.dumps(fixture.to_dict(), indent=2, ensure_ascii=False) + "\n").encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    return path


def load_fixture(path: str | Path, schema: FixtureSchema | None = None) -> Fixture:
    """Read and validate a fixture file.

    With a schema, field names must match exactly and values are validated
    strictly (no coercion, ranges and choices enforced). Without one only the
    str/int value rule applies.

    Raises:
        MalformedFixture: The file is not UTF-8, not JSON, not an object, or
            does not satisfy the schema.
    """
    path = Path(path)
    try:
        text = path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFixture(f"Not valid UTF-8: {e}", path=path) from e
    except OSError as e:
        raise MalformedFixture(f"Cannot read fixture: {e}", path=path) from e

    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFixture(f"Invalid JSON at line {e.lineno} column {e.colno}: {e.msg}", path=path) from e
    except ValueError as e:
        # integer literals past the int-to-str digit limit
        raise MalformedFixture(f"Invalid JSON: {e}", path=path) from e

    if not isinstance(document, dict):
        raise MalformedFixture(f"Expected a JSON object, got {type(document).__name__}", path=path)

    if schema is not None:
        try:
            schema.validator.model_validate(document)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()]
            raise MalformedFixture(f"Does not match schema {schema.name!r}", path=path, errors=errors) from e

    try:
        return Fixture(document, schema_name=schema.name if schema is not None else None)
    except MalformedFixture as e:
        raise MalformedFixture("Unsupported value kind", path=path, errors=e.errors) from e
