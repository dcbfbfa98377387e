"""Reply validation against the bundled JSON Schemas."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import jsonschema
import yaml

from purge_cache.errors import OutputValidationError

SCHEMAS_DIR = Path(__file__).parent / "schemas" / "v1"


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict:
    with open(SCHEMAS_DIR / f"{name}.yml") as f:
        return yaml.safe_load(f)


def validate_output(name: str, payload: dict) -> dict:
    """Return `payload` unchanged, or raise OutputValidationError."""
    try:
        jsonschema.validate(
            instance=payload,
            schema=load_schema(name),
            format_checker=jsonschema.FormatChecker(),
        )
    except jsonschema.ValidationError as e:
        raise OutputValidationError(f"{name}: {e.json_path}: {e.message}") from e
    return payload
