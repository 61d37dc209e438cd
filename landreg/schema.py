"""JSON Schema validation for workflow payloads.

Provides:
- A registry of every schema shipped under ``landreg/schemas`` so ``$ref``
  between schemas resolves offline
- Cached validators per schema name
- Translation of schema failures into ``PreconditionFailed``
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from landreg.core import SCHEMAS_DIR, load_json
from landreg.errors import PreconditionFailed

ASSET_SUBMISSION = "asset-submission"
INSPECTION_REPORT = "inspection-report"
TRANSFER_REQUEST = "transfer-request"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Build a registry holding every ``*.schema.json`` under ``schemas_dir``."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.landreg.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


def schema_path(name: str, schemas_dir: Path = SCHEMAS_DIR) -> Path:
    return schemas_dir / f"{name}.schema.json"


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Create (once) a validator for the named schema."""
    path = schema_path(name)
    if not path.exists():
        raise FileNotFoundError(f"Unknown schema: {name}")
    return Draft202012Validator(load_json(path), registry=_schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validate ``obj``; returns error messages (empty if valid)."""
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def require_valid(obj: Any, name: str) -> None:
    """Raise PreconditionFailed listing every schema violation in ``obj``."""
    errors = validate_against_schema(obj, name)
    if errors:
        raise PreconditionFailed(f"Invalid {name} payload: " + "; ".join(errors))
