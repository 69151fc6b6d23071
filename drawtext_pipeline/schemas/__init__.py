"""JSON schemas for the documents the pipeline reads and writes.

Loaded once per process and cached; callers validate with jsonschema.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

_SCHEMA_DIR = Path(__file__).resolve().parent

_CACHED_SCHEMAS: Dict[str, Dict[str, Any]] = {}


def get_schema(name: str) -> Dict[str, Any]:
    """Load and cache ``{name}.schema.json`` from this package."""
    if name not in _CACHED_SCHEMAS:
        with open(_SCHEMA_DIR / "{}.schema.json".format(name), encoding="utf-8") as f:
            _CACHED_SCHEMAS[name] = json.load(f)
    return _CACHED_SCHEMAS[name]
