"""Canonical serialization of audit snapshots.

The same string form is used for checksums and for field diffs, so it must
not depend on how a snapshot was built in memory. The contract:

- inputs are acyclic JSON-like values: dict (string keys), list/tuple,
  str, int, float, bool, None, plus datetime/date rendered as ISO-8601
- mapping keys are sorted at every depth
- compact separators, non-ASCII characters kept as-is
- integral floats render as integers (``8.0`` -> ``8``); NaN and infinities
  are rejected

A snapshot read back from the store therefore serializes exactly like the
one that was written, whatever key order or number type the backend returns.
"""
import json
import math
from datetime import date, datetime
from typing import Any, Mapping


def canonicalize(value: Any, sort_keys: bool = True) -> Any:
    """Normalize a JSON-like value into its canonical structure.

    Args:
        value: Value to normalize
        sort_keys: Sort the keys of a top-level mapping. Nested mappings
            are always sorted.

    Raises:
        TypeError: For values that have no JSON representation
        ValueError: For cyclic structures and non-finite floats
    """
    return _canonicalize(value, sort_keys, set())


def serialize(value: Any, sort_keys: bool = True) -> str:
    """Deterministic string form of a JSON-like value."""
    return json.dumps(
        canonicalize(value, sort_keys=sort_keys),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def _canonicalize(value: Any, sort_keys: bool, path: set) -> Any:
    # bool first: it is a subclass of int
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite number cannot be serialized: {value}")
        return int(value) if value.is_integer() else value
    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, (Mapping, list, tuple)):
        marker = id(value)
        if marker in path:
            raise ValueError("Cyclic structure cannot be serialized")
        path.add(marker)
        try:
            if isinstance(value, Mapping):
                return _canonicalize_mapping(value, sort_keys, path)
            return [_canonicalize(item, True, path) for item in value]
        finally:
            path.discard(marker)

    raise TypeError(f"Value of type {type(value).__name__} is not JSON-like")


def _canonicalize_mapping(value: Mapping, sort_keys: bool, path: set) -> dict:
    for key in value:
        if not isinstance(key, str):
            raise TypeError(f"Mapping keys must be strings, got {type(key).__name__}")

    keys = sorted(value) if sort_keys else list(value)
    return {key: _canonicalize(value[key], True, path) for key in keys}
