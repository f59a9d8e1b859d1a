"""
Query key handling: validation, canonical serialization and matching.

A query key is an ordered sequence of JSON-like parts, for example
``["mlModels", "list", {"filters": {"status": "Active"}}]``. Each part is
serialized independently so that hierarchical (prefix) matching works on
whole parts: ``["mlModels"]`` matches ``["mlModels", "list", ...]`` but not
``["mlModelsArchive"]``.

With ``sort_fields=True`` mapping parts are serialized with sorted fields,
so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` address the same entry.
With ``sort_fields=False`` insertion order is significant.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from enum import Enum
from typing import Any

from dashboard_query.core.exceptions import InvalidQueryKeyError

QueryKey = Sequence[Any]
QueryHash = tuple[str, ...]


def _encode_part(value: Any) -> Any:
    """json.dumps fallback for non-JSON-native key parts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    raise TypeError(f"Unserializable key part of type {type(value).__name__}")


def validate_key(key: Any, *, allow_empty: bool = False) -> tuple[Any, ...]:
    """Check that ``key`` is usable as a query key and return it as a tuple.

    Args:
        key: Candidate key.
        allow_empty: Accept ``[]`` (used by filters, where it matches all).

    Raises:
        InvalidQueryKeyError: If the key is not a list/tuple, or is empty
            when ``allow_empty`` is False.
    """
    if isinstance(key, (str, bytes, Mapping)) or not isinstance(key, Sequence):
        raise InvalidQueryKeyError(key, reason="must be a list or tuple of parts")
    if not key and not allow_empty:
        raise InvalidQueryKeyError(key, reason="must not be empty")
    return tuple(key)


def hash_key(key: QueryKey, *, sort_fields: bool = True, allow_empty: bool = False) -> QueryHash:
    """Serialize a key into its canonical, hashable identity.

    Args:
        key: Query key to serialize.
        sort_fields: Normalize mapping field order before serializing.
        allow_empty: Accept an empty key.

    Returns:
        Tuple with one canonical JSON string per key part.

    Raises:
        InvalidQueryKeyError: If the key is malformed or a part cannot be
            serialized.
    """
    parts = validate_key(key, allow_empty=allow_empty)
    try:
        return tuple(
            json.dumps(part, sort_keys=sort_fields, separators=(",", ":"), default=_encode_part)
            for part in parts
        )
    except (TypeError, ValueError) as e:
        raise InvalidQueryKeyError(key, reason=str(e)) from e


def is_prefix(prefix: QueryHash, query_hash: QueryHash) -> bool:
    """Check whether ``prefix`` addresses ``query_hash`` or one of its ancestors."""
    return len(prefix) <= len(query_hash) and query_hash[: len(prefix)] == prefix


def matches(filter_hash: QueryHash, query_hash: QueryHash, *, exact: bool = False) -> bool:
    """Match a hashed key against a filter, exactly or by prefix."""
    if exact:
        return filter_hash == query_hash
    return is_prefix(filter_hash, query_hash)


def format_key(query_hash: QueryHash) -> str:
    """Render a hashed key as a compact JSON array string (for logs)."""
    return "[" + ",".join(query_hash) + "]"
