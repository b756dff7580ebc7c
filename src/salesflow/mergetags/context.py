"""
salesflow.mergetags.context

JSON-safe snapshots of merge-tag contexts.

Responsibilities:
- Turn a context of ORM records into plain dicts that can be stored (scheduled
  automation logs, workflow enrollments) and resolved later without a DB session.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect as sa_inspect

_MAX_DEPTH = 2


def to_jsonable(value: Any, *, _depth: int = 0, _seen: frozenset[int] = frozenset()) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v, _depth=_depth, _seen=_seen) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v, _depth=_depth, _seen=_seen) for v in value]

    state = sa_inspect(value, raiseerr=False)
    if state is None or not hasattr(state, "mapper"):
        return str(value)
    if id(value) in _seen or _depth > _MAX_DEPTH:
        return None
    return _record(value, state, _depth, _seen | {id(value)})


def _record(obj: Any, state: Any, depth: int, seen: frozenset[int]) -> dict[str, Any]:
    unloaded = state.unloaded
    out: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        if attr.key in unloaded:
            continue
        out[attr.key] = to_jsonable(getattr(obj, attr.key), _depth=depth, _seen=seen)
    for rel in state.mapper.relationships:
        if rel.key in unloaded:
            continue
        out[rel.key] = to_jsonable(getattr(obj, rel.key), _depth=depth + 1, _seen=seen)
    return out


# --- Module Notes -----------------------------------------------------------
# Column attribute keys are used (`meta`, not the `metadata` column name), so
# providers read snapshots the same way they read records.
