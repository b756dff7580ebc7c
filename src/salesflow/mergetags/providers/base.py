"""
salesflow.mergetags.providers.base

Shared plumbing for merge-tag data providers.

Responsibilities:
- Define the provider interface (`get_value(field, context)`).
- Read fields uniformly from ORM records and plain dicts.
- Never trigger lazy loads: unloaded ORM attributes read as missing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import inspect as sa_inspect

from salesflow.db.models import utcnow
from salesflow.settings import Settings

_MISSING = object()


def read(obj: Any, *names: str, default: Any = None) -> Any:
    """
    First non-empty value among `names` on `obj` (attribute or mapping key).
    """

    if obj is None:
        return default
    for name in names:
        value = _read_one(obj, name)
        if value is not _MISSING and value is not None and value != "":
            return value
    return default


def _read_one(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, _MISSING)
    state = sa_inspect(obj, raiseerr=False)
    if state is not None and hasattr(state, "unloaded") and name in state.unloaded:
        return _MISSING
    return getattr(obj, name, _MISSING)


def first_present(context: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = context.get(key)
        if value is not None:
            return value
    return None


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        # Enum members render as their value.
        return value.value
    return str(value)


class DataProvider(ABC):
    """
    Resolves `{{<category>.<field>}}` for one category.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow) -> None:
        self._settings = settings
        self._clock = clock

    @abstractmethod
    def get_value(self, field: str, context: Mapping[str, Any]) -> str | None: ...


def resolve_order(context: Mapping[str, Any]) -> Any:
    """
    Order record (or dict) from `product_order`, then `order`, then `funnel_order`.
    """

    order = first_present(context, "product_order", "order")
    if order is not None:
        return order
    funnel_order = context.get("funnel_order")
    if funnel_order is None:
        return None
    # A funnel order stands in for its product order.
    return read(funnel_order, "product_order", default=funnel_order)


def resolve_session(context: Mapping[str, Any]) -> Any:
    return first_present(context, "funnel_session", "session")


def resolve_cart(context: Mapping[str, Any]) -> Any:
    return first_present(context, "funnel_cart", "cart")
