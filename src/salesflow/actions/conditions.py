"""
salesflow.actions.conditions

Field lookups and comparisons shared by automations and workflows.

Responsibilities:
- Read dot paths out of contexts that mix ORM records, dicts and lists.
- Evaluate one `{field, operator, value}` condition.
- Match a stored trigger config against an event.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from salesflow.mergetags.formatting import to_decimal
from salesflow.mergetags.providers.base import read

OPERATOR_ALIASES = {
    "=": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    "<": "less_than",
    ">=": "greater_or_equal",
    "<=": "less_or_equal",
}

OPERATORS = frozenset(
    {
        "equals",
        "not_equals",
        "contains",
        "not_contains",
        "starts_with",
        "ends_with",
        "greater_than",
        "less_than",
        "greater_or_equal",
        "less_or_equal",
        "is_empty",
        "is_not_empty",
        "is_true",
        "is_false",
    }
)


def get_path(source: Any, path: str) -> Any:
    value = source
    for segment in path.split("."):
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            if not segment.isdigit() or int(segment) >= len(value):
                return None
            value = value[int(segment)]
        else:
            value = read(value, segment)
    return value


def contact_field(contact: Any, field: str) -> Any:
    """
    Attribute path on the contact, falling back to its custom `fields`.
    """

    if contact is None or not field:
        return None
    head, _, rest = field.partition(".")
    if head in ("fields", "custom"):
        return get_path(read(contact, "fields", default={}), rest) if rest else None
    value = get_path(contact, field)
    if value is None:
        value = get_path(read(contact, "fields", default={}), field)
    return value


def is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value == "" or value == "0"
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _numbers(actual: Any, expected: Any) -> tuple[Decimal, Decimal] | None:
    left, right = to_decimal(actual), to_decimal(expected)
    if left is None or right is None:
        return None
    return left, right


def _loose_equals(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return is_empty(actual) and is_empty(expected)
    if isinstance(actual, bool) or isinstance(expected, bool):
        return (not is_empty(actual)) == (not is_empty(expected))
    pair = _numbers(actual, expected)
    if pair is not None:
        return pair[0] == pair[1]
    return str(actual) == str(expected)


def _compare(actual: Any, expected: Any) -> int | None:
    if actual is None:
        return None
    pair = _numbers(actual, expected)
    if pair is not None:
        left, right = pair
    else:
        left, right = str(actual), str(expected)
    return (left > right) - (left < right)


def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """
    Unknown operators evaluate to False.
    """

    op = OPERATOR_ALIASES.get(operator, operator)
    if op == "equals":
        return _loose_equals(actual, expected)
    if op == "not_equals":
        return not _loose_equals(actual, expected)
    if op in ("contains", "not_contains", "starts_with", "ends_with"):
        if not isinstance(actual, str):
            return False
        needle = "" if expected is None else str(expected)
        if op == "contains":
            return needle in actual
        if op == "not_contains":
            return needle not in actual
        if op == "starts_with":
            return actual.startswith(needle)
        return actual.endswith(needle)
    if op in ("greater_than", "less_than", "greater_or_equal", "less_or_equal"):
        cmp = _compare(actual, expected)
        if cmp is None:
            return False
        return {
            "greater_than": cmp > 0,
            "less_than": cmp < 0,
            "greater_or_equal": cmp >= 0,
            "less_or_equal": cmp <= 0,
        }[op]
    if op == "is_empty":
        return is_empty(actual)
    if op == "is_not_empty":
        return not is_empty(actual)
    if op == "is_true":
        return not is_empty(actual)
    if op == "is_false":
        return is_empty(actual)
    return False


def conditions_met(conditions: Iterable[Mapping[str, Any]] | None, context: Mapping[str, Any]) -> bool:
    """
    All conditions must hold; each reads `field` as a dot path into the context.
    """

    for condition in conditions or []:
        field = str(condition.get("field") or "")
        if not field:
            continue
        actual = get_path(context, field)
        if not evaluate_condition(actual, str(condition.get("operator") or "equals"), condition.get("value")):
            return False
    return True


def config_matches(config: Mapping[str, Any] | None, values: Mapping[str, Any]) -> bool:
    """
    Every non-empty key the config defines must agree with `values` (dot paths allowed).
    """

    for key, expected in (config or {}).items():
        if expected is None or expected == "" or expected == []:
            continue
        actual = values.get(key) if key in values else get_path(values, key)
        if isinstance(expected, list):
            if not any(_loose_equals(actual, item) for item in expected):
                return False
        elif not _loose_equals(actual, expected):
            return False
    return True


def trigger_conditions_match(config: Mapping[str, Any] | None, conditions: Mapping[str, Any]) -> bool:
    """
    Event-side check: a condition only filters when the config defines that key.
    """

    config = config or {}
    for key, value in conditions.items():
        expected = config.get(key)
        if expected is None or expected == "":
            continue
        if not _loose_equals(value, expected):
            return False
    return True
