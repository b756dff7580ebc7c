"""
tests.test_conditions

Condition operators and trigger-config matching shared by automations and workflows.
"""

from __future__ import annotations

import pytest

from salesflow.actions.conditions import (
    conditions_met,
    config_matches,
    contact_field,
    evaluate_condition,
    trigger_conditions_match,
)
from salesflow.mergetags.registry import triggers_match


@pytest.mark.parametrize(
    ("actual", "operator", "expected", "result"),
    [
        ("gold", "equals", "gold", True),
        ("10", "=", 10, True),
        ("10.0", "equals", "10", True),
        ("gold", "!=", "silver", True),
        ("hello world", "contains", "world", True),
        ("hello world", "not_contains", "world", False),
        ("hello", "starts_with", "he", True),
        ("hello", "ends_with", "lo", True),
        (5, "contains", "5", False),
        ("9", "greater_than", "10", False),
        ("100", ">", 99, True),
        (3, "<=", 3, True),
        (None, "greater_than", 1, False),
        ("", "is_empty", None, True),
        ("0", "is_empty", None, True),
        ([], "is_empty", None, True),
        ("x", "is_not_empty", None, True),
        (True, "is_true", None, True),
        (0, "is_false", None, True),
        ("x", "bogus", "x", False),
    ],
)
def test_evaluate_condition(actual, operator, expected, result) -> None:
    assert evaluate_condition(actual, operator, expected) is result


def test_contact_field_reads_attributes_then_custom_fields() -> None:
    contact = {"name": "Aina", "fields": {"plan": "pro", "address": {"city": "Ipoh"}}}
    assert contact_field(contact, "name") == "Aina"
    assert contact_field(contact, "plan") == "pro"
    assert contact_field(contact, "fields.address.city") == "Ipoh"
    assert contact_field(contact, "missing") is None
    assert contact_field(None, "name") is None


def test_conditions_met_requires_all() -> None:
    context = {"order": {"total_amount": "150.00", "status": "confirmed"}}
    conditions = [
        {"field": "order.total_amount", "operator": ">=", "value": 100},
        {"field": "order.status", "operator": "equals", "value": "confirmed"},
    ]
    assert conditions_met(conditions, context) is True
    assert conditions_met([*conditions, {"field": "order.status", "operator": "equals", "value": "x"}], context) is False
    assert conditions_met(None, context) is True


def test_config_matches_skips_empty_keys_and_accepts_lists() -> None:
    values = {"funnel_id": "f-1", "product": {"id": "p-2"}}
    assert config_matches({"funnel_id": "f-1", "tag": ""}, values) is True
    assert config_matches({"product.id": ["p-1", "p-2"]}, values) is True
    assert config_matches({"funnel_id": "f-9"}, values) is False


def test_trigger_conditions_only_filter_configured_keys() -> None:
    assert trigger_conditions_match({}, {"funnel_id": "f-1"}) is True
    assert trigger_conditions_match({"funnel_id": "f-1"}, {"funnel_id": "f-1"}) is True
    assert trigger_conditions_match({"funnel_id": "f-2"}, {"funnel_id": "f-1"}) is False


def test_trigger_aliases() -> None:
    assert triggers_match("order_paid", "purchase_completed") is True
    assert triggers_match("cart_abandonment", "funnel_cart_abandoned") is True
    assert triggers_match("purchase_completed", "cart_abandoned") is False
    assert triggers_match("custom_event", "custom_event") is True
