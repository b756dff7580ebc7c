"""
tests.test_merge_tags

Merge-tag resolution, modifiers, validation and the catalogue endpoints.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from salesflow.db.models import Funnel, FunnelCart, FunnelSession, FunnelStep, OrderPayment, ProductOrder
from salesflow.mergetags.engine import MergeTagEngine, apply_modifier
from salesflow.mergetags.formatting import format_money, humanize_since
from salesflow.settings import Settings

ORDER = {
    "order_number": "PO-20240305-0001",
    "total_amount": "1234.5",
    "subtotal": "1200",
    "currency": "MYR",
    "status": "confirmed",
    "items": [
        {"product_name": "Course A", "quantity": 2},
        {"product_name": "Workbook", "quantity": 1},
    ],
    "shipping_address": {"line1": "1 Jalan Ampang", "city": "Kuala Lumpur", "postcode": "50450"},
}


def _engine(context: dict | None = None) -> MergeTagEngine:
    settings = Settings(
        env="test", company_name="Acme Academy", timezone="Asia/Kuala_Lumpur", app_url="https://shop.example.com"
    )
    return MergeTagEngine(settings, context, clock=lambda: datetime(2024, 3, 5, 16, 30))


def test_contact_names_split_from_full_name() -> None:
    engine = _engine({"contact": {"name": "Ahmad bin Ali", "email": "ahmad@example.com"}})
    assert engine.resolve("Hi {{contact.first_name}} ({{contact.last_name}})") == "Hi Ahmad (bin Ali)"
    assert engine.resolve("{{contact.email}}") == "ahmad@example.com"


def test_contact_falls_back_to_order_customer() -> None:
    engine = _engine({"order": {"customer_name": "Siti", "customer_phone": "0123456789"}})
    assert engine.resolve("{{contact.name}} / {{contact.phone}}") == "Siti / 0123456789"


def test_order_values() -> None:
    engine = _engine({"order": ORDER})
    assert engine.resolve("{{order.total}}") == "RM 1,234.50"
    assert engine.resolve("{{order.total_raw}}") == "1,234.50"
    assert engine.resolve("{{order.number}}") == "PO-20240305-0001"
    assert engine.resolve("{{order.items_count}}") == "2"
    assert engine.resolve("{{order.items_list}}") == "- Course A (x2)\n- Workbook (x1)"
    assert engine.resolve("{{order.first_item_name}}") == "Course A"
    assert engine.resolve("{{order.shipping_address}}") == "1 Jalan Ampang, Kuala Lumpur, 50450"


def test_unknown_currency_renders_its_code() -> None:
    assert format_money("10", "JPY") == "JPY 10.00"
    assert format_money("5", "usd") == "$ 5.00"


def test_snapshot_context_providers() -> None:
    engine = _engine(
        {
            "session": {
                "device": "Mobile Safari",
                "country": "my",
                "referrer": "https://www.google.com/search?q=kit",
                "utm_data": {"utm_source": "fb"},
            },
            "cart": {"cart_data": {"items": []}, "recovery_token": "tok", "abandoned_at": "2024-03-05T14:30:00"},
            "funnel": {"name": "Spring", "slug": "spring"},
            "step": {"name": "Checkout", "slug": "checkout"},
            "payment": {"payment_method": "card", "paid_at": "2024-03-01T02:00:00"},
        }
    )
    rendered = engine.resolve(
        "{{session.device}}|{{session.country}}|{{session.referrer}}|{{session.utm_source}}|"
        "{{cart.items_list}}|{{cart.recovery_url}}|{{cart.abandoned_at}}|"
        "{{funnel.url}}|{{funnel.step_url}}|{{payment.method}}|{{payment.paid_at}}"
    )
    assert rendered == (
        "mobile|MY|www.google.com|fb|"
        "- Empty cart|https://shop.example.com/cart/recover/tok|2 hours ago|"
        "https://shop.example.com/f/spring|https://shop.example.com/f/spring/checkout|card|01 Mar 2024, 10:00 AM"
    )


def test_direct_tracking_keys_win_over_session() -> None:
    engine = _engine({"device": "tablet", "utm_campaign": "launch", "session": {"device": "desktop", "utm_campaign": "old"}})
    assert engine.resolve("{{session.device}}/{{session.utm_campaign}}") == "tablet/launch"


def test_record_context_providers() -> None:
    funnel = Funnel(name="Spring Sale", slug="spring-sale")
    visit = FunnelSession(
        funnel=funnel, device="Desktop Chrome", country="sg", referrer="https://news.example.org/a", utm_source="newsletter"
    )
    cart = FunnelCart(
        funnel=funnel,
        cart_data={"items": [{"name": "Starter Kit", "quantity": 2}, {"product_name": "Workbook"}]},
        total_amount=Decimal("418.00"),
        currency="MYR",
        recovery_token="abc123",
        abandoned_at=datetime(2024, 3, 4, 16, 30),
    )
    order = ProductOrder(
        payments=[
            OrderPayment(
                payment_method="fpx",
                amount=Decimal("418.00"),
                status="paid",
                reference_number="FPX-1",
                bank="Maybank",
                paid_at=datetime(2024, 3, 5, 8, 15),
                created_at=datetime(2024, 3, 5, 8, 15),
            )
        ]
    )
    step = FunnelStep(name="Checkout", slug="checkout")

    engine = _engine({"funnel_session": visit, "funnel_cart": cart, "order": order, "funnel_step": step})

    assert engine.resolve("{{session.device}} {{session.country}} {{session.referrer}}") == "desktop SG news.example.org"
    assert engine.resolve("{{session.utm_source}}") == "newsletter"
    assert engine.resolve("{{cart.total}} / {{cart.items_count}}") == "RM 418.00 / 2"
    assert engine.resolve("{{cart.items_list}}") == "- Starter Kit (x2)\n- Workbook (x1)"
    assert engine.resolve("{{cart.first_item_name}}") == "Starter Kit"
    assert engine.resolve("{{cart.checkout_url}}") == "https://shop.example.com/cart/recover/abc123"
    assert engine.resolve("{{cart.abandoned_at}}") == "1 day ago"
    # The funnel comes from the session when the context has none.
    assert engine.resolve("{{funnel.name}} {{funnel.step_url}}") == "Spring Sale https://shop.example.com/f/spring-sale/checkout"
    assert engine.resolve("{{payment.method}} {{payment.reference}} {{payment.bank}}") == "fpx FPX-1 Maybank"
    assert engine.resolve("{{payment.paid_at}}") == "05 Mar 2024, 04:15 PM"


def test_flat_cart_keys_without_cart_record() -> None:
    engine = _engine({"cart_total": "50", "cart_items_count": 3, "checkout_url": "https://x.test/c"})
    assert engine.resolve("{{cart.total}}|{{cart.items_count}}|{{cart.recovery_url}}") == "RM 50.00|3|https://x.test/c"
    assert engine.resolve("{{payment.method}}{{cart.first_item_name}}") == ""


def test_system_values_use_clock_and_timezone() -> None:
    engine = _engine()
    # 16:30 UTC is 00:30 the next day in Kuala Lumpur.
    assert engine.resolve("{{current_date}}") == "06 Mar 2024"
    assert engine.resolve("{{current_time}}") == "12:30 AM"
    assert engine.resolve("{{company_name}}") == "Acme Academy"


def test_modifiers_apply_left_to_right() -> None:
    engine = _engine({"contact": {"name": "  nur  "}, "amount": "12.345", "when": "2024-03-05T10:00:00"})
    assert engine.resolve('{{contact.phone|default:"N/A"}}') == "N/A"
    assert engine.resolve("{{contact.name|trim|ucfirst}}") == "Nur"
    assert engine.resolve("{{contact.name|trim|upper}}") == "NUR"
    assert engine.resolve('{{amount|format:"0.0"}}') == "12.3"
    assert engine.resolve('{{when|format:"d M Y"}}') == "05 Mar 2024"


def test_default_only_replaces_missing_or_empty() -> None:
    assert apply_modifier("0", 'default:"x"') == "0"
    assert apply_modifier("", 'default:"x"') == "x"
    assert apply_modifier(None, 'default:"x"') == "x"
    assert apply_modifier("value", "unknown_modifier") == "value"


def test_unresolved_tags_render_empty_and_plain_text_is_untouched() -> None:
    engine = _engine({})
    assert engine.resolve("Hi {{contact.nickname}}!") == "Hi !"
    assert engine.resolve("Price: {not a tag}") == "Price: {not a tag}"


def test_context_lookup_supports_indexes_and_bools() -> None:
    engine = _engine({"items": [{"name": "First"}, {"name": "Second"}], "vip": True})
    assert engine.resolve("{{items[1].name}}") == "Second"
    assert engine.resolve("{{vip}}") == "true"


def test_extract_variables_is_unique_and_ordered() -> None:
    text = '{{contact.name}} {{order.total|default:"0"}} {{contact.name|upper}}'
    assert MergeTagEngine.extract_variables(text) == ["contact.name", "order.total"]


def test_validate_for_trigger() -> None:
    engine = _engine()
    errors = engine.validate_for_trigger("{{contact.name}} {{order.total}}", "optin_submitted")
    assert [e["variable"] for e in errors] == ["order.total"]
    assert "not available for trigger 'optin_submitted'" in errors[0]["message"]
    assert engine.validate_for_trigger("{{order.total}}", "order_paid") == []


def test_preview_uses_examples() -> None:
    assert MergeTagEngine.preview("Hi {{contact.first_name}} {{mystery}}") == "Hi John {{mystery}}"


def test_humanize_since() -> None:
    now = datetime(2024, 3, 5, 12, 0)
    assert humanize_since(datetime(2024, 3, 5, 10, 0), now) == "2 hours ago"
    assert humanize_since(datetime(2024, 3, 5, 11, 59), now) == "1 minute ago"


@pytest.mark.asyncio
async def test_variables_endpoint(client, auth) -> None:
    r = await client.get("/api/v1/merge-tags/variables", params={"trigger": "cart_abandonment"}, headers=auth("marketer"))
    assert r.status_code == 200
    body = r.json()
    assert body["trigger_group"] == "cart_abandoned"
    assert set(body["categories"]) == {"system", "contact", "cart", "funnel", "session"}

    r = await client.get("/api/v1/merge-tags/variables", headers=auth("sales"))
    assert "order" in r.json()["categories"]


@pytest.mark.asyncio
async def test_preview_and_validate_endpoints(client, auth) -> None:
    headers = auth("marketer")
    r = await client.post(
        "/api/v1/merge-tags/preview",
        json={"text": "Hi {{contact.first_name}}", "context": {"contact": {"name": "Aina Z"}}},
        headers=headers,
    )
    assert r.json() == {"preview": "Hi Aina", "variables": ["contact.first_name"]}

    r = await client.post(
        "/api/v1/merge-tags/validate",
        json={"text": "{{cart.total}}", "trigger_type": "purchase_completed"},
        headers=headers,
    )
    body = r.json()
    assert body["valid"] is False
    assert body["errors"][0]["variable"] == "cart.total"

    r = await client.post("/api/v1/merge-tags/preview", json={"text": "x"}, headers=auth("customer"))
    assert r.status_code == 403
