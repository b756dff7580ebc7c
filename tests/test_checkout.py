"""
tests.test_checkout

Public funnel visit -> checkout -> payment -> upsell, plus abandoned-cart detection
and recovery. Payments go through the in-process gateway.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from salesflow.db.models import Contact, FunnelCart, utcnow
from salesflow.jobs.runner import run_task

CUSTOMER = {"name": "Nurul Huda", "email": "nurul@example.com", "phone": "0123456789"}


async def _start(client, slug: str) -> str:
    r = await client.post(f"/api/v1/public/funnels/{slug}/sessions", json={"utm_source": "facebook", "device": "mobile"})
    assert r.status_code == 200, r.text
    return r.json()["data"]["id"]


async def _checkout(client, built: dict, session_id: str, *, bumps: bool = True) -> dict:
    slug = built["funnel"]["slug"]
    r = await client.post(
        f"/api/v1/checkout/{slug}/steps/{built['steps']['checkout']['id']}/checkout",
        json={
            "session_id": session_id,
            "products": [built["product"]["id"]],
            "bumps": [built["bump"]["id"]] if bumps else [],
            "customer": CUSTOMER,
        },
    )
    assert r.status_code == 200, r.text
    return r.json()


async def _pay(client, auth, intent_id: str, outcome: str = "succeeded") -> None:
    r = await client.post(
        f"/internal/v1/payments/intents/{intent_id}/confirm",
        json={"outcome": outcome},
        headers=auth("internal_system"),
    )
    assert r.status_code == 200, r.text


@pytest.mark.asyncio
async def test_public_step_view(client, build_funnel) -> None:
    built = await build_funnel()
    slug = built["funnel"]["slug"]
    session_id = await _start(client, slug)

    r = await client.get(f"/api/v1/public/funnels/{slug}/steps/checkout", params={"session_id": session_id})
    data = r.json()["data"]
    assert data["step"]["type"] == "checkout"
    assert [p["name"] for p in data["step"]["products"]] == ["Starter Kit"]
    assert data["next_step"]["slug"] == "upsell"

    assert (await client.get(f"/api/v1/public/funnels/{slug}/steps/nope")).status_code == 404
    assert (await client.post("/api/v1/public/funnels/unknown/sessions")).status_code == 404


@pytest.mark.asyncio
async def test_checkout_payment_and_upsell(client, auth, build_funnel) -> None:
    built = await build_funnel(stock=5)
    slug = built["funnel"]["slug"]
    session_id = await _start(client, slug)

    result = await _checkout(client, built, session_id)
    order = result["order"]
    intent = result["payment_intent"]
    assert result["total"] == "219.00"
    assert order["source"] == "funnel"
    assert order["status"] == "pending"
    assert order["payment_intent_id"] == intent["id"]
    assert intent["id"].startswith("pi_")
    assert [i["product_name"] for i in order["items"]] == ["Starter Kit", "Workbook"]
    assert result["funnel_order"]["bumps_accepted"] == 1

    r = await client.get(f"/internal/v1/payments/intents/{intent['id']}", headers=auth("internal_system"))
    assert r.json()["amount"] == 21900

    # Not paid yet.
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent["id"]})
    assert r.json()["success"] is False

    await _pay(client, auth, intent["id"])
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent["id"]})
    body = r.json()
    assert body["success"] is True
    assert body["order"]["status"] == "confirmed"
    assert body["order"]["payment_status"] == "paid"
    assert len(body["order"]["payments"]) == 1

    # Confirming twice changes nothing.
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent["id"]})
    assert len(r.json()["order"]["payments"]) == 1

    r = await client.get(f"/api/v1/catalog/products/{built['catalog_product']['id']}", headers=auth("admin"))
    assert r.json()["data"]["stock_quantity"] == 4

    r = await client.post(
        f"/api/v1/checkout/{slug}/steps/{built['steps']['upsell']['id']}/upsell",
        json={"session_id": session_id, "product_id": built["upsell"]["id"]},
    )
    upsell = r.json()
    assert upsell["funnel_order"]["order_type"] == "upsell"
    assert upsell["redirect_url"] == f"/f/{slug}/thank-you"

    stats = (await client.get(f"/api/v1/funnels/{built['funnel']['id']}/orders/stats", headers=auth("marketer"))).json()["data"]
    assert stats["total_orders"] == 2
    assert stats["type_breakdown"]["upsell"]["count"] == 1
    assert stats["conversions"] == 1
    assert stats["total_revenue"] == 318.0

    r = await client.get(
        f"/api/v1/funnels/{built['funnel']['id']}/orders", params={"order_type": "main"}, headers=auth("marketer")
    )
    assert [o["product_order"]["id"] for o in r.json()["data"]] == [order["id"]]

    # Funnel orders are not POS sales.
    r = await client.patch(f"/api/v1/pos/sales/{order['id']}/status", json={"status": "cancelled"}, headers=auth("sales"))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_checkout_validation(client, auth, build_funnel) -> None:
    built = await build_funnel(stock=0)
    slug = built["funnel"]["slug"]
    session_id = await _start(client, slug)
    url = f"/api/v1/checkout/{slug}/steps/{built['steps']['checkout']['id']}/checkout"

    r = await client.post(url, json={"session_id": session_id, "products": [built["product"]["id"]], "customer": CUSTOMER})
    assert r.status_code == 422
    assert r.json()["errors"]["products"] == ["Starter Kit is out of stock."]

    r = await client.post(url, json={"session_id": session_id, "products": [built["bump"]["id"]], "customer": CUSTOMER})
    assert r.status_code == 422
    assert r.json()["message"] == "Invalid order total"

    r = await client.post(url, json={"session_id": session_id, "products": [], "customer": {"email": "bad"}})
    assert r.status_code == 422
    assert {"products", "customer.email"} <= set(r.json()["errors"])


@pytest.mark.asyncio
async def test_declined_payment_and_upsell_decline(client, auth, build_funnel) -> None:
    built = await build_funnel()
    slug = built["funnel"]["slug"]
    session_id = await _start(client, slug)
    intent_id = (await _checkout(client, built, session_id, bumps=False))["payment_intent"]["id"]

    await _pay(client, auth, intent_id, outcome="failed")
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent_id})
    assert r.json() == {"success": False, "status": "requires_payment_method", "message": "Payment not completed"}

    r = await client.post(
        f"/api/v1/checkout/{slug}/steps/{built['steps']['upsell']['id']}/decline-upsell",
        json={"session_id": session_id, "product_id": built["upsell"]["id"]},
    )
    assert r.json() == {"success": True, "redirect_url": f"/f/{slug}/thank-you"}


@pytest.mark.asyncio
async def test_abandoned_cart_detection_and_recovery(app, client, auth, build_funnel) -> None:
    built = await build_funnel()
    funnel_id = built["funnel"]["id"]
    session_id = await _start(client, built["funnel"]["slug"])

    r = await client.post(
        "/api/v1/automations",
        json={
            "name": "Tag abandoners",
            "trigger_type": "cart_abandonment",
            "funnel_id": funnel_id,
            "actions": [{"action_type": "add_tag", "action_config": {"tag": "abandoned"}}],
        },
        headers=auth("marketer"),
    )
    assert r.status_code == 201, r.text
    automation_id = r.json()["data"]["id"]

    await _checkout(client, built, session_id)

    # Nothing is idle yet.
    assert await run_task(app, "abandoned-carts") == 0
    assert await run_task(app, "abandoned-carts", now=utcnow() + timedelta(hours=2)) == 1

    r = await client.get(f"/api/v1/funnels/{funnel_id}/carts", headers=auth("marketer"))
    carts = r.json()["data"]
    assert [c["recovery_status"] for c in carts] == ["abandoned"]
    assert carts[0]["total_amount"] == "219.00"

    logs = (await client.get(f"/api/v1/automations/{automation_id}/logs", headers=auth("marketer"))).json()["data"]
    assert [entry["status"] for entry in logs] == ["executed"]

    async with app.state.sessionmaker() as session:
        contact = (await session.execute(select(Contact).where(Contact.email == CUSTOMER["email"]))).scalar_one()
        assert contact.tags == ["abandoned"]
        token = (await session.execute(select(FunnelCart.recovery_token))).scalar_one()

    r = await client.get(f"/api/v1/checkout/cart/recover/{token}")
    data = r.json()["data"]
    assert data["session_id"] == session_id
    assert data["redirect_url"] == f"/f/{built['funnel']['slug']}/checkout"
    assert (await client.get("/api/v1/checkout/cart/recover/missing")).status_code == 404
