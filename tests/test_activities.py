"""
tests.test_activities

Contact activity timeline: manual edits, POS sales, funnel payments and workflow runs.
"""

from __future__ import annotations

import pytest

CUSTOMER = {"name": "Nurul Huda", "email": "nurul@example.com", "phone": "0123456789"}


async def _contact(client, auth, **body) -> dict:
    r = await client.post("/api/v1/contacts", json=body, headers=auth("marketer"))
    assert r.status_code == 201, r.text
    return r.json()["data"]


async def _timeline(client, auth, contact_id: str, **params) -> list[dict]:
    r = await client.get(f"/api/v1/contacts/{contact_id}/activities", params=params, headers=auth("marketer"))
    assert r.status_code == 200, r.text
    return r.json()["data"]


@pytest.mark.asyncio
async def test_manual_edits_are_recorded(client, auth) -> None:
    contact = await _contact(client, auth, name="Aina", email="aina@example.com", tags=["lead"])
    base = f"/api/v1/contacts/{contact['id']}"
    staff = auth("marketer", subject="mk-1")

    await client.post(f"{base}/tags", json={"tags": ["vip", "lead"]}, headers=staff)
    await client.request("DELETE", f"{base}/tags", json={"tags": ["lead"]}, headers=staff)
    r = await client.patch(base, json={"phone": "0191234567", "fields": {"city": "KL"}}, headers=staff)
    assert r.json()["data"]["fields"] == {"city": "KL"}
    r = await client.post(f"{base}/notes", json={"note": "Asked about the bundle."}, headers=staff)
    assert r.status_code == 201
    assert r.json()["data"]["type"] == "note_added"

    timeline = await _timeline(client, auth, contact["id"])
    assert [(a["type"], a["description"]) for a in timeline] == [
        ("note_added", "Asked about the bundle."),
        ("profile_updated", "Updated fields: phone, city"),
        ("tag_removed", "Tag: lead"),
        ("tag_added", "Tag: vip (Source: manual)"),
    ]
    assert {a["performed_by"] for a in timeline} == {"mk-1"}

    only_tags = await _timeline(client, auth, contact["id"], type=["tag_added", "tag_removed"])
    assert [a["title"] for a in only_tags] == ["Tag removed", "Tag added"]
    assert len(await _timeline(client, auth, contact["id"], limit=1)) == 1

    # Unchanged values are not an update.
    await client.patch(base, json={"phone": "0191234567"}, headers=staff)
    assert len(await _timeline(client, auth, contact["id"])) == 4

    r = await client.post(f"{base}/notes", json={"note": ""}, headers=staff)
    assert r.status_code == 422
    r = await client.get("/api/v1/contacts/00000000-0000-0000-0000-000000000000/activities", headers=staff)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_pos_sale_lands_on_matching_contact(client, auth) -> None:
    contact = await _contact(client, auth, name="Walk In", phone="0123456789")
    product = (
        await client.post(
            "/api/v1/catalog/products", json={"name": "Notebook", "price": "25.00"}, headers=auth("admin")
        )
    ).json()["data"]
    staff = auth("sales", subject="sp-1")
    sale = {
        "items": [{"itemable_type": "product", "itemable_id": product["id"], "quantity": 2, "unit_price": "25.00"}],
        "payment_method": "cash",
        "payment_status": "paid",
        "customer_name": "Walk In",
        "customer_phone": "0123456789",
    }
    r = await client.post("/api/v1/pos/sales", json=sale, headers=staff)
    order = r.json()["data"]
    await client.patch(f"/api/v1/pos/sales/{order['id']}/status", json={"status": "cancelled"}, headers=staff)

    timeline = await _timeline(client, auth, contact["id"])
    assert [a["type"] for a in timeline] == ["order_cancelled", "order_paid", "order_created"]
    assert timeline[2]["description"] == f"Order #{order['order_number']} - RM 50.00"
    assert timeline[2]["performed_by"] == "sp-1"
    assert timeline[0]["description"] == f"Order #{order['order_number']} - Reason: Cancelled from POS"
    assert timeline[0]["metadata"]["order_id"] == order["id"]


@pytest.mark.asyncio
async def test_funnel_payment_is_recorded(client, auth, build_funnel) -> None:
    built = await build_funnel()
    slug = built["funnel"]["slug"]
    session_id = (await client.post(f"/api/v1/public/funnels/{slug}/sessions")).json()["data"]["id"]
    r = await client.post(
        f"/api/v1/checkout/{slug}/steps/{built['steps']['checkout']['id']}/checkout",
        json={"session_id": session_id, "products": [built["product"]["id"]], "customer": CUSTOMER},
    )
    checkout = r.json()
    intent_id = checkout["payment_intent"]["id"]
    await client.post(
        f"/internal/v1/payments/intents/{intent_id}/confirm",
        json={"outcome": "succeeded"},
        headers=auth("internal_system"),
    )
    await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent_id})

    contacts = (await client.get("/api/v1/contacts", params={"search": "nurul"}, headers=auth("marketer"))).json()["data"]
    assert len(contacts) == 1
    timeline = await _timeline(client, auth, contacts[0]["id"])
    number = checkout["order"]["order_number"]
    assert [(a["title"], a["description"]) for a in timeline] == [
        ("Completed payment", f"Order #{number} - RM 199.00"),
        ("Created order", f"Order #{number} - RM 199.00"),
    ]


@pytest.mark.asyncio
async def test_workflow_run_is_recorded(client, auth, build_funnel) -> None:
    headers = auth("marketer")
    nodes = [
        {"id": "t1", "type": "trigger", "data": {"triggerType": "optin_submitted"}},
        {"id": "a1", "type": "action", "data": {"actionType": "add_tag", "config": {"tag": "lead"}}},
    ]
    r = await client.post(
        "/api/v1/workflows",
        json={"name": "Welcome", "nodes": nodes, "edges": [{"source": "t1", "target": "a1"}]},
        headers=headers,
    )
    workflow = r.json()["data"]
    await client.post(f"/api/v1/workflows/{workflow['id']}/publish", headers=headers)

    built = await build_funnel()
    await client.post(
        f"/api/v1/public/funnels/{built['funnel']['slug']}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": "lead@example.com"},
    )
    enrollment = (await client.get(f"/api/v1/workflows/{workflow['id']}/enrollments", headers=headers)).json()["data"][0]

    timeline = await _timeline(client, auth, enrollment["contact_id"])
    assert [(a["type"], a["description"]) for a in timeline] == [
        ("workflow_completed", "Workflow: Welcome"),
        ("tag_added", "Tag: lead (Source: automation)"),
        ("workflow_entered", "Workflow: Welcome"),
    ]
