"""
tests.test_automations

Funnel automation CRUD plus trigger execution: immediate, conditional and
delayed actions.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from salesflow.db.models import utcnow
from salesflow.jobs.runner import run_task


async def _create(client, auth, **overrides) -> dict:
    body = {
        "name": "Welcome",
        "trigger_type": "optin_submitted",
        "actions": [{"action_type": "add_tag", "action_config": {"tag": "lead"}}],
    }
    body.update(overrides)
    r = await client.post("/api/v1/automations", json=body, headers=auth("marketer"))
    assert r.status_code == 201, r.text
    return r.json()["data"]


async def _optin(client, built: dict, email: str) -> None:
    r = await client.post(
        f"/api/v1/public/funnels/{built['funnel']['slug']}/optin",
        json={"step_id": built["steps"]["landing"]["id"], "email": email, "name": "Aina"},
    )
    assert r.status_code == 200, r.text


async def _contact(client, auth, email: str) -> dict:
    r = await client.get("/api/v1/contacts", params={"search": email}, headers=auth("marketer"))
    (contact,) = r.json()["data"]
    return contact


@pytest.mark.asyncio
async def test_options(client, auth) -> None:
    data = (await client.get("/api/v1/automations/options", headers=auth("marketer"))).json()["data"]
    assert set(data["trigger_types"]) == {"purchase_completed", "purchase_failed", "cart_abandoned", "optin_submitted"}
    assert {"add_tag", "send_email", "webhook"} <= set(data["action_types"])


@pytest.mark.asyncio
async def test_crud_toggle_and_duplicate(client, auth) -> None:
    headers = auth("marketer")
    automation = await _create(client, auth)
    assert automation["is_active"] is True
    assert automation["actions"][0]["sort_order"] == 0

    r = await client.put(
        f"/api/v1/automations/{automation['id']}",
        json={
            "name": "Welcome v2",
            "actions": [
                {"action_type": "add_tag", "action_config": {"tag": "a"}},
                {"action_type": "add_score", "action_config": {"points": 5}, "delay_minutes": 10},
            ],
        },
        headers=headers,
    )
    updated = r.json()["data"]
    assert updated["name"] == "Welcome v2"
    assert [a["action_type"] for a in updated["actions"]] == ["add_tag", "add_score"]
    assert updated["actions"][1]["delay_minutes"] == 10

    r = await client.post(f"/api/v1/automations/{automation['id']}/toggle", headers=headers)
    assert r.json()["data"]["is_active"] is False

    r = await client.post(f"/api/v1/automations/{automation['id']}/duplicate", headers=headers)
    assert r.status_code == 201
    copy = r.json()["data"]
    assert copy["name"] == "Welcome v2 (Copy)"
    assert copy["is_active"] is False
    assert len(copy["actions"]) == 2
    assert copy["actions"][0]["id"] != updated["actions"][0]["id"]

    listed = (await client.get("/api/v1/automations", headers=headers)).json()["data"]
    assert len(listed) == 2

    assert (await client.delete(f"/api/v1/automations/{automation['id']}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/v1/automations/{automation['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_action_validation(client, auth) -> None:
    headers = auth("marketer")
    r = await client.post(
        "/api/v1/automations",
        json={"name": "Bad", "trigger_type": "optin_submitted", "actions": [{"action_type": "send_fax"}]},
        headers=headers,
    )
    assert r.status_code == 422
    assert r.json()["errors"]["actions.0.action_type"] == ["Unknown action type: send_fax"]

    r = await client.post(
        "/api/v1/automations",
        json={"name": "Bad", "trigger_type": "optin_submitted", "actions": [{"action_type": "add_tag", "delay_minutes": -1}]},
        headers=headers,
    )
    assert r.status_code == 422
    assert "actions.0.delay_minutes" in r.json()["errors"]

    assert (await client.get("/api/v1/automations", headers=auth("sales"))).status_code == 403


@pytest.mark.asyncio
async def test_optin_runs_immediate_conditional_and_delayed_actions(app, client, auth, build_funnel) -> None:
    built = await build_funnel()
    automation = await _create(
        client,
        auth,
        funnel_id=built["funnel"]["id"],
        actions=[
            {"action_type": "add_tag", "action_config": {"tag": "instant"}},
            {"action_type": "add_tag", "action_config": {"tag": "later"}, "delay_minutes": 30},
            {
                "action_type": "add_tag",
                "action_config": {"tag": "vip"},
                "conditions": [{"field": "email", "operator": "ends_with", "value": "@vip.com"}],
            },
        ],
    )

    await _optin(client, built, "aina@example.com")
    assert (await _contact(client, auth, "aina@example.com"))["tags"] == ["instant"]

    logs_url = f"/api/v1/automations/{automation['id']}/logs"
    logs = (await client.get(logs_url, headers=auth("marketer"))).json()["data"]
    assert sorted(entry["status"] for entry in logs) == ["executed", "pending", "skipped"]
    pending = next(entry for entry in logs if entry["status"] == "pending")
    assert pending["scheduled_at"] is not None
    assert pending["contact_email"] == "aina@example.com"

    assert await run_task(app, "scheduled-actions") == 0
    assert await run_task(app, "scheduled-actions", now=utcnow() + timedelta(hours=1)) == 1

    logs = (await client.get(logs_url, headers=auth("marketer"))).json()["data"]
    assert sorted(entry["status"] for entry in logs) == ["executed", "executed", "skipped"]
    assert (await _contact(client, auth, "aina@example.com"))["tags"] == ["instant", "later"]


@pytest.mark.asyncio
async def test_inactive_automation_does_not_fire(client, auth, build_funnel) -> None:
    built = await build_funnel()
    automation = await _create(client, auth, is_active=False)
    await _optin(client, built, "quiet@example.com")
    logs = (await client.get(f"/api/v1/automations/{automation['id']}/logs", headers=auth("marketer"))).json()["data"]
    assert logs == []
    assert (await _contact(client, auth, "quiet@example.com"))["tags"] == []


@pytest.mark.asyncio
async def test_purchase_automation_tags_the_buyer(client, auth, build_funnel) -> None:
    built = await build_funnel()
    slug = built["funnel"]["slug"]
    await _create(
        client,
        auth,
        name="Customers",
        trigger_type="order_paid",
        funnel_id=built["funnel"]["id"],
        actions=[
            {
                "action_type": "add_tag",
                "action_config": {"tag": "customer"},
                "conditions": [{"field": "order.total", "operator": ">=", "value": 100}],
            }
        ],
    )

    session_id = (await client.post(f"/api/v1/public/funnels/{slug}/sessions")).json()["data"]["id"]
    r = await client.post(
        f"/api/v1/checkout/{slug}/steps/{built['steps']['checkout']['id']}/checkout",
        json={
            "session_id": session_id,
            "products": [built["product"]["id"]],
            "customer": {"name": "Buyer One", "email": "buyer@example.com"},
        },
    )
    intent_id = r.json()["payment_intent"]["id"]
    await client.post(
        f"/internal/v1/payments/intents/{intent_id}/confirm",
        json={"outcome": "succeeded"},
        headers=auth("internal_system"),
    )
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent_id})
    assert r.json()["success"] is True

    assert (await _contact(client, auth, "buyer@example.com"))["tags"] == ["customer"]
