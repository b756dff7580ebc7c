"""
tests.test_affiliates

Affiliate programme: accounts, joining funnels, ref attribution on visits,
commissions earned on paid orders and their review, stats and the leaderboard.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from salesflow.db.models import FunnelAffiliateCommissionRule
from salesflow.services.affiliate_service import commission_amount, normalize_phone

CUSTOMER = {"name": "Nurul Huda", "email": "nurul@example.com", "phone": "0123456789"}


async def _register(client, name: str, phone: str) -> dict:
    r = await client.post("/api/v1/affiliates/register", json={"name": name, "phone": phone})
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    data["headers"] = {"Authorization": f"Bearer {data['access_token']}"}
    return data


async def _enable(client, auth, built: dict, *, commission_type: str = "percentage", value: str = "10") -> None:
    r = await client.put(
        f"/api/v1/funnels/{built['funnel']['id']}/affiliates/settings",
        json={
            "affiliate_enabled": True,
            "commission_rules": [
                {"funnel_product_id": built["product"]["id"], "commission_type": commission_type, "commission_value": value}
            ],
        },
        headers=auth("marketer"),
    )
    assert r.status_code == 200, r.text


async def _visit(client, built: dict, ref: str | None = None) -> dict:
    body = {"ref": ref} if ref else {}
    r = await client.post(f"/api/v1/public/funnels/{built['funnel']['slug']}/sessions", json=body)
    assert r.status_code == 200, r.text
    return r.json()["data"]


async def _pay(client, auth, built: dict, session_id: str) -> None:
    r = await client.post(
        f"/api/v1/checkout/{built['funnel']['slug']}/steps/{built['steps']['checkout']['id']}/checkout",
        json={"session_id": session_id, "products": [built["product"]["id"]], "customer": CUSTOMER},
    )
    assert r.status_code == 200, r.text
    intent_id = r.json()["payment_intent"]["id"]
    await client.post(
        f"/internal/v1/payments/intents/{intent_id}/confirm",
        json={"outcome": "succeeded"},
        headers=auth("internal_system"),
    )
    r = await client.post("/api/v1/checkout/confirm-payment", json={"payment_intent_id": intent_id})
    assert r.json()["success"] is True


def test_normalize_phone() -> None:
    assert normalize_phone("+6591234567") == "+6591234567"
    assert normalize_phone("60123456789") == "+60123456789"
    assert normalize_phone("012-345 6789") == "+60123456789"


def test_commission_amounts() -> None:
    percentage = FunnelAffiliateCommissionRule(commission_type="percentage", commission_value=Decimal("10"))
    fixed = FunnelAffiliateCommissionRule(commission_type="fixed", commission_value=Decimal("25"))
    assert commission_amount(percentage, Decimal("100.00")) == Decimal("10.00")
    assert commission_amount(percentage, Decimal("199.00")) == Decimal("19.90")
    assert commission_amount(fixed, Decimal("200.00")) == Decimal("25.00")


@pytest.mark.asyncio
async def test_register_and_login(client, auth) -> None:
    aff = await _register(client, "Aiman", "012-345 6789")
    assert aff["affiliate"]["phone"] == "+60123456789"
    assert len(aff["affiliate"]["ref_code"]) == 8

    r = await client.post("/api/v1/affiliates/register", json={"name": "Copy", "phone": "+60123456789"})
    assert r.status_code == 422
    assert r.json()["errors"] == {"phone": ["The phone has already been taken."]}

    r = await client.post("/api/v1/affiliates/login", json={"phone": "60123456789"})
    assert r.status_code == 200
    assert r.json()["data"]["affiliate"]["id"] == aff["affiliate"]["id"]
    r = await client.post("/api/v1/affiliates/login", json={"phone": "0199999999"})
    assert r.status_code == 404
    assert r.json()["detail"] == "No affiliate account found with this phone number."

    r = await client.put(
        "/api/v1/affiliates/me", json={"name": "Aiman R", "phone": "0123456789", "email": "aiman@example.com"},
        headers=aff["headers"],
    )
    assert r.json()["data"]["name"] == "Aiman R"
    assert (await client.get("/api/v1/affiliates/me", headers=aff["headers"])).json()["data"]["email"] == "aiman@example.com"

    # Staff tokens do not open the portal.
    assert (await client.get("/api/v1/affiliates/me", headers=auth("marketer"))).status_code == 403
    assert (await client.get("/api/v1/affiliates/me", headers=auth("admin"))).status_code == 403


@pytest.mark.asyncio
async def test_attributed_sale_earns_commission(client, auth, build_funnel) -> None:
    built = await build_funnel()
    funnel_id, slug = built["funnel"]["id"], built["funnel"]["slug"]
    aff = await _register(client, "Aiman", "0123456789")
    code = aff["affiliate"]["ref_code"]

    r = await client.post(f"/api/v1/affiliates/funnels/{funnel_id}/join", headers=aff["headers"])
    assert r.status_code == 403
    assert r.json()["detail"] == "This funnel is not available for affiliates."

    await _enable(client, auth, built)
    settings = (await client.get(f"/api/v1/funnels/{funnel_id}/affiliates/settings", headers=auth("marketer"))).json()["data"]
    assert settings["affiliate_enabled"] is True
    assert [(r["product_name"], r["commission_value"]) for r in settings["commission_rules"]] == [("Starter Kit", 10.0)]
    assert {p["name"] for p in settings["products"]} == {"Starter Kit", "Coaching Call"}

    discovered = (await client.get("/api/v1/affiliates/funnels/discover", headers=aff["headers"])).json()["data"]
    assert [(f["id"], f["joined"]) for f in discovered] == [(funnel_id, False)]

    r = await client.post(f"/api/v1/affiliates/funnels/{funnel_id}/join", headers=aff["headers"])
    assert r.json()["affiliate_url"] == f"https://shop.example.com/f/{slug}?ref={code}"
    r = await client.post(f"/api/v1/affiliates/funnels/{funnel_id}/join", headers=aff["headers"])
    assert r.status_code == 409

    # Unknown codes credit nobody.
    assert (await _visit(client, built, ref="NOPE1234"))["affiliate_id"] is None
    visit = await _visit(client, built, ref=code.lower())
    assert visit["affiliate_id"] == aff["affiliate"]["id"]

    await _pay(client, auth, built, visit["id"])
    await client.get(
        f"/api/v1/public/funnels/{slug}/steps/{built['steps']['thankyou']['slug']}", params={"session_id": visit["id"]}
    )
    r = await client.post(
        f"/api/v1/public/funnels/{slug}/events",
        json={"session_id": visit["id"], "event_type": "thankyou_button_click", "step_id": built["steps"]["thankyou"]["id"]},
    )
    assert r.status_code == 200

    staff = auth("marketer", subject="mk-1")
    commissions = (await client.get(f"/api/v1/funnels/{funnel_id}/commissions", headers=staff)).json()["data"]
    assert len(commissions) == 1
    commission = commissions[0]
    assert (commission["status"], commission["commission_amount"], commission["order_amount"]) == ("pending", 19.9, 199.0)
    assert commission["affiliate_ref_code"] == code

    affiliates = (await client.get(f"/api/v1/funnels/{funnel_id}/affiliates", headers=staff)).json()["data"]
    assert affiliates[0]["stats"] == {
        "views": 1,
        "checkout_fills": 1,
        "thankyou_views": 1,
        "thankyou_clicks": 1,
        "total_commission": 0.0,
        "pending_commission": 19.9,
    }

    r = await client.post(f"/api/v1/funnels/{funnel_id}/commissions/{commission['id']}/approve", headers=staff)
    assert r.json()["data"]["approved_by"] == "mk-1"
    r = await client.post(f"/api/v1/funnels/{funnel_id}/commissions/{commission['id']}/approve", headers=staff)
    assert r.status_code == 422
    assert r.json()["message"] == "Commission is not pending."

    dashboard = (await client.get("/api/v1/affiliates/dashboard", headers=aff["headers"])).json()["data"]
    assert dashboard["stats"]["total_earned"] == 19.9
    assert (dashboard["stats"]["total_clicks"], dashboard["stats"]["total_conversions"]) == (1, 1)
    stats = (await client.get(f"/api/v1/affiliates/funnels/{funnel_id}/stats", headers=aff["headers"])).json()["data"]
    assert stats["stats"] == {"clicks": 1, "conversions": 1, "thankyou_clicks": 1}
    detail = (
        await client.get(f"/api/v1/funnels/{funnel_id}/affiliates/{aff['affiliate']['id']}/stats", headers=staff)
    ).json()["data"]
    assert detail["stats"]["total_commission"] == 19.9
    assert [c["status"] for c in detail["commissions"]] == ["approved"]


@pytest.mark.asyncio
async def test_unattributed_or_unjoined_visits_earn_nothing(client, auth, build_funnel) -> None:
    built = await build_funnel()
    await _enable(client, auth, built)
    stranger = await _register(client, "Stranger", "0111111111")

    # Registered but never joined this funnel.
    visit = await _visit(client, built, ref=stranger["affiliate"]["ref_code"])
    assert visit["affiliate_id"] is None
    await _pay(client, auth, built, visit["id"])
    await _pay(client, auth, built, (await _visit(client, built))["id"])

    r = await client.get(f"/api/v1/funnels/{built['funnel']['id']}/commissions", headers=auth("marketer"))
    assert r.json()["data"] == []
    r = await client.get(f"/api/v1/affiliates/funnels/{built['funnel']['id']}/stats", headers=stranger["headers"])
    assert r.status_code == 403
    assert r.json()["detail"] == "Not joined this funnel."


@pytest.mark.asyncio
async def test_review_fixed_commissions(client, auth, build_funnel) -> None:
    built = await build_funnel()
    funnel_id = built["funnel"]["id"]
    await _enable(client, auth, built, commission_type="fixed", value="25")
    aff = await _register(client, "Aiman", "0123456789")
    await client.post(f"/api/v1/affiliates/funnels/{funnel_id}/join", headers=aff["headers"])
    for _ in range(3):
        await _pay(client, auth, built, (await _visit(client, built, ref=aff["affiliate"]["ref_code"]))["id"])

    staff = auth("marketer", subject="mk-1")
    base = f"/api/v1/funnels/{funnel_id}/commissions"
    ids = [c["id"] for c in (await client.get(base, headers=staff)).json()["data"]]
    assert len(ids) == 3

    r = await client.post(f"{base}/{ids[0]}/reject", json={"notes": "Fraudulent order"}, headers=staff)
    assert (r.json()["data"]["status"], r.json()["data"]["notes"]) == ("rejected", "Fraudulent order")

    r = await client.post(f"{base}/bulk-approve", json={"commission_ids": ids}, headers=staff)
    assert r.json()["approved"] == 2

    approved = (await client.get(base, params={"status": "approved"}, headers=staff)).json()["data"]
    assert sorted(c["id"] for c in approved) == sorted(ids[1:])
    assert {c["commission_amount"] for c in approved} == {25.0}
    assert (await client.get(base, params={"status": "bogus"}, headers=staff)).status_code == 422


@pytest.mark.asyncio
async def test_settings_validation(client, auth, build_funnel) -> None:
    built = await build_funnel()
    r = await client.put(
        f"/api/v1/funnels/{built['funnel']['id']}/affiliates/settings",
        json={
            "affiliate_custom_url": "not a url",
            "commission_rules": [
                {"funnel_product_id": built["bump"]["id"], "commission_type": "tiered", "commission_value": "-1"}
            ],
        },
        headers=auth("marketer"),
    )
    assert r.status_code == 422
    assert set(r.json()["errors"]) == {
        "affiliate_custom_url",
        "commission_rules.0.funnel_product_id",
        "commission_rules.0.commission_type",
        "commission_rules.0.commission_value",
    }


@pytest.mark.asyncio
async def test_leaderboard_ranks_by_views(client, auth, build_funnel) -> None:
    built = await build_funnel()
    funnel_id = built["funnel"]["id"]
    await _enable(client, auth, built)
    first = await _register(client, "First", "0121111111")
    second = await _register(client, "Second", "0122222222")

    board = (await client.get("/api/v1/affiliates/leaderboard", headers=first["headers"])).json()["data"]
    assert board == {
        "leaderboard": [],
        "my_stats": {"views": 0, "checkout_fills": 0, "thankyou_clicks": 0, "rank": None},
    }

    for aff in (first, second):
        await client.post(f"/api/v1/affiliates/funnels/{funnel_id}/join", headers=aff["headers"])
    await _visit(client, built, ref=first["affiliate"]["ref_code"])
    for _ in range(2):
        await _visit(client, built, ref=second["affiliate"]["ref_code"])

    board = (await client.get("/api/v1/affiliates/leaderboard", headers=first["headers"])).json()["data"]
    assert [(row["name"], row["views"]) for row in board["leaderboard"]] == [("Second", 2), ("First", 1)]
    assert (board["my_stats"]["rank"], board["my_stats"]["views"]) == (2, 1)

    joined = (await client.get("/api/v1/affiliates/funnels", headers=second["headers"])).json()["data"]
    assert joined[0]["stats"]["clicks"] == 2
