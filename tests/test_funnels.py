"""
tests.test_funnels

Funnel builder endpoints: funnels, steps, page content, step products and the
contacts API they feed.
"""

from __future__ import annotations

import pytest

PAGE = {"content": [{"type": "Hero", "props": {"title": "Hello {{contact.first_name}}"}}], "root": {}}


async def _funnel(client, auth, name: str = "Launch") -> dict:
    r = await client.post("/api/v1/funnels", json={"name": name}, headers=auth("marketer"))
    assert r.status_code == 201, r.text
    return r.json()["data"]


@pytest.mark.asyncio
async def test_create_update_and_slugs(client, auth) -> None:
    headers = auth("marketer")
    first = await _funnel(client, auth, "Big Launch!")
    assert first["slug"] == "big-launch"
    assert first["status"] == "draft"
    assert [s["type"] for s in first["steps"]] == ["landing"]

    second = await _funnel(client, auth, "Big Launch")
    assert second["slug"] == "big-launch-1"

    r = await client.put(f"/api/v1/funnels/{second['id']}", json={"slug": "big-launch"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"] == {"slug": ["The slug has already been taken."]}

    r = await client.put(
        f"/api/v1/funnels/{second['id']}", json={"name": "Autumn", "slug": "Autumn Sale"}, headers=headers
    )
    assert r.json()["data"]["slug"] == "autumn-sale"

    listed = (await client.get("/api/v1/funnels", params={"search": "autumn"}, headers=headers)).json()["data"]
    assert [f["id"] for f in listed] == [second["id"]]

    r = await client.post(f"/api/v1/funnels/{first['id']}/publish", headers=headers)
    assert r.json()["data"]["status"] == "published"
    assert r.json()["data"]["published_at"] is not None
    r = await client.post(f"/api/v1/funnels/{first['id']}/unpublish", headers=headers)
    assert r.json()["data"]["status"] == "draft"

    assert (await client.delete(f"/api/v1/funnels/{first['id']}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/v1/funnels/{first['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_steps_reorder_and_duplicate(client, auth) -> None:
    headers = auth("marketer")
    funnel = await _funnel(client, auth)
    base = f"/api/v1/funnels/{funnel['id']}/steps"

    r = await client.post(base, json={"name": "Order Form", "type": "checkout"}, headers=headers)
    checkout = r.json()["data"]
    assert checkout["slug"] == "order-form"
    assert checkout["sort_order"] == 1

    r = await client.post(base, json={"name": "Bad", "type": "popup"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"] == {"type": ["The selected type is invalid."]}

    landing = funnel["steps"][0]
    r = await client.put(
        f"{base}/reorder",
        json={"steps": [{"id": checkout["id"], "sort_order": 0}, {"id": landing["id"], "sort_order": 1}]},
        headers=headers,
    )
    assert [s["id"] for s in r.json()["data"]] == [checkout["id"], landing["id"]]

    r = await client.put(f"{base}/{checkout['id']}", json={"slug": "landing"}, headers=headers)
    assert r.status_code == 422

    r = await client.post(f"{base}/{checkout['id']}/duplicate", headers=headers)
    assert r.status_code == 201
    copy = r.json()["data"]
    assert copy["name"] == "Order Form (Copy)"
    assert copy["slug"] == "order-form-copy"
    assert copy["is_published"] is False

    assert (await client.delete(f"{base}/{copy['id']}", headers=headers)).status_code == 200
    steps = (await client.get(base, headers=headers)).json()["data"]
    assert len(steps) == 2


@pytest.mark.asyncio
async def test_content_draft_and_publish(client, auth) -> None:
    headers = auth("marketer")
    funnel = await _funnel(client, auth)
    url = f"/api/v1/funnels/{funnel['id']}/steps/{funnel['steps'][0]['id']}/content"

    r = await client.post(f"{url}/publish", headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"] == {"content": ["No draft content to publish"]}

    r = await client.put(url, json={"content": PAGE}, headers=headers)
    assert r.json()["data"]["version"] == 1
    r = await client.put(url, json={"content": PAGE}, headers=headers)
    assert r.json()["data"]["version"] == 2

    data = (await client.get(url, headers=headers)).json()["data"]
    assert data["content"] == PAGE
    assert data["published_content"] is None

    r = await client.post(f"{url}/publish", headers=headers)
    assert r.json()["data"]["is_published"] is True
    assert (await client.get(url, headers=headers)).json()["data"]["published_content"] == PAGE


@pytest.mark.asyncio
async def test_step_products_and_bumps(client, auth) -> None:
    headers = auth("marketer")
    funnel = await _funnel(client, auth)
    step = (
        await client.post(
            f"/api/v1/funnels/{funnel['id']}/steps", json={"name": "Checkout", "type": "checkout"}, headers=headers
        )
    ).json()["data"]
    base = f"/api/v1/funnels/{funnel['id']}/steps/{step['id']}"

    r = await client.post(f"{base}/products", json={"name": "Kit", "funnel_price": "49.90"}, headers=headers)
    assert r.status_code == 201
    product = r.json()["data"]
    r = await client.put(f"{base}/products/{product['id']}", json={"is_active": False}, headers=headers)
    assert r.json()["data"]["is_active"] is False
    assert r.json()["data"]["name"] == "Kit"

    r = await client.post(f"{base}/order-bumps", json={"name": "Extra", "price": "-1"}, headers=headers)
    assert r.status_code == 422
    r = await client.post(f"{base}/order-bumps", json={"name": "Extra", "price": "9.90"}, headers=headers)
    bump = r.json()["data"]

    assert len((await client.get(f"{base}/products", headers=headers)).json()["data"]) == 1
    assert (await client.delete(f"{base}/order-bumps/{bump['id']}", headers=headers)).status_code == 200
    assert (await client.get(f"{base}/order-bumps", headers=headers)).json()["data"] == []


@pytest.mark.asyncio
async def test_duplicate_funnel_copies_steps(client, auth, build_funnel) -> None:
    built = await build_funnel()
    r = await client.post(f"/api/v1/funnels/{built['funnel']['id']}/duplicate", headers=auth("marketer"))
    copy = r.json()["data"]
    assert copy["status"] == "draft"
    assert copy["slug"] == f"{built['funnel']['slug']}-copy"
    assert [s["slug"] for s in copy["steps"]] == ["landing", "checkout", "upsell", "thank-you"]
    assert [p["name"] for p in copy["steps"][1]["products"]] == ["Starter Kit"]


@pytest.mark.asyncio
async def test_contacts_api(client, auth) -> None:
    headers = auth("sales")
    r = await client.post(
        "/api/v1/contacts", json={"name": "Hana", "email": "hana@example.com", "tags": ["walk-in"]}, headers=headers
    )
    assert r.status_code == 201
    contact = r.json()["data"]

    r = await client.post(f"/api/v1/contacts/{contact['id']}/tags", json={"tags": ["vip", "walk-in"]}, headers=headers)
    assert r.json()["data"]["tags"] == ["walk-in", "vip"]
    r = await client.request("DELETE", f"/api/v1/contacts/{contact['id']}/tags", json={"tags": ["walk-in"]}, headers=headers)
    assert r.json()["data"]["tags"] == ["vip"]

    listed = (await client.get("/api/v1/contacts", params={"tag": "vip"}, headers=headers)).json()["data"]
    assert [c["email"] for c in listed] == ["hana@example.com"]
    assert (await client.get("/api/v1/contacts", headers=auth("customer"))).status_code == 403
