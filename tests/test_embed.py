"""
tests.test_embed

Embeddable checkout widget: snippet codes, enabling, widget settings, key rotation
and the public lookup a host page makes.
"""

from __future__ import annotations

import pytest


async def _widget(client, key: str, **params):
    return await client.get(f"/api/v1/public/embed/{key}", params=params)


@pytest.mark.asyncio
async def test_generate_and_serve_widget(client, auth, build_funnel) -> None:
    built = await build_funnel()
    base = f"/api/v1/funnels/{built['funnel']['id']}/embed"
    headers = auth("marketer")

    code = (await client.post(f"{base}/generate", headers=headers)).json()["data"]
    key = code["embed_key"]
    assert len(key) == 32 and key.isalnum()
    assert code["embed_url"] == f"https://shop.example.com/embed/{key}"
    assert code["script_url"] == "https://shop.example.com/embed.js"
    assert f'src="{code["embed_url"]}"' in code["codes"]["iframe"]
    assert 'allow="payment"' in code["codes"]["iframe"]
    assert f'<div id="funnel-checkout-{key}"></div>' in code["codes"]["script"]
    assert f'data-funnel-key="{key}"' in code["codes"]["script"]
    # Generating again keeps the key.
    assert (await client.post(f"{base}/generate", headers=headers)).json()["data"]["embed_key"] == key

    assert (await _widget(client, key)).status_code == 404

    r = await client.post(f"{base}/toggle", json={"enabled": True}, headers=headers)
    assert r.json() == {"success": True, "embed_enabled": True, "embed_key": key}

    r = await _widget(client, key, origin="https://blog.example.org")
    assert r.status_code == 200, r.text
    widget = r.json()["data"]
    assert widget["step"]["type"] == "checkout"
    assert [p["name"] for p in widget["step"]["products"]] == ["Starter Kit"]
    assert [b["name"] for b in widget["step"]["order_bumps"]] == ["Workbook"]
    session_id = widget["session"]["id"]

    # A known session is resumed rather than restarted.
    resumed = (await _widget(client, key, session_id=session_id)).json()["data"]
    assert resumed["session"]["id"] == session_id
    stats = (await client.get(f"/api/v1/funnels/{built['funnel']['id']}/orders/stats", headers=headers)).json()["data"]
    assert stats["sessions"] == 1

    r = await client.post(f"{base}/toggle", json={"enabled": False}, headers=headers)
    assert r.json()["embed_enabled"] is False
    assert (await _widget(client, key)).status_code == 404


@pytest.mark.asyncio
async def test_widget_settings(client, auth, build_funnel) -> None:
    built = await build_funnel()
    base = f"/api/v1/funnels/{built['funnel']['id']}/embed"
    headers = auth("marketer")

    wanted = {
        "allowed_domains": ["blog.example.org"],
        "theme": "dark",
        "primary_color": "#FF5500",
        "border_radius": "lg",
        "show_powered_by": False,
    }
    r = await client.put(f"{base}/settings", json=wanted, headers=headers)
    assert r.json() == {"success": True, "embed_settings": wanted}

    for bad in ({"primary_color": "red"}, {"theme": "neon"}, {"border_radius": "3xl"}):
        r = await client.put(f"{base}/settings", json=bad, headers=headers)
        assert r.status_code == 422
        assert set(r.json()["errors"]) == set(bad)

    key = (await client.post(f"{base}/toggle", json={"enabled": True}, headers=headers)).json()["embed_key"]
    served = (await _widget(client, key)).json()["data"]
    assert served["embed_settings"] == wanted

    funnel = (await client.get(f"/api/v1/funnels/{built['funnel']['id']}", headers=headers)).json()["data"]
    assert (funnel["embed_enabled"], funnel["embed_key"]) == (True, key)


@pytest.mark.asyncio
async def test_regenerate_and_unpublish(client, auth, build_funnel) -> None:
    built = await build_funnel()
    funnel_id = built["funnel"]["id"]
    base = f"/api/v1/funnels/{funnel_id}/embed"
    headers = auth("marketer")
    old = (await client.post(f"{base}/toggle", json={"enabled": True}, headers=headers)).json()["embed_key"]

    new = (await client.post(f"{base}/regenerate", headers=headers)).json()["embed_key"]
    assert new != old
    assert (await _widget(client, old)).status_code == 404
    assert (await _widget(client, new)).status_code == 200

    copy = (await client.post(f"/api/v1/funnels/{funnel_id}/duplicate", headers=headers)).json()["data"]
    assert (copy["embed_key"], copy["embed_enabled"]) == (None, False)

    await client.post(f"/api/v1/funnels/{funnel_id}/unpublish", headers=headers)
    assert (await _widget(client, new)).status_code == 404


@pytest.mark.asyncio
async def test_widget_falls_back_to_first_selling_step(client, auth) -> None:
    headers = auth("marketer")
    funnel = (await client.post("/api/v1/funnels", json={"name": "Lead Magnet"}, headers=headers)).json()["data"]
    base = f"/api/v1/funnels/{funnel['id']}"
    await client.post(f"{base}/publish", headers=headers)
    key = (await client.post(f"{base}/embed/toggle", json={"enabled": True}, headers=headers)).json()["embed_key"]

    r = await _widget(client, key)
    assert r.status_code == 404
    assert r.json()["detail"] == "No checkout step found"

    landing = funnel["steps"][0]["id"]
    await client.post(
        f"{base}/steps/{landing}/products", json={"name": "Mini Course", "funnel_price": "9.00"}, headers=headers
    )
    widget = (await _widget(client, key)).json()["data"]
    assert (widget["step"]["id"], widget["step"]["type"]) == (landing, "landing")
