"""
tests.conftest

Shared fixtures: an app bound to a throwaway SQLite file, an ASGI client and token helpers.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from salesflow.api.app import create_app
from salesflow.auth.jwt import JwtConfig, issue_token
from salesflow.settings import Settings


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'salesflow.db'}",
        receipt_storage_dir=str(tmp_path / "storage"),
        app_url="https://shop.example.com",
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def app(settings: Settings) -> AsyncIterator[FastAPI]:
    app = create_app(settings=settings)
    # httpx ASGITransport does not run the lifespan; drive it explicitly.
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def auth(settings: Settings) -> Callable[..., dict[str, str]]:
    def _headers(*roles: str, subject: str = "user-1", name: str | None = None) -> dict[str, str]:
        token = issue_token(cfg=JwtConfig.from_settings(settings), subject=subject, roles=list(roles), name=name)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def build_funnel(client, auth) -> Callable[..., object]:
    """
    Published funnel: landing -> checkout (product + bump) -> upsell -> thank-you.
    """

    async def _build(name: str = "Spring Sale", *, stock: int | None = None) -> dict:
        admin, marketer = auth("admin"), auth("marketer")
        catalog: dict = {"name": f"{name} Kit", "price": "199.00"}
        if stock is not None:
            catalog.update(track_stock=True, stock_quantity=stock)
        product = (await client.post("/api/v1/catalog/products", json=catalog, headers=admin)).json()["data"]

        funnel = (await client.post("/api/v1/funnels", json={"name": name}, headers=marketer)).json()["data"]
        base = f"/api/v1/funnels/{funnel['id']}"
        steps = {"landing": funnel["steps"][0]}
        for step_name, step_type in (("Checkout", "checkout"), ("Upsell", "upsell"), ("Thank You", "thankyou")):
            r = await client.post(f"{base}/steps", json={"name": step_name, "type": step_type}, headers=marketer)
            assert r.status_code == 201, r.text
            steps[step_type] = r.json()["data"]

        checkout = f"{base}/steps/{steps['checkout']['id']}"
        main = (
            await client.post(
                f"{checkout}/products",
                json={"name": "Starter Kit", "funnel_price": "199.00", "product_id": product["id"]},
                headers=marketer,
            )
        ).json()["data"]
        bump = (
            await client.post(f"{checkout}/order-bumps", json={"name": "Workbook", "price": "20.00"}, headers=marketer)
        ).json()["data"]
        upsell = (
            await client.post(
                f"{base}/steps/{steps['upsell']['id']}/products",
                json={"name": "Coaching Call", "funnel_price": "99.00", "type": "upsell"},
                headers=marketer,
            )
        ).json()["data"]

        r = await client.post(f"{base}/publish", headers=marketer)
        assert r.json()["data"]["status"] == "published"
        return {
            "funnel": funnel,
            "steps": steps,
            "catalog_product": product,
            "product": main,
            "bump": bump,
            "upsell": upsell,
        }

    return _build
