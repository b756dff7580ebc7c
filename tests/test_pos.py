"""
tests.test_pos

Point-of-sale flows: catalog lookups, sale creation (JSON and multipart), status
changes, reports and validation errors.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest


async def _product(client, auth, **overrides) -> dict:
    body = {"name": "Notebook", "sku": "NB-1", "price": "25.00", "track_stock": True, "stock_quantity": 10}
    body.update(overrides)
    r = await client.post("/api/v1/catalog/products", json=body, headers=auth("admin"))
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _sale(product_id: str, **overrides) -> dict:
    body = {
        "items": [{"itemable_type": "product", "itemable_id": product_id, "quantity": 2, "unit_price": "25.00"}],
        "payment_method": "cash",
        "payment_status": "paid",
        "customer_name": "Walk In",
        "customer_phone": "0123456789",
        "discount_type": "percentage",
        "discount_amount": "10",
        "shipping_cost": "5.00",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_lookups(client, auth) -> None:
    staff = auth("sales")
    await _product(client, auth)
    await _product(client, auth, name="Hidden", sku="H-1", status="inactive")

    r = await client.get("/api/v1/pos/products", params={"search": "note"}, headers=staff)
    assert [p["name"] for p in r.json()["data"]] == ["Notebook"]

    r = await client.post(
        "/api/v1/catalog/users",
        json={"name": "Farah Aziz", "email": "farah@example.com", "phone": "0191112222"},
        headers=auth("admin"),
    )
    assert r.status_code == 201

    assert (await client.get("/api/v1/pos/customers", params={"search": "f"}, headers=staff)).json()["data"] == []
    r = await client.get("/api/v1/pos/customers", params={"search": "farah"}, headers=staff)
    assert [u["email"] for u in r.json()["data"]] == ["farah@example.com"]

    r = await client.post("/api/v1/catalog/courses", json={"name": "Baking 101", "price": "300"}, headers=auth("admin"))
    course_id = r.json()["data"]["id"]
    await client.post(f"/api/v1/catalog/courses/{course_id}/classes", json={"title": "Morning"}, headers=auth("admin"))
    await client.post(
        f"/api/v1/catalog/courses/{course_id}/classes", json={"title": "Closed", "status": "inactive"}, headers=auth("admin")
    )
    r = await client.get(f"/api/v1/pos/classes/{course_id}", headers=staff)
    assert [c["title"] for c in r.json()["data"]] == ["Morning"]


@pytest.mark.asyncio
async def test_create_sale_computes_totals_and_deducts_stock(client, auth) -> None:
    product = await _product(client, auth)
    staff = auth("sales", subject="sp-1", name="Sam")

    r = await client.post("/api/v1/pos/sales", json=_sale(product["id"]), headers=staff)
    assert r.status_code == 201, r.text
    sale = r.json()["data"]
    assert sale["source"] == "pos"
    assert sale["subtotal"] == "50.00"
    assert sale["discount_amount"] == "5.00"
    assert sale["total_amount"] == "50.00"
    assert sale["payment_status"] == "paid"
    assert sale["salesperson_id"] == "sp-1"
    assert sale["salesperson_name"] == "Sam"
    assert sale["customer_name"] == "Walk In"
    assert sale["payments"][0]["status"] == "completed"
    assert sale["paid_time"] is not None

    r = await client.get(f"/api/v1/catalog/products/{product['id']}", headers=auth("admin"))
    assert r.json()["data"]["stock_quantity"] == 8

    r = await client.get("/api/v1/pos/dashboard", headers=staff)
    assert r.json()["data"] == {
        "today_sales_count": 1,
        "today_revenue": "50.00",
        "my_sales_count": 1,
        "my_revenue": "50.00",
    }
    r = await client.get("/api/v1/pos/dashboard", headers=auth("sales", subject="sp-2"))
    assert r.json()["data"]["my_sales_count"] == 0


@pytest.mark.asyncio
async def test_create_sale_validation(client, auth) -> None:
    product = await _product(client, auth)
    staff = auth("sales")

    r = await client.post(
        "/api/v1/pos/sales",
        json=_sale(product["id"], payment_method="bank_transfer", customer_name="", customer_phone=None),
        headers=staff,
    )
    assert r.status_code == 422
    errors = r.json()["errors"]
    assert set(errors) == {"payment_reference", "customer_name", "customer_phone"}

    r = await client.post("/api/v1/pos/sales", json=_sale(product["id"], items=[]), headers=staff)
    assert r.status_code == 422
    assert "items" in r.json()["errors"]

    r = await client.post("/api/v1/pos/sales", json={"items": []}, headers=staff)
    assert r.status_code == 422
    assert "payment_method" in r.json()["errors"]


@pytest.mark.asyncio
async def test_multipart_sale_stores_receipt(client, auth, settings) -> None:
    product = await _product(client, auth)
    staff = auth("sales")

    r = await client.post(
        "/api/v1/pos/sales",
        data={"data": json.dumps(_sale(product["id"], payment_method="bank_transfer", payment_reference="TRX-1"))},
        files={"receipt_attachment": ("slip.png", b"\x89PNG fake", "image/png")},
        headers=staff,
    )
    assert r.status_code == 201, r.text
    sale = r.json()["data"]
    assert sale["receipt_attachment"].startswith("pos/receipts/")
    assert sale["receipt_attachment_url"] == f"https://shop.example.com/storage/{sale['receipt_attachment']}"
    assert (Path(settings.receipt_storage_dir) / sale["receipt_attachment"]).read_bytes() == b"\x89PNG fake"

    r = await client.post(
        "/api/v1/pos/sales",
        data={"data": json.dumps(_sale(product["id"]))},
        files={"receipt_attachment": ("slip.exe", b"MZ", "application/octet-stream")},
        headers=staff,
    )
    assert r.status_code == 422
    assert "receipt_attachment" in r.json()["errors"]


@pytest.mark.asyncio
async def test_status_updates_history_and_delete(client, auth) -> None:
    product = await _product(client, auth, track_stock=False)
    staff = auth("sales")

    r = await client.post("/api/v1/pos/sales", json=_sale(product["id"], payment_status="pending"), headers=staff)
    sale_id = r.json()["data"]["id"]
    assert r.json()["data"]["paid_time"] is None

    r = await client.get("/api/v1/pos/sales", params={"status": "pending"}, headers=staff)
    assert r.json()["meta"]["total"] == 1

    r = await client.patch(f"/api/v1/pos/sales/{sale_id}/status", json={"status": "paid"}, headers=staff)
    data = r.json()["data"]
    assert data["payment_status"] == "paid"
    assert data["status"] == "confirmed"
    assert data["payments"][0]["status"] == "completed"

    r = await client.patch(f"/api/v1/pos/sales/{sale_id}/status", json={"status": "refunded"}, headers=staff)
    assert r.status_code == 422

    r = await client.patch(f"/api/v1/pos/sales/{sale_id}", json={"tracking_id": "MY123"}, headers=staff)
    assert r.json()["data"]["tracking_id"] == "MY123"

    year = datetime.now(timezone.utc).year
    r = await client.get("/api/v1/pos/reports/monthly", params={"year": year}, headers=staff)
    report = r.json()["data"]
    assert report["totals"]["sales_count"] == 1
    assert report["totals"]["items_sold"] == 2
    assert len(report["months"]) == 12

    r = await client.patch(f"/api/v1/pos/sales/{sale_id}/status", json={"status": "cancelled"}, headers=staff)
    assert r.json()["data"]["status"] == "cancelled"

    assert (await client.delete(f"/api/v1/pos/sales/{sale_id}", headers=staff)).status_code == 200
    assert (await client.get(f"/api/v1/pos/sales/{sale_id}", headers=staff)).status_code == 404


@pytest.mark.asyncio
async def test_daily_report_and_day_detail(client, auth) -> None:
    product = await _product(client, auth, track_stock=False)
    staff = auth("sales")
    await client.post("/api/v1/pos/sales", json=_sale(product["id"]), headers=staff)
    await client.post(
        "/api/v1/pos/sales",
        json=_sale(product["id"], items=[{"itemable_type": "product", "itemable_id": product["id"], "quantity": 1, "unit_price": "25.00"}], discount_amount="0", shipping_cost="0"),
        headers=staff,
    )
    # Pending sales stay out of the reports.
    await client.post("/api/v1/pos/sales", json=_sale(product["id"], payment_status="pending"), headers=staff)

    today = datetime.now(timezone.utc)
    r = await client.get("/api/v1/pos/reports/daily", params={"year": today.year, "month": today.month}, headers=staff)
    assert r.status_code == 200
    report = r.json()["data"]
    assert report["month"] == today.month
    assert report["totals"] == {"revenue": 75.0, "sales_count": 2}
    row = report["days"][today.day - 1]
    assert row["date"] == today.date().isoformat()
    assert row["sales_count"] == 2
    assert row["revenue"] == 75.0

    r = await client.get(f"/api/v1/pos/reports/daily/{today.year}/{today.month}/{today.day}", headers=staff)
    detail = r.json()["data"]
    assert detail["sales_count"] == 2
    assert detail["revenue"] == 75.0
    assert detail["items"] == [{"product_name": "Notebook", "variant_name": None, "quantity": 3, "total_amount": 75.0}]
    assert len(detail["orders"]) == 2

    r = await client.get("/api/v1/pos/reports/daily", params={"year": today.year, "month": 13}, headers=staff)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_day_detail_rejects_out_of_range_dates(client, auth) -> None:
    staff = auth("sales")
    r = await client.get("/api/v1/pos/reports/daily/9999/12/31", headers=staff)
    assert r.status_code == 422
    assert "year" in r.json()["errors"]

    r = await client.get("/api/v1/pos/reports/daily/2024/2/30", headers=staff)
    assert r.status_code == 422
    assert r.json()["errors"] == {"day": ["The day is not a valid date."]}


@pytest.mark.asyncio
async def test_oversized_receipt_is_rejected(client, auth, settings) -> None:
    product = await _product(client, auth)
    r = await client.post(
        "/api/v1/pos/sales",
        data={"data": json.dumps(_sale(product["id"]))},
        files={"receipt_attachment": ("slip.png", b"\0" * (settings.receipt_max_bytes + 1), "image/png")},
        headers=auth("sales"),
    )
    assert r.status_code == 422
    assert r.json()["errors"] == {
        "receipt_attachment": ["The receipt attachment must not be greater than 5120 kilobytes."]
    }

    r = await client.get(f"/api/v1/catalog/products/{product['id']}", headers=auth("admin"))
    assert r.json()["data"]["stock_quantity"] == 10
