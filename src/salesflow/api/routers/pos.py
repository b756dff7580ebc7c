"""
salesflow.api.routers.pos

Point-of-sale endpoints (roles `sales` and `admin`).

Responsibilities:
- Catalog/customer lookups for the POS screen.
- Create sales from JSON, or multipart with a `data` JSON field plus `receipt_attachment`.
- Sales history, detail, status/detail updates, deletion, dashboard and reports.
"""

from __future__ import annotations

import math
import uuid
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile
from starlette.status import HTTP_201_CREATED

from salesflow.api.deps import db_session, settings_dep
from salesflow.api.serializers import class_out, course_out, order_out, package_out, product_out, user_out
from salesflow.auth.deps import require_roles
from salesflow.auth.models import Principal
from salesflow.errors import ValidationFailed
from salesflow.services.pos_service import PosService, ReceiptUpload, SaleItem, SaleRequest
from salesflow.settings import Settings

router = APIRouter(prefix="/api/v1/pos", tags=["pos"])

_staff = require_roles("sales")


class SaleItemBody(BaseModel):
    itemable_type: str
    itemable_id: uuid.UUID
    quantity: int = 1
    unit_price: Decimal
    product_variant_id: uuid.UUID | None = None
    class_id: uuid.UUID | None = None


class CreateSaleBody(BaseModel):
    items: list[SaleItemBody] = Field(default_factory=list)
    payment_method: str
    payment_status: str = "paid"
    customer_id: uuid.UUID | None = None
    customer_name: str | None = Field(default=None, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=64)
    customer_email: str | None = Field(default=None, max_length=255)
    customer_address: str | None = None
    payment_reference: str | None = Field(default=None, max_length=128)
    discount_type: str | None = None
    discount_amount: Decimal | None = None
    shipping_cost: Decimal = Decimal("0")
    notes: str | None = None

    def to_request(self) -> SaleRequest:
        return SaleRequest(
            items=[
                SaleItem(
                    itemable_type=i.itemable_type,
                    itemable_id=i.itemable_id,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    product_variant_id=i.product_variant_id,
                    class_id=i.class_id,
                )
                for i in self.items
            ],
            payment_method=self.payment_method,
            payment_status=self.payment_status,
            customer_id=self.customer_id,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_email=self.customer_email,
            customer_address=self.customer_address,
            payment_reference=self.payment_reference,
            discount_type=self.discount_type,
            discount_amount=self.discount_amount,
            shipping_cost=self.shipping_cost,
            notes=self.notes,
        )


class UpdateStatusBody(BaseModel):
    status: str


class UpdateDetailsBody(BaseModel):
    tracking_id: str | None = Field(default=None, max_length=255)
    internal_notes: str | None = None


def _service(session: AsyncSession, settings: Settings) -> PosService:
    return PosService(session=session, settings=settings)


async def _read_sale(request: Request) -> tuple[CreateSaleBody, ReceiptUpload | None]:
    receipt: ReceiptUpload | None = None
    if request.headers.get("content-type", "").startswith("multipart/form-data"):
        form = await request.form()
        raw = form.get("data")
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationFailed.field("data", "The data field is required.")
        upload = form.get("receipt_attachment")
        if isinstance(upload, UploadFile) and upload.filename:
            receipt = ReceiptUpload(
                filename=upload.filename, content=await upload.read(), content_type=upload.content_type
            )
    else:
        raw = await request.body()

    try:
        body = CreateSaleBody.model_validate_json(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e
    return body, receipt


# --- Lookups ----------------------------------------------------------------------


@router.get("/products")
async def products(
    search: str | None = Query(default=None),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": [product_out(p) for p in await _service(session, settings).products(search=search)]}


@router.get("/packages")
async def packages(
    search: str | None = Query(default=None),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": [package_out(p) for p in await _service(session, settings).packages(search=search)]}


@router.get("/courses")
async def courses(
    search: str | None = Query(default=None),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": [course_out(c) for c in await _service(session, settings).courses(search=search)]}


@router.get("/classes/{course_id}")
async def course_classes(
    course_id: uuid.UUID,
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    classes = await _service(session, settings).course_classes(course_id)
    return {"data": [class_out(c) for c in classes]}


@router.get("/customers")
async def customers(
    search: str | None = Query(default=None),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": [user_out(u) for u in await _service(session, settings).customers(search)]}


# --- Sales ------------------------------------------------------------------------


@router.post("/sales", status_code=HTTP_201_CREATED)
async def create_sale(
    request: Request,
    principal: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    body, receipt = await _read_sale(request)
    svc = _service(session, settings)
    order = await svc.create_sale(salesperson=principal, sale=body.to_request(), receipt=receipt)
    return {"message": "Sale created successfully", "data": order_out(order, receipt_url=svc.receipt_url(order))}


@router.get("/sales")
async def sales_history(
    search: str | None = Query(default=None),
    status: str | None = Query(default=None, pattern=r"^(paid|pending|cancelled)$"),
    payment_method: str | None = Query(default=None),
    period: str | None = Query(default=None, pattern=r"^(today|this_week|this_month)$"),
    salesperson_id: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    svc = _service(session, settings)
    rows, total = await svc.history(
        search=search,
        status=status,
        payment_method=payment_method,
        period=period,
        salesperson_id=salesperson_id,
        page=page,
        per_page=per_page,
    )
    return {
        "data": [order_out(o, receipt_url=svc.receipt_url(o)) for o in rows],
        "meta": {
            "current_page": page,
            "per_page": per_page,
            "total": total,
            "last_page": max(1, math.ceil(total / per_page)),
        },
    }


@router.get("/sales/{sale_id}")
async def sale_detail(
    sale_id: uuid.UUID,
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    svc = _service(session, settings)
    order = await svc.get_sale(sale_id)
    return {"data": order_out(order, receipt_url=svc.receipt_url(order))}


@router.patch("/sales/{sale_id}/status")
async def update_sale_status(
    sale_id: uuid.UUID,
    body: UpdateStatusBody,
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    svc = _service(session, settings)
    order = await svc.update_status(sale_id, body.status)
    return {"message": "Sale status updated", "data": order_out(order, receipt_url=svc.receipt_url(order))}


@router.patch("/sales/{sale_id}")
async def update_sale_details(
    sale_id: uuid.UUID,
    body: UpdateDetailsBody,
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    svc = _service(session, settings)
    order = await svc.update_details(sale_id, changes=body.model_dump(exclude_unset=True))
    return {"message": "Sale updated", "data": order_out(order, receipt_url=svc.receipt_url(order))}


@router.delete("/sales/{sale_id}")
async def delete_sale(
    sale_id: uuid.UUID,
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    await _service(session, settings).delete_sale(sale_id)
    return {"message": "Sale deleted"}


# --- Dashboard & reports ------------------------------------------------------------


@router.get("/dashboard")
async def dashboard(
    principal: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": await _service(session, settings).dashboard(salesperson=principal)}


@router.get("/reports/monthly")
async def monthly_report(
    year: int = Query(ge=2000, le=2100),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": await _service(session, settings).monthly_report(year=year)}


@router.get("/reports/daily")
async def daily_report(
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": await _service(session, settings).daily_report(year=year, month=month)}


@router.get("/reports/daily/{year}/{month}/{day}")
async def day_detail(
    year: int = Path(ge=2000, le=2100),
    month: int = Path(ge=1, le=12),
    day: int = Path(ge=1, le=31),
    _: Principal = Depends(_staff),
    session: AsyncSession = Depends(db_session),
    settings: Settings = Depends(settings_dep),
) -> dict[str, Any]:
    return {"data": await _service(session, settings).day_detail(year=year, month=month, day=day)}
