"""
salesflow.services.pos_service

Point-of-sale service (transaction + persistence owner).

Responsibilities:
- Catalog and customer lookups for the POS screen.
- Record sales as `ProductOrder(source="pos")` with items, stock movements and a payment.
- Store receipt attachments under `pos/receipts/`.
- Sales history, status/detail updates, deletion, dashboard and reports.
- Record sales and status changes on the matching CRM contact's timeline.
"""

from __future__ import annotations

import asyncio
import calendar
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.auth.models import Principal
from salesflow.db.models import (
    Course,
    CourseClass,
    OrderPayment,
    OrderSource,
    OrderStatus,
    Package,
    PaymentStatus,
    Product,
    ProductOrder,
    ProductOrderItem,
    User,
    utcnow,
)
from salesflow.db.repositories.catalog import CourseRepo, PackageRepo, ProductRepo, StockRepo
from salesflow.db.repositories.contacts import ContactRepo, UserRepo
from salesflow.db.repositories.orders import OrderFilters, OrderRepo
from salesflow.errors import Forbidden, NotFound, ValidationFailed
from salesflow.observability.logging import get_logger
from salesflow.services.activity_service import ContactActivityService
from salesflow.settings import Settings

log = get_logger(__name__)

PAYMENT_METHODS = ("cash", "bank_transfer", "card", "ewallet", "qr")
SALE_STATUSES = ("paid", "pending", "cancelled")
RECEIPT_EXTENSIONS = ("jpg", "jpeg", "png", "pdf")
RECEIPT_DIR = "pos/receipts"

_CENT = Decimal("0.01")
_MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(frozen=True, slots=True)
class SaleItem:
    itemable_type: str
    itemable_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    product_variant_id: uuid.UUID | None = None
    class_id: uuid.UUID | None = None


@dataclass(frozen=True, slots=True)
class SaleRequest:
    items: list[SaleItem]
    payment_method: str
    payment_status: str
    customer_id: uuid.UUID | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    customer_address: str | None = None
    payment_reference: str | None = None
    discount_type: str | None = None
    discount_amount: Decimal | None = None
    shipping_cost: Decimal = Decimal("0")
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ReceiptUpload:
    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(slots=True)
class _ResolvedItem:
    model: Product | Package | Course
    item: SaleItem
    fields: dict[str, Any] = field(default_factory=dict)


def money(value: Decimal | int | float | None) -> str:
    """Render a money amount the way POS clients expect it ("1234.50")."""

    return f"{Decimal(value or 0).quantize(_CENT, rounding=ROUND_HALF_UP)}"


def _round(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


class PosService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings
        self._clock = clock

        self._orders = OrderRepo(session)
        self._products = ProductRepo(session)
        self._packages = PackageRepo(session)
        self._courses = CourseRepo(session)
        self._users = UserRepo(session)
        self._stock = StockRepo(session)
        self._contacts = ContactRepo(session)
        self._activities = ContactActivityService(session=session, clock=clock)

    # --- Lookups ------------------------------------------------------------

    async def products(self, *, search: str | None = None) -> list[Product]:
        return await self._products.list_active(search=search)

    async def packages(self, *, search: str | None = None) -> list[Package]:
        return await self._packages.list_active(search=search)

    async def courses(self, *, search: str | None = None) -> list[Course]:
        return await self._courses.list_active(search=search)

    async def course_classes(self, course_id: uuid.UUID) -> list[CourseClass]:
        if await self._courses.get(course_id) is None:
            raise NotFound("Course not found")
        return await self._courses.active_classes(course_id)

    async def customers(self, search: str | None) -> list[User]:
        term = (search or "").strip()
        if len(term) < 2:
            return []
        return await self._users.search(term, limit=20)

    # --- Sales --------------------------------------------------------------

    async def create_sale(
        self, *, salesperson: Principal, sale: SaleRequest, receipt: ReceiptUpload | None = None
    ) -> ProductOrder:
        self._validate_sale(sale)
        if receipt is not None:
            self._validate_receipt(receipt)

        resolved = await self._resolve_items(sale.items)
        subtotal = sum((r.fields["total_price"] for r in resolved), Decimal("0"))
        discount = self._discount(subtotal, sale)
        shipping = sale.shipping_cost or Decimal("0")
        total = max(Decimal("0"), subtotal - discount + shipping)

        name, phone, email = sale.customer_name, sale.customer_phone, sale.customer_email
        customer: User | None = None
        if sale.customer_id is not None:
            customer = await self._users.get(sale.customer_id)
            if customer is None:
                raise ValidationFailed.field("customer_id", "The selected customer is invalid.")
            name = name or customer.name
            phone = phone or customer.phone
            email = email or customer.email

        receipt_path = await self._store_receipt(receipt) if receipt is not None else None

        now = self._clock()
        paid = sale.payment_status == "paid"
        order = ProductOrder(
            order_number=await self._orders.next_order_number(now=now),
            customer_id=customer.id if customer is not None else None,
            customer=customer,
            customer_name=name,
            customer_phone=phone,
            guest_email=email,
            shipping_address={"full_address": sale.customer_address} if sale.customer_address else None,
            source=OrderSource.pos,
            source_reference=f"salesperson:{salesperson.subject}",
            status=OrderStatus.pending,
            payment_status=PaymentStatus.paid if paid else PaymentStatus.pending,
            payment_method=sale.payment_method,
            currency=self._settings.default_currency,
            subtotal=subtotal,
            discount_amount=discount,
            shipping_cost=shipping,
            total_amount=total,
            receipt_attachment=receipt_path,
            order_date=now,
            paid_time=now if paid else None,
            internal_notes=sale.notes,
            meta={
                "pos_sale": True,
                "salesperson_id": salesperson.subject,
                "salesperson_name": salesperson.display_name,
                "payment_status": sale.payment_status,
                "payment_reference": sale.payment_reference,
                "discount_type": sale.discount_type,
                "discount_input": str(sale.discount_amount) if sale.discount_amount is not None else None,
            },
            items=[ProductOrderItem(**r.fields) for r in resolved],
            payments=[
                OrderPayment(
                    payment_method=sale.payment_method,
                    amount=total,
                    currency=self._settings.default_currency,
                    status="completed" if paid else "pending",
                    reference_number=sale.payment_reference,
                    paid_at=now if paid else None,
                    meta={"pos_sale": True, "salesperson_id": salesperson.subject},
                )
            ],
        )
        await self._orders.add(order)

        for r in resolved:
            if isinstance(r.model, Product):
                variant = None
                if r.item.product_variant_id is not None:
                    variant = next((v for v in r.model.variants if v.id == r.item.product_variant_id), None)
                await self._stock.deduct(
                    product=r.model,
                    quantity=r.item.quantity,
                    reason="pos_sale",
                    reference=order.order_number,
                    variant=variant,
                )

        contact_id = await self._contact_id(order)
        await self._activities.order_created(contact_id, order, performed_by=salesperson.subject)
        if paid:
            await self._activities.order_paid(contact_id, order, performed_by=salesperson.subject)

        await self._session.commit()
        log.info(
            "pos_sale_created",
            order_id=str(order.id),
            order_number=order.order_number,
            salesperson_id=salesperson.subject,
            total=money(total),
        )
        return order

    async def _contact_id(self, order: ProductOrder) -> uuid.UUID | None:
        contact = await self._contacts.find(email=order.customer_email, phone=order.customer_phone)
        return contact.id if contact is not None else None

    def _validate_sale(self, sale: SaleRequest) -> None:
        errors: dict[str, list[str]] = {}
        if not sale.items:
            errors["items"] = ["The items field must have at least 1 items."]
        for i, item in enumerate(sale.items):
            if item.itemable_type not in ("product", "package", "course"):
                errors[f"items.{i}.itemable_type"] = ["The selected item type is invalid."]
            if item.quantity < 1:
                errors[f"items.{i}.quantity"] = ["The quantity must be at least 1."]
            if item.unit_price < 0:
                errors[f"items.{i}.unit_price"] = ["The unit price must be at least 0."]
        if sale.payment_method not in PAYMENT_METHODS:
            errors["payment_method"] = ["The selected payment method is invalid."]
        if sale.payment_status not in ("paid", "pending"):
            errors["payment_status"] = ["The selected payment status is invalid."]
        if sale.payment_method == "bank_transfer" and not (sale.payment_reference or "").strip():
            errors["payment_reference"] = [
                "The payment reference field is required when payment method is bank_transfer."
            ]
        if sale.customer_id is None:
            if not (sale.customer_name or "").strip():
                errors["customer_name"] = ["The customer name field is required for walk-in sales."]
            if not (sale.customer_phone or "").strip():
                errors["customer_phone"] = ["The customer phone field is required for walk-in sales."]
        if sale.discount_type not in (None, "fixed", "percentage"):
            errors["discount_type"] = ["The selected discount type is invalid."]
        if sale.discount_amount is not None and sale.discount_amount < 0:
            errors["discount_amount"] = ["The discount amount must be at least 0."]
        if sale.shipping_cost is not None and sale.shipping_cost < 0:
            errors["shipping_cost"] = ["The shipping cost must be at least 0."]
        if errors:
            raise ValidationFailed(errors)

    def _validate_receipt(self, receipt: ReceiptUpload) -> None:
        ext = Path(receipt.filename or "").suffix.lower().lstrip(".")
        if ext not in RECEIPT_EXTENSIONS:
            raise ValidationFailed.field(
                "receipt_attachment", "The receipt attachment must be a file of type: jpg, jpeg, png, pdf."
            )
        if len(receipt.content) > self._settings.receipt_max_bytes:
            limit_kb = self._settings.receipt_max_bytes // 1024
            raise ValidationFailed.field(
                "receipt_attachment", f"The receipt attachment must not be greater than {limit_kb} kilobytes."
            )

    async def _store_receipt(self, receipt: ReceiptUpload) -> str:
        ext = Path(receipt.filename).suffix.lower()
        relative = f"{RECEIPT_DIR}/{uuid.uuid4().hex}{ext}"
        target = Path(self._settings.receipt_storage_dir) / relative

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(receipt.content)

        await asyncio.to_thread(_write)
        return relative

    def receipt_url(self, order: ProductOrder) -> str | None:
        if not order.receipt_attachment:
            return None
        return f"{self._settings.app_url.rstrip('/')}/storage/{order.receipt_attachment}"

    async def _resolve_items(self, items: list[SaleItem]) -> list[_ResolvedItem]:
        resolved: list[_ResolvedItem] = []
        errors: dict[str, list[str]] = {}
        for i, item in enumerate(items):
            model: Product | Package | Course | None
            if item.itemable_type == "product":
                model = await self._products.get(item.itemable_id)
            elif item.itemable_type == "package":
                model = await self._packages.get(item.itemable_id)
            else:
                model = await self._courses.get(item.itemable_id)
            if model is None:
                errors[f"items.{i}.itemable_id"] = ["The selected item is invalid."]
                continue

            total_price = _round(item.unit_price * item.quantity)
            fields: dict[str, Any] = {
                "itemable_type": item.itemable_type,
                "itemable_id": model.id,
                "product_id": None,
                "product_variant_id": None,
                "package_id": None,
                "product_name": model.name,
                "variant_name": None,
                "sku": getattr(model, "sku", None) or "",
                "quantity_ordered": item.quantity,
                "unit_price": _round(item.unit_price),
                "total_price": total_price,
                "item_metadata": None,
            }
            if isinstance(model, Product):
                fields["product_id"] = model.id
                if item.product_variant_id is not None:
                    variant = next((v for v in model.variants if v.id == item.product_variant_id), None)
                    if variant is not None:
                        fields["variant_name"] = variant.name
                        fields["sku"] = variant.sku or ""
                        fields["product_variant_id"] = variant.id
            elif isinstance(model, Package):
                fields["package_id"] = model.id
            elif item.class_id is not None:
                klass = await self._courses.get_class(item.class_id)
                fields["item_metadata"] = {
                    "class_id": str(item.class_id),
                    "class_title": klass.title if klass is not None else None,
                }
            resolved.append(_ResolvedItem(model=model, item=item, fields=fields))
        if errors:
            raise ValidationFailed(errors)
        return resolved

    @staticmethod
    def _discount(subtotal: Decimal, sale: SaleRequest) -> Decimal:
        if not sale.discount_amount or sale.discount_amount <= 0:
            return Decimal("0")
        if sale.discount_type == "percentage":
            return _round(subtotal * sale.discount_amount / Decimal(100))
        return _round(sale.discount_amount)

    async def history(
        self,
        *,
        search: str | None = None,
        status: str | None = None,
        payment_method: str | None = None,
        period: str | None = None,
        salesperson_id: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[ProductOrder], int]:
        date_from, date_to = self._period_range(period)
        filters = OrderFilters(
            source=OrderSource.pos,
            search=search,
            status=status,
            payment_method=payment_method,
            date_from=date_from,
            date_to=date_to,
            salesperson_id=salesperson_id,
        )
        return await self._orders.page(filters, page=max(page, 1), per_page=max(min(per_page, 100), 1))

    def _period_range(self, period: str | None) -> tuple[datetime | None, datetime | None]:
        now = self._clock()
        today = datetime(now.year, now.month, now.day)
        if period == "today":
            return today, today + timedelta(days=1)
        if period == "this_week":
            start = today - timedelta(days=today.weekday())
            return start, start + timedelta(days=7)
        if period == "this_month":
            start = today.replace(day=1)
            days = calendar.monthrange(start.year, start.month)[1]
            return start, start + timedelta(days=days)
        return None, None

    async def get_sale(self, order_id: uuid.UUID) -> ProductOrder:
        order = await self._orders.get(order_id)
        if order is None:
            raise NotFound("Sale not found")
        return order

    async def _pos_sale(self, order_id: uuid.UUID, verb: str) -> ProductOrder:
        order = await self.get_sale(order_id)
        if order.source != OrderSource.pos:
            raise Forbidden(f"Only POS sales can be {verb} here.")
        return order

    async def update_status(self, order_id: uuid.UUID, status: str) -> ProductOrder:
        if status not in SALE_STATUSES:
            raise ValidationFailed.field("status", "The selected status is invalid.")
        order = await self._pos_sale(order_id, "updated")
        now = self._clock()
        if status == "paid":
            order.paid_time = now
            order.status = OrderStatus.confirmed
            order.payment_status = PaymentStatus.paid
            for payment in order.payments:
                payment.status = "completed"
                payment.paid_at = now
        elif status == "pending":
            order.paid_time = None
            order.status = OrderStatus.pending
            order.payment_status = PaymentStatus.pending
            for payment in order.payments:
                payment.status = "pending"
                payment.paid_at = None
        else:
            order.status = OrderStatus.cancelled
            order.cancelled_at = now
            order.cancel_reason = "Cancelled from POS"
            for payment in order.payments:
                payment.status = "cancelled"
        order.meta = {**(order.meta or {}), "payment_status": status}
        contact_id = await self._contact_id(order)
        if status == "paid":
            await self._activities.order_paid(contact_id, order)
        elif status == "cancelled":
            await self._activities.order_cancelled(contact_id, order, reason=order.cancel_reason)
        await self._session.commit()
        log.info("pos_sale_status_updated", order_id=str(order.id), status=status)
        return order

    async def update_details(
        self, order_id: uuid.UUID, *, changes: dict[str, Any]
    ) -> ProductOrder:
        order = await self._pos_sale(order_id, "updated")
        if "tracking_id" in changes:
            order.tracking_id = changes["tracking_id"]
        if "internal_notes" in changes:
            order.internal_notes = changes["internal_notes"]
        await self._session.commit()
        return order

    async def delete_sale(self, order_id: uuid.UUID) -> None:
        order = await self._pos_sale(order_id, "deleted")
        await self._orders.delete(order)
        await self._session.commit()
        log.info("pos_sale_deleted", order_id=str(order_id))

    # --- Dashboard & reports -----------------------------------------------

    async def dashboard(self, *, salesperson: Principal) -> dict[str, Any]:
        now = self._clock()
        start = datetime(now.year, now.month, now.day)
        end = start + timedelta(days=1)
        everyone = await self._orders.paid_between(source=OrderSource.pos, start=start, end=end)
        mine = [o for o in everyone if (o.meta or {}).get("salesperson_id") == salesperson.subject]
        return {
            "today_sales_count": len(everyone),
            "today_revenue": f"{sum((o.total_amount for o in everyone), Decimal('0')):,.2f}",
            "my_sales_count": len(mine),
            "my_revenue": f"{sum((o.total_amount for o in mine), Decimal('0')):,.2f}",
        }

    async def monthly_report(self, *, year: int) -> dict[str, Any]:
        orders = await self._orders.paid_between(
            source=OrderSource.pos, start=datetime(year, 1, 1), end=datetime(year + 1, 1, 1)
        )
        months = []
        totals = {"revenue": Decimal("0"), "sales_count": 0, "items_sold": 0}
        for m in range(1, 13):
            bucket = [o for o in orders if o.order_date.month == m]
            revenue = sum((o.total_amount for o in bucket), Decimal("0"))
            items_sold = sum(i.quantity_ordered for o in bucket for i in o.items)
            totals["revenue"] += revenue
            totals["sales_count"] += len(bucket)
            totals["items_sold"] += items_sold
            months.append(
                {
                    "month": m,
                    "month_name": _MONTH_NAMES[m - 1],
                    "sales_count": len(bucket),
                    "revenue": float(_round(revenue)),
                    "items_sold": items_sold,
                }
            )
        totals["revenue"] = float(_round(totals["revenue"]))
        return {"year": year, "totals": totals, "months": months}

    async def daily_report(self, *, year: int, month: int) -> dict[str, Any]:
        if not 1 <= month <= 12:
            raise ValidationFailed.field("month", "The month must be between 1 and 12.")
        days_in_month = calendar.monthrange(year, month)[1]
        start = datetime(year, month, 1)
        orders = await self._orders.paid_between(
            source=OrderSource.pos, start=start, end=start + timedelta(days=days_in_month)
        )
        days = []
        total_revenue = Decimal("0")
        for d in range(1, days_in_month + 1):
            bucket = [o for o in orders if o.order_date.day == d]
            revenue = sum((o.total_amount for o in bucket), Decimal("0"))
            total_revenue += revenue
            day = date(year, month, d)
            days.append(
                {
                    "day": d,
                    "date": day.isoformat(),
                    "day_name": day.strftime("%a"),
                    "sales_count": len(bucket),
                    "revenue": float(_round(revenue)),
                }
            )
        return {
            "year": year,
            "month": month,
            "month_name": calendar.month_name[month],
            "totals": {"revenue": float(_round(total_revenue)), "sales_count": len(orders)},
            "days": days,
        }

    async def day_detail(self, *, year: int, month: int, day: int) -> dict[str, Any]:
        try:
            start = datetime(year, month, day)
        except ValueError as e:
            raise ValidationFailed.field("day", "The day is not a valid date.") from e
        orders = await self._orders.paid_between(
            source=OrderSource.pos, start=start, end=start + timedelta(days=1)
        )

        summary: dict[tuple[str, str], dict[str, Any]] = {}
        for order in orders:
            for item in order.items:
                key = (item.product_name, item.variant_name or "")
                row = summary.setdefault(
                    key,
                    {
                        "product_name": item.product_name,
                        "variant_name": item.variant_name,
                        "quantity": 0,
                        "total_amount": Decimal("0"),
                    },
                )
                row["quantity"] += item.quantity_ordered
                row["total_amount"] += item.total_price
        for row in summary.values():
            row["total_amount"] = float(_round(row["total_amount"]))

        return {
            "date": start.date().isoformat(),
            "sales_count": len(orders),
            "revenue": float(_round(sum((o.total_amount for o in orders), Decimal("0")))),
            "items": list(summary.values()),
            "orders": [
                {
                    "id": str(o.id),
                    "order_number": o.order_number,
                    "total_amount": float(_round(o.total_amount)),
                    "payment_method": o.payment_method,
                    "order_date": o.order_date.strftime("%Y-%m-%d %H:%M:%S"),
                    "customer_name": o.display_customer_name(),
                }
                for o in orders
            ],
        }


# --- Module Notes -----------------------------------------------------------
# Report buckets use the stored (UTC) order_date. "Paid" means paid_time is set.
