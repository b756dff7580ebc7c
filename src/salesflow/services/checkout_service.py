"""
salesflow.services.checkout_service

Funnel checkout service (transaction + persistence owner).

Responsibilities:
- Create checkouts: cart upsert, pending funnel order, payment intent, analytics link.
- Confirm payments: mark paid, deduct stock, convert the session, recover the cart,
  credit the referring affiliate, fire purchase automations and workflows.
- One-click upsell/downsell acceptance and declines.
- Cart recovery lookups and the abandoned-cart sweep.
"""

from __future__ import annotations

import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.clients.payment_gateway import PaymentGatewayClient
from salesflow.db.models import (
    CartRecoveryStatus,
    Contact,
    Funnel,
    FunnelCart,
    FunnelOrder,
    FunnelSession,
    FunnelStep,
    FunnelStepOrderBump,
    FunnelStepProduct,
    OrderPayment,
    OrderSource,
    OrderStatus,
    PaymentStatus,
    ProductOrder,
    ProductOrderItem,
    utcnow,
)
from salesflow.db.repositories.catalog import ProductRepo, StockRepo
from salesflow.db.repositories.funnels import FunnelCartRepo, FunnelOrderRepo, FunnelRepo, FunnelSessionRepo
from salesflow.db.repositories.orders import OrderRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.mergetags.context import to_jsonable
from salesflow.observability.logging import get_logger
from salesflow.services.activity_service import ContactActivityService
from salesflow.services.affiliate_service import AffiliateService
from salesflow.services.automation_service import AutomationService
from salesflow.services.contact_service import ContactService
from salesflow.services.funnel_service import next_step
from salesflow.services.workflow_service import WorkflowService
from salesflow.settings import Settings

log = get_logger(__name__)

_CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        http: httpx.AsyncClient,
        gateway: PaymentGatewayClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings
        self._http = http
        self._gateway = gateway
        self._clock = clock

        self._funnels = FunnelRepo(session)
        self._sessions = FunnelSessionRepo(session)
        self._carts = FunnelCartRepo(session)
        self._funnel_orders = FunnelOrderRepo(session)
        self._orders = OrderRepo(session)
        self._products = ProductRepo(session)
        self._stock = StockRepo(session)
        self._activities = ContactActivityService(session=session, clock=clock)
        self._affiliates = AffiliateService(session=session, settings=settings, clock=clock)

    # --- Lookups ------------------------------------------------------------

    async def _published_step(self, slug: str, step_id: uuid.UUID) -> tuple[Funnel, FunnelStep]:
        funnel = await self._funnels.get_by_slug(slug)
        if funnel is None or funnel.status != "published":
            raise NotFound("Funnel not found")
        step = next((s for s in funnel.steps if s.id == step_id), None)
        if step is None:
            raise NotFound("Step not found")
        return funnel, step

    async def _visitor(self, funnel: Funnel, session_id: uuid.UUID) -> FunnelSession:
        visitor = await self._sessions.get(session_id)
        if visitor is None or visitor.funnel_id != funnel.id:
            raise NotFound("Session not found")
        return visitor

    # --- Checkout -----------------------------------------------------------

    async def create_checkout(
        self,
        *,
        slug: str,
        step_id: uuid.UUID,
        session_id: uuid.UUID,
        product_ids: list[uuid.UUID],
        bump_ids: list[uuid.UUID],
        customer: dict[str, Any],
        billing_address: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        funnel, step = await self._published_step(slug, step_id)
        visitor = await self._visitor(funnel, session_id)

        email = (customer.get("email") or "").strip()
        if not email:
            raise ValidationFailed.field("customer.email", "The email field is required.")

        wanted_products, wanted_bumps = set(product_ids), set(bump_ids)
        products = [p for p in step.products if p.is_active and p.id in wanted_products]
        bumps = [b for b in step.order_bumps if b.is_active and b.id in wanted_bumps]

        subtotal = sum((p.funnel_price for p in products), Decimal("0"))
        bumps_total = sum((b.price for b in bumps), Decimal("0"))
        total = subtotal + bumps_total
        if total <= 0:
            raise ValidationFailed.field("products", "Invalid order total")
        await self._check_stock([*products, *bumps])

        now = self._clock()
        order_id = uuid.uuid4()
        order_number = await self._orders.next_order_number(now=now)
        currency = self._settings.default_currency

        # The gateway may share this database; call it before any local writes are flushed.
        intent = await self._gateway.create_intent(
            amount=to_minor_units(total),
            currency=currency,
            description=f"Funnel purchase: {funnel.name}",
            receipt_email=email,
            metadata={
                "order_id": str(order_id),
                "order_number": order_number,
                "funnel_id": str(funnel.id),
                "session_id": str(visitor.id),
                "customer_email": email,
            },
        )

        cart = await self._upsert_cart(visitor, step, products, bumps, customer, total)
        order = ProductOrder(
            id=order_id,
            order_number=order_number,
            customer_name=customer.get("name"),
            customer_phone=customer.get("phone"),
            guest_email=email,
            billing_address=billing_address,
            shipping_address=billing_address,
            source=OrderSource.funnel,
            source_reference=funnel.slug,
            status=OrderStatus.pending,
            payment_status=PaymentStatus.pending,
            payment_method="card",
            payment_intent_id=intent["id"],
            currency=currency,
            subtotal=subtotal,
            discount_amount=Decimal("0"),
            shipping_cost=Decimal("0"),
            total_amount=total,
            order_date=now,
            internal_notes=f"Funnel purchase: {funnel.name}",
            meta={
                "funnel_id": str(funnel.id),
                "funnel_slug": funnel.slug,
                "step_id": str(step.id),
                "session_id": str(visitor.id),
                "bumps_total": str(bumps_total),
            },
            items=[*(_product_item(p) for p in products), *(_bump_item(b) for b in bumps)],
            payments=[],
        )
        await self._orders.add(order)

        funnel_order = await self._funnel_orders.add(
            FunnelOrder(
                funnel_id=funnel.id,
                session_id=visitor.id,
                product_order_id=order.id,
                product_order=order,
                session=visitor,
                step_id=step.id,
                order_type="main",
                funnel_revenue=total,
                bumps_offered=sum(1 for b in step.order_bumps if b.is_active),
                bumps_accepted=len(bumps),
            )
        )

        visitor.email = email
        visitor.phone = customer.get("phone") or visitor.phone
        visitor.name = customer.get("name") or visitor.name
        await self._sessions.track(
            visitor,
            "checkout_initiated",
            {"order_id": str(order.id), "total": str(total), "payment_intent_id": intent["id"]},
            step_id=step.id,
        )
        await self._session.commit()
        log.info(
            "checkout_created",
            order_id=str(order.id),
            funnel_id=str(funnel.id),
            cart_id=str(cart.id),
            payment_intent_id=intent["id"],
        )
        return {
            "success": True,
            "order": order,
            "funnel_order": funnel_order,
            "payment_intent": {
                "id": intent["id"],
                "client_secret": intent.get("client_secret"),
                "status": intent.get("status"),
            },
            "total": total,
        }

    async def _check_stock(self, lines: list[FunnelStepProduct | FunnelStepOrderBump]) -> None:
        errors: dict[str, list[str]] = {}
        for line in lines:
            if line.product_id is None:
                continue
            product = await self._products.get(line.product_id)
            if product is not None and product.track_stock and product.stock_quantity < 1:
                errors.setdefault("products", []).append(f"{line.name} is out of stock.")
        if errors:
            raise ValidationFailed(errors)

    async def _upsert_cart(
        self,
        visitor: FunnelSession,
        step: FunnelStep,
        products: list[FunnelStepProduct],
        bumps: list[FunnelStepOrderBump],
        customer: dict[str, Any],
        total: Decimal,
    ) -> FunnelCart:
        cart_data = {
            "products": [str(p.id) for p in products],
            "bumps": [str(b.id) for b in bumps],
            "items": [
                *({"id": str(p.id), "name": p.name, "price": str(p.funnel_price), "quantity": 1, "type": p.type} for p in products),
                *({"id": str(b.id), "name": b.name, "price": str(b.price), "quantity": 1, "is_bump": True} for b in bumps),
            ],
            "contact": {k: customer.get(k) for k in ("name", "email", "phone") if customer.get(k)},
        }
        cart = await self._carts.for_session(visitor.id)
        if cart is None:
            return await self._carts.add(
                FunnelCart(
                    session_id=visitor.id,
                    funnel_id=visitor.funnel_id,
                    funnel=visitor.funnel,
                    step_id=step.id,
                    email=customer.get("email"),
                    phone=customer.get("phone"),
                    cart_data=cart_data,
                    total_amount=total,
                    currency=self._settings.default_currency,
                    recovery_token=secrets.token_urlsafe(32),
                    recovery_status=CartRecoveryStatus.pending,
                )
            )
        cart.step_id = step.id
        cart.email = customer.get("email") or cart.email
        cart.phone = customer.get("phone") or cart.phone
        cart.cart_data = cart_data
        cart.total_amount = total
        cart.recovery_status = CartRecoveryStatus.pending
        cart.abandoned_at = None
        cart.updated_at = self._clock()
        return cart

    # --- Payment confirmation ----------------------------------------------

    async def confirm_payment(self, payment_intent_id: str) -> dict[str, Any]:
        intent = await self._gateway.retrieve_intent(payment_intent_id)
        if intent.get("status") != "succeeded":
            return {"success": False, "status": intent.get("status"), "message": "Payment not completed"}

        order = await self._orders.get_by_payment_intent(payment_intent_id)
        if order is None:
            return {"success": True, "status": "succeeded", "order": None}
        if order.paid_time is not None:
            # Already confirmed; automations must not fire twice.
            return {"success": True, "status": "succeeded", "order": order}

        now = self._clock()
        order.status = OrderStatus.confirmed
        order.payment_status = PaymentStatus.paid
        order.paid_time = now
        order.payments.append(
            OrderPayment(
                payment_method=order.payment_method or "card",
                amount=order.total_amount,
                currency=order.currency,
                status="completed",
                reference_number=payment_intent_id,
                paid_at=now,
                meta={"payment_intent_id": payment_intent_id},
            )
        )

        for item in order.items:
            if item.product_id is None:
                continue
            product = await self._products.get(item.product_id)
            if product is not None:
                await self._stock.deduct(
                    product=product,
                    quantity=item.quantity_ordered,
                    reason="funnel_sale",
                    reference=order.order_number,
                )

        funnel_order = await self._funnel_orders.for_product_order(order.id)
        visitor = funnel_order.session if funnel_order is not None else None
        if visitor is not None:
            visitor.converted_at = visitor.converted_at or now
            visitor.status = "converted"
            await self._sessions.track(
                visitor,
                "payment_completed",
                {"order_id": str(order.id), "amount": str(order.total_amount), "payment_intent_id": payment_intent_id},
            )
            cart = await self._carts.for_session(visitor.id)
            if cart is not None:
                cart.recovery_status = CartRecoveryStatus.recovered
                cart.recovered_order_id = order.id

        contact = await ContactService(session=self._session).find_or_create(
            name=order.customer_name, email=order.customer_email, phone=order.customer_phone
        )
        if visitor is not None and contact is not None and visitor.contact_id is None:
            visitor.contact_id = contact.id
        if contact is not None:
            await self._activities.order_created(contact.id, order)
            await self._activities.order_paid(contact.id, order)
        if funnel_order is not None:
            await self._affiliates.record_commission(funnel_order, order, visitor)
        await self._session.commit()
        log.info("payment_confirmed", order_id=str(order.id), payment_intent_id=payment_intent_id)

        await self._fire_purchase(order, visitor, contact)
        return {"success": True, "status": "succeeded", "order": order}

    async def _fire_purchase(
        self, order: ProductOrder, visitor: FunnelSession | None, contact: Contact | None
    ) -> None:
        automations = AutomationService(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )
        await automations.trigger_purchase_completed(order, visitor, contact)
        if contact is None:
            return
        workflows = WorkflowService(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )
        context = {"product_order": order, "funnel_session": visitor, "contact": contact}
        conditions = {"funnel_id": (order.meta or {}).get("funnel_id")}
        await workflows.trigger("purchase_completed", contact, context, conditions=conditions)

    # --- Upsells ------------------------------------------------------------

    async def accept_upsell(
        self, *, slug: str, step_id: uuid.UUID, session_id: uuid.UUID, product_id: uuid.UUID
    ) -> dict[str, Any]:
        funnel, step = await self._published_step(slug, step_id)
        visitor = await self._visitor(funnel, session_id)
        offer = next((p for p in step.products if p.id == product_id and p.is_active), None)
        if offer is None:
            raise NotFound("Offer not found")
        original = await self._funnel_orders.latest_main_for_session(visitor.id)
        if original is None:
            raise ValidationFailed.field("session_id", "No original order for this session.")
        await self._check_stock([offer])

        source = original.product_order
        order_type = "downsell" if step.type == "downsell" else "upsell"
        now = self._clock()
        order_id = uuid.uuid4()
        order_number = await self._orders.next_order_number(now=now)
        currency = self._settings.default_currency
        intent = await self._gateway.create_intent(
            amount=to_minor_units(offer.funnel_price),
            currency=currency,
            description=f"Funnel {order_type}: {offer.name}",
            receipt_email=source.customer_email,
            metadata={
                "order_id": str(order_id),
                "order_number": order_number,
                "funnel_id": str(funnel.id),
                "order_type": order_type,
            },
        )

        order = ProductOrder(
            id=order_id,
            order_number=order_number,
            customer_name=source.customer_name,
            customer_phone=source.customer_phone,
            guest_email=source.customer_email,
            billing_address=source.billing_address,
            shipping_address=source.shipping_address,
            source=OrderSource.funnel,
            source_reference=funnel.slug,
            status=OrderStatus.pending,
            payment_status=PaymentStatus.pending,
            payment_method="card",
            payment_intent_id=intent["id"],
            currency=currency,
            subtotal=offer.funnel_price,
            total_amount=offer.funnel_price,
            order_date=now,
            internal_notes=f"Funnel {order_type}: {offer.name}",
            meta={
                "funnel_id": str(funnel.id),
                "funnel_slug": funnel.slug,
                "step_id": str(step.id),
                "session_id": str(visitor.id),
                "original_order_id": str(source.id),
                "is_upsell": True,
            },
            items=[_product_item(offer)],
            payments=[],
        )
        await self._orders.add(order)
        funnel_order = await self._funnel_orders.add(
            FunnelOrder(
                funnel_id=funnel.id,
                session_id=visitor.id,
                product_order_id=order.id,
                product_order=order,
                session=visitor,
                step_id=step.id,
                order_type=order_type,
                funnel_revenue=offer.funnel_price,
            )
        )
        await self._sessions.track(
            visitor,
            f"{order_type}_accepted",
            {"order_id": str(order.id), "product_name": offer.name, "amount": str(offer.funnel_price)},
            step_id=step.id,
        )
        await self._session.commit()
        log.info("upsell_accepted", order_id=str(order.id), order_type=order_type)

        following = next_step(funnel, step)
        return {
            "success": True,
            "order": order,
            "funnel_order": funnel_order,
            "payment_intent": {
                "id": intent["id"],
                "client_secret": intent.get("client_secret"),
                "status": intent.get("status"),
            },
            "redirect_url": f"/f/{funnel.slug}/{following.slug}" if following is not None else f"/f/{funnel.slug}",
        }

    async def decline_upsell(
        self, *, slug: str, step_id: uuid.UUID, session_id: uuid.UUID, product_id: uuid.UUID | None = None
    ) -> dict[str, Any]:
        funnel, step = await self._published_step(slug, step_id)
        visitor = await self._visitor(funnel, session_id)
        offer = next((p for p in step.products if p.id == product_id), None) if product_id else None
        data: dict[str, Any] = {"step_id": str(step.id)}
        if offer is not None:
            data.update(product_name=offer.name, product_price=str(offer.funnel_price))
        event = "downsell_declined" if step.type == "downsell" else "upsell_declined"
        await self._sessions.track(visitor, event, data, step_id=step.id)
        await self._session.commit()

        following = next_step(funnel, step)
        return {
            "success": True,
            "redirect_url": f"/f/{funnel.slug}/{following.slug}" if following is not None else f"/f/{funnel.slug}",
        }

    # --- Cart recovery ------------------------------------------------------

    async def recover_cart(self, token: str) -> dict[str, Any]:
        cart = await self._carts.get_by_token(token)
        if cart is None:
            raise NotFound("Cart not found")
        visitor = await self._sessions.get(cart.session_id)
        if visitor is not None:
            await self._sessions.track(visitor, "cart_recovery_click", {"cart_id": str(cart.id)})
            await self._session.commit()

        funnel = cart.funnel
        checkout = next((s for s in funnel.steps if s.type == "checkout"), None)
        redirect = f"/f/{funnel.slug}/{checkout.slug}" if checkout is not None else f"/f/{funnel.slug}"
        return {"cart": cart, "session_id": str(cart.session_id), "redirect_url": redirect}

    async def detect_abandoned_carts(self, *, now: datetime | None = None) -> int:
        now = now or self._clock()
        idle_before = now - timedelta(minutes=self._settings.cart_abandon_after_minutes)
        contacts = ContactService(session=self._session)
        automations = AutomationService(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )
        workflows = WorkflowService(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )

        marked = 0
        for cart in await self._carts.stale_pending(idle_before=idle_before):
            visitor = await self._sessions.get(cart.session_id)
            cart.recovery_status = CartRecoveryStatus.abandoned
            cart.abandoned_at = now
            name = (cart.cart_data or {}).get("contact", {}).get("name") or (visitor.name if visitor else None)
            contact = await contacts.find_or_create(name=name, email=cart.email, phone=cart.phone)
            if visitor is not None:
                await self._sessions.track(visitor, "cart_abandoned", {"cart_id": str(cart.id)})
            await self._session.commit()
            marked += 1
            log.info("cart_abandoned", cart_id=str(cart.id), funnel_id=str(cart.funnel_id))

            context: dict[str, Any] = {
                "funnel_cart": cart,
                "funnel_session": visitor,
                "session_id": str(cart.session_id),
                "contact": contact,
                "email": cart.email,
                "phone": cart.phone,
                "funnel": {"id": str(cart.funnel_id), "slug": cart.funnel.slug, "name": cart.funnel.name},
            }
            await automations.trigger("cart_abandoned", context, funnel_id=cart.funnel_id)
            if contact is not None:
                await workflows.trigger(
                    "cart_abandoned", contact, context, conditions={"funnel_id": str(cart.funnel_id)}
                )
        return marked


def _product_item(product: FunnelStepProduct) -> ProductOrderItem:
    return ProductOrderItem(
        itemable_type="funnel_product",
        itemable_id=product.id,
        product_id=product.product_id,
        product_name=product.name,
        sku="",
        quantity_ordered=1,
        unit_price=product.funnel_price.quantize(_CENT),
        total_price=product.funnel_price.quantize(_CENT),
        item_metadata={"funnel_product_id": str(product.id), "type": product.type},
    )


def _bump_item(bump: FunnelStepOrderBump) -> ProductOrderItem:
    return ProductOrderItem(
        itemable_type="order_bump",
        itemable_id=bump.id,
        product_id=bump.product_id,
        product_name=bump.name,
        sku="",
        quantity_ordered=1,
        unit_price=bump.price.quantize(_CENT),
        total_price=bump.price.quantize(_CENT),
        item_metadata=to_jsonable({"order_bump_id": bump.id, "is_order_bump": True}),
    )
