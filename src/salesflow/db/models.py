"""
salesflow.db.models

Core persistence schema.

Responsibilities:
- Define ORM models for:
  - People: User (staff/customers), Contact (CRM record used by automations),
    ContactActivity (per-contact timeline)
  - Catalog: Product, ProductVariant, Package, Course, CourseClass, StockMovement
  - Orders: ProductOrder, ProductOrderItem, OrderPayment
  - Funnels: Funnel, FunnelStep, FunnelStepProduct, FunnelStepOrderBump,
    FunnelSession, FunnelEvent, FunnelCart, FunnelOrder
  - Affiliates: FunnelAffiliate, FunnelAffiliateMembership, FunnelAffiliateCommissionRule,
    FunnelAffiliateCommission
  - Automations: FunnelAutomation, FunnelAutomationAction, FunnelAutomationLog,
    MessageTemplate
  - Workflows: Workflow, WorkflowStep, WorkflowConnection, WorkflowEnrollment,
    WorkflowStepExecution
  - PaymentIntent (in-process payment gateway)
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid as SAUuid,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from salesflow.db.base import Base

Money = Numeric(12, 2)


def utcnow() -> datetime:
    # Naive UTC timestamps are persisted everywhere.
    return datetime.now(UTC).replace(tzinfo=None)


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class OrderSource(enum.StrEnum):
    pos = "pos"
    funnel = "funnel"


class OrderStatus(enum.StrEnum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"


class PaymentStatus(enum.StrEnum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"


class CartRecoveryStatus(enum.StrEnum):
    pending = "pending"
    abandoned = "abandoned"
    recovered = "recovered"


class AutomationLogStatus(enum.StrEnum):
    pending = "pending"
    executed = "executed"
    failed = "failed"
    skipped = "skipped"


class WorkflowStatus(enum.StrEnum):
    draft = "draft"
    active = "active"
    paused = "paused"


class EnrollmentStatus(enum.StrEnum):
    active = "active"
    waiting = "waiting"
    completed = "completed"
    exited = "exited"
    failed = "failed"


class CommissionStatus(enum.StrEnum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    paid = "paid"


# --- People -----------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="customer", index=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class ContactActivity(Base):
    __tablename__ = "contact_activities"

    id: Mapped[uuid.UUID] = _uuid_pk()
    contact_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    # Staff subject, "system" or "workflow".
    performed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)


# --- Catalog ----------------------------------------------------------------


class Product(Base):
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)
    track_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    variants: Mapped[list[ProductVariant]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.sort_order",
    )


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product: Mapped[Product] = relationship(back_populates="variants")


class Package(Base):
    __tablename__ = "packages"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", index=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    classes: Mapped[list[CourseClass]] = relationship(
        back_populates="course", cascade="all, delete-orphan", lazy="selectin"
    )


class CourseClass(Base):
    __tablename__ = "course_classes"

    id: Mapped[uuid.UUID] = _uuid_pk()
    course_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    max_students: Mapped[int | None] = mapped_column(Integer, nullable=True)

    course: Mapped[Course] = relationship(back_populates="classes")


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id: Mapped[uuid.UUID] = _uuid_pk()
    product_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True
    )
    product_variant_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("product_variants.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


# --- Orders -----------------------------------------------------------------


class ProductOrder(Base):
    __tablename__ = "product_orders"

    id: Mapped[uuid.UUID] = _uuid_pk()
    order_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shipping_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    billing_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    source: Mapped[OrderSource] = mapped_column(Enum(OrderSource), nullable=False, index=True)
    source_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), nullable=False, default=OrderStatus.pending, index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), nullable=False, default=PaymentStatus.pending
    )
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    shipping_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    coupon_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    receipt_attachment: Mapped[str | None] = mapped_column(String(512), nullable=True)
    tracking_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    order_date: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)
    paid_time: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # "metadata" is reserved on declarative classes; the column keeps its name.
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    customer: Mapped[User | None] = relationship(lazy="selectin")
    items: Mapped[list[ProductOrderItem]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )
    payments: Mapped[list[OrderPayment]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    def _loaded_customer(self) -> User | None:
        # Never lazy-load from sync code paths.
        if "customer" in sa_inspect(self).unloaded:
            return None
        return self.customer

    @property
    def customer_email(self) -> str | None:
        if self.guest_email:
            return self.guest_email
        customer = self._loaded_customer()
        return customer.email if customer is not None else None

    def display_customer_name(self) -> str | None:
        if self.customer_name:
            return self.customer_name
        customer = self._loaded_customer()
        return customer.name if customer is not None else None


class ProductOrderItem(Base):
    __tablename__ = "product_order_items"

    id: Mapped[uuid.UUID] = _uuid_pk()
    order_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("product_orders.id"), nullable=False, index=True
    )
    itemable_type: Mapped[str] = mapped_column(String(32), nullable=False)
    itemable_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    product_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    product_variant_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True
    )
    package_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sku: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    item_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    order: Mapped[ProductOrder] = relationship(back_populates="items")


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    order_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("product_orders.id"), nullable=False, index=True
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    bank: Mapped[str | None] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    order: Mapped[ProductOrder] = relationship(back_populates="payments")


# --- Funnels ----------------------------------------------------------------


class Funnel(Base):
    __tablename__ = "funnels"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", index=True)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    published_at: Mapped[datetime | None] = mapped_column(nullable=True)
    affiliate_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affiliate_custom_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    # Public key for the embeddable checkout widget.
    embed_key: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    embed_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    embed_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    steps: Mapped[list[FunnelStep]] = relationship(
        back_populates="funnel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FunnelStep.sort_order",
    )


class FunnelStep(Base):
    __tablename__ = "funnel_steps"

    id: Mapped[uuid.UUID] = _uuid_pk()
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="landing")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Page-builder component trees; the draft is edited, the published copy is served.
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    published_content: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    funnel: Mapped[Funnel] = relationship(back_populates="steps")
    products: Mapped[list[FunnelStepProduct]] = relationship(
        back_populates="step",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FunnelStepProduct.sort_order",
    )
    order_bumps: Mapped[list[FunnelStepOrderBump]] = relationship(
        back_populates="step",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FunnelStepOrderBump.sort_order",
    )

    __table_args__ = (Index("ix_funnel_steps_funnel_slug", "funnel_id", "slug", unique=True),)


class FunnelStepProduct(Base):
    __tablename__ = "funnel_step_products"

    id: Mapped[uuid.UUID] = _uuid_pk()
    step_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_steps.id"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("products.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="main")
    funnel_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    compare_at_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    step: Mapped[FunnelStep] = relationship(back_populates="products")


class FunnelStepOrderBump(Base):
    __tablename__ = "funnel_step_order_bumps"

    id: Mapped[uuid.UUID] = _uuid_pk()
    step_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_steps.id"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("products.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    step: Mapped[FunnelStep] = relationship(back_populates="order_bumps")


class FunnelSession(Base):
    __tablename__ = "funnel_sessions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("contacts.id"), nullable=True
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    utm_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device: Mapped[str | None] = mapped_column(String(32), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    landing_page: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    affiliate_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_affiliates.id"), nullable=True, index=True
    )

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    funnel: Mapped[Funnel] = relationship(lazy="selectin")


class FunnelEvent(Base):
    __tablename__ = "funnel_events"

    id: Mapped[uuid.UUID] = _uuid_pk()
    session_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_sessions.id"), nullable=False, index=True
    )
    step_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class FunnelCart(Base):
    __tablename__ = "funnel_carts"

    id: Mapped[uuid.UUID] = _uuid_pk()
    session_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_sessions.id"), nullable=False, index=True
    )
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    step_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cart_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    recovery_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    recovery_status: Mapped[CartRecoveryStatus] = mapped_column(
        Enum(CartRecoveryStatus), nullable=False, default=CartRecoveryStatus.pending, index=True
    )
    abandoned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    recovered_order_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    funnel: Mapped[Funnel] = relationship(lazy="selectin")


class FunnelOrder(Base):
    __tablename__ = "funnel_orders"

    id: Mapped[uuid.UUID] = _uuid_pk()
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_sessions.id"), nullable=False, index=True
    )
    product_order_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("product_orders.id"), nullable=False, index=True
    )
    step_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    order_type: Mapped[str] = mapped_column(String(32), nullable=False, default="main")
    funnel_revenue: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    bumps_offered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bumps_accepted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    product_order: Mapped[ProductOrder] = relationship(lazy="selectin")
    session: Mapped[FunnelSession] = relationship(lazy="selectin")


# --- Affiliates -------------------------------------------------------------


class FunnelAffiliate(Base):
    __tablename__ = "funnel_affiliates"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Normalised to +<country><number>; the login identifier.
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ref_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    memberships: Mapped[list[FunnelAffiliateMembership]] = relationship(
        back_populates="affiliate", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class FunnelAffiliateMembership(Base):
    __tablename__ = "funnel_affiliate_funnels"
    __table_args__ = (
        Index("ix_affiliate_funnels_affiliate_funnel", "affiliate_id", "funnel_id", unique=True),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_affiliates.id"), nullable=False
    )
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="approved")
    joined_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    affiliate: Mapped[FunnelAffiliate] = relationship(back_populates="memberships", lazy="selectin")
    funnel: Mapped[Funnel] = relationship(lazy="selectin")


class FunnelAffiliateCommissionRule(Base):
    __tablename__ = "funnel_affiliate_commission_rules"
    __table_args__ = (
        Index("ix_commission_rules_funnel_product", "funnel_id", "funnel_product_id", unique=True),
    )

    id: Mapped[uuid.UUID] = _uuid_pk()
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False
    )
    funnel_product_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_step_products.id", ondelete="CASCADE"), nullable=False
    )
    commission_type: Mapped[str] = mapped_column(String(16), nullable=False, default="percentage")
    commission_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)


class FunnelAffiliateCommission(Base):
    __tablename__ = "funnel_affiliate_commissions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_affiliates.id"), nullable=False, index=True
    )
    funnel_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=False, index=True
    )
    session_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_sessions.id"), nullable=True
    )
    funnel_order_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_orders.id"), nullable=True
    )
    product_order_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("product_orders.id"), nullable=True
    )
    commission_type: Mapped[str] = mapped_column(String(16), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Money, nullable=False)
    order_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        Enum(CommissionStatus), nullable=False, default=CommissionStatus.pending, index=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    affiliate: Mapped[FunnelAffiliate] = relationship(lazy="selectin")


# --- Automations ------------------------------------------------------------


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="whatsapp")
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class FunnelAutomation(Base):
    __tablename__ = "funnel_automations"

    id: Mapped[uuid.UUID] = _uuid_pk()
    # Null funnel_id means the automation applies to every funnel.
    funnel_id: Mapped[uuid.UUID | None] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnels.id"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trigger_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    actions: Mapped[list[FunnelAutomationAction]] = relationship(
        back_populates="automation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FunnelAutomationAction.sort_order",
    )


class FunnelAutomationAction(Base):
    __tablename__ = "funnel_automation_actions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    automation_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("funnel_automations.id"), nullable=False, index=True
    )
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    automation: Mapped[FunnelAutomation] = relationship(back_populates="actions")


class FunnelAutomationLog(Base):
    __tablename__ = "funnel_automation_logs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    automation_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    action_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[AutomationLogStatus] = mapped_column(
        Enum(AutomationLogStatus), nullable=False, index=True
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("ix_automation_logs_status_scheduled", "status", "scheduled_at"),)


# --- Workflows --------------------------------------------------------------


class Workflow(Base):
    __tablename__ = "workflows"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus), nullable=False, default=WorkflowStatus.draft, index=True
    )
    trigger_type: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    trigger_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    steps: Mapped[list[WorkflowStep]] = relationship(
        back_populates="workflow", cascade="all, delete-orphan", lazy="selectin"
    )
    connections: Mapped[list[WorkflowConnection]] = relationship(
        back_populates="workflow", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.active


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"

    id: Mapped[uuid.UUID] = _uuid_pk()
    workflow_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflows.id"), nullable=False, index=True
    )
    # Node id assigned by the visual builder; edges reference it.
    node_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    action_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    position: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    workflow: Mapped[Workflow] = relationship(back_populates="steps")


class WorkflowConnection(Base):
    __tablename__ = "workflow_connections"

    id: Mapped[uuid.UUID] = _uuid_pk()
    workflow_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflows.id"), nullable=False, index=True
    )
    source_step_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflow_steps.id"), nullable=False
    )
    target_step_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflow_steps.id"), nullable=False
    )
    source_handle: Mapped[str | None] = mapped_column(String(32), nullable=True)

    workflow: Mapped[Workflow] = relationship(back_populates="connections")


class WorkflowEnrollment(Base):
    __tablename__ = "workflow_enrollments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    workflow_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflows.id"), nullable=False, index=True
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("contacts.id"), nullable=False, index=True
    )
    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(EnrollmentStatus), nullable=False, default=EnrollmentStatus.active, index=True
    )
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    current_step_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    # Parked branches: [{"resume_at": iso, "step_ids": [...], "delay_step_id": ...}]
    pending_resumes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    next_resume_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    exit_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    enrolled_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    workflow: Mapped[Workflow] = relationship(lazy="selectin")
    contact: Mapped[Contact] = relationship(lazy="selectin")

    __table_args__ = (Index("ix_enrollments_workflow_contact", "workflow_id", "contact_id"),)


class WorkflowStepExecution(Base):
    __tablename__ = "workflow_step_executions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("workflow_enrollments.id"), nullable=False, index=True
    )
    step_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


# --- Payment gateway (in-process) ------------------------------------------


class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    client_secret: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receipt_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


# --- Module Notes -----------------------------------------------------------
# Relationships that services read after loading (order items/payments, funnel
# steps/products, automation actions, workflow graph) use selectin loading so
# merge-tag providers can read them synchronously.
