"""
salesflow.services.funnel_service

Funnel admin and public-visit service.

Responsibilities:
- Admin CRUD for funnels, steps, step products and order bumps.
- Draft/publish handling for page-builder content (stored as JSON, never rendered).
- Public sessions: start a visit, serve a published step, accept an opt-in.
- Funnel order listings and stats.
- Embeddable checkout widget: key, snippet codes, widget settings and the public
  lookup that serves the checkout step to a host page.
- Credit a visit to the referring affiliate (`ref`) and record client-side events.
"""

from __future__ import annotations

import re
import secrets
import string
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    CartRecoveryStatus,
    Funnel,
    FunnelCart,
    FunnelOrder,
    FunnelSession,
    FunnelStep,
    FunnelStepOrderBump,
    FunnelStepProduct,
    utcnow,
)
from salesflow.db.repositories.funnels import FunnelCartRepo, FunnelOrderRepo, FunnelRepo, FunnelSessionRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.observability.logging import get_logger
from salesflow.services.affiliate_service import AffiliateService
from salesflow.services.automation_service import AutomationService
from salesflow.services.contact_service import ContactService
from salesflow.services.workflow_service import WorkflowService
from salesflow.settings import Settings

log = get_logger(__name__)

STEP_TYPES = ("landing", "optin", "checkout", "upsell", "downsell", "thankyou")
TRACKING_FIELDS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "device",
    "browser",
    "country",
    "referrer",
    "ip_address",
    "landing_page",
)
EMPTY_CONTENT: dict[str, Any] = {"content": [], "root": {}}
# Events a published page may report for a visit.
CLIENT_EVENTS = ("form_submit", "button_click", "thankyou_button_click", "video_play")
EMBED_SETTING_KEYS = ("allowed_domains", "theme", "primary_color", "border_radius", "show_powered_by")

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_EMBED_ALPHABET = string.ascii_letters + string.digits


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", text.lower()).strip("-") or "funnel"


class FunnelService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings
        self._http = http
        self._clock = clock

        self._funnels = FunnelRepo(session)
        self._sessions = FunnelSessionRepo(session)
        self._carts = FunnelCartRepo(session)
        self._funnel_orders = FunnelOrderRepo(session)

    # --- Funnels ------------------------------------------------------------

    async def get(self, funnel_id: uuid.UUID) -> Funnel:
        funnel = await self._funnels.get(funnel_id)
        if funnel is None:
            raise NotFound("Funnel not found")
        return funnel

    async def list(self, *, status: str | None = None, search: str | None = None) -> list[Funnel]:
        return await self._funnels.list(status=status, search=search)

    async def _unique_slug(self, base: str) -> str:
        slug, counter = base, 1
        while await self._funnels.slug_exists(slug):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    async def create(self, *, name: str, settings: dict[str, Any] | None = None) -> Funnel:
        funnel = Funnel(
            name=name,
            slug=await self._unique_slug(slugify(name)),
            status="draft",
            settings=dict(settings or {}),
            steps=[
                FunnelStep(
                    name="Landing Page",
                    slug="landing",
                    type="landing",
                    sort_order=0,
                    content=dict(EMPTY_CONTENT),
                    settings={},
                    products=[],
                    order_bumps=[],
                )
            ],
        )
        await self._funnels.add(funnel)
        await self._session.commit()
        log.info("funnel_created", funnel_id=str(funnel.id), slug=funnel.slug)
        return funnel

    async def update(
        self,
        funnel_id: uuid.UUID,
        *,
        name: str | None = None,
        slug: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> Funnel:
        funnel = await self.get(funnel_id)
        if name is not None:
            funnel.name = name
        if slug is not None and slug != funnel.slug:
            slug = slugify(slug)
            if await self._funnels.slug_exists(slug):
                raise ValidationFailed.field("slug", "The slug has already been taken.")
            funnel.slug = slug
        if settings is not None:
            funnel.settings = dict(settings)
        await self._session.commit()
        return funnel

    async def delete(self, funnel_id: uuid.UUID) -> None:
        funnel = await self.get(funnel_id)
        await self._funnels.delete(funnel)
        await self._session.commit()
        log.info("funnel_deleted", funnel_id=str(funnel_id))

    async def duplicate(self, funnel_id: uuid.UUID) -> Funnel:
        source = await self.get(funnel_id)
        copy = Funnel(
            name=f"{source.name} (Copy)",
            slug=await self._unique_slug(f"{source.slug}-copy"),
            status="draft",
            settings=dict(source.settings or {}),
            steps=[_copy_step(step, name=step.name, slug=step.slug) for step in source.steps],
        )
        await self._funnels.add(copy)
        await self._session.commit()
        return copy

    async def publish(self, funnel_id: uuid.UUID) -> Funnel:
        funnel = await self.get(funnel_id)
        funnel.status = "published"
        funnel.published_at = self._clock()
        await self._session.commit()
        log.info("funnel_published", funnel_id=str(funnel.id))
        return funnel

    async def unpublish(self, funnel_id: uuid.UUID) -> Funnel:
        funnel = await self.get(funnel_id)
        funnel.status = "draft"
        await self._session.commit()
        return funnel

    # --- Steps --------------------------------------------------------------

    async def _funnel_step(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> tuple[Funnel, FunnelStep]:
        # Steps are reached through the funnel so both sides of the relationship are loaded.
        funnel = await self.get(funnel_id)
        step = next((s for s in funnel.steps if s.id == step_id), None)
        if step is None:
            raise NotFound("Step not found")
        return funnel, step

    async def get_step(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> FunnelStep:
        _, step = await self._funnel_step(funnel_id, step_id)
        return step

    async def list_steps(self, funnel_id: uuid.UUID) -> list[FunnelStep]:
        return list((await self.get(funnel_id)).steps)

    async def create_step(
        self,
        funnel_id: uuid.UUID,
        *,
        name: str,
        type: str,
        slug: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> FunnelStep:
        if type not in STEP_TYPES:
            raise ValidationFailed.field("type", "The selected type is invalid.")
        funnel = await self.get(funnel_id)
        step = FunnelStep(
            name=name,
            slug=_unique_step_slug(funnel, slugify(slug or name)),
            type=type,
            sort_order=max((s.sort_order for s in funnel.steps), default=-1) + 1,
            content=dict(EMPTY_CONTENT),
            settings=dict(settings or {}),
            products=[],
            order_bumps=[],
        )
        funnel.steps.append(step)
        await self._session.flush()
        await self._session.commit()
        return step

    async def update_step(
        self,
        funnel_id: uuid.UUID,
        step_id: uuid.UUID,
        *,
        name: str | None = None,
        slug: str | None = None,
        type: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> FunnelStep:
        funnel, step = await self._funnel_step(funnel_id, step_id)
        if type is not None:
            if type not in STEP_TYPES:
                raise ValidationFailed.field("type", "The selected type is invalid.")
            step.type = type
        if name is not None:
            step.name = name
        if slug is not None and slugify(slug) != step.slug:
            slug = slugify(slug)
            if any(s.slug == slug for s in funnel.steps if s.id != step.id):
                raise ValidationFailed.field("slug", "The slug has already been taken.")
            step.slug = slug
        if settings is not None:
            step.settings = dict(settings)
        await self._session.commit()
        return step

    async def delete_step(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> None:
        funnel, step = await self._funnel_step(funnel_id, step_id)
        funnel.steps.remove(step)
        await self._session.flush()
        await self._session.commit()

    async def reorder_steps(self, funnel_id: uuid.UUID, order: list[dict[str, Any]]) -> list[FunnelStep]:
        funnel = await self.get(funnel_id)
        by_id = {str(s.id): s for s in funnel.steps}
        for i, entry in enumerate(order):
            step = by_id.get(str(entry.get("id")))
            if step is None:
                raise ValidationFailed.field(f"steps.{i}.id", "The selected step is invalid.")
            sort_order = int(entry.get("sort_order", i))
            if sort_order < 0:
                raise ValidationFailed.field(f"steps.{i}.sort_order", "The sort order must be at least 0.")
            step.sort_order = sort_order
        await self._session.commit()
        return sorted(funnel.steps, key=lambda s: s.sort_order)

    async def duplicate_step(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> FunnelStep:
        funnel, step = await self._funnel_step(funnel_id, step_id)
        slug, counter = f"{step.slug}-copy", 1
        while any(s.slug == slug for s in funnel.steps):
            slug = f"{step.slug}-copy-{counter}"
            counter += 1
        copy = _copy_step(step, name=f"{step.name} (Copy)", slug=slug)
        copy.sort_order = max(s.sort_order for s in funnel.steps) + 1
        # Only the draft is copied; the copy starts unpublished.
        copy.published_content = None
        funnel.steps.append(copy)
        await self._session.flush()
        await self._session.commit()
        return copy

    async def save_content(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, content: dict[str, Any]
    ) -> FunnelStep:
        step = await self.get_step(funnel_id, step_id)
        version = int((step.settings or {}).get("content_version", 0)) + 1
        step.content = dict(content)
        step.settings = {**(step.settings or {}), "content_version": version}
        await self._session.commit()
        return step

    async def publish_content(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> FunnelStep:
        step = await self.get_step(funnel_id, step_id)
        if not step.content or step.content == EMPTY_CONTENT:
            raise ValidationFailed.field("content", "No draft content to publish")
        step.published_content = dict(step.content)
        await self._session.commit()
        return step

    # --- Step products and order bumps -------------------------------------

    async def list_products(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> list[FunnelStepProduct]:
        return list((await self.get_step(funnel_id, step_id)).products)

    async def create_product(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, **fields: Any
    ) -> FunnelStepProduct:
        step = await self.get_step(funnel_id, step_id)
        fields.setdefault("sort_order", len(step.products))
        product = FunnelStepProduct(**fields)
        step.products.append(product)
        await self._session.flush()
        await self._session.commit()
        return product

    async def _step_product(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, product_id: uuid.UUID
    ) -> tuple[FunnelStep, FunnelStepProduct]:
        step = await self.get_step(funnel_id, step_id)
        product = next((p for p in step.products if p.id == product_id), None)
        if product is None:
            raise NotFound("Step product not found")
        return step, product

    async def update_product(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, product_id: uuid.UUID, **changes: Any
    ) -> FunnelStepProduct:
        _, product = await self._step_product(funnel_id, step_id, product_id)
        for key, value in changes.items():
            if value is not None:
                setattr(product, key, value)
        await self._session.commit()
        return product

    async def delete_product(self, funnel_id: uuid.UUID, step_id: uuid.UUID, product_id: uuid.UUID) -> None:
        step, product = await self._step_product(funnel_id, step_id, product_id)
        step.products.remove(product)
        await self._session.flush()
        await self._session.commit()

    async def list_bumps(self, funnel_id: uuid.UUID, step_id: uuid.UUID) -> list[FunnelStepOrderBump]:
        return list((await self.get_step(funnel_id, step_id)).order_bumps)

    async def create_bump(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, **fields: Any
    ) -> FunnelStepOrderBump:
        step = await self.get_step(funnel_id, step_id)
        fields.setdefault("sort_order", len(step.order_bumps))
        bump = FunnelStepOrderBump(**fields)
        step.order_bumps.append(bump)
        await self._session.flush()
        await self._session.commit()
        return bump

    async def _bump(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, bump_id: uuid.UUID
    ) -> tuple[FunnelStep, FunnelStepOrderBump]:
        step = await self.get_step(funnel_id, step_id)
        bump = next((b for b in step.order_bumps if b.id == bump_id), None)
        if bump is None:
            raise NotFound("Order bump not found")
        return step, bump

    async def update_bump(
        self, funnel_id: uuid.UUID, step_id: uuid.UUID, bump_id: uuid.UUID, **changes: Any
    ) -> FunnelStepOrderBump:
        _, bump = await self._bump(funnel_id, step_id, bump_id)
        for key, value in changes.items():
            if value is not None:
                setattr(bump, key, value)
        await self._session.commit()
        return bump

    async def delete_bump(self, funnel_id: uuid.UUID, step_id: uuid.UUID, bump_id: uuid.UUID) -> None:
        step, bump = await self._bump(funnel_id, step_id, bump_id)
        step.order_bumps.remove(bump)
        await self._session.flush()
        await self._session.commit()

    # --- Orders & stats -----------------------------------------------------

    async def orders(self, funnel_id: uuid.UUID, *, order_type: str | None = None) -> list[FunnelOrder]:
        await self.get(funnel_id)
        orders = await self._funnel_orders.list_for_funnel(funnel_id)
        if order_type:
            orders = [o for o in orders if o.order_type == order_type]
        return orders

    async def stats(self, funnel_id: uuid.UUID) -> dict[str, Any]:
        await self.get(funnel_id)
        by_type = await self._funnel_orders.totals_by_type(funnel_id)
        total_orders = sum(count for count, _ in by_type.values())
        total_revenue = sum((revenue for _, revenue in by_type.values()), Decimal("0"))

        carts = await self._carts.abandoned_for_funnel(funnel_id)
        open_carts = [c for c in carts if c.recovery_status != CartRecoveryStatus.recovered]

        sessions = await self._sessions.count_for_funnel(funnel_id)
        conversions = await self._sessions.count_for_funnel(funnel_id, converted=True)
        return {
            "total_orders": total_orders,
            "total_revenue": float(total_revenue),
            "avg_order_value": round(float(total_revenue) / total_orders, 2) if total_orders else 0,
            "type_breakdown": {
                t: {"count": by_type.get(t, (0, Decimal("0")))[0], "revenue": float(by_type.get(t, (0, Decimal("0")))[1])}
                for t in ("main", "upsell", "downsell")
            },
            "cart_stats": {
                "total": len(carts),
                "abandoned": sum(1 for c in carts if c.recovery_status == CartRecoveryStatus.abandoned),
                "recovered": sum(1 for c in carts if c.recovery_status == CartRecoveryStatus.recovered),
                "recoverable_value": float(sum((c.total_amount for c in open_carts), Decimal("0"))),
            },
            "sessions": sessions,
            "conversions": conversions,
            "conversion_rate": round(conversions / sessions * 100, 2) if sessions else 0,
        }

    async def abandoned_carts(self, funnel_id: uuid.UUID) -> list[FunnelCart]:
        await self.get(funnel_id)
        return await self._carts.abandoned_for_funnel(funnel_id)

    # --- Embed widget -------------------------------------------------------

    async def _new_embed_key(self) -> str:
        while True:
            key = "".join(secrets.choice(_EMBED_ALPHABET) for _ in range(32))
            if not await self._funnels.embed_key_exists(key):
                return key

    def embed_urls(self, funnel: Funnel) -> dict[str, str]:
        base = self._settings.app_url.rstrip("/")
        return {"embed_url": f"{base}/embed/{funnel.embed_key}", "script_url": f"{base}/embed.js"}

    async def embed_code(self, funnel_id: uuid.UUID) -> dict[str, Any]:
        funnel = await self.get(funnel_id)
        if not funnel.embed_key:
            funnel.embed_key = await self._new_embed_key()
            await self._session.commit()
        urls = self.embed_urls(funnel)
        iframe = (
            "<!-- Funnel Checkout Embed -->\n"
            "<iframe\n"
            f'    src="{urls["embed_url"]}"\n'
            '    width="100%"\n'
            '    height="800"\n'
            '    frameborder="0"\n'
            '    allow="payment"\n'
            '    style="border: none; max-width: 500px; margin: 0 auto; display: block;"\n'
            "></iframe>"
        )
        script = (
            "<!-- Funnel Checkout Widget -->\n"
            f'<div id="funnel-checkout-{funnel.embed_key}"></div>\n'
            f'<script src="{urls["script_url"]}" data-funnel-key="{funnel.embed_key}"></script>'
        )
        return {"embed_key": funnel.embed_key, **urls, "codes": {"iframe": iframe, "script": script}}

    async def toggle_embed(self, funnel_id: uuid.UUID, *, enabled: bool) -> Funnel:
        funnel = await self.get(funnel_id)
        if enabled and not funnel.embed_key:
            funnel.embed_key = await self._new_embed_key()
        funnel.embed_enabled = enabled
        await self._session.commit()
        log.info("funnel_embed_toggled", funnel_id=str(funnel.id), enabled=enabled)
        return funnel

    async def update_embed_settings(self, funnel_id: uuid.UUID, embed_settings: dict[str, Any]) -> Funnel:
        """
        Replaces the widget settings with the validated keys given; unknown keys are dropped.
        """

        funnel = await self.get(funnel_id)
        funnel.embed_settings = {k: v for k, v in embed_settings.items() if k in EMBED_SETTING_KEYS}
        await self._session.commit()
        return funnel

    async def regenerate_embed_key(self, funnel_id: uuid.UUID) -> Funnel:
        funnel = await self.get(funnel_id)
        old = funnel.embed_key
        funnel.embed_key = await self._new_embed_key()
        await self._session.commit()
        log.info("funnel_embed_key_regenerated", funnel_id=str(funnel.id), had_key=old is not None)
        return funnel

    async def embedded_checkout(
        self,
        embed_key: str,
        *,
        session_id: uuid.UUID | None = None,
        tracking: dict[str, Any] | None = None,
        ref: str | None = None,
        origin: str | None = None,
    ) -> tuple[Funnel, FunnelStep, FunnelSession]:
        """
        Serve the checkout widget behind an embed key.

        The widget shows the funnel's checkout step, or failing that the first
        step that sells something. A known `session_id` resumes that visit;
        otherwise a new visit flagged as embedded is started.
        """

        funnel = await self._funnels.get_by_embed_key(embed_key)
        if funnel is None or not funnel.embed_enabled or funnel.status != "published":
            raise NotFound("Funnel not found")
        step = next((s for s in funnel.steps if s.type == "checkout"), None)
        if step is None:
            step = next((s for s in funnel.steps if any(p.is_active for p in s.products)), None)
        if step is None:
            raise NotFound("No checkout step found")

        visitor = None
        if session_id is not None:
            visitor = await self._sessions.get(session_id)
            if visitor is not None and visitor.funnel_id != funnel.id:
                visitor = None
        if visitor is None:
            meta = {"embedded": True, "embed_origin": origin}
            visitor = await self._open_session(funnel, tracking=tracking, ref=ref, meta=meta, step=step)
            await self._session.commit()
            log.info("funnel_embed_session_started", funnel_id=str(funnel.id), session_id=str(visitor.id))
        return funnel, step, visitor

    # --- Public visits ------------------------------------------------------

    async def published_funnel(self, slug: str) -> Funnel:
        funnel = await self._funnels.get_by_slug(slug)
        if funnel is None or funnel.status != "published":
            raise NotFound("Funnel not found")
        return funnel

    async def _open_session(
        self,
        funnel: Funnel,
        *,
        tracking: dict[str, Any] | None,
        ref: str | None,
        meta: dict[str, Any] | None = None,
        step: FunnelStep | None = None,
    ) -> FunnelSession:
        fields = {k: v for k, v in (tracking or {}).items() if k in TRACKING_FIELDS and v}
        affiliates = AffiliateService(session=self._session, settings=self._settings, clock=self._clock)
        visitor = await self._sessions.create(
            funnel=funnel, affiliate_id=await affiliates.referring_affiliate(funnel, ref), **fields
        )
        if meta:
            visitor.meta = dict(meta)
        await self._sessions.track(
            visitor,
            "session_started",
            {"landing_page": fields.get("landing_page"), **(meta or {})},
            step_id=step.id if step is not None else None,
        )
        return visitor

    async def start_session(
        self, slug: str, *, tracking: dict[str, Any] | None = None, ref: str | None = None
    ) -> FunnelSession:
        funnel = await self.published_funnel(slug)
        visitor = await self._open_session(funnel, tracking=tracking, ref=ref)
        await self._session.commit()
        log.info(
            "funnel_session_started",
            funnel_id=str(funnel.id),
            session_id=str(visitor.id),
            affiliate_id=str(visitor.affiliate_id) if visitor.affiliate_id else None,
        )
        return visitor

    async def track_event(
        self,
        slug: str,
        *,
        session_id: uuid.UUID,
        event_type: str,
        step_id: uuid.UUID | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        if event_type not in CLIENT_EVENTS:
            raise ValidationFailed.field("event_type", "The selected event type is invalid.")
        funnel = await self.published_funnel(slug)
        visitor = await self.visitor(funnel, session_id)
        if step_id is not None and not any(s.id == step_id for s in funnel.steps):
            raise NotFound("Step not found")
        await self._sessions.track(visitor, event_type, data or {}, step_id=step_id)
        await self._session.commit()

    async def visitor(self, funnel: Funnel, session_id: uuid.UUID | None) -> FunnelSession | None:
        if session_id is None:
            return None
        visitor = await self._sessions.get(session_id)
        if visitor is None or visitor.funnel_id != funnel.id:
            raise NotFound("Session not found")
        return visitor

    async def view_step(
        self, slug: str, step_slug: str, *, session_id: uuid.UUID | None = None
    ) -> tuple[Funnel, FunnelStep, FunnelStep | None]:
        """
        Returns the funnel, the requested step and the step that follows it.
        """

        funnel = await self.published_funnel(slug)
        step = next((s for s in funnel.steps if s.slug == step_slug), None)
        if step is None:
            raise NotFound("Step not found")
        visitor = await self.visitor(funnel, session_id)
        if visitor is not None:
            await self._sessions.track(visitor, "page_view", {"step": step.slug}, step_id=step.id)
            await self._session.commit()
        return funnel, step, next_step(funnel, step)

    async def submit_optin(
        self,
        slug: str,
        *,
        step_id: uuid.UUID,
        email: str,
        name: str | None = None,
        phone: str | None = None,
        session_id: uuid.UUID | None = None,
    ) -> dict[str, Any]:
        funnel = await self.published_funnel(slug)
        step = next((s for s in funnel.steps if s.id == step_id), None)
        if step is None:
            raise NotFound("Step not found")
        visitor = await self.visitor(funnel, session_id)

        contact = await ContactService(session=self._session).find_or_create(name=name, email=email, phone=phone)
        if visitor is not None:
            visitor.email = email
            visitor.phone = phone or visitor.phone
            visitor.name = name or visitor.name
            if contact is not None:
                visitor.contact_id = contact.id
            await self._sessions.track(visitor, "optin", {"email": email}, step_id=step.id)
        await self._session.commit()
        log.info("funnel_optin", funnel_id=str(funnel.id), step_id=str(step.id))

        context: dict[str, Any] = {
            "funnel_session": visitor,
            "session_id": str(visitor.id) if visitor is not None else None,
            "contact": contact,
            "funnel": {"id": str(funnel.id), "slug": funnel.slug, "name": funnel.name, "step_name": step.name},
            "email": email,
            "name": name,
            "phone": phone,
        }
        automations = AutomationService(
            session=self._session, settings=self._settings, http=self._http, clock=self._clock
        )
        await automations.trigger("optin_submitted", context, funnel_id=funnel.id)
        if contact is not None:
            workflows = WorkflowService(
                session=self._session, settings=self._settings, http=self._http, clock=self._clock
            )
            await workflows.trigger(
                "optin_submitted", contact, context, conditions={"funnel_id": str(funnel.id)}
            )

        following = next_step(funnel, step)
        redirect = f"/f/{funnel.slug}/{following.slug}" if following is not None else f"/f/{funnel.slug}"
        return {"success": True, "redirect_url": redirect}


def next_step(funnel: Funnel, step: FunnelStep) -> FunnelStep | None:
    target = (step.settings or {}).get("next_step_id")
    if target:
        found = next((s for s in funnel.steps if str(s.id) == str(target)), None)
        if found is not None:
            return found
    later = [s for s in funnel.steps if s.sort_order > step.sort_order]
    return min(later, key=lambda s: s.sort_order) if later else None


def _unique_step_slug(funnel: Funnel, base: str) -> str:
    taken = {s.slug for s in funnel.steps}
    slug, counter = base, 1
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def _copy_step(step: FunnelStep, *, name: str, slug: str) -> FunnelStep:
    return FunnelStep(
        name=name,
        slug=slug,
        type=step.type,
        sort_order=step.sort_order,
        content=dict(step.content or {}),
        published_content=dict(step.published_content) if step.published_content else None,
        settings=dict(step.settings or {}),
        products=[
            FunnelStepProduct(
                product_id=p.product_id,
                name=p.name,
                description=p.description,
                type=p.type,
                funnel_price=p.funnel_price,
                compare_at_price=p.compare_at_price,
                is_active=p.is_active,
                sort_order=p.sort_order,
            )
            for p in step.products
        ],
        order_bumps=[
            FunnelStepOrderBump(
                product_id=b.product_id,
                name=b.name,
                description=b.description,
                price=b.price,
                is_active=b.is_active,
                sort_order=b.sort_order,
            )
            for b in step.order_bumps
        ],
    )
