"""
salesflow.services.affiliate_service

Funnel affiliate programme.

Responsibilities:
- Affiliate accounts: register and log in by phone, profile edits, access tokens.
- Funnel membership: discover affiliate-enabled funnels, join one, per-funnel stats,
  dashboard and a leaderboard across the funnels an affiliate promotes.
- Funnel owner side: list a funnel's affiliates with stats, edit programme settings
  and commission rules, review (approve/reject/bulk approve) commissions.
- Attribute visitor sessions to a referring affiliate and earn a pending commission
  when an attributed order is paid.

Commission amounts:
- percentage: funnel revenue of the paid order * value / 100, rounded half-up to cents.
- fixed: the rule value, regardless of order size.
"""

from __future__ import annotations

import re
import secrets
import string
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.auth.jwt import JwtConfig, issue_token
from salesflow.db.models import (
    CommissionStatus,
    Funnel,
    FunnelAffiliate,
    FunnelAffiliateCommission,
    FunnelAffiliateCommissionRule,
    FunnelOrder,
    FunnelSession,
    ProductOrder,
    utcnow,
)
from salesflow.db.repositories.affiliates import AffiliateRepo, CommissionRepo
from salesflow.db.repositories.funnels import FunnelRepo
from salesflow.errors import Conflict, Forbidden, NotFound, ValidationFailed
from salesflow.observability.logging import get_logger
from salesflow.settings import Settings

log = get_logger(__name__)

COMMISSION_TYPES = ("percentage", "fixed")
CHECKOUT_FILL_EVENTS = ("form_submit", "checkout_initiated")
THANKYOU_CLICK_EVENTS = ("thankyou_button_click",)
EARNED = (CommissionStatus.approved, CommissionStatus.paid)

_CENT = Decimal("0.01")
_NON_DIGITS = re.compile(r"\D")
_REF_ALPHABET = string.ascii_uppercase + string.digits


def normalize_phone(phone: str) -> str:
    """
    Normalise a phone number to +<country><number>.

    "+60123456789" is kept, "60123456789" gains a "+", and a local number
    starting with 0 is read as Malaysian ("0123456789" -> "+60123456789").
    """

    phone = phone.strip()
    if phone.startswith("+"):
        return phone
    digits = _NON_DIGITS.sub("", phone)
    if digits.startswith("0"):
        return "+60" + digits[1:]
    if digits:
        return "+" + digits
    return "+60"


def commission_amount(rule: FunnelAffiliateCommissionRule, order_amount: Decimal) -> Decimal:
    value = Decimal(rule.commission_value)
    if rule.commission_type == "fixed":
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)
    return (Decimal(order_amount) * value / 100).quantize(_CENT, rounding=ROUND_HALF_UP)


def _is_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class AffiliateService:
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

        self._affiliates = AffiliateRepo(session)
        self._commissions = CommissionRepo(session)
        self._funnels = FunnelRepo(session)

    # --- Links -------------------------------------------------------------------

    def affiliate_url(self, affiliate: FunnelAffiliate, funnel: Funnel) -> str:
        return f"{self._settings.app_url.rstrip('/')}/f/{funnel.slug}?ref={affiliate.ref_code}"

    def affiliate_custom_url(self, affiliate: FunnelAffiliate, funnel: Funnel) -> str | None:
        if not funnel.affiliate_custom_url:
            return None
        joiner = "&" if "?" in funnel.affiliate_custom_url else "?"
        return f"{funnel.affiliate_custom_url}{joiner}ref={affiliate.ref_code}"

    def _links(self, affiliate: FunnelAffiliate, funnel: Funnel) -> dict[str, Any]:
        return {
            "affiliate_url": self.affiliate_url(affiliate, funnel),
            "affiliate_custom_url": self.affiliate_custom_url(affiliate, funnel),
        }

    # --- Accounts ----------------------------------------------------------------

    async def _new_ref_code(self) -> str:
        while True:
            code = "".join(secrets.choice(_REF_ALPHABET) for _ in range(8))
            if not await self._affiliates.ref_code_exists(code):
                return code

    async def register(self, *, name: str, phone: str, email: str | None = None) -> FunnelAffiliate:
        phone = normalize_phone(phone)
        if await self._affiliates.get_by_phone(phone) is not None:
            raise ValidationFailed.field("phone", "The phone has already been taken.")
        affiliate = FunnelAffiliate(
            name=name,
            phone=phone,
            email=email,
            ref_code=await self._new_ref_code(),
            status="active",
            last_login_at=self._clock(),
            memberships=[],
        )
        await self._affiliates.add(affiliate)
        await self._session.commit()
        log.info("affiliate_registered", affiliate_id=str(affiliate.id))
        return affiliate

    async def login(self, *, phone: str) -> FunnelAffiliate:
        affiliate = await self._affiliates.get_by_phone(normalize_phone(phone))
        if affiliate is None:
            raise NotFound("No affiliate account found with this phone number.")
        if not affiliate.is_active:
            raise Forbidden("Your account is not active.")
        affiliate.last_login_at = self._clock()
        await self._session.commit()
        return affiliate

    def access_token(self, affiliate: FunnelAffiliate) -> str:
        return issue_token(
            cfg=JwtConfig.from_settings(self._settings),
            subject=str(affiliate.id),
            roles=["affiliate"],
            name=affiliate.name,
            ttl=timedelta(minutes=self._settings.affiliate_token_ttl_minutes),
        )

    async def current(self, subject: str) -> FunnelAffiliate:
        """
        Resolve the affiliate behind a token subject. Staff tokens and
        deactivated accounts are refused.
        """

        try:
            affiliate_id = uuid.UUID(subject)
        except ValueError:
            raise Forbidden("Affiliate account not found.") from None
        affiliate = await self._affiliates.get(affiliate_id)
        if affiliate is None:
            raise Forbidden("Affiliate account not found.")
        if not affiliate.is_active:
            raise Forbidden("Your account is not active.")
        return affiliate

    async def update_profile(
        self, affiliate: FunnelAffiliate, *, name: str, phone: str, email: str | None = None
    ) -> FunnelAffiliate:
        phone = normalize_phone(phone)
        owner = await self._affiliates.get_by_phone(phone)
        if owner is not None and owner.id != affiliate.id:
            raise ValidationFailed.field("phone", "The phone has already been taken.")
        affiliate.name = name
        affiliate.phone = phone
        affiliate.email = email
        await self._session.commit()
        return affiliate

    # --- Affiliate portal ----------------------------------------------------------

    def _joined(self, affiliate: FunnelAffiliate) -> list[Funnel]:
        return [
            m.funnel
            for m in affiliate.memberships
            if m.status == "approved" and m.funnel is not None and m.funnel.status == "published"
        ]

    async def dashboard(self, affiliate: FunnelAffiliate) -> dict[str, Any]:
        approved = await self._commissions.total(affiliate.id, [CommissionStatus.approved])
        pending = await self._commissions.total(affiliate.id, [CommissionStatus.pending])
        paid = await self._commissions.total(affiliate.id, [CommissionStatus.paid])
        joined = []
        for funnel in self._joined(affiliate):
            earned = await self._commissions.total(affiliate.id, [CommissionStatus.approved], funnel_id=funnel.id)
            joined.append(
                {
                    "id": str(funnel.id),
                    "name": funnel.name,
                    **self._links(affiliate, funnel),
                    "stats": {"total_commission": float(earned)},
                }
            )
        return {
            "stats": {
                "total_earned": float(approved),
                "total_pending": float(pending),
                "total_paid": float(paid),
                "total_clicks": await self._affiliates.session_count(affiliate.id),
                "total_conversions": await self._affiliates.session_count(affiliate.id, converted=True),
            },
            "joined_funnels": joined,
        }

    async def joined_funnels(self, affiliate: FunnelAffiliate) -> list[dict[str, Any]]:
        out = []
        for funnel in self._joined(affiliate):
            out.append(
                {
                    "id": str(funnel.id),
                    "name": funnel.name,
                    "slug": funnel.slug,
                    **self._links(affiliate, funnel),
                    "stats": {
                        "clicks": await self._affiliates.session_count(affiliate.id, [funnel.id]),
                        "conversions": await self._affiliates.session_count(affiliate.id, [funnel.id], converted=True),
                        "total_commission": float(
                            await self._commissions.total(affiliate.id, [CommissionStatus.approved], funnel_id=funnel.id)
                        ),
                        "pending_commission": float(
                            await self._commissions.total(affiliate.id, [CommissionStatus.pending], funnel_id=funnel.id)
                        ),
                    },
                }
            )
        return out

    async def discover(self, affiliate: FunnelAffiliate) -> list[dict[str, Any]]:
        joined_ids = {m.funnel_id for m in affiliate.memberships}
        out = []
        for funnel in await self._funnels.list(status="published"):
            if not funnel.affiliate_enabled:
                continue
            out.append(
                {
                    "id": str(funnel.id),
                    "name": funnel.name,
                    "slug": funnel.slug,
                    "commission_rules": [
                        {
                            "product_name": rule["product_name"],
                            "commission_type": rule["commission_type"],
                            "commission_value": rule["commission_value"],
                        }
                        for rule in await self._rules_out(funnel)
                    ],
                    "joined": funnel.id in joined_ids,
                }
            )
        return out

    async def join(self, affiliate: FunnelAffiliate, funnel_id: uuid.UUID) -> dict[str, Any]:
        funnel = await self._funnel(funnel_id)
        if funnel.status != "published" or not funnel.affiliate_enabled:
            raise Forbidden("This funnel is not available for affiliates.")
        if await self._affiliates.membership(affiliate.id, funnel.id) is not None:
            raise Conflict("You have already joined this funnel.")
        await self._affiliates.join(affiliate, funnel, joined_at=self._clock())
        await self._session.commit()
        log.info("affiliate_joined", affiliate_id=str(affiliate.id), funnel_id=str(funnel.id))
        return {"message": "Successfully joined the affiliate program.", **self._links(affiliate, funnel)}

    async def funnel_stats(self, affiliate: FunnelAffiliate, funnel_id: uuid.UUID) -> dict[str, Any]:
        funnel = await self._funnel(funnel_id)
        if await self._affiliates.membership(affiliate.id, funnel.id) is None:
            raise Forbidden("Not joined this funnel.")
        return {
            "funnel": {"id": str(funnel.id), "name": funnel.name, **self._links(affiliate, funnel)},
            "stats": {
                "clicks": await self._affiliates.session_count(affiliate.id, [funnel.id]),
                "conversions": await self._affiliates.session_count(affiliate.id, [funnel.id], converted=True),
                "thankyou_clicks": await self._affiliates.event_count(
                    affiliate.id, [funnel.id], ["page_view"], step_type="thankyou"
                ),
            },
        }

    async def _traffic(self, affiliate_id: uuid.UUID, funnel_ids: list[uuid.UUID]) -> dict[str, int]:
        views = await self._affiliates.session_count(affiliate_id, funnel_ids)
        if not views:
            return {"views": 0, "checkout_fills": 0, "thankyou_views": 0, "thankyou_clicks": 0}
        return {
            "views": views,
            "checkout_fills": await self._affiliates.event_count(affiliate_id, funnel_ids, CHECKOUT_FILL_EVENTS),
            "thankyou_views": await self._affiliates.event_count(
                affiliate_id, funnel_ids, ["page_view"], step_type="thankyou"
            ),
            "thankyou_clicks": await self._affiliates.event_count(affiliate_id, funnel_ids, THANKYOU_CLICK_EVENTS),
        }

    async def leaderboard(self, affiliate: FunnelAffiliate) -> dict[str, Any]:
        """
        Ranks every affiliate promoting at least one of this affiliate's funnels
        by views (sessions they referred) across those funnels.
        """

        funnel_ids = [m.funnel_id for m in affiliate.memberships if m.status == "approved"]
        if not funnel_ids:
            return {
                "leaderboard": [],
                "my_stats": {"views": 0, "checkout_fills": 0, "thankyou_clicks": 0, "rank": None},
            }

        peers: dict[uuid.UUID, FunnelAffiliate] = {}
        for membership in await self._affiliates.members_of(funnel_ids):
            peers.setdefault(membership.affiliate_id, membership.affiliate)

        board = []
        for peer in peers.values():
            traffic = await self._traffic(peer.id, funnel_ids)
            board.append(
                {
                    "id": str(peer.id),
                    "name": peer.name,
                    "views": traffic["views"],
                    "checkout_fills": traffic["checkout_fills"],
                    "thankyou_clicks": traffic["thankyou_views"],
                }
            )
        board.sort(key=lambda row: row["views"], reverse=True)

        rank = next((i + 1 for i, row in enumerate(board) if row["id"] == str(affiliate.id)), None)
        mine = board[rank - 1] if rank is not None else {}
        return {
            "leaderboard": board,
            "my_stats": {
                "affiliate_id": str(affiliate.id),
                "views": mine.get("views", 0),
                "checkout_fills": mine.get("checkout_fills", 0),
                "thankyou_clicks": mine.get("thankyou_clicks", 0),
                "rank": rank,
            },
        }

    # --- Funnel owner side -----------------------------------------------------------

    async def _funnel(self, funnel_id: uuid.UUID) -> Funnel:
        funnel = await self._funnels.get(funnel_id)
        if funnel is None:
            raise NotFound("Funnel not found")
        return funnel

    async def _commission_stats(self, affiliate_id: uuid.UUID, funnel_id: uuid.UUID) -> dict[str, Any]:
        earned = await self._commissions.total(affiliate_id, EARNED, funnel_id=funnel_id)
        pending = await self._commissions.total(affiliate_id, [CommissionStatus.pending], funnel_id=funnel_id)
        return {"total_commission": float(earned), "pending_commission": float(pending)}

    async def funnel_affiliates(self, funnel_id: uuid.UUID) -> list[dict[str, Any]]:
        funnel = await self._funnel(funnel_id)
        out = []
        for membership in await self._affiliates.members_of([funnel.id]):
            affiliate = membership.affiliate
            out.append(
                {
                    "affiliate": affiliate,
                    "joined_at": membership.joined_at,
                    "stats": {
                        **await self._traffic(affiliate.id, [funnel.id]),
                        **await self._commission_stats(affiliate.id, funnel.id),
                    },
                }
            )
        return out

    async def affiliate_stats(self, funnel_id: uuid.UUID, affiliate_id: uuid.UUID) -> dict[str, Any]:
        funnel = await self._funnel(funnel_id)
        affiliate = await self._affiliates.get(affiliate_id)
        if affiliate is None:
            raise NotFound("Affiliate not found")
        return {
            "affiliate": affiliate,
            "stats": {
                **await self._traffic(affiliate.id, [funnel.id]),
                **await self._commission_stats(affiliate.id, funnel.id),
            },
            "commissions": await self._commissions.list(funnel_id=funnel.id, affiliate_id=affiliate.id),
        }

    async def _rules_out(self, funnel: Funnel) -> list[dict[str, Any]]:
        products = {p.id: p for step in funnel.steps for p in step.products}
        out = []
        for rule in await self._affiliates.rules_for_funnel(funnel.id):
            product = products.get(rule.funnel_product_id)
            out.append(
                {
                    "id": str(rule.id),
                    "funnel_product_id": str(rule.funnel_product_id),
                    "product_name": product.name if product is not None else "Unknown",
                    "commission_type": rule.commission_type,
                    "commission_value": float(rule.commission_value),
                }
            )
        return out

    async def programme_settings(self, funnel_id: uuid.UUID) -> dict[str, Any]:
        funnel = await self._funnel(funnel_id)
        return {
            "affiliate_enabled": funnel.affiliate_enabled,
            "affiliate_custom_url": funnel.affiliate_custom_url,
            "commission_rules": await self._rules_out(funnel),
            "products": [
                {"id": str(p.id), "name": p.name, "price": float(p.funnel_price), "type": p.type}
                for step in funnel.steps
                for p in step.products
            ],
        }

    async def update_programme_settings(self, funnel_id: uuid.UUID, changes: dict[str, Any]) -> dict[str, Any]:
        """
        Apply only the keys present in `changes`. Commission rules are upserted
        per funnel product; rules not mentioned are left alone.
        """

        funnel = await self._funnel(funnel_id)
        rules = changes.get("commission_rules") or []
        products = {p.id for step in funnel.steps for p in step.products}

        errors: dict[str, list[str]] = {}
        custom_url = changes.get("affiliate_custom_url")
        if custom_url and (len(custom_url) > 2048 or not _is_url(custom_url)):
            errors["affiliate_custom_url"] = ["The affiliate custom url must be a valid URL."]
        for i, rule in enumerate(rules):
            if rule["funnel_product_id"] not in products:
                errors[f"commission_rules.{i}.funnel_product_id"] = ["The selected funnel product id is invalid."]
            if rule["commission_type"] not in COMMISSION_TYPES:
                errors[f"commission_rules.{i}.commission_type"] = ["The selected commission type is invalid."]
            if Decimal(rule["commission_value"]) < 0:
                errors[f"commission_rules.{i}.commission_value"] = ["The commission value must be at least 0."]
        if errors:
            raise ValidationFailed(errors)

        if "affiliate_enabled" in changes:
            funnel.affiliate_enabled = bool(changes["affiliate_enabled"])
        if "affiliate_custom_url" in changes:
            funnel.affiliate_custom_url = custom_url or None
        for data in rules:
            rule = await self._affiliates.rule(funnel.id, data["funnel_product_id"])
            if rule is None:
                rule = await self._affiliates.add_rule(
                    FunnelAffiliateCommissionRule(funnel_id=funnel.id, funnel_product_id=data["funnel_product_id"])
                )
            rule.commission_type = data["commission_type"]
            rule.commission_value = Decimal(data["commission_value"])
        await self._session.commit()
        log.info("affiliate_settings_updated", funnel_id=str(funnel.id), rules=len(rules))
        return await self.programme_settings(funnel.id)

    async def funnel_commissions(
        self, funnel_id: uuid.UUID, *, status: str | None = None
    ) -> list[FunnelAffiliateCommission]:
        funnel = await self._funnel(funnel_id)
        wanted = None
        if status and status != "all":
            try:
                wanted = CommissionStatus(status)
            except ValueError:
                raise ValidationFailed.field("status", "The selected status is invalid.") from None
        return await self._commissions.list(funnel_id=funnel.id, status=wanted)

    async def _pending(self, funnel_id: uuid.UUID, commission_id: uuid.UUID) -> FunnelAffiliateCommission:
        funnel = await self._funnel(funnel_id)
        commission = await self._commissions.get_for_funnel(funnel.id, commission_id)
        if commission is None:
            raise NotFound("Commission not found")
        if commission.status != CommissionStatus.pending:
            raise ValidationFailed.field("status", "Commission is not pending.")
        return commission

    async def approve(
        self, funnel_id: uuid.UUID, commission_id: uuid.UUID, *, approved_by: str
    ) -> FunnelAffiliateCommission:
        commission = await self._pending(funnel_id, commission_id)
        commission.status = CommissionStatus.approved
        commission.approved_at = self._clock()
        commission.approved_by = approved_by
        await self._session.commit()
        log.info("commission_approved", commission_id=str(commission.id), approved_by=approved_by)
        return commission

    async def reject(
        self, funnel_id: uuid.UUID, commission_id: uuid.UUID, *, rejected_by: str, notes: str | None = None
    ) -> FunnelAffiliateCommission:
        commission = await self._pending(funnel_id, commission_id)
        commission.status = CommissionStatus.rejected
        commission.approved_by = rejected_by
        commission.notes = notes
        await self._session.commit()
        log.info("commission_rejected", commission_id=str(commission.id), rejected_by=rejected_by)
        return commission

    async def bulk_approve(self, funnel_id: uuid.UUID, commission_ids: list[uuid.UUID], *, approved_by: str) -> int:
        funnel = await self._funnel(funnel_id)
        count = await self._commissions.approve_pending(
            funnel.id, commission_ids, approved_by=approved_by, approved_at=self._clock()
        )
        await self._session.commit()
        log.info("commissions_bulk_approved", funnel_id=str(funnel.id), count=count)
        return count

    # --- Attribution ---------------------------------------------------------------------

    async def referring_affiliate(self, funnel: Funnel, ref_code: str | None) -> uuid.UUID | None:
        """
        The affiliate a `ref` code credits on this funnel, if any. Unknown codes,
        inactive accounts and affiliates who have not joined the funnel credit nobody.
        """

        if not ref_code or not funnel.affiliate_enabled:
            return None
        affiliate = await self._affiliates.get_by_ref_code(ref_code.strip().upper())
        if affiliate is None or not affiliate.is_active:
            return None
        membership = await self._affiliates.membership(affiliate.id, funnel.id)
        if membership is None or membership.status != "approved":
            return None
        return affiliate.id

    async def record_commission(
        self, funnel_order: FunnelOrder, order: ProductOrder, visitor: FunnelSession | None
    ) -> FunnelAffiliateCommission | None:
        """
        Flushes but does not commit; the payment confirmation owns the transaction.
        """

        if visitor is None or visitor.affiliate_id is None:
            return None
        funnel = await self._funnels.get(funnel_order.funnel_id)
        if funnel is None or not funnel.affiliate_enabled:
            return None
        if await self._commissions.exists_for_funnel_order(funnel_order.id):
            return None

        rule = None
        for item in order.items:
            product_id = (item.item_metadata or {}).get("funnel_product_id")
            if product_id:
                rule = await self._affiliates.rule(funnel.id, uuid.UUID(str(product_id)))
            if rule is not None:
                break
        if rule is None:
            return None

        commission = await self._commissions.add(
            FunnelAffiliateCommission(
                affiliate_id=visitor.affiliate_id,
                funnel_id=funnel.id,
                session_id=visitor.id,
                funnel_order_id=funnel_order.id,
                product_order_id=order.id,
                commission_type=rule.commission_type,
                commission_rate=rule.commission_value,
                order_amount=funnel_order.funnel_revenue,
                commission_amount=commission_amount(rule, funnel_order.funnel_revenue),
                status=CommissionStatus.pending,
                created_at=self._clock(),
            )
        )
        log.info(
            "commission_recorded",
            affiliate_id=str(visitor.affiliate_id),
            funnel_order_id=str(funnel_order.id),
            amount=str(commission.commission_amount),
        )
        return commission
