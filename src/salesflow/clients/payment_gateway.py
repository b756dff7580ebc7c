"""
salesflow.clients.payment_gateway

HTTP client boundary used by checkout to talk to the payment gateway.

Responsibilities:
- Attach short-lived JWT credentials (role=internal_system).
- Create, retrieve and confirm payment intents under `/internal/v1/payments`.
- Turn transport and HTTP failures into `PaymentGatewayError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx

from salesflow.auth.jwt import JwtConfig, issue_token
from salesflow.errors import PaymentGatewayError
from salesflow.observability.logging import get_logger
from salesflow.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class GatewayAuth:
    subject: str = "salesflow-checkout"
    roles: tuple[str, ...] = ("internal_system",)


class PaymentGatewayClient:
    """
    Checkout talks to the gateway through this interface only. In dev/test the
    gateway is the in-process router mounted at `/internal/v1/payments`.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        auth: GatewayAuth | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._auth = auth or GatewayAuth()

    def _authz(self) -> dict[str, str]:
        secret = self._settings.payment_gateway_secret or self._settings.jwt_secret
        cfg = JwtConfig(
            alg=self._settings.jwt_alg,
            issuer=self._settings.jwt_issuer,
            audience=self._settings.jwt_audience,
            secret=secret,
        )
        token = issue_token(
            cfg=cfg,
            subject=self._auth.subject,
            roles=list(self._auth.roles),
            ttl=timedelta(minutes=5),
        )
        return {"Authorization": f"Bearer {token}"}

    async def create_intent(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        receipt_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        # Amount is in the currency's minor unit (cents/sen).
        return await self._call(
            "POST",
            "/internal/v1/payments/intents",
            json={
                "amount": amount,
                "currency": currency.lower(),
                "description": description,
                "receipt_email": receipt_email,
                "metadata": metadata or {},
            },
        )

    async def retrieve_intent(self, intent_id: str) -> dict[str, Any]:
        return await self._call("GET", f"/internal/v1/payments/intents/{intent_id}")

    async def confirm_intent(self, intent_id: str, *, outcome: str = "succeeded") -> dict[str, Any]:
        return await self._call(
            "POST",
            f"/internal/v1/payments/intents/{intent_id}/confirm",
            json={"outcome": outcome},
        )

    async def _call(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            r = await self._http.request(method, url, headers=self._authz(), **kwargs)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error("payment_gateway_error", url=url, status_code=e.response.status_code)
            raise PaymentGatewayError(
                f"Payment gateway returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            log.error("payment_gateway_unreachable", url=url, error=str(e))
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e
        return r.json()


# --- Module Notes -----------------------------------------------------------
# A hosted gateway is selected with `payment_gateway_base_url`; the app then builds
# the client's httpx instance with that base url instead of the ASGI transport.
