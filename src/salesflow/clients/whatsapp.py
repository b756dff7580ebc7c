"""
salesflow.clients.whatsapp

WhatsApp sender over an OnSend-compatible HTTP API.

Responsibilities:
- Normalise phone numbers to Malaysian international form.
- POST text messages with bearer auth and the configured device id.
- Report delivery as a result dict; gateway failures never raise.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from salesflow.observability.logging import get_logger
from salesflow.settings import Settings

log = get_logger(__name__)

_NON_DIGITS = re.compile(r"[^0-9+]")


def format_phone(phone: str) -> str:
    """
    `012-345 6789` -> `60123456789`; numbers already starting with 60 are kept.
    """

    digits = _NON_DIGITS.sub("", phone).lstrip("+")
    if digits.startswith("0"):
        return "60" + digits[1:]
    if not digits.startswith("60"):
        return "60" + digits
    return digits


class WhatsAppSender:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http

    @property
    def enabled(self) -> bool:
        return bool(self._settings.whatsapp_api_url and self._settings.whatsapp_api_token)

    async def send(self, phone: str, message: str) -> dict[str, Any]:
        formatted = format_phone(phone)
        if not self.enabled:
            log.warning("whatsapp_not_configured", phone=formatted, message_length=len(message))
            return {"success": True, "phone": formatted, "delivered": False}

        payload: dict[str, Any] = {"phone": formatted, "message": message}
        if self._settings.whatsapp_device_id:
            payload["device_id"] = self._settings.whatsapp_device_id

        url = f"{str(self._settings.whatsapp_api_url).rstrip('/')}/send"
        try:
            r = await self._http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.whatsapp_api_token}"},
                timeout=self._settings.http_timeout_seconds,
            )
        except httpx.HTTPError as e:
            log.error("whatsapp_send_exception", phone=formatted, error=str(e))
            return {"success": False, "phone": formatted, "error": str(e)}

        data = _json_or_empty(r)
        if r.is_success and data.get("success", True):
            log.info("whatsapp_sent", phone=formatted, message_id=data.get("message_id"))
            return {
                "success": True,
                "phone": formatted,
                "delivered": True,
                "message_id": data.get("message_id"),
            }

        error = str(data.get("message") or f"HTTP {r.status_code}")
        log.warning("whatsapp_send_failed", phone=formatted, status=r.status_code, error=error)
        return {"success": False, "phone": formatted, "error": error}


def _json_or_empty(r: httpx.Response) -> dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
