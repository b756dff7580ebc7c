"""
salesflow.clients.mailer

Email sender over async SMTP (aiosmtplib).

Responsibilities:
- Build plain-text/HTML multipart messages from a subject and body.
- Send with STARTTLS and credentials from settings.
- Log instead of sending when SMTP is not configured.
"""

from __future__ import annotations

import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import aiosmtplib

from salesflow.observability.logging import get_logger
from salesflow.settings import Settings

log = get_logger(__name__)


class Mailer:
    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self._settings.smtp_host)

    async def send(self, *, to: str, subject: str, body: str) -> dict[str, Any]:
        if not self.enabled:
            log.info("email_not_configured", to=to, subject=subject)
            return {"success": True, "email": to, "delivered": False}

        message = self._build_message(to=to, subject=subject, body=body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self._settings.smtp_host,
                port=self._settings.smtp_port,
                username=self._settings.smtp_username,
                password=self._settings.smtp_password,
                start_tls=self._settings.smtp_use_tls,
                timeout=self._settings.http_timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            log.error("email_send_failed", to=to, error=str(e))
            return {"success": False, "email": to, "error": str(e)}

        log.info("email_sent", to=to, subject=subject)
        return {"success": True, "email": to, "delivered": True}

    def _build_message(self, *, to: str, subject: str, body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = f"{self._settings.smtp_from_name} <{self._settings.smtp_from_email}>"
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(body, "plain", "utf-8"))
        rendered = "<br>\n".join(html.escape(line) for line in body.splitlines())
        message.attach(MIMEText(f"<html><body>{rendered}</body></html>", "html", "utf-8"))
        return message


# --- Module Notes -----------------------------------------------------------
# "Not configured" reports success with delivered=False so automations log the
# action as executed rather than failed.
