"""
salesflow.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide env-driven settings for the API, services, messaging and jobs.
- Hide secrets from repr/logging (JWT secret, gateway tokens, SMTP password).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Every field can be overridden with a `SALESFLOW_<FIELD>` environment variable.
    Defaults are suitable for local development.
    """

    model_config = SettingsConfigDict(env_prefix="SALESFLOW_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "salesflow"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "salesflow"
    jwt_audience: str = "salesflow-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./salesflow.db"

    # Public site, used to build checkout/funnel links in merge tags.
    app_url: str = "http://localhost:8080"
    timezone: str = "Asia/Kuala_Lumpur"
    default_currency: str = "MYR"

    company_name: str = "Your Company"
    company_email: str = "support@example.com"
    company_phone: str = ""

    # WhatsApp gateway (OnSend-compatible). Empty url/token means log-only delivery.
    whatsapp_api_url: str | None = None
    whatsapp_api_token: str | None = Field(default=None, repr=False)
    whatsapp_device_id: str | None = None

    # SMTP. Empty host means emails are logged instead of sent.
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = Field(default=None, repr=False)
    smtp_use_tls: bool = True
    smtp_from_email: str = "no-reply@example.com"
    smtp_from_name: str = "SalesFlow"

    # Payment gateway base url. Unset means the in-process gateway under /internal/v1/payments.
    payment_gateway_base_url: str | None = None
    payment_gateway_secret: str | None = Field(default=None, repr=False)

    # POS receipts
    receipt_storage_dir: str = "./storage/public"
    receipt_max_bytes: int = 5 * 1024 * 1024

    # Jobs / automation
    cart_abandon_after_minutes: int = 60
    workflow_max_steps: int = 50
    http_timeout_seconds: float = 30.0

    # Affiliate portal
    affiliate_token_ttl_minutes: int = 7 * 24 * 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Tests construct `Settings(...)` directly and pass it to `create_app`; the cached
# instance is only used by the default dependency and the job runner.
