"""
salesflow.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings, DB sessions and the shared HTTP client.
- Encapsulate app.state access patterns (settings/engine/sessionmaker/http/gateway_http).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salesflow.clients.payment_gateway import PaymentGatewayClient
from salesflow.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The settings object the app was built with (see `api.app.create_app`).
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


def http_client(request: Request) -> httpx.AsyncClient:
    # Outbound client for WhatsApp/webhook/payment gateway calls, created at startup.
    return request.app.state.http  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session. Commit/rollback is managed explicitly by the service layer.
    async with session_factory() as session:
        yield session


def payment_gateway(
    request: Request, settings: Settings = Depends(settings_dep)
) -> PaymentGatewayClient:
    # Checkout's gateway client; its httpx instance targets either the hosted gateway or this app.
    return PaymentGatewayClient(settings=settings, http=request.app.state.gateway_http)  # type: ignore[attr-defined]
