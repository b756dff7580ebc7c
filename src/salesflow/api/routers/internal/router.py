"""
salesflow.api.routers.internal.router

Internal system router aggregator.

Responsibilities:
- Mount per-system internal routers under `/internal/v1`.
- Present a stable internal API surface for the checkout's gateway client.
"""

from __future__ import annotations

from fastapi import APIRouter

from salesflow.api.routers.internal.systems import payments

router = APIRouter(prefix="/internal/v1", tags=["internal"])

## Each included router is protected by RBAC role `internal_system`.
router.include_router(payments.router, prefix="/payments")


# --- Module Notes -----------------------------------------------------------
# These endpoints simulate an external card gateway while keeping the repo self-contained.
