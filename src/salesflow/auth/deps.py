"""
salesflow.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Convert a bearer token into a typed `Principal`.
- Enforce role checks via reusable dependency factories.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from salesflow.api.deps import settings_dep
from salesflow.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from salesflow.auth.models import ROLES, Principal
from salesflow.settings import Settings

_bearer = HTTPBearer(auto_error=False)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(settings_dep),
) -> Principal:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    try:
        claims = decode_and_validate(cfg=JwtConfig.from_settings(settings), token=creds.credentials)
        return Principal.from_claims(claims)
    except (JwtValidationError, ValueError) as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e


def require_roles(*allowed: str):
    """
    Admit callers holding at least one of `allowed`. Admins always pass.
    """

    unknown = set(allowed) - ROLES
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")
    allowed_set = frozenset(allowed)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.is_admin:
            return principal
        if not (allowed_set & principal.roles):
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return _dep


# --- Module Notes -----------------------------------------------------------
# POS routes use require_roles("sales"); funnel, automation and workflow admin
# routes use require_roles("marketer"). Customers and students hold neither.
