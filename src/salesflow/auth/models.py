"""
salesflow.auth.models

Auth domain models.

Responsibilities:
- Name the roles the platform grants (`ROLES`) and the staff subset.
- Define the authenticated identity type (`Principal`) injected into endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

ROLES = frozenset({"admin", "sales", "marketer", "student", "customer", "affiliate", "internal_system"})
STAFF_ROLES = frozenset({"admin", "sales", "marketer"})


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity. For staff, `subject` is the user id recorded
    as the salesperson on POS sales.
    """

    subject: str
    roles: frozenset[str]
    name: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Principal:
        subject = str(claims.get("sub") or "")
        if not subject:
            raise ValueError("Invalid token subject")
        roles = claims.get("roles", [])
        if not isinstance(roles, list):
            raise ValueError("Invalid token roles")
        name = claims.get("name")
        # Unknown roles are dropped rather than trusted.
        return cls(
            subject=subject,
            roles=frozenset(str(r) for r in roles) & ROLES,
            name=str(name) if name else None,
        )

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & STAFF_ROLES)

    @property
    def display_name(self) -> str:
        return self.name or self.subject
