"""
salesflow.db.repositories.contacts

Repositories for `User`, `Contact` and `ContactActivity` entities.

Responsibilities:
- Create/fetch users (staff and customers) and search them for POS lookups.
- Create/fetch CRM contacts and find them by email/phone.
- Append to and read a contact's activity timeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import Contact, ContactActivity, User


class UserRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, name: str, email: str, phone: str | None = None, role: str = "customer"
    ) -> User:
        user = User(name=name, email=email, phone=phone, role=role)
        self._session.add(user)
        await self._session.flush()
        return user

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list(self, *, role: str | None = None, limit: int = 100) -> list[User]:
        stmt = select(User).order_by(User.name).limit(limit)
        if role:
            stmt = stmt.where(User.role == role)
        return list((await self._session.execute(stmt)).scalars().all())

    async def search(self, term: str, *, limit: int = 20) -> list[User]:
        like = f"%{term}%"
        stmt = (
            select(User)
            .where(or_(User.name.ilike(like), User.email.ilike(like), User.phone.ilike(like)))
            .order_by(User.name)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())


class ContactRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        name: str | None,
        email: str | None,
        phone: str | None,
        tags: list[str] | None = None,
        fields: dict[str, Any] | None = None,
        user_id: uuid.UUID | None = None,
    ) -> Contact:
        contact = Contact(
            name=name,
            email=email,
            phone=phone,
            tags=list(tags or []),
            fields=dict(fields or {}),
            score=0,
            user_id=user_id,
        )
        self._session.add(contact)
        await self._session.flush()
        return contact

    async def get(self, contact_id: uuid.UUID) -> Contact | None:
        return await self._session.get(Contact, contact_id)

    async def find(self, *, email: str | None = None, phone: str | None = None) -> Contact | None:
        # Email wins over phone when both are known.
        if email:
            stmt = select(Contact).where(Contact.email == email).limit(1)
            found = (await self._session.execute(stmt)).scalar_one_or_none()
            if found is not None:
                return found
        if phone:
            stmt = select(Contact).where(Contact.phone == phone).limit(1)
            return (await self._session.execute(stmt)).scalar_one_or_none()
        return None

    async def list(self, *, search: str | None = None, tag: str | None = None, limit: int = 100) -> list[Contact]:
        stmt = select(Contact).order_by(desc(Contact.created_at)).limit(limit)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(
                or_(Contact.name.ilike(like), Contact.email.ilike(like), Contact.phone.ilike(like))
            )
        contacts = list((await self._session.execute(stmt)).scalars().all())
        if tag:
            # Tags are a JSON list; filter in Python to stay dialect-neutral.
            contacts = [c for c in contacts if tag in (c.tags or [])]
        return contacts


class ContactActivityRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, activity: ContactActivity) -> ContactActivity:
        self._session.add(activity)
        await self._session.flush()
        return activity

    async def for_contact(
        self,
        contact_id: uuid.UUID,
        *,
        types: list[str] | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[ContactActivity]:
        stmt = (
            select(ContactActivity)
            .where(ContactActivity.contact_id == contact_id)
            .order_by(desc(ContactActivity.created_at))
            .limit(limit)
        )
        if types:
            stmt = stmt.where(ContactActivity.type.in_(types))
        if since is not None:
            stmt = stmt.where(ContactActivity.created_at >= since)
        return list((await self._session.execute(stmt)).scalars().all())
