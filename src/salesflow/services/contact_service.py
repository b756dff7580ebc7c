"""
salesflow.services.contact_service

CRM contact operations.

Responsibilities:
- Create/list/fetch contacts, edit their profile and tags, and attach notes.
- Find or create the contact behind an order, cart or opt-in (email first, then phone).
- Expose the contact's activity timeline; edits made here are recorded on it.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import Contact, ContactActivity
from salesflow.db.repositories.contacts import ContactRepo
from salesflow.errors import NotFound, ValidationFailed
from salesflow.services.activity_service import ContactActivityService

_PROFILE_FIELDS = ("name", "email", "phone")


class ContactService:
    def __init__(self, *, session: AsyncSession) -> None:
        self._session = session
        self._contacts = ContactRepo(session)
        self._activities = ContactActivityService(session=session)

    async def get(self, contact_id: uuid.UUID) -> Contact:
        contact = await self._contacts.get(contact_id)
        if contact is None:
            raise NotFound("Contact not found")
        return contact

    async def create(
        self,
        *,
        name: str | None,
        email: str | None,
        phone: str | None,
        tags: list[str] | None = None,
        fields: dict[str, Any] | None = None,
    ) -> Contact:
        contact = await self._contacts.create(
            name=name, email=email, phone=phone, tags=_unique(tags or []), fields=fields
        )
        await self._session.commit()
        return contact

    async def list(self, *, search: str | None = None, tag: str | None = None) -> list[Contact]:
        return await self._contacts.list(search=search, tag=tag)

    async def update(
        self, contact_id: uuid.UUID, changes: dict[str, Any], *, performed_by: str | None = None
    ) -> Contact:
        contact = await self.get(contact_id)
        changed: list[str] = []
        for key in _PROFILE_FIELDS:
            if key in changes and changes[key] != getattr(contact, key):
                setattr(contact, key, changes[key])
                changed.append(key)
        custom = dict(contact.fields or {})
        for key, value in (changes.get("fields") or {}).items():
            if custom.get(key) != value:
                custom[key] = value
                changed.append(key)
        if custom != (contact.fields or {}):
            # JSON columns only persist on reassignment.
            contact.fields = custom
        if changed:
            await self._activities.profile_updated(contact.id, changed, performed_by=performed_by)
        await self._session.commit()
        return contact

    async def add_tags(
        self, contact_id: uuid.UUID, tags: list[str], *, performed_by: str | None = None
    ) -> Contact:
        contact = await self.get(contact_id)
        existing = list(contact.tags or [])
        contact.tags = _unique([*existing, *tags])
        for tag in contact.tags:
            if tag not in existing:
                await self._activities.tag_added(contact.id, tag, source="manual", performed_by=performed_by)
        await self._session.commit()
        return contact

    async def remove_tags(
        self, contact_id: uuid.UUID, tags: list[str], *, performed_by: str | None = None
    ) -> Contact:
        contact = await self.get(contact_id)
        drop = set(tags)
        existing = list(contact.tags or [])
        contact.tags = [t for t in existing if t not in drop]
        for tag in existing:
            if tag in drop:
                await self._activities.tag_removed(contact.id, tag, performed_by=performed_by)
        await self._session.commit()
        return contact

    async def add_note(self, contact_id: uuid.UUID, note: str, *, performed_by: str | None = None) -> ContactActivity:
        contact = await self.get(contact_id)
        if not note.strip():
            raise ValidationFailed.field("note", "The note field is required.")
        activity = await self._activities.note_added(contact.id, note.strip(), performed_by=performed_by)
        await self._session.commit()
        return activity

    async def activities(
        self, contact_id: uuid.UUID, *, types: list[str] | None = None, days: int | None = None, limit: int = 50
    ) -> list[ContactActivity]:
        contact = await self.get(contact_id)
        return await self._activities.timeline(contact.id, types=types, days=days, limit=limit)

    async def find_or_create(
        self, *, name: str | None, email: str | None, phone: str | None
    ) -> Contact | None:
        """
        Flushes but does not commit; callers own the transaction.
        """

        if not email and not phone:
            return None
        contact = await self._contacts.find(email=email, phone=phone)
        if contact is None:
            return await self._contacts.create(name=name, email=email, phone=phone)
        # Fill gaps only; existing CRM data wins.
        if name and not contact.name:
            contact.name = name
        if email and not contact.email:
            contact.email = email
        if phone and not contact.phone:
            contact.phone = phone
        return contact


def _unique(tags: list[str]) -> list[str]:
    out: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in out:
            out.append(tag)
    return out
