"""
salesflow.api.routers.contacts

CRM contact endpoints.

Responsibilities:
- Create, list, fetch and update contacts.
- Add/remove tags and notes; each edit lands on the contact's activity timeline.
- Read the activity timeline.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED

from salesflow.api.deps import db_session
from salesflow.api.serializers import activity_out, contact_out
from salesflow.auth.deps import get_principal, require_roles
from salesflow.auth.models import Principal
from salesflow.services.contact_service import ContactService

router = APIRouter(
    prefix="/api/v1/contacts",
    tags=["contacts"],
    dependencies=[Depends(require_roles("marketer", "sales"))],
)


class CreateContactRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    tags: list[str] = Field(default_factory=list)
    fields: dict[str, Any] = Field(default_factory=dict)


class TagsRequest(BaseModel):
    tags: list[str] = Field(min_length=1)


class UpdateContactRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    fields: dict[str, Any] | None = None


class NoteRequest(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


@router.post("", status_code=HTTP_201_CREATED)
async def create_contact(
    body: CreateContactRequest,
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    contact = await ContactService(session=session).create(
        name=body.name,
        email=str(body.email) if body.email else None,
        phone=body.phone,
        tags=body.tags,
        fields=body.fields,
    )
    return {"data": contact_out(contact)}


@router.get("")
async def list_contacts(
    search: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    contacts = await ContactService(session=session).list(search=search, tag=tag)
    return {"data": [contact_out(c) for c in contacts]}


@router.get("/{contact_id}")
async def get_contact(contact_id: uuid.UUID, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    return {"data": contact_out(await ContactService(session=session).get(contact_id))}


@router.post("/{contact_id}/tags")
async def add_tags(
    contact_id: uuid.UUID,
    body: TagsRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    contact = await ContactService(session=session).add_tags(contact_id, body.tags, performed_by=principal.subject)
    return {"data": contact_out(contact)}


@router.delete("/{contact_id}/tags")
async def remove_tags(
    contact_id: uuid.UUID,
    body: TagsRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    contact = await ContactService(session=session).remove_tags(contact_id, body.tags, performed_by=principal.subject)
    return {"data": contact_out(contact)}


@router.patch("/{contact_id}")
async def update_contact(
    contact_id: uuid.UUID,
    body: UpdateContactRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    if "email" in changes and changes["email"] is not None:
        changes["email"] = str(changes["email"])
    contact = await ContactService(session=session).update(contact_id, changes, performed_by=principal.subject)
    return {"data": contact_out(contact)}


@router.post("/{contact_id}/notes", status_code=HTTP_201_CREATED)
async def add_note(
    contact_id: uuid.UUID,
    body: NoteRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    activity = await ContactService(session=session).add_note(contact_id, body.note, performed_by=principal.subject)
    return {"data": activity_out(activity)}


@router.get("/{contact_id}/activities")
async def list_activities(
    contact_id: uuid.UUID,
    types: list[str] | None = Query(default=None, alias="type"),
    days: int | None = Query(default=None, ge=1, le=3650),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    activities = await ContactService(session=session).activities(contact_id, types=types, days=days, limit=limit)
    return {"data": [activity_out(a) for a in activities]}
