"""
salesflow.api.routers.catalog

Catalog administration endpoints (admin only).

Responsibilities:
- Manage users (staff and customers) and the sellable catalog: products with
  variants, packages, courses and their classes.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_201_CREATED, HTTP_404_NOT_FOUND

from salesflow.api.deps import db_session
from salesflow.api.serializers import class_out, course_out, package_out, product_out, user_out, variant_out
from salesflow.auth.deps import require_roles
from salesflow.db.repositories.catalog import CourseRepo, PackageRepo, ProductRepo
from salesflow.db.repositories.contacts import UserRepo
from salesflow.errors import ValidationFailed
from salesflow.services.funnel_service import slugify

router = APIRouter(
    prefix="/api/v1/catalog",
    tags=["catalog"],
    dependencies=[Depends(require_roles("admin"))],
)


class CreateUserRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=64)
    role: str = Field(default="customer", pattern=r"^(admin|sales|marketer|student|customer)$")


class CreateProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=255)
    sku: str | None = Field(default=None, max_length=128)
    price: Decimal = Field(ge=0)
    status: str = Field(default="active", pattern=r"^(active|inactive|draft)$")
    track_stock: bool = False
    stock_quantity: int = 0


class CreateVariantRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str | None = Field(default=None, max_length=128)
    price: Decimal | None = Field(default=None, ge=0)
    stock_quantity: int = 0
    is_active: bool = True


class CreatePackageRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    items: list[dict[str, Any]] = Field(default_factory=list)
    status: str = Field(default="active", pattern=r"^(active|inactive)$")


class CreateCourseRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    price: Decimal = Field(ge=0)
    status: str = Field(default="active", pattern=r"^(active|inactive)$")


class CreateClassRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    status: str = Field(default="active", pattern=r"^(active|inactive)$")
    max_students: int | None = Field(default=None, ge=1)


# --- Users ------------------------------------------------------------------------


@router.post("/users", status_code=HTTP_201_CREATED)
async def create_user(body: CreateUserRequest, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    repo = UserRepo(session)
    if await repo.get_by_email(str(body.email)) is not None:
        raise ValidationFailed.field("email", "The email has already been taken.")
    user = await repo.create(name=body.name, email=str(body.email), phone=body.phone, role=body.role)
    await session.commit()
    return {"data": user_out(user)}


@router.get("/users")
async def list_users(
    role: str | None = Query(default=None),
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    return {"data": [user_out(u) for u in await UserRepo(session).list(role=role)]}


# --- Products -----------------------------------------------------------------------


@router.post("/products", status_code=HTTP_201_CREATED)
async def create_product(
    body: CreateProductRequest, session: AsyncSession = Depends(db_session)
) -> dict[str, Any]:
    product = await ProductRepo(session).create(
        name=body.name,
        slug=body.slug or slugify(body.name),
        sku=body.sku,
        price=body.price,
        status=body.status,
        track_stock=body.track_stock,
        stock_quantity=body.stock_quantity,
    )
    await session.commit()
    return {"data": product_out(product)}


@router.get("/products")
async def list_products(session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    return {"data": [product_out(p) for p in await ProductRepo(session).list()]}


@router.get("/products/{product_id}")
async def get_product(product_id: uuid.UUID, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    product = await ProductRepo(session).get(product_id)
    if product is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Product not found")
    return {"data": product_out(product)}


@router.post("/products/{product_id}/variants", status_code=HTTP_201_CREATED)
async def create_variant(
    product_id: uuid.UUID,
    body: CreateVariantRequest,
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    repo = ProductRepo(session)
    product = await repo.get(product_id)
    if product is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Product not found")
    variant = await repo.add_variant(
        product,
        name=body.name,
        sku=body.sku,
        price=body.price,
        stock_quantity=body.stock_quantity,
        is_active=body.is_active,
    )
    await session.commit()
    return {"data": variant_out(variant)}


# --- Packages & courses -------------------------------------------------------------


@router.post("/packages", status_code=HTTP_201_CREATED)
async def create_package(
    body: CreatePackageRequest, session: AsyncSession = Depends(db_session)
) -> dict[str, Any]:
    package = await PackageRepo(session).create(
        name=body.name, price=body.price, items=body.items, status=body.status
    )
    await session.commit()
    return {"data": package_out(package)}


@router.post("/courses", status_code=HTTP_201_CREATED)
async def create_course(body: CreateCourseRequest, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    course = await CourseRepo(session).create(
        name=body.name, code=body.code, price=body.price, status=body.status
    )
    await session.commit()
    return {"data": course_out(course, with_classes=True)}


@router.get("/courses/{course_id}")
async def get_course(course_id: uuid.UUID, session: AsyncSession = Depends(db_session)) -> dict[str, Any]:
    course = await CourseRepo(session).get(course_id)
    if course is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Course not found")
    return {"data": course_out(course, with_classes=True)}


@router.post("/courses/{course_id}/classes", status_code=HTTP_201_CREATED)
async def create_class(
    course_id: uuid.UUID,
    body: CreateClassRequest,
    session: AsyncSession = Depends(db_session),
) -> dict[str, Any]:
    repo = CourseRepo(session)
    course = await repo.get(course_id)
    if course is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Course not found")
    klass = await repo.add_class(
        course, title=body.title, code=body.code, status=body.status, max_students=body.max_students
    )
    await session.commit()
    return {"data": class_out(klass)}
