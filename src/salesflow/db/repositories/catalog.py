"""
salesflow.db.repositories.catalog

Repositories for catalog entities.

Responsibilities:
- Products and variants (active listing, search, stock adjustments).
- Packages, courses and course classes used by POS lookups.
- Append stock movements whenever tracked stock changes.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesflow.db.models import (
    Course,
    CourseClass,
    Package,
    Product,
    ProductVariant,
    StockMovement,
)


class ProductRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        name: str,
        slug: str,
        price: Decimal,
        sku: str | None = None,
        status: str = "active",
        track_stock: bool = False,
        stock_quantity: int = 0,
    ) -> Product:
        product = Product(
            name=name,
            slug=slug,
            sku=sku,
            price=price,
            status=status,
            track_stock=track_stock,
            stock_quantity=stock_quantity,
            variants=[],
        )
        self._session.add(product)
        await self._session.flush()
        return product

    async def add_variant(
        self,
        product: Product,
        *,
        name: str,
        sku: str | None = None,
        price: Decimal | None = None,
        stock_quantity: int = 0,
        is_active: bool = True,
    ) -> ProductVariant:
        variant = ProductVariant(
            name=name,
            sku=sku,
            price=price,
            stock_quantity=stock_quantity,
            is_active=is_active,
            sort_order=len(product.variants),
        )
        product.variants.append(variant)
        await self._session.flush()
        return variant

    async def get(self, product_id: uuid.UUID) -> Product | None:
        return await self._session.get(Product, product_id)

    async def get_variant(self, variant_id: uuid.UUID) -> ProductVariant | None:
        return await self._session.get(ProductVariant, variant_id)

    async def list_active(self, *, search: str | None = None, limit: int = 50) -> list[Product]:
        stmt = select(Product).where(Product.status == "active").order_by(Product.name).limit(limit)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Product.name.ilike(like), Product.slug.ilike(like)))
        return list((await self._session.execute(stmt)).scalars().all())

    async def list(self, *, limit: int = 100) -> list[Product]:
        stmt = select(Product).order_by(Product.name).limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())


class PackageRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, name: str, price: Decimal, items: list[dict[str, Any]] | None = None, status: str = "active"
    ) -> Package:
        package = Package(name=name, price=price, items=list(items or []), status=status)
        self._session.add(package)
        await self._session.flush()
        return package

    async def get(self, package_id: uuid.UUID) -> Package | None:
        return await self._session.get(Package, package_id)

    async def list_active(self, *, search: str | None = None, limit: int = 50) -> list[Package]:
        stmt = select(Package).where(Package.status == "active").order_by(Package.name).limit(limit)
        if search:
            stmt = stmt.where(Package.name.ilike(f"%{search}%"))
        return list((await self._session.execute(stmt)).scalars().all())


class CourseRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self, *, name: str, price: Decimal, code: str | None = None, status: str = "active"
    ) -> Course:
        course = Course(name=name, price=price, code=code, status=status, classes=[])
        self._session.add(course)
        await self._session.flush()
        return course

    async def add_class(
        self,
        course: Course,
        *,
        title: str,
        code: str | None = None,
        status: str = "active",
        max_students: int | None = None,
    ) -> CourseClass:
        klass = CourseClass(title=title, code=code, status=status, max_students=max_students)
        course.classes.append(klass)
        await self._session.flush()
        return klass

    async def get(self, course_id: uuid.UUID) -> Course | None:
        return await self._session.get(Course, course_id)

    async def get_class(self, class_id: uuid.UUID) -> CourseClass | None:
        return await self._session.get(CourseClass, class_id)

    async def list_active(self, *, search: str | None = None, limit: int = 50) -> list[Course]:
        stmt = select(Course).where(Course.status == "active").order_by(Course.name).limit(limit)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Course.name.ilike(like), Course.code.ilike(like)))
        return list((await self._session.execute(stmt)).scalars().all())

    async def active_classes(self, course_id: uuid.UUID) -> list[CourseClass]:
        stmt = (
            select(CourseClass)
            .where(CourseClass.course_id == course_id, CourseClass.status == "active")
            .order_by(CourseClass.title)
        )
        return list((await self._session.execute(stmt)).scalars().all())


class StockRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def deduct(
        self,
        *,
        product: Product,
        quantity: int,
        reason: str,
        reference: str | None,
        variant: ProductVariant | None = None,
    ) -> StockMovement | None:
        """
        Deduct tracked stock and record the movement. Untracked products are left alone.
        """

        if not product.track_stock:
            return None
        if variant is not None:
            variant.stock_quantity = variant.stock_quantity - quantity
        else:
            product.stock_quantity = product.stock_quantity - quantity

        movement = StockMovement(
            product_id=product.id,
            product_variant_id=variant.id if variant is not None else None,
            quantity=-quantity,
            reason=reason,
            reference=reference,
        )
        self._session.add(movement)
        await self._session.flush()
        return movement

    async def for_product(self, product_id: uuid.UUID) -> list[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())
