"""Persistence helpers for catalog service."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Product, ProductCategory, ProductVariant


class CatalogRepository:
    """Data access methods for catalog entities."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_product(
        self,
        *,
        sku: str,
        name: str,
        description: str | None,
        base_price_cents: int,
        currency: str,
        is_active: bool,
        categories: Iterable[str],
        discount_type: str | None = None,
        discount_value_hundredths: int | None = None,
        discount_starts_at: datetime | None = None,
        discount_ends_at: datetime | None = None,
    ) -> Product:
        product = Product(
            sku=sku,
            name=name,
            description=description,
            base_price_cents=base_price_cents,
            currency=currency,
            is_active=is_active,
            discount_type=discount_type,
            discount_value_hundredths=discount_value_hundredths,
            discount_starts_at=discount_starts_at,
            discount_ends_at=discount_ends_at,
            categories=[ProductCategory(name=category) for category in categories],
            variants=[],
        )
        self.session.add(product)
        await self.session.flush()
        await self.session.refresh(
            product,
            attribute_names=["categories", "variants", "created_at", "updated_at"],
        )
        return product

    async def get_product(self, product_id: int) -> Product | None:
        result = await self.session.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def get_by_sku(self, sku: str) -> Product | None:
        result = await self.session.execute(select(Product).where(Product.sku == sku))
        return result.scalar_one_or_none()

    async def list_products(
        self,
        *,
        category: str | None,
        only_active: bool,
        on_sale: bool | None,
    ) -> list[Product]:
        """Return every matching product; price filters run after conversion."""

        query: Select[tuple[Product]] = select(Product)

        if category:
            query = query.join(ProductCategory).where(ProductCategory.name == category)
        if only_active:
            query = query.where(Product.is_active.is_(True))
        if on_sale is True:
            query = query.where(Product.discount_type.is_not(None))
        elif on_sale is False:
            query = query.where(Product.discount_type.is_(None))

        result = await self.session.execute(query.distinct().order_by(Product.id))
        return list(result.scalars().unique())

    async def update_product(
        self,
        product: Product,
        *,
        name: str | None,
        description: str | None,
        base_price_cents: int | None,
        currency: str | None,
        is_active: bool | None,
        categories: Iterable[str] | None,
    ) -> Product:
        if name is not None:
            product.name = name
        if description is not None:
            product.description = description
        if base_price_cents is not None:
            product.base_price_cents = base_price_cents
        if currency is not None:
            product.currency = currency
        if is_active is not None:
            product.is_active = is_active
        if categories is not None:
            product.categories.clear()
            for category in categories:
                product.categories.append(ProductCategory(name=category))

        await self.session.flush()
        await self.session.refresh(
            product,
            attribute_names=["categories", "updated_at"],
        )
        return product

    async def set_discount(
        self,
        product: Product,
        *,
        discount_type: str | None,
        discount_value_hundredths: int | None,
        starts_at: datetime | None,
        ends_at: datetime | None,
    ) -> Product:
        product.discount_type = discount_type
        product.discount_value_hundredths = discount_value_hundredths
        product.discount_starts_at = starts_at
        product.discount_ends_at = ends_at
        await self.session.flush()
        await self.session.refresh(product, attribute_names=["updated_at"])
        return product

    async def bulk_set_discount(
        self,
        *,
        category: str | None,
        discount_type: str,
        discount_value_hundredths: int,
        starts_at: datetime | None,
        ends_at: datetime | None,
    ) -> int:
        statement = update(Product).values(
            discount_type=discount_type,
            discount_value_hundredths=discount_value_hundredths,
            discount_starts_at=starts_at,
            discount_ends_at=ends_at,
        )
        if category:
            in_category = select(ProductCategory.product_id).where(ProductCategory.name == category)
            statement = statement.where(Product.id.in_(in_category))
        result = await self.session.execute(statement.execution_options(synchronize_session=False))
        # Bulk UPDATE bypasses the identity map.
        self.session.expire_all()
        return result.rowcount or 0

    async def add_variant(
        self,
        product: Product,
        *,
        sku: str,
        price_cents: int,
        stock_quantity: int,
        is_active: bool,
    ) -> ProductVariant:
        variant = ProductVariant(
            product_id=product.id,
            sku=sku,
            price_cents=price_cents,
            stock_quantity=stock_quantity,
            is_active=is_active,
        )
        self.session.add(variant)
        await self.session.flush()
        await self.session.refresh(product, attribute_names=["variants"])
        return variant

    async def delete_product(self, product: Product) -> None:
        await self.session.delete(product)
        await self.session.flush()
