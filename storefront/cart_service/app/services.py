"""Catalog snapshots and totals for carts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from storefront.common.clients import CatalogClient, ProductSnapshot
from storefront.common.errors import ResourceNotFound
from storefront.common.pricing import HUNDRED, DiscountDescriptor, QuoteLine, to_cents

from .models import CartItem


@dataclass(frozen=True, slots=True)
class LineSnapshot:
    """What a cart line remembers about the product it was added from."""

    product_id: int
    variant_id: int | None
    sku: str
    name: str
    unit_price_cents: int
    currency: str
    discount_type: str | None
    discount_value_hundredths: int | None
    discount_starts_at: datetime | None
    discount_ends_at: datetime | None

    @classmethod
    def from_product(cls, product: ProductSnapshot, variant_id: int | None) -> "LineSnapshot":
        price, sku = product.unit_price(variant_id)
        discount = product.discount
        return cls(
            product_id=product.id,
            variant_id=variant_id,
            sku=sku,
            name=product.name,
            unit_price_cents=to_cents(price),
            currency=product.currency,
            discount_type=discount.type.value if discount else None,
            discount_value_hundredths=to_cents(discount.value) if discount else None,
            discount_starts_at=discount.starts_at if discount else None,
            discount_ends_at=discount.ends_at if discount else None,
        )


def item_discount(item: CartItem) -> DiscountDescriptor | None:
    if item.discount_type is None or not item.discount_value_hundredths:
        return None
    return DiscountDescriptor(
        type=item.discount_type,
        value=Decimal(item.discount_value_hundredths) / HUNDRED,
        starts_at=item.discount_starts_at,
        ends_at=item.discount_ends_at,
    )


def quote_lines(items: list[CartItem]) -> list[QuoteLine]:
    return [
        QuoteLine(
            quantity=item.quantity,
            unit_price=Decimal(item.unit_price_cents) / HUNDRED,
            currency=item.currency,
            discount=item_discount(item),
            reference=str(item.id),
        )
        for item in items
    ]


async def fetch_live_products(
    catalog: CatalogClient, product_ids: set[int]
) -> dict[int, ProductSnapshot | None]:
    """Fetch current catalog data; products that no longer exist map to ``None``."""

    async def fetch(product_id: int) -> ProductSnapshot | None:
        try:
            return await catalog.get_product(product_id)
        except ResourceNotFound:
            return None

    ordered = sorted(product_ids)
    results = await asyncio.gather(*(fetch(product_id) for product_id in ordered))
    return dict(zip(ordered, results))
