"""Display pricing for catalog products."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from storefront.common.pricing import (
    DiscountDescriptor,
    HUNDRED,
    PricedUnit,
    RateTable,
    as_utc,
    from_cents,
    price_unit,
    quantize_money,
)

from .models import Product


def product_discount(product: Product) -> DiscountDescriptor | None:
    if product.discount_type is None or not product.discount_value_hundredths:
        return None
    return DiscountDescriptor(
        type=product.discount_type,
        value=Decimal(product.discount_value_hundredths) / HUNDRED,
        starts_at=product.discount_starts_at,
        ends_at=product.discount_ends_at,
    )


def discount_payload(product: Product) -> dict[str, object] | None:
    discount = product_discount(product)
    if discount is None:
        return None
    return {
        "type": discount.type.value,
        "value": quantize_money(discount.value),
        "startsAt": discount.starts_at,
        "endsAt": discount.ends_at,
    }


class ProductPricer:
    """Prices catalog rows against one rate table at one instant.

    Product-level discounts apply to variants as well as the base price.
    """

    def __init__(self, *, rates: RateTable, reporting_currency: str, now: datetime) -> None:
        self.rates = rates
        self.reporting_currency = reporting_currency
        self.now = as_utc(now)

    def price(self, product: Product, amount_cents: int | None = None) -> PricedUnit:
        cents = product.base_price_cents if amount_cents is None else amount_cents
        return price_unit(
            from_cents(cents),
            product.currency,
            product_discount(product),
            self.rates,
            self.reporting_currency,
            self.now,
        )

    def display(self, product: Product, amount_cents: int | None = None) -> dict[str, object]:
        unit = self.price(product, amount_cents)
        return display_block(unit)


def display_block(unit: PricedUnit) -> dict[str, object]:
    return {
        "regularPrice": quantize_money(unit.regular_price),
        "effectivePrice": quantize_money(unit.effective_price),
        "currency": unit.currency,
        "discounted": unit.discounted,
        "rateAvailable": unit.rate_available,
    }
