"""Conversions between pricing rows and the pricing engine's value types."""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from storefront.common.errors import PromotionRejected, ResourceNotFound
from storefront.common.pricing import (
    DiscountDescriptor,
    HUNDRED,
    Promotion as PromotionTerms,
    RateTable,
    check_promotion,
    from_cents,
)

from .metrics import PROMOTION_REJECTIONS_TOTAL
from .models import RATE_SCALE, ExchangeRate, Promotion
from .repository import PricingRepository

_LOGGER = logging.getLogger(__name__)


def optional_amount(cents: int | None) -> Decimal | None:
    return from_cents(cents) if cents is not None else None


def to_rate_micros(rate: Decimal) -> int:
    return int((rate * RATE_SCALE).to_integral_value(rounding=ROUND_HALF_UP))


def rate_value(rate: ExchangeRate) -> Decimal:
    return Decimal(rate.rate_micros) / Decimal(RATE_SCALE)


async def load_rate_table(repository: PricingRepository, effective_date: date) -> RateTable:
    rows = await repository.rates_for_date(effective_date)
    return RateTable(
        effective_date=effective_date,
        rates={row.currency_code: rate_value(row) for row in rows},
    )


def promotion_terms(promotion: Promotion) -> PromotionTerms:
    """Build the engine's view of a stored promotion."""

    return PromotionTerms(
        code=promotion.code,
        discount=DiscountDescriptor(
            type=promotion.discount_type,
            value=Decimal(promotion.discount_value_hundredths) / HUNDRED,
            starts_at=promotion.starts_at,
            ends_at=promotion.ends_at,
        ),
        min_order_amount=optional_amount(promotion.min_order_cents),
        max_discount_amount=optional_amount(promotion.max_discount_cents),
        usage_limit=promotion.usage_limit,
        usage_count=promotion.usage_count,
        is_active=promotion.is_active,
    )


def usage_percent(promotion: Promotion) -> int:
    if not promotion.usage_limit:
        return 0
    return round(promotion.usage_count / promotion.usage_limit * 100)


async def find_promotion(repository: PricingRepository, code: str) -> Promotion:
    promotion = await repository.get_promotion_by_code(code.strip().upper())
    if promotion is None:
        raise ResourceNotFound("Promotion code not found")
    return promotion


async def usable_promotion(
    repository: PricingRepository, code: str, *, now: datetime
) -> tuple[Promotion, PromotionTerms]:
    """Look up ``code`` and reject it unless it may be applied at ``now``."""

    promotion = await find_promotion(repository, code)
    terms = promotion_terms(promotion)
    try:
        check_promotion(terms, now)
    except PromotionRejected as exc:
        PROMOTION_REJECTIONS_TOTAL.labels(reason=exc.reason).inc()
        _LOGGER.info("Promotion %s rejected: %s", promotion.code, exc.reason)
        raise
    return promotion, terms
