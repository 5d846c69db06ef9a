"""Stateless price quotes for explicit line items."""

from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends

from storefront.common import ServiceSettings
from storefront.common.pricing import (
    ZERO,
    DiscountDescriptor,
    Quote,
    QuoteLine,
    build_quote,
    quantize_money,
)
from storefront.common.tracing import get_tracer

from ..dependencies import get_repository, get_service_settings
from ..metrics import QUOTES_TOTAL
from ..repository import PricingRepository
from ..schemas import QuoteLineResponse, QuoteRequest, QuoteResponse
from ..services import load_rate_table, usable_promotion

router = APIRouter(prefix="/quotes", tags=["quotes"])

_TRACER = get_tracer("pricing.quotes")


def _serialize(quote: Quote, effective_date: date) -> dict[str, object]:
    return {
        "currency": quote.currency,
        "effectiveDate": effective_date,
        "lines": [
            QuoteLineResponse(
                reference=priced.line.reference,
                quantity=priced.quantity,
                list_price=quantize_money(priced.unit.list_price),
                list_currency=priced.unit.list_currency,
                unit_price=quantize_money(priced.unit_price),
                line_total=quantize_money(priced.total),
                currency=priced.unit.currency,
                discounted=priced.unit.discounted,
                rate_available=priced.unit.rate_available,
            )
            for priced in quote.lines
        ],
        "subtotal": quantize_money(quote.subtotal),
        "discountAmount": quantize_money(quote.promotion.discount_amount),
        "promotionCode": quote.promotion_code,
        "promotionApplied": quote.promotion.applied,
        "tax": quantize_money(quote.tax),
        "shipping": quantize_money(quote.shipping),
        "total": quantize_money(quote.total),
        "missingRates": quote.missing_rates,
        "ratesComplete": quote.rates_complete,
    }


@router.post("", response_model=QuoteResponse)
async def create_quote(
    payload: QuoteRequest,
    repository: PricingRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> QuoteResponse:
    now = datetime.now(timezone.utc)
    with _TRACER.start_as_current_span("pricing.quote") as span:
        span.set_attribute("quote.lines", len(payload.lines))
        promotion = None
        if payload.promotion_code:
            span.set_attribute("quote.promotion_code", payload.promotion_code)
            _, promotion = await usable_promotion(repository, payload.promotion_code, now=now)

        table = await load_rate_table(repository, now.date())
        lines = [
            QuoteLine(
                quantity=line.quantity,
                unit_price=line.unit_price,
                currency=line.currency,
                discount=(
                    DiscountDescriptor(
                        type=line.discount.type,
                        value=line.discount.value,
                        starts_at=line.discount.starts_at,
                        ends_at=line.discount.ends_at,
                    )
                    if line.discount is not None
                    else None
                ),
                reference=line.reference,
            )
            for line in payload.lines
        ]
        quote = build_quote(
            lines,
            rates=table,
            reporting_currency=settings.reporting_currency,
            now=now,
            promotion=promotion,
            tax_rate=settings.checkout_tax_rate if payload.include_charges else ZERO,
            shipping_fee=settings.checkout_shipping_fee if payload.include_charges else ZERO,
        )
        span.set_attribute("quote.rates_complete", quote.rates_complete)

    QUOTES_TOTAL.labels(rates="complete" if quote.rates_complete else "partial").inc()
    return QuoteResponse.model_validate(_serialize(quote, table.effective_date))
