"""API routes for the daily exchange rate table."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError

from storefront.common import ServiceSettings
from storefront.common.security import Principal, require

from ..dependencies import get_repository, get_service_settings
from ..metrics import EXCHANGE_RATE_UPDATES_TOTAL
from ..models import ExchangeRate
from ..repository import PricingRepository
from ..schemas import ExchangeRateListResponse, ExchangeRateResponse, RateTableResponse, RateUpsert
from ..services import load_rate_table, rate_value, to_rate_micros

router = APIRouter(prefix="/exchange-rates", tags=["exchange-rates"])


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _serialize(rate: ExchangeRate, *, change_percent: Decimal | None = None) -> dict[str, object]:
    return {
        "id": rate.id,
        "currencyCode": rate.currency_code,
        "rate": rate_value(rate),
        "effectiveDate": rate.effective_date,
        "createdBy": rate.created_by,
        "changePercent": change_percent,
        "createdAt": rate.created_at,
        "updatedAt": rate.updated_at,
    }


@router.get("/current", response_model=RateTableResponse)
async def get_current_rates(
    effective_date: date | None = Query(default=None, alias="effectiveDate"),
    repository: PricingRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> RateTableResponse:
    table = await load_rate_table(repository, effective_date or _today())
    return RateTableResponse(
        effective_date=table.effective_date,
        reporting_currency=settings.reporting_currency,
        rates=dict(table.rates),
    )


@router.put("", response_model=ExchangeRateListResponse)
async def upsert_rates(
    payload: RateUpsert,
    repository: PricingRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
    principal: Principal = Depends(require("rates:write")),
) -> ExchangeRateListResponse:
    if settings.reporting_currency in payload.rates:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{settings.reporting_currency} is the reporting currency and has no rate",
        )
    try:
        rates = await repository.upsert_rates(
            effective_date=payload.effective_date or _today(),
            rates={code: to_rate_micros(rate) for code, rate in payload.rates.items()},
            created_by=principal.user_id,
        )
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Exchange rate already exists") from exc
    for rate in rates:
        EXCHANGE_RATE_UPDATES_TOTAL.labels(currency=rate.currency_code).inc()
    items = [ExchangeRateResponse.model_validate(_serialize(rate)) for rate in rates]
    return ExchangeRateListResponse(items=items, total=len(items))


@router.get("/history", response_model=ExchangeRateListResponse)
async def rate_history(
    days: int = Query(default=7, ge=1, le=90),
    repository: PricingRepository = Depends(get_repository),
) -> ExchangeRateListResponse:
    since = _today() - timedelta(days=days)
    rows = await repository.rates_since(since - timedelta(days=1))
    by_day = {(row.currency_code, row.effective_date): row for row in rows}

    items: list[ExchangeRateResponse] = []
    for row in rows:
        if row.effective_date < since:
            continue
        previous = by_day.get((row.currency_code, row.effective_date - timedelta(days=1)))
        change: Decimal | None = None
        if previous is not None:
            before = rate_value(previous)
            change = ((rate_value(row) - before) / before * Decimal("100")).quantize(Decimal("0.01"))
        items.append(ExchangeRateResponse.model_validate(_serialize(row, change_percent=change)))
    return ExchangeRateListResponse(items=items, total=len(items))


@router.delete("/{rate_id}")
async def delete_rate(
    rate_id: int,
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("rates:delete")),
) -> Response:
    rate = await repository.get_rate(rate_id)
    if rate is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exchange rate not found")
    await repository.delete_rate(rate)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
