"""API routes for campaigns and coupon codes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError

from storefront.common.errors import PromotionRejected
from storefront.common.pricing import DiscountType, as_utc, from_cents, to_cents
from storefront.common.security import Principal, require

from ..dependencies import get_repository
from ..metrics import PROMOTION_REDEMPTIONS_TOTAL
from ..models import Promotion
from ..repository import PricingRepository
from ..schemas import (
    PromotionCreate,
    PromotionListResponse,
    PromotionResponse,
    PromotionUpdate,
)
from ..services import find_promotion, optional_amount, usable_promotion, usage_percent

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/promotions", tags=["promotions"])

_CENT_FIELDS = {
    "min_order_amount": "min_order_cents",
    "max_discount_amount": "max_discount_cents",
}


def _serialize(promotion: Promotion) -> dict[str, object]:
    return {
        "id": promotion.id,
        "code": promotion.code,
        "name": promotion.name,
        "description": promotion.description,
        "kind": promotion.kind,
        "discountType": promotion.discount_type,
        "discountValue": from_cents(promotion.discount_value_hundredths),
        "minOrderAmount": optional_amount(promotion.min_order_cents),
        "maxDiscountAmount": optional_amount(promotion.max_discount_cents),
        "usageLimit": promotion.usage_limit,
        "usageCount": promotion.usage_count,
        "usagePercent": usage_percent(promotion),
        "startsAt": as_utc(promotion.starts_at) if promotion.starts_at else None,
        "endsAt": as_utc(promotion.ends_at) if promotion.ends_at else None,
        "isActive": promotion.is_active,
        "createdAt": promotion.created_at,
        "updatedAt": promotion.updated_at,
    }


def _validate_merged(promotion: Promotion, changes: dict[str, object]) -> None:
    def merged(attribute: str) -> Any:
        return changes.get(attribute, getattr(promotion, attribute))

    starts_at = as_utc(merged("starts_at")) if merged("starts_at") else None
    ends_at = as_utc(merged("ends_at")) if merged("ends_at") else None
    if starts_at is not None and ends_at is not None and starts_at > ends_at:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="startsAt must not be after endsAt"
        )
    if (
        merged("discount_type") == DiscountType.PERCENTAGE.value
        and merged("discount_value_hundredths") > 100 * 100
    ):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="percentage discounts cannot exceed 100",
        )
    usage_limit = merged("usage_limit")
    if usage_limit is not None and promotion.usage_count > usage_limit:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="usageLimit cannot be lower than the current usage count",
        )


@router.post("", response_model=PromotionResponse, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    payload: PromotionCreate,
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("promotions:write")),
) -> PromotionResponse:
    try:
        promotion = await repository.create_promotion(
            code=payload.code,
            name=payload.name,
            description=payload.description,
            kind=payload.kind,
            discount_type=payload.discount_type.value,
            discount_value_hundredths=to_cents(payload.discount_value),
            min_order_cents=to_cents(payload.min_order_amount) if payload.min_order_amount is not None else None,
            max_discount_cents=(
                to_cents(payload.max_discount_amount) if payload.max_discount_amount is not None else None
            ),
            usage_limit=payload.usage_limit,
            starts_at=payload.starts_at,
            ends_at=payload.ends_at,
            is_active=payload.is_active,
        )
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Promotion code already exists") from exc
    return PromotionResponse.model_validate(_serialize(promotion))


@router.get("", response_model=PromotionListResponse)
async def list_promotions(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    kind: Literal["campaign", "coupon"] | None = Query(default=None),
    promotion_status: Literal["active", "inactive", "expired"] | None = Query(default=None, alias="status"),
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("promotions:read-all")),
) -> PromotionListResponse:
    promotions, total = await repository.list_promotions(
        limit=limit,
        offset=offset,
        kind=kind,
        status=promotion_status,
        now=datetime.now(timezone.utc),
    )
    items = [PromotionResponse.model_validate(_serialize(promotion)) for promotion in promotions]
    return PromotionListResponse(items=items, total=total)


@router.get("/by-code/{code}", response_model=PromotionResponse)
async def get_promotion_by_code(
    code: str,
    repository: PricingRepository = Depends(get_repository),
) -> PromotionResponse:
    promotion = await find_promotion(repository, code)
    return PromotionResponse.model_validate(_serialize(promotion))


@router.post("/by-code/{code}/redeem", response_model=PromotionResponse)
async def redeem_promotion(
    code: str,
    repository: PricingRepository = Depends(get_repository),
    principal: Principal = Depends(require("promotions:redeem")),
) -> PromotionResponse:
    try:
        promotion, _terms = await usable_promotion(repository, code, now=datetime.now(timezone.utc))
    except PromotionRejected as exc:
        if exc.reason != "exhausted":
            raise
        PROMOTION_REDEMPTIONS_TOTAL.labels(outcome="exhausted").inc()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.detail) from exc

    if not await repository.redeem(promotion):
        PROMOTION_REDEMPTIONS_TOTAL.labels(outcome="exhausted").inc()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=PromotionRejected("exhausted").detail
        )
    PROMOTION_REDEMPTIONS_TOTAL.labels(outcome="redeemed").inc()
    _LOGGER.info("Promotion %s redeemed by %s", promotion.code, principal.user_id)
    return PromotionResponse.model_validate(_serialize(promotion))


@router.post("/by-code/{code}/release", response_model=PromotionResponse)
async def release_promotion(
    code: str,
    repository: PricingRepository = Depends(get_repository),
    principal: Principal = Depends(require("promotions:redeem")),
) -> PromotionResponse:
    promotion = await find_promotion(repository, code)
    if await repository.release(promotion):
        PROMOTION_REDEMPTIONS_TOTAL.labels(outcome="released").inc()
        _LOGGER.info("Promotion %s released by %s", promotion.code, principal.user_id)
    return PromotionResponse.model_validate(_serialize(promotion))


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: int,
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("promotions:read-all")),
) -> PromotionResponse:
    promotion = await repository.get_promotion(promotion_id)
    if promotion is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found")
    return PromotionResponse.model_validate(_serialize(promotion))


@router.patch("/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: int,
    payload: PromotionUpdate,
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("promotions:write")),
) -> PromotionResponse:
    promotion = await repository.get_promotion(promotion_id)
    if promotion is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found")

    changes: dict[str, object] = {}
    for field, value in payload.model_dump(exclude_unset=True).items():
        if field in _CENT_FIELDS:
            changes[_CENT_FIELDS[field]] = to_cents(value) if value is not None else None
        elif field == "discount_value":
            if value is None:
                continue
            changes["discount_value_hundredths"] = to_cents(Decimal(value))
        elif field == "discount_type":
            if value is None:
                continue
            changes["discount_type"] = DiscountType(value).value
        elif field in {"name", "kind", "is_active"} and value is None:
            continue
        else:
            changes[field] = value

    _validate_merged(promotion, changes)
    updated = await repository.update_promotion(promotion, changes=changes)
    return PromotionResponse.model_validate(_serialize(updated))


@router.delete("/{promotion_id}")
async def delete_promotion(
    promotion_id: int,
    repository: PricingRepository = Depends(get_repository),
    _: Principal = Depends(require("promotions:write")),
) -> Response:
    promotion = await repository.get_promotion(promotion_id)
    if promotion is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Promotion not found")
    await repository.delete_promotion(promotion)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
