"""Pydantic schemas for the pricing service."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

from storefront.common.pricing import DiscountType
from storefront.common.schemas import DiscountPayload, UtcDateTime, check_discount_value, check_window

PromotionKind = Literal["campaign", "coupon"]


# Exchange rates ------------------------------------------------------------------------------


class RateTableResponse(BaseModel):
    effective_date: date = Field(alias="effectiveDate")
    reporting_currency: str = Field(alias="reportingCurrency")
    rates: dict[str, Decimal]

    model_config = ConfigDict(populate_by_name=True)


class RateUpsert(BaseModel):
    effective_date: date | None = Field(default=None, alias="effectiveDate")
    rates: dict[str, Decimal] = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("rates")
    @classmethod
    def _validate_rates(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        cleaned: dict[str, Decimal] = {}
        for code, rate in value.items():
            normalized = code.strip().upper()
            if len(normalized) != 3 or not normalized.isalpha():
                msg = f"invalid currency code {code!r}"
                raise ValueError(msg)
            if rate <= 0:
                msg = f"rate for {normalized} must be positive"
                raise ValueError(msg)
            cleaned[normalized] = rate
        return cleaned


class ExchangeRateResponse(BaseModel):
    id: PositiveInt
    currency_code: str = Field(alias="currencyCode")
    rate: Decimal
    effective_date: date = Field(alias="effectiveDate")
    created_by: str | None = Field(default=None, alias="createdBy")
    change_percent: Decimal | None = Field(default=None, alias="changePercent")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ExchangeRateListResponse(BaseModel):
    items: list[ExchangeRateResponse]
    total: int


# Promotions ----------------------------------------------------------------------------------


class PromotionBase(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    kind: PromotionKind = Field(default="coupon")
    discount_type: DiscountType = Field(alias="discountType")
    discount_value: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2, alias="discountValue")
    min_order_amount: Decimal | None = Field(
        default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="minOrderAmount"
    )
    max_discount_amount: Decimal | None = Field(
        default=None, gt=Decimal("0"), max_digits=12, decimal_places=2, alias="maxDiscountAmount"
    )
    usage_limit: int | None = Field(default=None, ge=1, alias="usageLimit")
    starts_at: UtcDateTime | None = Field(default=None, alias="startsAt")
    ends_at: UtcDateTime | None = Field(default=None, alias="endsAt")
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        cleaned = value.strip().upper()
        if not cleaned:
            msg = "code must be non-empty"
            raise ValueError(msg)
        return cleaned


class PromotionCreate(PromotionBase):
    @model_validator(mode="after")
    def _validate(self) -> "PromotionCreate":
        check_window(self.starts_at, self.ends_at)
        check_discount_value(self.discount_type, self.discount_value)
        return self


class PromotionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    kind: PromotionKind | None = None
    discount_type: DiscountType | None = Field(default=None, alias="discountType")
    discount_value: Decimal | None = Field(
        default=None, gt=Decimal("0"), max_digits=12, decimal_places=2, alias="discountValue"
    )
    min_order_amount: Decimal | None = Field(
        default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="minOrderAmount"
    )
    max_discount_amount: Decimal | None = Field(
        default=None, gt=Decimal("0"), max_digits=12, decimal_places=2, alias="maxDiscountAmount"
    )
    usage_limit: int | None = Field(default=None, ge=1, alias="usageLimit")
    starts_at: UtcDateTime | None = Field(default=None, alias="startsAt")
    ends_at: UtcDateTime | None = Field(default=None, alias="endsAt")
    is_active: bool | None = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class PromotionResponse(PromotionBase):
    id: PositiveInt
    usage_count: int = Field(alias="usageCount")
    usage_percent: int = Field(alias="usagePercent")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class PromotionListResponse(BaseModel):
    items: list[PromotionResponse]
    total: int


# Quotes --------------------------------------------------------------------------------------


class QuoteLineRequest(BaseModel):
    reference: str | None = Field(default=None, max_length=128)
    quantity: int = Field(ge=1, le=1000)
    unit_price: Decimal = Field(ge=Decimal("0"), alias="unitPrice")
    currency: str = Field(min_length=3, max_length=3)
    discount: DiscountPayload | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()


class QuoteRequest(BaseModel):
    lines: list[QuoteLineRequest] = Field(default_factory=list, max_length=200)
    promotion_code: str | None = Field(default=None, alias="promotionCode")
    include_charges: bool = Field(default=False, alias="includeCharges")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("promotion_code")
    @classmethod
    def _normalize_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().upper()
        return cleaned or None


class QuoteLineResponse(BaseModel):
    reference: str | None = None
    quantity: int
    list_price: Decimal = Field(alias="listPrice")
    list_currency: str = Field(alias="listCurrency")
    unit_price: Decimal = Field(alias="unitPrice")
    line_total: Decimal = Field(alias="lineTotal")
    currency: str
    discounted: bool
    rate_available: bool = Field(alias="rateAvailable")

    model_config = ConfigDict(populate_by_name=True)


class QuoteResponse(BaseModel):
    currency: str
    effective_date: date = Field(alias="effectiveDate")
    lines: list[QuoteLineResponse]
    subtotal: Decimal
    discount_amount: Decimal = Field(alias="discountAmount")
    promotion_code: str | None = Field(default=None, alias="promotionCode")
    promotion_applied: bool = Field(alias="promotionApplied")
    tax: Decimal
    shipping: Decimal
    total: Decimal
    missing_rates: list[str] = Field(alias="missingRates")
    rates_complete: bool = Field(alias="ratesComplete")

    model_config = ConfigDict(populate_by_name=True)
