"""Pydantic schemas for the catalog service."""

from __future__ import annotations

from decimal import Decimal
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from storefront.common.schemas import DiscountPayload


class DisplayPrice(BaseModel):
    """A listed price as shown to shoppers, in the reporting currency when possible."""

    regular_price: Decimal = Field(alias="regularPrice")
    effective_price: Decimal = Field(alias="effectivePrice")
    currency: str
    discounted: bool
    rate_available: bool = Field(alias="rateAvailable")

    model_config = ConfigDict(populate_by_name=True)


class VariantCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    price: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2)
    stock_quantity: int = Field(default=0, ge=0, alias="stockQuantity")
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sku")
    @classmethod
    def _validate_sku(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "sku must be non-empty"
            raise ValueError(msg)
        return cleaned


class VariantResponse(VariantCreate):
    id: PositiveInt
    display: DisplayPrice


class ProductBase(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    base_price: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2, alias="basePrice")
    currency: str = Field(min_length=3, max_length=3)
    is_active: bool = Field(default=True, alias="isActive")
    categories: list[str] = Field(default_factory=list)
    discount: DiscountPayload | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "name must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("categories", mode="before")
    @classmethod
    def _normalize_categories(cls, value):
        if value is None:
            return []
        return value

    @field_validator("categories")
    @classmethod
    def _validate_categories(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item.strip()]
        if len(cleaned) != len(value):
            msg = "Category names must be non-empty"
            raise ValueError(msg)
        return cleaned


class ProductCreate(ProductBase):
    sku: str = Field(min_length=1, max_length=64)

    @field_validator("sku")
    @classmethod
    def _validate_sku(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "sku must be non-empty"
            raise ValueError(msg)
        return cleaned


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    base_price: Decimal | None = Field(
        default=None, ge=Decimal("0"), max_digits=12, decimal_places=2, alias="basePrice"
    )
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    is_active: bool | None = Field(default=None, alias="isActive")
    categories: list[str] | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _clean_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            msg = "name must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("currency")
    @classmethod
    def _clean_currency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().upper()

    @field_validator("categories")
    @classmethod
    def _clean_categories(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        cleaned = [item.strip() for item in value if item.strip()]
        if len(cleaned) != len(value):
            msg = "Category names must be non-empty"
            raise ValueError(msg)
        return cleaned


class ProductResponse(ProductBase):
    id: PositiveInt
    sku: str
    variants: list[VariantResponse] = Field(default_factory=list)
    display: DisplayPrice
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ProductListResponse(BaseModel):
    items: list[ProductResponse]
    total: int
    reporting_currency: str = Field(alias="reportingCurrency")
    rates_available: bool = Field(alias="ratesAvailable")

    model_config = ConfigDict(populate_by_name=True)


ProductSort = Literal["name", "price-asc", "price-desc"]


class BulkDiscountRequest(BaseModel):
    category: str | None = None
    discount: DiscountPayload


class BulkDiscountResponse(BaseModel):
    updated: int
