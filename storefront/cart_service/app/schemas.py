"""Pydantic schemas for the cart service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class CartItemCreate(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    variant_id: PositiveInt | None = Field(default=None, alias="variantId")
    quantity: PositiveInt = Field(default=1, le=1000)

    model_config = ConfigDict(populate_by_name=True)


class CartItemUpdate(BaseModel):
    quantity: PositiveInt = Field(le=1000)


class CartItemResponse(BaseModel):
    id: PositiveInt
    product_id: PositiveInt = Field(alias="productId")
    variant_id: PositiveInt | None = Field(default=None, alias="variantId")
    sku: str
    name: str
    unit_price: Decimal = Field(alias="unitPrice")
    currency: str
    quantity: PositiveInt
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class CartResponse(BaseModel):
    id: PositiveInt
    user_id: str = Field(alias="userId")
    items: list[CartItemResponse]
    item_count: int = Field(alias="itemCount")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class CartRefreshResponse(BaseModel):
    cart: CartResponse
    removed: list[str] = Field(default_factory=list)
    repriced: list[str] = Field(default_factory=list)


class CartLineTotal(BaseModel):
    item_id: PositiveInt = Field(alias="itemId")
    sku: str
    quantity: PositiveInt
    unit_price: Decimal = Field(alias="unitPrice")
    line_total: Decimal = Field(alias="lineTotal")
    currency: str
    discounted: bool
    rate_available: bool = Field(alias="rateAvailable")

    model_config = ConfigDict(populate_by_name=True)


class CartTotalsResponse(BaseModel):
    currency: str
    lines: list[CartLineTotal]
    total_items: int = Field(alias="totalItems")
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
