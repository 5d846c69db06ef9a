"""Pydantic schemas for the order service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class AddressPayload(BaseModel):
    title: str = Field(min_length=1, max_length=64)
    first_name: str = Field(min_length=1, max_length=128, alias="firstName")
    last_name: str = Field(min_length=1, max_length=128, alias="lastName")
    phone: str = Field(min_length=1, max_length=32)
    address_line_1: str = Field(min_length=1, max_length=255, alias="addressLine1")
    address_line_2: str | None = Field(default=None, max_length=255, alias="addressLine2")
    city: str = Field(min_length=1, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    postal_code: str = Field(min_length=1, max_length=32, alias="postalCode")
    country: str = Field(default="TR", min_length=2, max_length=2)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("title", "first_name", "last_name", "phone", "address_line_1", "city", "postal_code")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "value must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("country")
    @classmethod
    def _normalize_country(cls, value: str) -> str:
        return value.strip().upper()


class CheckoutLine(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    variant_id: PositiveInt | None = Field(default=None, alias="variantId")
    quantity: PositiveInt = Field(le=1000)

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(BaseModel):
    items: list[CheckoutLine] = Field(min_length=1, max_length=100)
    shipping_address: AddressPayload = Field(alias="shippingAddress")
    billing_address: AddressPayload | None = Field(default=None, alias="billingAddress")
    promotion_code: str | None = Field(default=None, max_length=64, alias="promotionCode")
    payment_method: str = Field(default="card", min_length=1, max_length=32, alias="paymentMethod")
    expected_total: Decimal | None = Field(default=None, ge=Decimal("0"), alias="expectedTotal")
    notes: str | None = Field(default=None, max_length=1000)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("promotion_code")
    @classmethod
    def _normalize_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().upper()
        return cleaned or None

    @property
    def resolved_billing_address(self) -> AddressPayload:
        return self.billing_address or self.shipping_address


class OrderUpdateStatus(BaseModel):
    status: OrderStatus
    note: str | None = Field(default=None, max_length=500)


class OrderItemResponse(BaseModel):
    id: PositiveInt
    product_id: PositiveInt = Field(alias="productId")
    variant_id: PositiveInt | None = Field(default=None, alias="variantId")
    sku: str
    name: str
    quantity: PositiveInt
    list_price: Decimal = Field(alias="listPrice")
    list_currency: str = Field(alias="listCurrency")
    unit_price: Decimal = Field(alias="unitPrice")
    total_price: Decimal = Field(alias="totalPrice")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    id: PositiveInt
    order_number: str = Field(alias="orderNumber")
    customer_id: PositiveInt = Field(alias="customerId")
    user_id: str = Field(alias="userId")
    status: OrderStatus
    payment_status: str = Field(alias="paymentStatus")
    payment_method: str = Field(alias="paymentMethod")
    payment_reference: str | None = Field(default=None, alias="paymentReference")
    currency: str
    subtotal: Decimal
    discount_total: Decimal = Field(alias="discountTotal")
    shipping_total: Decimal = Field(alias="shippingTotal")
    tax_total: Decimal = Field(alias="taxTotal")
    grand_total: Decimal = Field(alias="grandTotal")
    promotion_code: str | None = Field(default=None, alias="promotionCode")
    shipping_address: dict[str, Any] = Field(alias="shippingAddress")
    billing_address: dict[str, Any] = Field(alias="billingAddress")
    notes: str | None = None
    items: list[OrderItemResponse]
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class OrderEventResponse(BaseModel):
    type: str
    payload: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)
