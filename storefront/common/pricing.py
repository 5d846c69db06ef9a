"""Pricing resolution shared by the catalog, cart, quote and checkout flows.

Everything here is pure: callers fetch exchange rates, product discounts and
promotions first, then resolve prices locally. Amounts are ``Decimal`` and are
never rounded inside the resolvers; use :func:`quantize_money` at the edges.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

from .errors import PromotionRejected

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and normalise aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a decimal currency amount into integer cents for storage."""

    return int((amount * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return quantize_money(Decimal(cents) / HUNDRED)


def normalize_currency(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True, slots=True)
class DiscountDescriptor:
    """A percentage or fixed-amount reduction, optionally bounded in time."""

    type: DiscountType
    value: Decimal
    starts_at: datetime | None = None
    ends_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", DiscountType(self.type))
        object.__setattr__(self, "value", Decimal(self.value))
        if self.value <= ZERO:
            msg = "discount value must be positive"
            raise ValueError(msg)
        if self.starts_at is not None:
            object.__setattr__(self, "starts_at", as_utc(self.starts_at))
        if self.ends_at is not None:
            object.__setattr__(self, "ends_at", as_utc(self.ends_at))
        if self.starts_at is not None and self.ends_at is not None and self.starts_at > self.ends_at:
            msg = "discount window must start before it ends"
            raise ValueError(msg)

    def is_active(self, now: datetime) -> bool:
        moment = as_utc(now)
        if self.starts_at is not None and moment < self.starts_at:
            return False
        if self.ends_at is not None and moment > self.ends_at:
            return False
        return True


@dataclass(frozen=True, slots=True)
class RateTable:
    """Rates to the reporting currency for one effective date."""

    effective_date: date
    rates: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: dict[str, Decimal] = {}
        for code, rate in self.rates.items():
            value = Decimal(rate)
            if value <= ZERO:
                msg = f"rate for {code} must be positive"
                raise ValueError(msg)
            normalized[normalize_currency(code)] = value
        object.__setattr__(self, "rates", normalized)

    def get(self, currency: str) -> Decimal | None:
        return self.rates.get(normalize_currency(currency))

    def __contains__(self, currency: object) -> bool:
        return isinstance(currency, str) and normalize_currency(currency) in self.rates

    def __len__(self) -> int:
        return len(self.rates)


@dataclass(frozen=True, slots=True)
class Converted:
    amount: Decimal
    currency: str
    rate: Decimal
    source_currency: str

    @property
    def rate_available(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Unconverted:
    """The rate was not loaded; ``amount`` is still in ``currency``."""

    amount: Decimal
    currency: str

    @property
    def rate_available(self) -> bool:
        return False


PriceResolution = Converted | Unconverted


def convert_price(
    amount: Decimal,
    currency: str,
    rates: RateTable | Mapping[str, Decimal] | None,
    reporting_currency: str,
) -> PriceResolution:
    """Convert ``amount`` into the reporting currency without ever failing."""

    source = normalize_currency(currency)
    target = normalize_currency(reporting_currency)
    if source == target:
        return Converted(amount=amount, currency=target, rate=ONE, source_currency=source)

    rate: Decimal | None = None
    if isinstance(rates, RateTable):
        rate = rates.get(source)
    elif rates is not None:
        rate = rates.get(source)
    if rate is None:
        return Unconverted(amount=amount, currency=source)
    return Converted(amount=amount * Decimal(rate), currency=target, rate=Decimal(rate), source_currency=source)


def resolve_price(
    amount: Decimal,
    currency: str,
    rates: RateTable | Mapping[str, Decimal] | None,
    reporting_currency: str,
) -> Decimal:
    return convert_price(amount, currency, rates, reporting_currency).amount


def resolve_effective_price(
    base_price: Decimal,
    discount: DiscountDescriptor | None,
    now: datetime,
) -> Decimal:
    """Apply ``discount`` if it is active at ``now``; never returns a negative price."""

    if discount is None or not discount.is_active(now):
        return base_price
    if discount.type is DiscountType.PERCENTAGE:
        effective = base_price - base_price * discount.value / HUNDRED
    else:
        effective = base_price - discount.value
    return max(effective, ZERO)


class PricedQuantity(Protocol):
    @property
    def quantity(self) -> int: ...

    @property
    def unit_price(self) -> Decimal: ...


@dataclass(frozen=True, slots=True)
class LineItem:
    quantity: int
    unit_price: Decimal

    def __post_init__(self) -> None:
        if self.quantity < 1:
            msg = "quantity must be at least 1"
            raise ValueError(msg)


def aggregate(lines: Iterable[PricedQuantity]) -> Decimal:
    """Sum quantity x unit price; prices must already share one currency."""

    return sum((Decimal(line.quantity) * line.unit_price for line in lines), ZERO)


@dataclass(frozen=True, slots=True)
class Promotion:
    """An order-level campaign or coupon."""

    code: str
    discount: DiscountDescriptor
    min_order_amount: Decimal | None = None
    max_discount_amount: Decimal | None = None
    usage_limit: int | None = None
    usage_count: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.usage_count < 0:
            msg = "usage_count cannot be negative"
            raise ValueError(msg)
        if self.usage_limit is not None and self.usage_count > self.usage_limit:
            msg = "usage_count exceeds usage_limit"
            raise ValueError(msg)

    @property
    def remaining_uses(self) -> int | None:
        if self.usage_limit is None:
            return None
        return self.usage_limit - self.usage_count


@dataclass(frozen=True, slots=True)
class PromotionResult:
    discount_amount: Decimal
    final_total: Decimal
    applied: bool


def check_promotion(promotion: Promotion, now: datetime) -> None:
    """Raise :class:`PromotionRejected` unless the promotion may be used at ``now``."""

    if not promotion.is_active:
        raise PromotionRejected("inactive")
    moment = as_utc(now)
    window = promotion.discount
    if window.starts_at is not None and moment < window.starts_at:
        raise PromotionRejected("not_started")
    if window.ends_at is not None and moment > window.ends_at:
        raise PromotionRejected("expired")
    if promotion.usage_limit is not None and promotion.usage_count >= promotion.usage_limit:
        raise PromotionRejected("exhausted")


def apply_promotion(subtotal: Decimal, promotion: Promotion | None) -> PromotionResult:
    """Compute the order-level discount; usage limits are the caller's concern."""

    if promotion is None:
        return PromotionResult(discount_amount=ZERO, final_total=subtotal, applied=False)
    if promotion.min_order_amount is not None and subtotal < promotion.min_order_amount:
        return PromotionResult(discount_amount=ZERO, final_total=subtotal, applied=False)

    discount = promotion.discount
    if discount.type is DiscountType.PERCENTAGE:
        amount = subtotal * discount.value / HUNDRED
    else:
        amount = min(discount.value, subtotal)
    if promotion.max_discount_amount is not None:
        amount = min(amount, promotion.max_discount_amount)
    amount = max(amount, ZERO)
    return PromotionResult(
        discount_amount=amount,
        final_total=max(subtotal - amount, ZERO),
        applied=True,
    )


@dataclass(frozen=True, slots=True)
class PricedUnit:
    list_price: Decimal
    list_currency: str
    regular_price: Decimal
    effective_price: Decimal
    currency: str
    rate_available: bool

    @property
    def discounted(self) -> bool:
        return self.effective_price < self.regular_price


def price_unit(
    amount: Decimal,
    currency: str,
    discount: DiscountDescriptor | None,
    rates: RateTable | Mapping[str, Decimal] | None,
    reporting_currency: str,
    now: datetime,
) -> PricedUnit:
    """Discount a listed price in its own currency, then convert it.

    Fixed-amount product discounts are denominated in the product's currency,
    so the discount is applied before conversion.
    """

    regular = convert_price(amount, currency, rates, reporting_currency)
    effective = convert_price(
        resolve_effective_price(amount, discount, now), currency, rates, reporting_currency
    )
    return PricedUnit(
        list_price=amount,
        list_currency=normalize_currency(currency),
        regular_price=regular.amount,
        effective_price=effective.amount,
        currency=effective.currency,
        rate_available=effective.rate_available,
    )


@dataclass(frozen=True, slots=True)
class QuoteLine:
    quantity: int
    unit_price: Decimal
    currency: str
    discount: DiscountDescriptor | None = None
    reference: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            msg = "quantity must be at least 1"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class PricedLine:
    line: QuoteLine
    unit: PricedUnit

    @property
    def quantity(self) -> int:
        return self.line.quantity

    @property
    def unit_price(self) -> Decimal:
        return self.unit.effective_price

    @property
    def total(self) -> Decimal:
        return self.unit.effective_price * self.line.quantity


@dataclass(frozen=True, slots=True)
class Quote:
    currency: str
    lines: tuple[PricedLine, ...]
    subtotal: Decimal
    promotion: PromotionResult
    promotion_code: str | None
    tax: Decimal
    shipping: Decimal
    total: Decimal

    @property
    def missing_rates(self) -> list[str]:
        return sorted({line.unit.currency for line in self.lines if not line.unit.rate_available})

    @property
    def rates_complete(self) -> bool:
        return not self.missing_rates


def build_quote(
    lines: Iterable[QuoteLine],
    *,
    rates: RateTable | Mapping[str, Decimal] | None,
    reporting_currency: str,
    now: datetime,
    promotion: Promotion | None = None,
    tax_rate: Decimal = ZERO,
    shipping_fee: Decimal = ZERO,
) -> Quote:
    """Price every line, aggregate, apply the promotion, then add tax and shipping."""

    currency = normalize_currency(reporting_currency)
    priced = tuple(
        PricedLine(
            line=line,
            unit=price_unit(line.unit_price, line.currency, line.discount, rates, currency, now),
        )
        for line in lines
    )
    subtotal = aggregate(priced)
    promotion_result = apply_promotion(subtotal, promotion)
    tax = promotion_result.final_total * tax_rate
    shipping = shipping_fee if priced else ZERO
    return Quote(
        currency=currency,
        lines=priced,
        subtotal=subtotal,
        promotion=promotion_result,
        promotion_code=promotion.code if promotion is not None else None,
        tax=tax,
        shipping=shipping,
        total=promotion_result.final_total + tax + shipping,
    )
