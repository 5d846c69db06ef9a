"""Request and response fragments shared by the storefront services."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from .pricing import DiscountType, as_utc

# Persisted as UTC wall time; SQLite drops offsets on write.
UtcDateTime = Annotated[datetime, AfterValidator(as_utc)]


def check_window(starts_at: datetime | None, ends_at: datetime | None) -> None:
    if starts_at is not None and ends_at is not None and as_utc(starts_at) > as_utc(ends_at):
        msg = "startsAt must not be after endsAt"
        raise ValueError(msg)


def check_discount_value(discount_type: DiscountType | None, value: Decimal | None) -> None:
    if discount_type is DiscountType.PERCENTAGE and value is not None and value > Decimal("100"):
        msg = "percentage discounts cannot exceed 100"
        raise ValueError(msg)


class DiscountPayload(BaseModel):
    """A percentage or fixed-amount discount with an optional validity window."""

    type: DiscountType
    value: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    starts_at: UtcDateTime | None = Field(default=None, alias="startsAt")
    ends_at: UtcDateTime | None = Field(default=None, alias="endsAt")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _validate(self) -> "DiscountPayload":
        check_window(self.starts_at, self.ends_at)
        check_discount_value(self.type, self.value)
        return self
