"""SQLAlchemy models for the pricing service."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

RATE_SCALE = 1_000_000


class Base(DeclarativeBase):
    """Base class for pricing ORM models."""


class ExchangeRate(Base):
    """Daily rate converting one unit of ``currency_code`` into the reporting currency.

    Rates are stored as integers scaled by ``RATE_SCALE`` (micro-units).
    """

    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint("currency_code", "effective_date", name="uq_exchange_rate_day"),
        CheckConstraint("rate_micros > 0", name="ck_exchange_rate_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    rate_micros: Mapped[int] = mapped_column(BigInteger, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Promotion(Base):
    """Order-level campaign or coupon.

    ``discount_value_hundredths`` holds the percentage (for percentage
    promotions) or the amount in the reporting currency, times 100.
    """

    __tablename__ = "promotions"
    __table_args__ = (
        UniqueConstraint("code", name="uq_promotion_code"),
        CheckConstraint("usage_count >= 0", name="ck_promotion_usage_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promotion_usage_within_limit",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="coupon", server_default="coupon")
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_value_hundredths: Mapped[int] = mapped_column(Integer, nullable=False)
    min_order_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_discount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
