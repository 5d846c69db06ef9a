"""Data access helpers for pricing service."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ExchangeRate, Promotion


class PricingRepository:
    """Persistence helpers for exchange rates and promotions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Exchange rates ---------------------------------------------------------------------------

    async def rates_for_date(self, effective_date: date) -> list[ExchangeRate]:
        result = await self.session.execute(
            select(ExchangeRate)
            .where(ExchangeRate.effective_date == effective_date)
            .order_by(ExchangeRate.currency_code.asc())
        )
        return list(result.scalars())

    async def rates_since(self, since: date) -> list[ExchangeRate]:
        result = await self.session.execute(
            select(ExchangeRate)
            .where(ExchangeRate.effective_date >= since)
            .order_by(ExchangeRate.effective_date.desc(), ExchangeRate.currency_code.asc())
        )
        return list(result.scalars())

    async def upsert_rates(
        self,
        *,
        effective_date: date,
        rates: Mapping[str, int],
        created_by: str | None,
    ) -> list[ExchangeRate]:
        existing = {
            rate.currency_code: rate
            for rate in await self.rates_for_date(effective_date)
            if rate.currency_code in rates
        }
        touched: list[ExchangeRate] = []
        for currency_code, rate_micros in rates.items():
            rate = existing.get(currency_code)
            if rate is None:
                rate = ExchangeRate(
                    currency_code=currency_code,
                    rate_micros=rate_micros,
                    effective_date=effective_date,
                    created_by=created_by,
                )
                self.session.add(rate)
            else:
                rate.rate_micros = rate_micros
                rate.created_by = created_by
            touched.append(rate)

        await self.session.flush()
        for rate in touched:
            await self.session.refresh(rate, attribute_names=["created_at", "updated_at"])
        return sorted(touched, key=lambda item: item.currency_code)

    async def get_rate(self, rate_id: int) -> ExchangeRate | None:
        result = await self.session.execute(select(ExchangeRate).where(ExchangeRate.id == rate_id))
        return result.scalar_one_or_none()

    async def delete_rate(self, rate: ExchangeRate) -> None:
        await self.session.delete(rate)
        await self.session.flush()

    # Promotions -------------------------------------------------------------------------------

    async def create_promotion(
        self,
        *,
        code: str,
        name: str,
        description: str | None,
        kind: str,
        discount_type: str,
        discount_value_hundredths: int,
        min_order_cents: int | None,
        max_discount_cents: int | None,
        usage_limit: int | None,
        starts_at: datetime | None,
        ends_at: datetime | None,
        is_active: bool,
    ) -> Promotion:
        promotion = Promotion(
            code=code,
            name=name,
            description=description,
            kind=kind,
            discount_type=discount_type,
            discount_value_hundredths=discount_value_hundredths,
            min_order_cents=min_order_cents,
            max_discount_cents=max_discount_cents,
            usage_limit=usage_limit,
            usage_count=0,
            starts_at=starts_at,
            ends_at=ends_at,
            is_active=is_active,
        )
        self.session.add(promotion)
        await self.session.flush()
        await self.session.refresh(promotion, attribute_names=["created_at", "updated_at"])
        return promotion

    async def get_promotion(self, promotion_id: int) -> Promotion | None:
        result = await self.session.execute(select(Promotion).where(Promotion.id == promotion_id))
        return result.scalar_one_or_none()

    async def get_promotion_by_code(self, code: str) -> Promotion | None:
        result = await self.session.execute(select(Promotion).where(Promotion.code == code))
        return result.scalar_one_or_none()

    async def list_promotions(
        self,
        *,
        limit: int,
        offset: int,
        kind: str | None,
        status: str | None,
        now: datetime,
    ) -> tuple[list[Promotion], int]:
        base: Select[tuple[Promotion]] = select(Promotion)
        count: Select[tuple[int]] = select(func.count(Promotion.id))

        filters = []
        if kind:
            filters.append(Promotion.kind == kind)
        if status == "active":
            filters.append(Promotion.is_active.is_(True))
            filters.append(or_(Promotion.ends_at.is_(None), Promotion.ends_at >= now))
        elif status == "inactive":
            filters.append(Promotion.is_active.is_(False))
        elif status == "expired":
            filters.append(and_(Promotion.ends_at.is_not(None), Promotion.ends_at < now))

        if filters:
            base = base.where(and_(*filters))
            count = count.where(and_(*filters))

        base = base.order_by(Promotion.created_at.desc(), Promotion.id.desc())

        total_result = await self.session.execute(count)
        total = total_result.scalar_one()

        promotions_result = await self.session.execute(base.offset(offset).limit(limit))
        return list(promotions_result.scalars()), total

    async def update_promotion(self, promotion: Promotion, *, changes: Mapping[str, object]) -> Promotion:
        for attribute, value in changes.items():
            setattr(promotion, attribute, value)
        await self.session.flush()
        await self.session.refresh(promotion)
        return promotion

    async def delete_promotion(self, promotion: Promotion) -> None:
        await self.session.delete(promotion)
        await self.session.flush()

    async def redeem(self, promotion: Promotion) -> bool:
        """Increment ``usage_count`` only while the limit still allows it.

        The check and the increment are a single UPDATE so concurrent
        checkouts can never push the count past ``usage_limit``.
        """

        result = await self.session.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion.id,
                Promotion.is_active.is_(True),
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
            .values(usage_count=Promotion.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self.session.refresh(promotion)
        return True

    async def release(self, promotion: Promotion) -> bool:
        result = await self.session.execute(
            update(Promotion)
            .where(Promotion.id == promotion.id, Promotion.usage_count > 0)
            .values(usage_count=Promotion.usage_count - 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(promotion)
        return result.rowcount == 1
