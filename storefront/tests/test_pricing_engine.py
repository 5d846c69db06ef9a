from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.common.errors import PromotionRejected
from storefront.common.pricing import (
    Converted,
    DiscountDescriptor,
    DiscountType,
    LineItem,
    Promotion,
    QuoteLine,
    RateTable,
    Unconverted,
    aggregate,
    apply_promotion,
    as_utc,
    build_quote,
    check_promotion,
    convert_price,
    from_cents,
    price_unit,
    quantize_money,
    resolve_effective_price,
    resolve_price,
    to_cents,
)
from storefront.common.schemas import DiscountPayload

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
RATES = RateTable(effective_date=date(2026, 3, 1), rates={"USD": Decimal("32.5"), "eur": Decimal("35.2")})


def _percentage(value: str, **window) -> DiscountDescriptor:
    return DiscountDescriptor(type=DiscountType.PERCENTAGE, value=Decimal(value), **window)


def _fixed(value: str, **window) -> DiscountDescriptor:
    return DiscountDescriptor(type=DiscountType.FIXED_AMOUNT, value=Decimal(value), **window)


class TestPriceResolver:
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("19.99"), Decimal("1250")])
    def test_same_currency_is_identity(self, amount: Decimal) -> None:
        assert resolve_price(amount, "TRY", None, "TRY") == amount
        assert resolve_price(amount, "try", RATES, "TRY") == amount

    def test_known_currency_multiplies_by_rate(self) -> None:
        result = convert_price(Decimal("100"), "USD", RATES, "TRY")
        assert isinstance(result, Converted)
        assert result.amount == Decimal("3250.0")
        assert result.currency == "TRY"
        assert result.rate == Decimal("32.5")
        assert result.source_currency == "USD"

    def test_rate_table_codes_are_normalised(self) -> None:
        assert "EUR" in RATES
        assert resolve_price(Decimal("10"), "eur", RATES, "TRY") == Decimal("352.0")

    def test_missing_rate_is_unconverted_not_an_error(self) -> None:
        result = convert_price(Decimal("42"), "GBP", RATES, "TRY")
        assert isinstance(result, Unconverted)
        assert result.rate_available is False
        assert result.amount == Decimal("42")
        assert result.currency == "GBP"
        assert resolve_price(Decimal("42"), "GBP", RATES, "TRY") == Decimal("42")

    def test_plain_mapping_is_accepted(self) -> None:
        assert resolve_price(Decimal("2"), "USD", {"USD": Decimal("30")}, "TRY") == Decimal("60")
        assert isinstance(convert_price(Decimal("2"), "USD", None, "TRY"), Unconverted)

    def test_rate_table_rejects_non_positive_rates(self) -> None:
        with pytest.raises(ValueError):
            RateTable(effective_date=date(2026, 3, 1), rates={"USD": Decimal("0")})


class TestDiscountResolver:
    def test_percentage_discount(self) -> None:
        assert resolve_effective_price(Decimal("100"), _percentage("20"), NOW) == Decimal("80")

    def test_fixed_discount_is_clamped_at_zero(self) -> None:
        assert resolve_effective_price(Decimal("100"), _fixed("150"), NOW) == Decimal("0")

    def test_no_discount_returns_base_price(self) -> None:
        assert resolve_effective_price(Decimal("100"), None, NOW) == Decimal("100")

    @pytest.mark.parametrize(
        "window",
        [
            {"starts_at": NOW + timedelta(days=1)},
            {"ends_at": NOW - timedelta(seconds=1)},
            {"starts_at": NOW - timedelta(days=10), "ends_at": NOW - timedelta(days=5)},
        ],
    )
    def test_discount_outside_window_is_noop(self, window) -> None:
        assert resolve_effective_price(Decimal("100"), _percentage("20", **window), NOW) == Decimal("100")

    def test_window_bounds_are_inclusive(self) -> None:
        discount = _percentage("50", starts_at=NOW, ends_at=NOW)
        assert resolve_effective_price(Decimal("10"), discount, NOW) == Decimal("5")

    def test_naive_window_is_read_as_utc(self) -> None:
        naive_start = datetime(2026, 3, 1, 13, 0)
        discount = _percentage("10", starts_at=naive_start)
        assert discount.starts_at == as_utc(naive_start)
        assert resolve_effective_price(Decimal("10"), discount, NOW) == Decimal("10")

    def test_invalid_descriptors_are_rejected(self) -> None:
        with pytest.raises(ValueError):
            _percentage("0")
        with pytest.raises(ValueError):
            _fixed("5", starts_at=NOW, ends_at=NOW - timedelta(days=1))


class TestAggregator:
    def test_empty_is_zero(self) -> None:
        assert aggregate([]) == Decimal("0")

    def test_sums_quantity_times_price(self) -> None:
        lines = [LineItem(quantity=2, unit_price=Decimal("50")), LineItem(quantity=1, unit_price=Decimal("30"))]
        assert aggregate(lines) == Decimal("130")

    def test_line_quantity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            LineItem(quantity=0, unit_price=Decimal("1"))


class TestPromotionResolver:
    def test_percentage_promotion_respects_cap(self) -> None:
        promotion = Promotion(code="SPRING", discount=_percentage("10"), max_discount_amount=Decimal("80"))
        result = apply_promotion(Decimal("1000"), promotion)
        assert result.applied is True
        assert result.discount_amount == Decimal("80")
        assert result.final_total == Decimal("920")

    def test_fixed_promotion_is_capped_at_subtotal(self) -> None:
        promotion = Promotion(code="BIG", discount=_fixed("100"))
        result = apply_promotion(Decimal("50"), promotion)
        assert result.discount_amount == Decimal("50")
        assert result.final_total == Decimal("0")

    def test_fixed_promotion_also_respects_cap(self) -> None:
        promotion = Promotion(code="CAP", discount=_fixed("100"), max_discount_amount=Decimal("25"))
        assert apply_promotion(Decimal("500"), promotion).discount_amount == Decimal("25")

    def test_minimum_order_not_met_leaves_total(self) -> None:
        promotion = Promotion(code="MIN", discount=_percentage("10"), min_order_amount=Decimal("200"))
        result = apply_promotion(Decimal("150"), promotion)
        assert result.applied is False
        assert result.discount_amount == Decimal("0")
        assert result.final_total == Decimal("150")

    def test_no_promotion(self) -> None:
        result = apply_promotion(Decimal("75"), None)
        assert (result.applied, result.final_total) == (False, Decimal("75"))

    @pytest.mark.parametrize(
        ("promotion", "reason"),
        [
            (Promotion(code="OFF", discount=_percentage("10"), is_active=False), "inactive"),
            (Promotion(code="SOON", discount=_percentage("10", starts_at=NOW + timedelta(hours=1))), "not_started"),
            (Promotion(code="OLD", discount=_percentage("10", ends_at=NOW - timedelta(hours=1))), "expired"),
            (Promotion(code="USED", discount=_percentage("10"), usage_limit=3, usage_count=3), "exhausted"),
        ],
    )
    def test_check_promotion_reports_reason(self, promotion: Promotion, reason: str) -> None:
        with pytest.raises(PromotionRejected) as excinfo:
            check_promotion(promotion, NOW)
        assert excinfo.value.reason == reason

    def test_check_promotion_accepts_usable_code(self) -> None:
        promotion = Promotion(code="OK", discount=_percentage("10"), usage_limit=3, usage_count=2)
        check_promotion(promotion, NOW)
        assert promotion.remaining_uses == 1


class TestQuote:
    def test_end_to_end_campaign(self) -> None:
        unit = price_unit(Decimal("100"), "USD", None, RATES, "TRY", NOW)
        assert unit.effective_price == Decimal("3250.0")
        assert unit.currency == "TRY"

        quote = build_quote(
            [QuoteLine(quantity=1, unit_price=Decimal("100"), currency="USD")],
            rates=RATES,
            reporting_currency="TRY",
            now=NOW,
            promotion=Promotion(code="CAMPAIGN15", discount=_percentage("15")),
        )
        assert quote.subtotal == Decimal("3250.0")
        assert quote.promotion.discount_amount == Decimal("487.5")
        assert quote.total == Decimal("2762.5")
        assert quote.promotion_code == "CAMPAIGN15"
        assert quote.rates_complete is True

    def test_fixed_product_discount_applies_before_conversion(self) -> None:
        unit = price_unit(Decimal("100"), "USD", _fixed("10"), RATES, "TRY", NOW)
        assert unit.regular_price == Decimal("3250.0")
        assert unit.effective_price == Decimal("2925.0")
        assert unit.discounted is True

    def test_missing_rates_are_flagged(self) -> None:
        quote = build_quote(
            [
                QuoteLine(quantity=2, unit_price=Decimal("10"), currency="TRY"),
                QuoteLine(quantity=1, unit_price=Decimal("5"), currency="GBP"),
            ],
            rates=RATES,
            reporting_currency="TRY",
            now=NOW,
        )
        assert quote.missing_rates == ["GBP"]
        assert quote.rates_complete is False
        assert quote.lines[1].unit.rate_available is False

    def test_tax_and_shipping_follow_the_promotion(self) -> None:
        quote = build_quote(
            [QuoteLine(quantity=2, unit_price=Decimal("50"), currency="TRY")],
            rates=RATES,
            reporting_currency="TRY",
            now=NOW,
            promotion=Promotion(code="TEN", discount=_fixed("10")),
            tax_rate=Decimal("0.20"),
            shipping_fee=Decimal("29.90"),
        )
        assert quote.subtotal == Decimal("100")
        assert quote.tax == Decimal("18.00")
        assert quote.shipping == Decimal("29.90")
        assert quantize_money(quote.total) == Decimal("137.90")

    def test_empty_quote_has_no_shipping(self) -> None:
        quote = build_quote([], rates=None, reporting_currency="try", now=NOW, shipping_fee=Decimal("29.90"))
        assert quote.currency == "TRY"
        assert quote.total == Decimal("0")


class TestMoneyStorage:
    @pytest.mark.parametrize(
        ("amount", "cents"),
        [(Decimal("12.345"), 1235), (Decimal("0.004"), 0), (Decimal("2762.5"), 276250)],
    )
    def test_to_cents_rounds_half_up(self, amount: Decimal, cents: int) -> None:
        assert to_cents(amount) == cents

    def test_from_cents_keeps_two_places(self) -> None:
        assert from_cents(1999) == Decimal("19.99")
        assert str(from_cents(300)) == "3.00"


class TestDiscountPayload:
    def test_offsets_are_normalised_to_utc(self) -> None:
        payload = DiscountPayload.model_validate(
            {"type": "percentage", "value": "10", "endsAt": "2026-03-01T15:00:00+03:00"}
        )
        assert payload.ends_at == NOW
        assert payload.ends_at.utcoffset() == timedelta(0)

    def test_naive_and_offset_bounds_are_compared_in_utc(self) -> None:
        valid = DiscountPayload.model_validate(
            {
                "type": "percentage",
                "value": "10",
                "startsAt": "2026-01-01T00:00:00",
                "endsAt": "2026-12-01T00:00:00Z",
            }
        )
        assert valid.starts_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

        with pytest.raises(ValueError):
            DiscountPayload.model_validate(
                {
                    "type": "fixed_amount",
                    "value": "5",
                    "startsAt": "2026-01-01T02:00:00",
                    "endsAt": "2026-01-01T04:00:00+03:00",
                }
            )
