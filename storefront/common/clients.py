"""HTTP clients for the pricing and catalog services.

These are the fetch side of price resolution: they turn service JSON into the
value types of :mod:`storefront.common.pricing`. Rate-table reads never fail
(an empty table makes every foreign price resolve as ``Unconverted``); product
and promotion reads raise :mod:`storefront.common.errors` exceptions.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from prometheus_client import Counter

from .cache import RedisType
from .errors import PromotionRejected, ResourceNotFound, UpstreamUnavailable
from .pricing import DiscountDescriptor, Promotion, RateTable

_LOGGER = logging.getLogger(__name__)

RATE_TABLE_FALLBACKS_TOTAL = Counter(
    "storefront_rate_table_fallbacks_total",
    "Rate table reads answered with an empty table, leaving prices unconverted.",
    labelnames=("reason",),
)


def _normalize_base(url: str | None) -> str | None:
    if not url:
        return None
    return url.rstrip("/")


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        msg = f"invalid decimal value {value!r}"
        raise ValueError(msg) from exc


def discount_from_payload(payload: Mapping[str, Any] | None) -> DiscountDescriptor | None:
    if not payload:
        return None
    return DiscountDescriptor(
        type=payload["type"],
        value=Decimal(str(payload["value"])),
        starts_at=_parse_datetime(payload.get("startsAt")),
        ends_at=_parse_datetime(payload.get("endsAt")),
    )


def promotion_from_payload(payload: Mapping[str, Any]) -> Promotion:
    return Promotion(
        code=str(payload["code"]),
        discount=DiscountDescriptor(
            type=payload["discountType"],
            value=Decimal(str(payload["discountValue"])),
            starts_at=_parse_datetime(payload.get("startsAt")),
            ends_at=_parse_datetime(payload.get("endsAt")),
        ),
        min_order_amount=_parse_decimal(payload.get("minOrderAmount")),
        max_discount_amount=_parse_decimal(payload.get("maxDiscountAmount")),
        usage_limit=payload.get("usageLimit"),
        usage_count=int(payload.get("usageCount") or 0),
        is_active=bool(payload.get("isActive", True)),
    )


@dataclass(frozen=True, slots=True)
class VariantSnapshot:
    id: int
    sku: str
    price: Decimal
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class ProductSnapshot:
    """Product pricing data as served by the catalog at fetch time."""

    id: int
    sku: str
    name: str
    base_price: Decimal
    currency: str
    discount: DiscountDescriptor | None
    is_active: bool
    variants: tuple[VariantSnapshot, ...] = ()

    def variant(self, variant_id: int) -> VariantSnapshot | None:
        return next((variant for variant in self.variants if variant.id == variant_id), None)

    def unit_price(self, variant_id: int | None) -> tuple[Decimal, str]:
        """Return the listed price and SKU for a variant, or the base product."""

        if variant_id is None:
            return self.base_price, self.sku
        variant = self.variant(variant_id)
        if variant is None or not variant.is_active:
            msg = f"Variant {variant_id} is not available for product {self.id}"
            raise ResourceNotFound(msg)
        return variant.price, variant.sku


def product_from_payload(payload: Mapping[str, Any]) -> ProductSnapshot:
    return ProductSnapshot(
        id=int(payload["id"]),
        sku=str(payload["sku"]),
        name=str(payload["name"]),
        base_price=Decimal(str(payload["basePrice"])),
        currency=str(payload["currency"]).upper(),
        discount=discount_from_payload(payload.get("discount")),
        is_active=bool(payload.get("isActive", True)),
        variants=tuple(
            VariantSnapshot(
                id=int(entry["id"]),
                sku=str(entry["sku"]),
                price=Decimal(str(entry["price"])),
                is_active=bool(entry.get("isActive", True)),
            )
            for entry in payload.get("variants") or []
        ),
    )


class _ServiceClient:
    service_name = "upstream"

    def __init__(self, *, client: httpx.AsyncClient, base_url: str | None) -> None:
        self._client = client
        self._base_url = _normalize_base(base_url)

    @property
    def configured(self) -> bool:
        return self._base_url is not None

    async def close(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        if self._base_url is None:
            raise UpstreamUnavailable(f"{self.service_name} service URL is not configured")
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, self._url(path), params=params, headers=headers)
        except httpx.HTTPError as exc:
            _LOGGER.warning("%s %s on %s service failed: %s", method, path, self.service_name, exc)
            raise UpstreamUnavailable(f"{self.service_name} service is unavailable") from exc

    def _ensure_success(self, response: httpx.Response) -> None:
        if response.status_code >= 500:
            raise UpstreamUnavailable(f"{self.service_name} service returned {response.status_code}")
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"{self.service_name} service rejected the request ({response.status_code})"
            )


class PricingClient(_ServiceClient):
    """Reads rate tables and promotions from the pricing service."""

    service_name = "pricing"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str | None,
        redis: RedisType | None = None,
        cache_ttl: int = 0,
    ) -> None:
        super().__init__(client=client, base_url=base_url)
        self._redis = redis
        self._cache_ttl = cache_ttl

    async def get_rate_table(self, effective_date: date | None = None) -> RateTable:
        day = effective_date or datetime.now(timezone.utc).date()
        cached = await self._read_cached_rates(day)
        if cached is not None:
            return cached
        if not self.configured:
            RATE_TABLE_FALLBACKS_TOTAL.labels(reason="unconfigured").inc()
            return RateTable(effective_date=day)

        try:
            response = await self._request(
                "GET", "/exchange-rates/current", params={"effectiveDate": day.isoformat()}
            )
            self._ensure_success(response)
            payload = response.json()
            table = RateTable(effective_date=day, rates=payload.get("rates") or {})
        except (UpstreamUnavailable, ValueError) as exc:
            _LOGGER.warning("Exchange rates for %s unavailable, prices stay unconverted: %s", day, exc)
            RATE_TABLE_FALLBACKS_TOTAL.labels(reason="unavailable").inc()
            return RateTable(effective_date=day)

        await self._write_cached_rates(table)
        return table

    async def get_promotion(self, code: str) -> Promotion:
        response = await self._request("GET", f"/promotions/by-code/{code}")
        if response.status_code == 404:
            raise ResourceNotFound("Promotion code not found")
        self._ensure_success(response)
        return promotion_from_payload(response.json())

    async def redeem_promotion(self, code: str, *, headers: Mapping[str, str] | None = None) -> Promotion:
        response = await self._request("POST", f"/promotions/by-code/{code}/redeem", headers=headers)
        if response.status_code == 404:
            raise ResourceNotFound("Promotion code not found")
        if response.status_code == 409:
            raise PromotionRejected("exhausted")
        if response.status_code == 422:
            raise PromotionRejected(str(response.json().get("reason") or "inactive"))
        self._ensure_success(response)
        return promotion_from_payload(response.json())

    async def release_promotion(self, code: str, *, headers: Mapping[str, str] | None = None) -> None:
        response = await self._request("POST", f"/promotions/by-code/{code}/release", headers=headers)
        self._ensure_success(response)

    async def _read_cached_rates(self, day: date) -> RateTable | None:
        if self._redis is None or self._cache_ttl <= 0:
            return None
        try:
            cached = await self._redis.get(self._cache_key(day))
        except Exception as exc:  # cache outages fall through to the service
            _LOGGER.warning("Rate cache read failed: %s", exc)
            return None
        if not cached:
            return None
        try:
            return RateTable(effective_date=day, rates=json.loads(cached))
        except (json.JSONDecodeError, ValueError):
            _LOGGER.warning("Discarding corrupt rate cache entry for %s", day)
            return None

    async def _write_cached_rates(self, table: RateTable) -> None:
        if self._redis is None or self._cache_ttl <= 0 or not len(table):
            return
        payload = json.dumps({code: str(rate) for code, rate in table.rates.items()})
        try:
            await self._redis.set(self._cache_key(table.effective_date), payload, ex=self._cache_ttl)
        except Exception as exc:
            _LOGGER.warning("Rate cache write failed: %s", exc)

    @staticmethod
    def _cache_key(day: date) -> str:
        return f"pricing:rates:{day.isoformat()}"


class CatalogClient(_ServiceClient):
    """Fetches product and variant prices from the catalog service."""

    service_name = "catalog"

    async def get_product(self, product_id: int) -> ProductSnapshot:
        response = await self._request("GET", f"/products/{product_id}")
        if response.status_code == 404:
            raise ResourceNotFound(f"Product {product_id} not found")
        self._ensure_success(response)
        return product_from_payload(response.json())

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, ProductSnapshot]:
        unique_ids = sorted(set(product_ids))
        products = await asyncio.gather(*(self.get_product(product_id) for product_id in unique_ids))
        return {product.id: product for product in products}


class CartClient(_ServiceClient):
    """Empties a customer's cart once their order is placed."""

    service_name = "cart"

    async def clear_cart(self, user_id: str, *, headers: Mapping[str, str] | None = None) -> None:
        response = await self._request("DELETE", f"/carts/{user_id}", headers=headers)
        if response.status_code == 404:
            return
        self._ensure_success(response)
