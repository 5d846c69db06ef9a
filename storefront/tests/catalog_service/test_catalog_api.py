from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient, MockTransport, Request, Response

from storefront.common import ServiceSettings
from storefront.catalog_service.app.main import create_app

MANAGER = {"X-User-Id": "manager-1", "X-User-Roles": "manager"}
CUSTOMER = {"X-User-Id": "user-1", "X-User-Roles": "customer"}
ISTANBUL = timezone(timedelta(hours=3))


class _PricingStub:
    """Answers rate-table reads the way the pricing service does."""

    def __init__(self, rates: dict[str, str] | None = None) -> None:
        self.rates = rates if rates is not None else {"USD": "32.5"}
        self.available = True
        self.calls = 0

    def handler(self, request: Request) -> Response:
        self.calls += 1
        if not self.available:
            return Response(503, json={"detail": "maintenance"})
        if request.url.path == "/exchange-rates/current":
            return Response(
                200,
                json={
                    "effectiveDate": datetime.now(timezone.utc).date().isoformat(),
                    "reportingCurrency": "TRY",
                    "rates": self.rates,
                },
            )
        return Response(404)


@asynccontextmanager
async def _catalog_client(tmp_path, pricing: _PricingStub) -> AsyncIterator[AsyncClient]:
    settings = ServiceSettings(
        app_name="Catalog Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        create_schema_on_startup=True,
        pricing_service_url="http://pricing.test",
        rate_cache_ttl_seconds=0,
        reporting_currency="TRY",
    )
    app = create_app(settings, http_transport=MockTransport(pricing.handler))
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


def _product_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "sku": "HOODIE-1",
        "name": "Classic Hoodie",
        "description": "Brushed fleece",
        "basePrice": "100.00",
        "currency": "USD",
        "categories": ["hoodies"],
    }
    payload.update(overrides)
    return payload


async def _create(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    response = await client.post("/products", json=_product_payload(**overrides), headers=MANAGER)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_product_prices_are_shown_in_reporting_currency(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        product = await _create(client)
        assert Decimal(product["basePrice"]) == Decimal("100")
        assert product["currency"] == "USD"
        display = product["display"]
        assert Decimal(display["effectivePrice"]) == Decimal("3250")
        assert display["currency"] == "TRY"
        assert display["rateAvailable"] is True
        assert display["discounted"] is False

        variant = await client.post(
            f"/products/{product['id']}/variants",
            json={"sku": "HOODIE-1-XL", "price": "120.00", "stockQuantity": 4},
            headers=MANAGER,
        )
        assert variant.status_code == 201
        assert Decimal(variant.json()["display"]["effectivePrice"]) == Decimal("3900")

        fetched = await client.get(f"/products/{product['id']}")
        assert fetched.status_code == 200
        assert [entry["sku"] for entry in fetched.json()["variants"]] == ["HOODIE-1-XL"]
        assert fetched.json()["categories"] == ["hoodies"]


@pytest.mark.asyncio
async def test_prices_stay_unconverted_when_pricing_is_down(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        product = await _create(client)
        await _create(client, sku="MUG-1", name="Mug", basePrice="150", currency="TRY", categories=[])

        pricing.available = False
        fetched = await client.get(f"/products/{product['id']}")
        assert fetched.status_code == 200
        display = fetched.json()["display"]
        assert Decimal(display["effectivePrice"]) == Decimal("100")
        assert display["currency"] == "USD"
        assert display["rateAvailable"] is False

        listing = await client.get("/products")
        assert listing.status_code == 200
        body = listing.json()
        assert body["total"] == 2
        assert body["ratesAvailable"] is False
        mug = next(item for item in body["items"] if item["sku"] == "MUG-1")
        assert mug["display"]["rateAvailable"] is True


@pytest.mark.asyncio
async def test_listing_filters_and_sorts_by_converted_price(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        await _create(client, sku="A", name="Alpha", basePrice="10", currency="USD")
        await _create(client, sku="B", name="Bravo", basePrice="200", currency="TRY")
        await _create(client, sku="C", name="Charlie", basePrice="5", currency="GBP", categories=["mugs"])
        await _create(client, sku="D", name="Delta", basePrice="50", currency="TRY", isActive=False)

        by_name = await client.get("/products")
        assert [item["sku"] for item in by_name.json()["items"]] == ["A", "B", "C", "D"]

        ascending = await client.get("/products", params={"sort": "price-asc", "onlyActive": "true"})
        assert [item["sku"] for item in ascending.json()["items"]] == ["B", "A", "C"]

        descending = await client.get("/products", params={"sort": "price-desc", "onlyActive": "true"})
        assert [item["sku"] for item in descending.json()["items"]] == ["A", "B", "C"]

        bounded = await client.get("/products", params={"minPrice": "250"})
        assert [item["sku"] for item in bounded.json()["items"]] == ["A"]
        assert bounded.json()["ratesAvailable"] is True

        capped = await client.get("/products", params={"maxPrice": "200"})
        assert [item["sku"] for item in capped.json()["items"]] == ["B", "D"]

        hoodies = await client.get("/products", params={"category": "hoodies", "onlyActive": "true"})
        assert [item["sku"] for item in hoodies.json()["items"]] == ["A", "B"]

        paged = await client.get("/products", params={"limit": 2, "offset": 1})
        assert paged.json()["total"] == 4
        assert [item["sku"] for item in paged.json()["items"]] == ["B", "C"]


@pytest.mark.asyncio
async def test_product_discount_applies_before_conversion(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        product = await _create(client)

        discounted = await client.put(
            f"/products/{product['id']}/discount",
            json={"type": "fixed_amount", "value": "10"},
            headers=MANAGER,
        )
        assert discounted.status_code == 200
        display = discounted.json()["display"]
        assert Decimal(display["regularPrice"]) == Decimal("3250")
        assert Decimal(display["effectivePrice"]) == Decimal("2925")
        assert display["discounted"] is True
        assert discounted.json()["discount"]["type"] == "fixed_amount"

        on_sale = await client.get("/products", params={"onSale": "true"})
        assert on_sale.json()["total"] == 1

        too_much = await client.put(
            f"/products/{product['id']}/discount",
            json={"type": "percentage", "value": "150"},
            headers=MANAGER,
        )
        assert too_much.status_code == 422

        scheduled = await client.put(
            f"/products/{product['id']}/discount",
            json={"type": "percentage", "value": "20", "startsAt": "2999-01-01T00:00:00Z"},
            headers=MANAGER,
        )
        assert scheduled.json()["display"]["discounted"] is False

        cleared = await client.delete(f"/products/{product['id']}/discount", headers=MANAGER)
        assert cleared.status_code == 200
        assert cleared.json()["discount"] is None
        assert Decimal(cleared.json()["display"]["effectivePrice"]) == Decimal("3250")


@pytest.mark.asyncio
async def test_discount_window_with_offset_is_compared_in_utc(tmp_path) -> None:
    ended = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(ISTANBUL).replace(microsecond=0)
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        product = await _create(client)
        updated = await client.put(
            f"/products/{product['id']}/discount",
            json={"type": "percentage", "value": "20", "endsAt": ended.isoformat()},
            headers=MANAGER,
        )
        assert updated.status_code == 200

        fetched = await client.get(f"/products/{product['id']}")
        assert fetched.status_code == 200
        body = fetched.json()
        assert body["display"]["discounted"] is False
        assert Decimal(body["display"]["effectivePrice"]) == Decimal("3250")
        ends_at = datetime.fromisoformat(body["discount"]["endsAt"])
        assert ends_at == ended
        assert ends_at.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_discount_window_mixing_naive_and_offset_times(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        product = await _create(client)
        valid = await client.put(
            f"/products/{product['id']}/discount",
            json={
                "type": "percentage",
                "value": "10",
                "startsAt": "2026-01-01T00:00:00",
                "endsAt": "2026-12-01T00:00:00Z",
            },
            headers=MANAGER,
        )
        assert valid.status_code == 200

        inverted = await client.put(
            f"/products/{product['id']}/discount",
            json={
                "type": "percentage",
                "value": "10",
                "startsAt": "2026-01-01T02:00:00",
                "endsAt": "2026-01-01T04:00:00+03:00",
            },
            headers=MANAGER,
        )
        assert inverted.status_code == 422

@pytest.mark.asyncio
async def test_bulk_discount_by_category(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        first = await _create(client, sku="H1", basePrice="200", currency="TRY")
        await _create(client, sku="H2", basePrice="300", currency="TRY")
        await _create(client, sku="M1", basePrice="40", currency="TRY", categories=["mugs"])

        bulk = await client.post(
            "/products/discounts/bulk",
            json={"category": "hoodies", "discount": {"type": "percentage", "value": "25"}},
            headers=MANAGER,
        )
        assert bulk.status_code == 200
        assert bulk.json() == {"updated": 2}

        fetched = await client.get(f"/products/{first['id']}")
        assert Decimal(fetched.json()["display"]["effectivePrice"]) == Decimal("150")

        on_sale = await client.get("/products", params={"onSale": "true"})
        assert {item["sku"] for item in on_sale.json()["items"]} == {"H1", "H2"}

        not_on_sale = await client.get("/products", params={"onSale": "false"})
        assert [item["sku"] for item in not_on_sale.json()["items"]] == ["M1"]

        denied = await client.post(
            "/products/discounts/bulk",
            json={"discount": {"type": "percentage", "value": "10"}},
            headers=CUSTOMER,
        )
        assert denied.status_code == 403


@pytest.mark.asyncio
async def test_catalog_writes_guarded_and_validated(tmp_path) -> None:
    pricing = _PricingStub()
    async with _catalog_client(tmp_path, pricing) as client:
        anonymous = await client.post("/products", json=_product_payload())
        assert anonymous.status_code == 401

        customer = await client.post("/products", json=_product_payload(), headers=CUSTOMER)
        assert customer.status_code == 403

        product = await _create(client)
        duplicate = await client.post("/products", json=_product_payload(), headers=MANAGER)
        assert duplicate.status_code == 409

        await client.post(
            f"/products/{product['id']}/variants", json={"sku": "V-1", "price": "1"}, headers=MANAGER
        )
        duplicate_variant = await client.post(
            f"/products/{product['id']}/variants", json={"sku": "V-1", "price": "2"}, headers=MANAGER
        )
        assert duplicate_variant.status_code == 409

        patched = await client.patch(
            f"/products/{product['id']}",
            json={"basePrice": "80", "currency": "eur", "categories": ["sale"]},
            headers=MANAGER,
        )
        assert patched.status_code == 200
        assert patched.json()["currency"] == "EUR"
        assert patched.json()["categories"] == ["sale"]
        assert patched.json()["display"]["rateAvailable"] is False

        missing = await client.get("/products/9999")
        assert missing.status_code == 404

        deleted = await client.delete(f"/products/{product['id']}", headers=MANAGER)
        assert deleted.status_code == 204
        assert (await client.get(f"/products/{product['id']}")).status_code == 404
