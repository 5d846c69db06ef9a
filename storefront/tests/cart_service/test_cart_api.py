from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient, MockTransport, Request, Response

from storefront.common import ServiceSettings
from storefront.cart_service.app.main import create_app

OWNER = {"X-User-Id": "user-1", "X-User-Roles": "customer"}
STRANGER = {"X-User-Id": "user-2", "X-User-Roles": "customer"}
STAFF = {"X-User-Id": "staff-1", "X-User-Roles": "staff"}


def _product(product_id: int, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": product_id,
        "sku": f"SKU-{product_id}",
        "name": f"Product {product_id}",
        "basePrice": "100.00",
        "currency": "USD",
        "isActive": True,
        "discount": None,
        "variants": [],
    }
    payload.update(overrides)
    return payload


class _Upstream:
    """Catalog and pricing service stand-ins behind one MockTransport."""

    def __init__(self) -> None:
        self.products: dict[int, dict[str, Any]] = {}
        self.rates: dict[str, str] = {"USD": "32.5"}
        self.promotions: dict[str, dict[str, Any]] = {}

    def handler(self, request: Request) -> Response:
        path = request.url.path
        if request.url.host == "catalog.test" and path.startswith("/products/"):
            product = self.products.get(int(path.rsplit("/", 1)[-1]))
            if product is None:
                return Response(404, json={"detail": "Product not found"})
            return Response(200, json=product)
        if request.url.host == "pricing.test":
            if path == "/exchange-rates/current":
                return Response(200, json={"reportingCurrency": "TRY", "rates": self.rates})
            if path.startswith("/promotions/by-code/"):
                promotion = self.promotions.get(path.rsplit("/", 1)[-1].upper())
                if promotion is None:
                    return Response(404, json={"detail": "Promotion code not found"})
                return Response(200, json=promotion)
        return Response(404)


def _promotion(code: str, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "code": code,
        "discountType": "percentage",
        "discountValue": "15.00",
        "minOrderAmount": None,
        "maxDiscountAmount": None,
        "usageLimit": None,
        "usageCount": 0,
        "startsAt": None,
        "endsAt": None,
        "isActive": True,
    }
    payload.update(overrides)
    return payload


@asynccontextmanager
async def _cart_client(tmp_path, upstream: _Upstream, **overrides: Any) -> AsyncIterator[AsyncClient]:
    settings = ServiceSettings(
        app_name="Cart Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cart.db'}",
        create_schema_on_startup=True,
        catalog_service_url="http://catalog.test",
        pricing_service_url="http://pricing.test",
        rate_cache_ttl_seconds=0,
        reporting_currency="TRY",
        **overrides,
    )
    app = create_app(settings, http_transport=MockTransport(upstream.handler))
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.mark.asyncio
async def test_add_items_merges_by_sku(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(
        1, variants=[{"id": 11, "sku": "SKU-1-XL", "price": "110.00", "isActive": True}]
    )
    async with _cart_client(tmp_path, upstream) as client:
        empty = await client.get("/carts/user-1", headers=OWNER)
        assert empty.status_code == 200
        assert empty.json()["items"] == []

        first = await client.post("/carts/user-1/items", json={"productId": 1, "quantity": 2}, headers=OWNER)
        assert first.status_code == 201
        item = first.json()["items"][0]
        assert item["sku"] == "SKU-1"
        assert Decimal(item["unitPrice"]) == Decimal("100")
        assert item["currency"] == "USD"

        again = await client.post("/carts/user-1/items", json={"productId": 1}, headers=OWNER)
        assert again.json()["items"][0]["quantity"] == 3

        variant = await client.post(
            "/carts/user-1/items", json={"productId": 1, "variantId": 11, "quantity": 1}, headers=OWNER
        )
        body = variant.json()
        assert [entry["sku"] for entry in body["items"]] == ["SKU-1", "SKU-1-XL"]
        assert Decimal(body["items"][1]["unitPrice"]) == Decimal("110")
        assert body["itemCount"] == 4


@pytest.mark.asyncio
async def test_unavailable_products_are_refused(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(1, isActive=False)
    upstream.products[2] = _product(2, variants=[{"id": 21, "sku": "SKU-2-S", "price": "1", "isActive": False}])
    async with _cart_client(tmp_path, upstream) as client:
        inactive = await client.post("/carts/user-1/items", json={"productId": 1}, headers=OWNER)
        assert inactive.status_code == 409

        missing = await client.post("/carts/user-1/items", json={"productId": 99}, headers=OWNER)
        assert missing.status_code == 404

        retired_variant = await client.post(
            "/carts/user-1/items", json={"productId": 2, "variantId": 21}, headers=OWNER
        )
        assert retired_variant.status_code == 404


@pytest.mark.asyncio
async def test_cart_access_is_limited_to_owner_and_staff(tmp_path) -> None:
    upstream = _Upstream()
    async with _cart_client(tmp_path, upstream) as client:
        assert (await client.get("/carts/user-1")).status_code == 401
        assert (await client.get("/carts/user-1", headers=STRANGER)).status_code == 403
        assert (await client.get("/carts/user-1", headers=STAFF)).status_code == 200


@pytest.mark.asyncio
async def test_update_remove_and_clear(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(1)
    upstream.products[2] = _product(2, currency="TRY", basePrice="40")
    async with _cart_client(tmp_path, upstream) as client:
        await client.post("/carts/user-1/items", json={"productId": 1}, headers=OWNER)
        cart = (await client.post("/carts/user-1/items", json={"productId": 2}, headers=OWNER)).json()
        first_id, second_id = (entry["id"] for entry in cart["items"])

        updated = await client.patch(f"/carts/user-1/items/{first_id}", json={"quantity": 5}, headers=OWNER)
        assert updated.status_code == 200
        assert updated.json()["items"][0]["quantity"] == 5

        invalid = await client.patch(f"/carts/user-1/items/{first_id}", json={"quantity": 0}, headers=OWNER)
        assert invalid.status_code == 422

        removed = await client.delete(f"/carts/user-1/items/{second_id}", headers=OWNER)
        assert [entry["id"] for entry in removed.json()["items"]] == [first_id]

        missing = await client.delete(f"/carts/user-1/items/{second_id}", headers=OWNER)
        assert missing.status_code == 404

        cleared = await client.delete("/carts/user-1", headers=OWNER)
        assert cleared.status_code == 204
        assert (await client.get("/carts/user-1", headers=OWNER)).json()["items"] == []


@pytest.mark.asyncio
async def test_totals_convert_and_apply_coupon(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(1)
    upstream.promotions["CAMPAIGN15"] = _promotion("CAMPAIGN15")
    upstream.promotions["OLD"] = _promotion(
        "OLD", endsAt=(datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    )
    async with _cart_client(tmp_path, upstream) as client:
        await client.post("/carts/user-1/items", json={"productId": 1}, headers=OWNER)

        plain = await client.get("/carts/user-1/totals", headers=OWNER)
        assert plain.status_code == 200
        assert Decimal(plain.json()["total"]) == Decimal("3250")
        assert plain.json()["promotionApplied"] is False

        totals = await client.get("/carts/user-1/totals", params={"promotionCode": "campaign15"}, headers=OWNER)
        assert totals.status_code == 200
        body = totals.json()
        assert body["currency"] == "TRY"
        assert Decimal(body["subtotal"]) == Decimal("3250")
        assert Decimal(body["discountAmount"]) == Decimal("487.5")
        assert Decimal(body["total"]) == Decimal("2762.5")
        assert body["promotionCode"] == "CAMPAIGN15"
        assert body["lines"][0]["sku"] == "SKU-1"
        assert body["ratesComplete"] is True

        unknown = await client.get("/carts/user-1/totals", params={"promotionCode": "NOPE"}, headers=OWNER)
        assert unknown.status_code == 404

        expired = await client.get("/carts/user-1/totals", params={"promotionCode": "OLD"}, headers=OWNER)
        assert expired.status_code == 422
        assert expired.json()["reason"] == "expired"


@pytest.mark.asyncio
async def test_totals_include_charges_and_flag_missing_rates(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(1, currency="TRY", basePrice="100")
    upstream.products[2] = _product(2, currency="GBP", basePrice="10")
    async with _cart_client(
        tmp_path, upstream, checkout_tax_rate=Decimal("0.20"), checkout_shipping_fee=Decimal("29.90")
    ) as client:
        await client.post("/carts/user-1/items", json={"productId": 1}, headers=OWNER)
        only_local = (await client.get("/carts/user-1/totals", headers=OWNER)).json()
        assert Decimal(only_local["tax"]) == Decimal("20")
        assert Decimal(only_local["shipping"]) == Decimal("29.90")
        assert Decimal(only_local["total"]) == Decimal("149.90")

        await client.post("/carts/user-1/items", json={"productId": 2}, headers=OWNER)
        mixed = (await client.get("/carts/user-1/totals", headers=OWNER)).json()
        assert mixed["missingRates"] == ["GBP"]
        assert mixed["ratesComplete"] is False
        gbp_line = next(line for line in mixed["lines"] if line["sku"] == "SKU-2")
        assert gbp_line["rateAvailable"] is False
        assert gbp_line["currency"] == "GBP"


@pytest.mark.asyncio
async def test_refresh_reprices_and_drops_unavailable_lines(tmp_path) -> None:
    upstream = _Upstream()
    upstream.products[1] = _product(1)
    upstream.products[2] = _product(2)
    upstream.products[3] = _product(3)
    async with _cart_client(tmp_path, upstream) as client:
        for product_id in (1, 2, 3):
            await client.post("/carts/user-1/items", json={"productId": product_id}, headers=OWNER)

        upstream.products[1] = _product(1, basePrice="90.00")
        upstream.products[2] = _product(2, isActive=False)
        del upstream.products[3]

        refreshed = await client.post("/carts/user-1/refresh", headers=OWNER)
        assert refreshed.status_code == 200
        body = refreshed.json()
        assert body["repriced"] == ["SKU-1"]
        assert sorted(body["removed"]) == ["SKU-2", "SKU-3"]
        assert [entry["sku"] for entry in body["cart"]["items"]] == ["SKU-1"]
        assert Decimal(body["cart"]["items"][0]["unitPrice"]) == Decimal("90")
