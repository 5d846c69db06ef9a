from collections.abc import Callable
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from storefront.cart_service.app.main import create_app as create_cart_app
from storefront.catalog_service.app.main import create_app as create_catalog_app
from storefront.order_service.app.main import create_app as create_order_app
from storefront.pricing_service.app.main import create_app as create_pricing_app


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "app_factory",
    [
        create_cart_app,
        create_catalog_app,
        create_order_app,
        create_pricing_app,
    ],
)
async def test_health_endpoint_returns_ok(app_factory: Callable[[], FastAPI]) -> None:
    app = app_factory()

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
