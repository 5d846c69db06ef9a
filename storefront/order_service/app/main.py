from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from storefront.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)
from storefront.common.cache import RedisType
from storefront.common.clients import CartClient, CatalogClient, PricingClient

from .api.orders import router as orders_router
from .models import Base
from .services import PaymentGateway, build_payment_gateway

SERVICE_NAME = "Order Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./order_service.db"


def create_app(
    settings: ServiceSettings | None = None,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
    redis_client: RedisType | None = None,
    payment_gateway: PaymentGateway | None = None,
) -> FastAPI:
    """Create the Order Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)
    redis = redis_client if redis_client is not None else resolve_redis(resolved_settings)
    gateway = payment_gateway or build_payment_gateway(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if resolved_settings.create_schema_on_startup:
            await create_schema(database_url, Base.metadata)
        http_client = httpx.AsyncClient(
            timeout=resolved_settings.upstream_timeout_seconds, transport=http_transport
        )
        app.state.session_factory = session_factory
        app.state.payment_gateway = gateway
        app.state.catalog_client = CatalogClient(
            client=http_client, base_url=resolved_settings.catalog_service_url
        )
        app.state.pricing_client = PricingClient(
            client=http_client,
            base_url=resolved_settings.pricing_service_url,
            redis=redis,
            cache_ttl=resolved_settings.rate_cache_ttl_seconds,
        )
        app.state.cart_client = CartClient(client=http_client, base_url=resolved_settings.cart_service_url)
        try:
            yield
        finally:
            app.state.catalog_client = None
            app.state.pricing_client = None
            app.state.cart_client = None
            await http_client.aclose()
            await dispose_engines()
            if redis_client is None and redis is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(orders_router)
    return app


app = create_app()
