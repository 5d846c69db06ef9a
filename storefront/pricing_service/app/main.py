from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
)

from .api.promotions import router as promotions_router
from .api.quotes import router as quotes_router
from .api.rates import router as rates_router
from .models import Base

SERVICE_NAME = "Pricing Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./pricing_service.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Pricing Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if resolved_settings.create_schema_on_startup:
            await create_schema(database_url, Base.metadata)
        app.state.session_factory = session_factory
        try:
            yield
        finally:
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(rates_router)
    app.include_router(promotions_router)
    app.include_router(quotes_router)
    return app


app = create_app()
