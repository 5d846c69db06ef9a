from typing import Any, cast

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import ServiceSettings
from .errors import install_error_handlers
from .health import router as health_router
from .security import build_policy
from .tracing import configure_tracing


def instrument_app(app: FastAPI, settings: ServiceSettings) -> None:
    """Attach metrics exporters when enabled and expose settings on app state."""

    if settings.enable_metrics:
        Instrumentator(excluded_handlers=["/health", "/metrics"]).instrument(app).expose(app)

    state = cast(Any, app.state)
    state.settings = settings


def build_app(settings: ServiceSettings, **extra_kwargs: Any) -> FastAPI:
    """Create a FastAPI instance with the storefront's shared plumbing.

    Every service gets metrics, tracing, the health route, domain error
    handlers and the access policy built from its settings.
    """

    app = FastAPI(title=settings.app_name, version="0.2.0", **extra_kwargs)
    instrument_app(app, settings)
    configure_tracing(app, settings)
    install_error_handlers(app)
    app.state.access_policy = build_policy(settings)
    app.include_router(health_router)
    return app
