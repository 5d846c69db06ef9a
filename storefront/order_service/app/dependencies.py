"""Dependency helpers for order service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.common import ServiceSettings, lifespan_session
from storefront.common.clients import CartClient, CatalogClient, PricingClient

from .repository import OrderRepository
from .services import CheckoutService, PaymentGateway


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> OrderRepository:
    """Return a repository bound to the active session."""

    return OrderRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def _state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ').capitalize()} is not configured",
        )
    return value


def get_checkout_service(
    request: Request,
    repository: OrderRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> CheckoutService:
    return CheckoutService(
        repository,
        catalog=cast(CatalogClient, _state(request, "catalog_client")),
        pricing=cast(PricingClient, _state(request, "pricing_client")),
        gateway=cast(PaymentGateway, _state(request, "payment_gateway")),
        settings=settings,
        cart=cast(CartClient, _state(request, "cart_client")),
    )
