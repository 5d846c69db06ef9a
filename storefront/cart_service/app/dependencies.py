"""Dependency wiring for the cart service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, HTTPException, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.common import ServiceSettings, lifespan_session
from storefront.common.clients import CatalogClient, PricingClient
from storefront.common.security import Principal, get_policy, parse_principal

from .repository import CartRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> CartRepository:
    return CartRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def _client(request: Request, name: str) -> object:
    client = getattr(request.app.state, name, None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ').capitalize()} is not configured",
        )
    return client


def get_catalog_client(request: Request) -> CatalogClient:
    return cast(CatalogClient, _client(request, "catalog_client"))


def get_pricing_client(request: Request) -> PricingClient:
    return cast(PricingClient, _client(request, "pricing_client"))


def authorize_cart(request: Request, user_id: str = Path(..., min_length=1, max_length=64)) -> Principal:
    """Allow the cart owner and operations staff to touch ``user_id``'s cart."""

    principal = parse_principal(request)
    get_policy(request).check(principal, "carts:access", owner_id=user_id)
    return principal
