"""Dependency wiring for the catalog service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.common import ServiceSettings, lifespan_session
from storefront.common.clients import PricingClient

from .repository import CatalogRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request lifecycle."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> CatalogRepository:
    """Provide a repository bound to the active session."""

    return CatalogRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_pricing_client(request: Request) -> PricingClient:
    client = getattr(request.app.state, "pricing_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pricing client is not configured",
        )
    return cast(PricingClient, client)
