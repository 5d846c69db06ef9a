"""API routes for cart management."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from storefront.common import ServiceSettings
from storefront.common.clients import CatalogClient, PricingClient
from storefront.common.pricing import (
    Promotion,
    Quote,
    build_quote,
    check_promotion,
    from_cents,
    quantize_money,
)
from storefront.common.security import Principal

from ..dependencies import (
    authorize_cart,
    get_catalog_client,
    get_pricing_client,
    get_repository,
    get_service_settings,
)
from ..models import Cart
from ..repository import CartRepository
from ..schemas import (
    CartItemCreate,
    CartItemUpdate,
    CartRefreshResponse,
    CartResponse,
    CartTotalsResponse,
)
from ..services import LineSnapshot, fetch_live_products, quote_lines

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/carts", tags=["carts"])


def _serialize_cart(cart: Cart) -> dict[str, object]:
    return {
        "id": cart.id,
        "userId": cart.user_id,
        "items": [
            {
                "id": item.id,
                "productId": item.product_id,
                "variantId": item.variant_id,
                "sku": item.sku,
                "name": item.name,
                "unitPrice": from_cents(item.unit_price_cents),
                "currency": item.currency,
                "quantity": item.quantity,
                "createdAt": item.created_at,
                "updatedAt": item.updated_at,
            }
            for item in cart.items
        ],
        "itemCount": sum(item.quantity for item in cart.items),
        "createdAt": cart.created_at,
        "updatedAt": cart.updated_at,
    }


def _serialize_totals(quote: Quote, cart: Cart) -> dict[str, object]:
    items = {str(item.id): item for item in cart.items}
    return {
        "currency": quote.currency,
        "lines": [
            {
                "itemId": items[priced.line.reference].id,
                "sku": items[priced.line.reference].sku,
                "quantity": priced.quantity,
                "unitPrice": quantize_money(priced.unit_price),
                "lineTotal": quantize_money(priced.total),
                "currency": priced.unit.currency,
                "discounted": priced.unit.discounted,
                "rateAvailable": priced.unit.rate_available,
            }
            for priced in quote.lines
        ],
        "totalItems": sum(item.quantity for item in cart.items),
        "subtotal": quantize_money(quote.subtotal),
        "discountAmount": quantize_money(quote.promotion.discount_amount),
        "promotionCode": quote.promotion_code,
        "promotionApplied": quote.promotion.applied,
        "tax": quantize_money(quote.tax),
        "shipping": quantize_money(quote.shipping),
        "total": quantize_money(quote.total),
        "missingRates": quote.missing_rates,
        "ratesComplete": quote.rates_complete,
    }


async def _require_cart(repository: CartRepository, user_id: str) -> Cart:
    cart = await repository.get_cart(user_id=user_id)
    if cart is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cart not found")
    return cart


@router.get("/{user_id}", response_model=CartResponse)
async def get_cart(
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    _: Principal = Depends(authorize_cart),
) -> CartResponse:
    cart = await repository.get_or_create_cart(user_id=user_id)
    return CartResponse.model_validate(_serialize_cart(cart))


@router.post("/{user_id}/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    payload: CartItemCreate,
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    catalog: CatalogClient = Depends(get_catalog_client),
    _: Principal = Depends(authorize_cart),
) -> CartResponse:
    product = await catalog.get_product(payload.product_id)
    if not product.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product is not available")
    snapshot = LineSnapshot.from_product(product, payload.variant_id)

    cart = await repository.get_or_create_cart(user_id=user_id)
    cart = await repository.add_item(cart, snapshot=snapshot, quantity=payload.quantity)
    return CartResponse.model_validate(_serialize_cart(cart))


@router.patch("/{user_id}/items/{item_id}", response_model=CartResponse)
async def update_item(
    item_id: int,
    payload: CartItemUpdate,
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    _: Principal = Depends(authorize_cart),
) -> CartResponse:
    cart = await _require_cart(repository, user_id)
    try:
        cart = await repository.update_quantity(cart, item_id=item_id, quantity=payload.quantity)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found") from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.delete("/{user_id}/items/{item_id}", response_model=CartResponse)
async def remove_item(
    item_id: int,
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    _: Principal = Depends(authorize_cart),
) -> CartResponse:
    cart = await _require_cart(repository, user_id)
    try:
        cart = await repository.remove_item(cart, item_id=item_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found") from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.delete("/{user_id}")
async def clear_cart(
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    _: Principal = Depends(authorize_cart),
) -> Response:
    cart = await repository.get_cart(user_id=user_id)
    if cart is not None:
        await repository.clear_cart(cart)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/refresh", response_model=CartRefreshResponse)
async def refresh_cart(
    user_id: str = Path(..., min_length=1, max_length=64),
    repository: CartRepository = Depends(get_repository),
    catalog: CatalogClient = Depends(get_catalog_client),
    _: Principal = Depends(authorize_cart),
) -> CartRefreshResponse:
    """Re-snapshot every line from the live catalog and drop unavailable ones."""

    cart = await _require_cart(repository, user_id)
    products = await fetch_live_products(catalog, {item.product_id for item in cart.items})

    removed: list[str] = []
    repriced: list[str] = []
    for item in list(cart.items):
        product = products.get(item.product_id)
        variant = product.variant(item.variant_id) if product and item.variant_id is not None else None
        if (
            product is None
            or not product.is_active
            or (item.variant_id is not None and (variant is None or not variant.is_active))
        ):
            removed.append(item.sku)
            await repository.remove_item(cart, item_id=item.id)
            continue
        snapshot = LineSnapshot.from_product(product, item.variant_id)
        if (snapshot.unit_price_cents, snapshot.currency) != (item.unit_price_cents, item.currency):
            repriced.append(snapshot.sku)
        await repository.refresh_item(cart, item_id=item.id, snapshot=snapshot)

    cart = await repository.reload(cart)
    if removed or repriced:
        _LOGGER.info("Cart for %s refreshed: removed=%s repriced=%s", user_id, removed, repriced)
    return CartRefreshResponse(
        cart=CartResponse.model_validate(_serialize_cart(cart)),
        removed=removed,
        repriced=repriced,
    )


@router.get("/{user_id}/totals", response_model=CartTotalsResponse)
async def cart_totals(
    user_id: str = Path(..., min_length=1, max_length=64),
    promotion_code: str | None = Query(default=None, alias="promotionCode"),
    repository: CartRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(authorize_cart),
) -> CartTotalsResponse:
    now = datetime.now(timezone.utc)
    code = promotion_code.strip().upper() if promotion_code and promotion_code.strip() else None

    promotion: Promotion | None = None
    if code:
        rates, promotion = await asyncio.gather(pricing.get_rate_table(), pricing.get_promotion(code))
        check_promotion(promotion, now)
    else:
        rates = await pricing.get_rate_table()

    cart = await repository.get_or_create_cart(user_id=user_id)
    quote = build_quote(
        quote_lines(cart.items),
        rates=rates,
        reporting_currency=settings.reporting_currency,
        now=now,
        promotion=promotion,
        tax_rate=settings.checkout_tax_rate,
        shipping_fee=settings.checkout_shipping_fee,
    )
    return CartTotalsResponse.model_validate(_serialize_totals(quote, cart))
