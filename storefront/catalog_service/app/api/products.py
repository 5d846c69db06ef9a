"""HTTP routes for catalog products, variants and product-level discounts."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError

from storefront.common import ServiceSettings
from storefront.common.clients import PricingClient
from storefront.common.pricing import RateTable, from_cents, to_cents
from storefront.common.security import Principal, require
from storefront.common.tracing import get_tracer

from ..dependencies import get_pricing_client, get_repository, get_service_settings
from ..models import Product, ProductVariant
from ..repository import CatalogRepository
from ..schemas import (
    BulkDiscountRequest,
    BulkDiscountResponse,
    DiscountPayload,
    ProductCreate,
    ProductListResponse,
    ProductResponse,
    ProductSort,
    ProductUpdate,
    VariantCreate,
    VariantResponse,
)
from ..services import ProductPricer, discount_payload

_LOGGER = logging.getLogger(__name__)
_TRACER = get_tracer("catalog.products")

router = APIRouter(prefix="/products", tags=["products"])


def _pricer(rates: RateTable, settings: ServiceSettings) -> ProductPricer:
    return ProductPricer(
        rates=rates,
        reporting_currency=settings.reporting_currency,
        now=datetime.now(timezone.utc),
    )


def _serialize_variant(product: Product, variant: ProductVariant, pricer: ProductPricer) -> dict[str, object]:
    return {
        "id": variant.id,
        "sku": variant.sku,
        "price": from_cents(variant.price_cents),
        "stockQuantity": variant.stock_quantity,
        "isActive": variant.is_active,
        "display": pricer.display(product, variant.price_cents),
    }


def _serialize_product(product: Product, pricer: ProductPricer) -> dict[str, object]:
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "description": product.description,
        "basePrice": from_cents(product.base_price_cents),
        "currency": product.currency,
        "isActive": product.is_active,
        "categories": [category.name for category in product.categories],
        "discount": discount_payload(product),
        "variants": [_serialize_variant(product, variant, pricer) for variant in product.variants],
        "display": pricer.display(product),
        "createdAt": product.created_at,
        "updatedAt": product.updated_at,
    }


async def _load_product(repository: CatalogRepository, product_id: int) -> Product:
    product = await repository.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(require("catalog:write")),
) -> ProductResponse:
    existing = await repository.get_by_sku(payload.sku)
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product SKU already exists")

    discount = payload.discount
    try:
        product = await repository.create_product(
            sku=payload.sku,
            name=payload.name,
            description=payload.description,
            base_price_cents=to_cents(payload.base_price),
            currency=payload.currency,
            is_active=payload.is_active,
            categories=payload.categories,
            discount_type=discount.type.value if discount else None,
            discount_value_hundredths=to_cents(discount.value) if discount else None,
            discount_starts_at=discount.starts_at if discount else None,
            discount_ends_at=discount.ends_at if discount else None,
        )
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product already exists") from exc

    rates = await pricing.get_rate_table()
    return ProductResponse.model_validate(_serialize_product(product, _pricer(rates, settings)))


@router.get("", response_model=ProductListResponse)
async def list_products(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    category: str | None = Query(default=None),
    only_active: bool = Query(default=False, alias="onlyActive"),
    on_sale: bool | None = Query(default=None, alias="onSale"),
    min_price: Decimal | None = Query(default=None, ge=Decimal("0"), alias="minPrice"),
    max_price: Decimal | None = Query(default=None, ge=Decimal("0"), alias="maxPrice"),
    sort: ProductSort = Query(default="name"),
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
) -> ProductListResponse:
    with _TRACER.start_as_current_span("catalog.list_products") as span:
        rates, products = await asyncio.gather(
            pricing.get_rate_table(),
            repository.list_products(
                category=category.strip() if category else None,
                only_active=only_active,
                on_sale=on_sale,
            ),
        )
        span.set_attribute("catalog.rates_loaded", len(rates))
        pricer = _pricer(rates, settings)
        priced = [(product, pricer.price(product)) for product in products]

        if min_price is not None or max_price is not None:
            # Prices that could not be converted are not comparable with the bounds.
            priced = [
                (product, unit)
                for product, unit in priced
                if unit.rate_available
                and (min_price is None or unit.effective_price >= min_price)
                and (max_price is None or unit.effective_price <= max_price)
            ]

        if sort == "name":
            priced.sort(key=lambda entry: (entry[0].name.lower(), entry[0].id))
        else:
            descending = sort == "price-desc"
            comparable = [entry for entry in priced if entry[1].rate_available]
            unconverted = [entry for entry in priced if not entry[1].rate_available]
            comparable.sort(key=lambda entry: (entry[1].effective_price, entry[0].id), reverse=descending)
            priced = comparable + unconverted

        page = priced[offset : offset + limit]
        span.set_attribute("catalog.results", len(priced))

    return ProductListResponse(
        items=[ProductResponse.model_validate(_serialize_product(product, pricer)) for product, _ in page],
        total=len(priced),
        reporting_currency=settings.reporting_currency,
        rates_available=all(unit.rate_available for _, unit in priced),
    )


@router.post("/discounts/bulk", response_model=BulkDiscountResponse)
async def bulk_apply_discount(
    payload: BulkDiscountRequest,
    repository: CatalogRepository = Depends(get_repository),
    principal: Principal = Depends(require("catalog:write")),
) -> BulkDiscountResponse:
    discount = payload.discount
    category = payload.category.strip() if payload.category else None
    updated = await repository.bulk_set_discount(
        category=category,
        discount_type=discount.type.value,
        discount_value_hundredths=to_cents(discount.value),
        starts_at=discount.starts_at,
        ends_at=discount.ends_at,
    )
    _LOGGER.info(
        "Bulk %s discount applied to %d products (category=%s) by %s",
        discount.type.value,
        updated,
        category or "*",
        principal.user_id,
    )
    return BulkDiscountResponse(updated=updated)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
) -> ProductResponse:
    rates, product = await asyncio.gather(pricing.get_rate_table(), repository.get_product(product_id))
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return ProductResponse.model_validate(_serialize_product(product, _pricer(rates, settings)))


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    payload: ProductUpdate,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(require("catalog:write")),
) -> ProductResponse:
    product = await _load_product(repository, product_id)
    updated = await repository.update_product(
        product,
        name=payload.name,
        description=payload.description,
        base_price_cents=to_cents(payload.base_price) if payload.base_price is not None else None,
        currency=payload.currency,
        is_active=payload.is_active,
        categories=payload.categories,
    )
    rates = await pricing.get_rate_table()
    return ProductResponse.model_validate(_serialize_product(updated, _pricer(rates, settings)))


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    repository: CatalogRepository = Depends(get_repository),
    _: Principal = Depends(require("catalog:write")),
) -> Response:
    product = await _load_product(repository, product_id)
    await repository.delete_product(product)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{product_id}/variants", response_model=VariantResponse, status_code=status.HTTP_201_CREATED)
async def add_variant(
    product_id: int,
    payload: VariantCreate,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(require("catalog:write")),
) -> VariantResponse:
    product = await _load_product(repository, product_id)
    try:
        variant = await repository.add_variant(
            product,
            sku=payload.sku,
            price_cents=to_cents(payload.price),
            stock_quantity=payload.stock_quantity,
            is_active=payload.is_active,
        )
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Variant SKU already exists") from exc
    rates = await pricing.get_rate_table()
    return VariantResponse.model_validate(_serialize_variant(product, variant, _pricer(rates, settings)))


@router.put("/{product_id}/discount", response_model=ProductResponse)
async def set_product_discount(
    product_id: int,
    payload: DiscountPayload,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(require("catalog:write")),
) -> ProductResponse:
    product = await _load_product(repository, product_id)
    updated = await repository.set_discount(
        product,
        discount_type=payload.type.value,
        discount_value_hundredths=to_cents(payload.value),
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
    )
    rates = await pricing.get_rate_table()
    return ProductResponse.model_validate(_serialize_product(updated, _pricer(rates, settings)))


@router.delete("/{product_id}/discount", response_model=ProductResponse)
async def clear_product_discount(
    product_id: int,
    repository: CatalogRepository = Depends(get_repository),
    pricing: PricingClient = Depends(get_pricing_client),
    settings: ServiceSettings = Depends(get_service_settings),
    _: Principal = Depends(require("catalog:write")),
) -> ProductResponse:
    product = await _load_product(repository, product_id)
    updated = await repository.set_discount(
        product,
        discount_type=None,
        discount_value_hundredths=None,
        starts_at=None,
        ends_at=None,
    )
    rates = await pricing.get_rate_table()
    return ProductResponse.model_validate(_serialize_product(updated, _pricer(rates, settings)))
