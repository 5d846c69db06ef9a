"""HTTP routes for checkout and order management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from storefront.common.pricing import from_cents
from storefront.common.security import Principal, get_policy, parse_principal, require

from ..dependencies import get_checkout_service, get_repository
from ..models import Order
from ..repository import OrderRepository
from ..schemas import (
    CheckoutRequest,
    OrderEventResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatus,
    OrderUpdateStatus,
)
from ..services import CheckoutService, OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def _serialize_order(order: Order) -> dict[str, object]:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerId": order.customer_id,
        "userId": order.user_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "paymentReference": order.payment_reference,
        "currency": order.currency,
        "subtotal": from_cents(order.subtotal_cents),
        "discountTotal": from_cents(order.discount_total_cents),
        "shippingTotal": from_cents(order.shipping_total_cents),
        "taxTotal": from_cents(order.tax_total_cents),
        "grandTotal": from_cents(order.grand_total_cents),
        "promotionCode": order.promotion_code,
        "shippingAddress": order.shipping_address,
        "billingAddress": order.billing_address,
        "notes": order.notes,
        "items": [
            {
                "id": item.id,
                "productId": item.product_id,
                "variantId": item.variant_id,
                "sku": item.sku,
                "name": item.name,
                "quantity": item.quantity,
                "listPrice": from_cents(item.list_price_cents),
                "listCurrency": item.list_currency,
                "unitPrice": from_cents(item.unit_price_cents),
                "totalPrice": from_cents(item.total_price_cents),
                "createdAt": item.created_at,
            }
            for item in order.items
        ],
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


def _serialize_events(order: Order) -> list[dict[str, object]]:
    return [
        {
            "type": event.type,
            "payload": event.payload,
            "createdAt": event.created_at,
        }
        for event in order.events
    ]


async def _readable_order(request: Request, repository: OrderRepository, order_id: int) -> Order:
    principal = parse_principal(request)
    policy = get_policy(request)
    # Anonymous callers learn nothing about which order ids exist.
    if not principal.is_authenticated and not policy.allows(principal, "orders:read"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    order = await repository.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    policy.check(principal, "orders:read", owner_id=order.user_id)
    return order


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
    principal: Principal = Depends(require("orders:create")),
) -> OrderResponse:
    if not principal.is_authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    order = await service.place_order(payload, principal)
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("", response_model=OrderListResponse)
async def list_orders(
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    customer_id: int | None = Query(default=None, alias="customerId"),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    repository: OrderRepository = Depends(get_repository),
) -> OrderListResponse:
    """Staff see every order; customers only ever see their own."""

    principal = parse_principal(request)
    if get_policy(request).allows(principal, "orders:read-all"):
        user_id = None
    elif principal.is_authenticated:
        user_id = principal.user_id
        customer_id = None
    else:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    orders, total = await repository.list_orders(
        user_id=user_id,
        customer_id=customer_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    items = [OrderResponse.model_validate(_serialize_order(order)) for order in orders]
    return OrderListResponse(items=items, total=total)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    request: Request,
    repository: OrderRepository = Depends(get_repository),
) -> OrderResponse:
    order = await _readable_order(request, repository, order_id)
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def get_order_events(
    order_id: int,
    request: Request,
    repository: OrderRepository = Depends(get_repository),
):
    order = await _readable_order(request, repository, order_id)
    return [OrderEventResponse.model_validate(event) for event in _serialize_events(order)]


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderUpdateStatus,
    repository: OrderRepository = Depends(get_repository),
    _: Principal = Depends(require("orders:update")),
) -> OrderResponse:
    order = await repository.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    service = OrderService(repository)
    updated = await service.update_status(order, status=payload.status, note=payload.note)
    return OrderResponse.model_validate(_serialize_order(updated))
