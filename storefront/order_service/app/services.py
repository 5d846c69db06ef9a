"""Checkout orchestration and order lifecycle rules."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from time import perf_counter
from typing import Any, Protocol

from storefront.common import ServiceSettings
from storefront.common.clients import CartClient, CatalogClient, PricingClient, ProductSnapshot
from storefront.common.errors import (
    ConflictError,
    PaymentDeclined,
    PromotionRejected,
    ResourceNotFound,
    StorefrontError,
    UpstreamUnavailable,
)
from storefront.common.pricing import (
    Promotion,
    Quote,
    QuoteLine,
    build_quote,
    check_promotion,
    from_cents,
    quantize_money,
    to_cents,
)
from storefront.common.security import Principal, identity_headers, service_principal
from storefront.common.tracing import get_tracer

from .metrics import CHECKOUT_LATENCY_SECONDS, CHECKOUTS_TOTAL, ORDER_STATUS_CHANGES_TOTAL
from .models import Order
from .repository import OrderRepository
from .schemas import AddressPayload, CheckoutLine, CheckoutRequest

_LOGGER = logging.getLogger(__name__)
_TRACER = get_tracer("orders.checkout")
# Promotion usage counters only accept calls made by the order service itself.
_SERVICE_HEADERS = identity_headers(service_principal("order-service"))

# Cancelled and delivered orders are terminal.
STATUS_TRANSITIONS: Mapping[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}

_OUTCOMES: Mapping[type[StorefrontError], str] = {
    PaymentDeclined: "declined",
    PromotionRejected: "promotion_rejected",
    UpstreamUnavailable: "unavailable",
    ResourceNotFound: "not_found",
    ConflictError: "conflict",
}


def generate_order_number(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"ORD-{int(moment.timestamp() * 1000)}-{secrets.token_hex(4).upper()}"


def address_snapshot(address: AddressPayload) -> dict[str, Any]:
    return address.model_dump(by_alias=False)


class PaymentGateway(Protocol):
    async def authorize(self, *, amount: Decimal, currency: str, reference: str, method: str) -> str:
        """Authorize ``amount`` and return the provider's payment reference."""
        ...


class SimulatedPaymentGateway:
    """Approves every payment, as the storefront did before a provider was wired in."""

    async def authorize(self, *, amount: Decimal, currency: str, reference: str, method: str) -> str:
        _LOGGER.info("Simulated %s payment of %s %s for %s approved", method, amount, currency, reference)
        return f"SIM-{secrets.token_hex(6).upper()}"


class DecliningPaymentGateway:
    """Declines every payment; used to exercise the failure path."""

    def __init__(self, reason: str = "Payment was declined by the card issuer") -> None:
        self.reason = reason

    async def authorize(self, *, amount: Decimal, currency: str, reference: str, method: str) -> str:
        _LOGGER.info("Declining %s payment of %s %s for %s", method, amount, currency, reference)
        raise PaymentDeclined(self.reason)


def build_payment_gateway(settings: ServiceSettings) -> PaymentGateway:
    if settings.payment_gateway == "declining":
        return DecliningPaymentGateway()
    return SimulatedPaymentGateway()


@dataclass(frozen=True, slots=True)
class _ResolvedLine:
    request: CheckoutLine
    product: ProductSnapshot
    sku: str


class CheckoutService:
    """Turns a checkout request into a confirmed, paid order."""

    def __init__(
        self,
        repository: OrderRepository,
        *,
        catalog: CatalogClient,
        pricing: PricingClient,
        gateway: PaymentGateway,
        settings: ServiceSettings,
        cart: CartClient | None = None,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.pricing = pricing
        self.cart = cart
        self.gateway = gateway
        self.settings = settings

    async def place_order(self, payload: CheckoutRequest, principal: Principal) -> Order:
        start = perf_counter()
        outcome = "error"
        try:
            with _TRACER.start_as_current_span("orders.checkout") as span:
                span.set_attribute("checkout.lines", len(payload.items))
                order = await self._place_order(payload, principal)
                span.set_attribute("checkout.order_number", order.order_number)
            outcome = "confirmed"
            return order
        except StorefrontError as exc:
            outcome = next(
                (label for error_type, label in _OUTCOMES.items() if isinstance(exc, error_type)),
                "rejected",
            )
            raise
        finally:
            CHECKOUTS_TOTAL.labels(outcome=outcome).inc()
            CHECKOUT_LATENCY_SECONDS.observe(perf_counter() - start)

    async def _place_order(self, payload: CheckoutRequest, principal: Principal) -> Order:
        if principal.user_id is None:
            msg = "checkout requires an authenticated customer"
            raise ValueError(msg)

        now = datetime.now(timezone.utc)
        products, rates, promotion = await asyncio.gather(
            self.catalog.get_products(line.product_id for line in payload.items),
            self.pricing.get_rate_table(now.date()),
            self._lookup_promotion(payload.promotion_code),
        )
        if promotion is not None:
            check_promotion(promotion, now)

        resolved = _resolve_lines(payload.items, products)
        quote = build_quote(
            [
                QuoteLine(
                    quantity=entry.request.quantity,
                    unit_price=entry.product.unit_price(entry.request.variant_id)[0],
                    currency=entry.product.currency,
                    discount=entry.product.discount,
                    reference=entry.sku,
                )
                for entry in resolved
            ],
            rates=rates,
            reporting_currency=self.settings.reporting_currency,
            now=now,
            promotion=promotion,
            tax_rate=self.settings.checkout_tax_rate,
            shipping_fee=self.settings.checkout_shipping_fee,
        )
        if not quote.rates_complete:
            missing = ", ".join(quote.missing_rates)
            _LOGGER.warning("Checkout for %s refused, missing exchange rates: %s", principal.user_id, missing)
            raise UpstreamUnavailable(
                f"Exchange rates for {missing} are not available right now, please try again later"
            )
        if payload.expected_total is not None and quantize_money(payload.expected_total) != quantize_money(
            quote.total
        ):
            raise ConflictError("Prices changed since the cart was shown, please review your order")

        shipping = payload.shipping_address
        customer = await self.repository.find_or_create_customer(
            user_id=principal.user_id,
            email=principal.email,
            first_name=shipping.first_name,
            last_name=shipping.last_name,
            phone=shipping.phone,
        )
        applied_code = quote.promotion_code if quote.promotion.applied else None
        order = await self.repository.create_order(
            order_number=generate_order_number(now),
            customer=customer,
            currency=quote.currency,
            items=_order_items(quote, resolved),
            subtotal_cents=to_cents(quote.subtotal),
            discount_cents=to_cents(quote.promotion.discount_amount),
            shipping_cents=to_cents(quote.shipping),
            tax_cents=to_cents(quote.tax),
            grand_total_cents=to_cents(quote.total),
            promotion_code=applied_code,
            payment_method=payload.payment_method,
            shipping_address=address_snapshot(shipping),
            billing_address=address_snapshot(payload.resolved_billing_address),
            notes=payload.notes,
        )
        await self.repository.add_event(order, event_type="created", payload=order.order_number)

        redeemed = False
        try:
            if applied_code is not None:
                await self.pricing.redeem_promotion(applied_code, headers=_SERVICE_HEADERS)
                redeemed = True
                await self.repository.add_event(order, event_type="promotion_redeemed", payload=applied_code)
            payment_reference = await self.gateway.authorize(
                amount=quantize_money(quote.total),
                currency=quote.currency,
                reference=order.order_number,
                method=payload.payment_method,
            )
            await self.repository.add_event(order, event_type="payment_authorized", payload=payment_reference)
            order = await self.repository.mark_paid(order, payment_reference=payment_reference)
        except Exception:
            if redeemed and applied_code is not None:
                await self._release_promotion(applied_code)
            raise

        _LOGGER.info(
            "Order %s placed for %s: %s %s",
            order.order_number,
            principal.user_id,
            from_cents(order.grand_total_cents),
            order.currency,
        )
        await self._clear_cart(principal)
        return order

    async def _lookup_promotion(self, code: str | None) -> Promotion | None:
        if not code:
            return None
        return await self.pricing.get_promotion(code)

    async def _release_promotion(self, code: str) -> None:
        try:
            await self.pricing.release_promotion(code, headers=_SERVICE_HEADERS)
        except StorefrontError:
            _LOGGER.exception("Could not release promotion %s after a failed checkout", code)
        else:
            _LOGGER.info("Released promotion %s after a failed checkout", code)

    async def _clear_cart(self, principal: Principal) -> None:
        if self.cart is None or not self.cart.configured or principal.user_id is None:
            return
        try:
            await self.cart.clear_cart(principal.user_id, headers=identity_headers(principal))
        except UpstreamUnavailable as exc:
            _LOGGER.warning("Order placed but the cart of %s was not cleared: %s", principal.user_id, exc)


def _resolve_lines(
    lines: Sequence[CheckoutLine], products: Mapping[int, ProductSnapshot]
) -> list[_ResolvedLine]:
    resolved: list[_ResolvedLine] = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise ResourceNotFound(f"Product {line.product_id} not found")
        if not product.is_active:
            raise ConflictError(f"{product.name} is no longer available")
        _, sku = product.unit_price(line.variant_id)
        resolved.append(_ResolvedLine(request=line, product=product, sku=sku))
    return resolved


def _order_items(quote: Quote, resolved: Sequence[_ResolvedLine]) -> list[dict[str, Any]]:
    return [
        {
            "product_id": entry.product.id,
            "variant_id": entry.request.variant_id,
            "sku": entry.sku,
            "name": entry.product.name,
            "quantity": priced.quantity,
            "list_price_cents": to_cents(priced.unit.list_price),
            "list_currency": priced.unit.list_currency,
            "unit_price_cents": to_cents(priced.unit_price),
            "total_price_cents": to_cents(priced.total),
        }
        for priced, entry in zip(quote.lines, resolved)
    ]


class OrderService:
    """Post-checkout operations on orders."""

    def __init__(self, repository: OrderRepository) -> None:
        self.repository = repository

    async def update_status(self, order: Order, *, status: str, note: str | None = None) -> Order:
        if status == order.status:
            return order
        if status not in STATUS_TRANSITIONS.get(order.status, frozenset()):
            raise ConflictError(f"Cannot move an order from {order.status} to {status}")
        payload = f"{order.status}->{status}"
        if note:
            payload = f"{payload}: {note}"
        await self.repository.add_event(order, event_type="status_changed", payload=payload)
        updated = await self.repository.update_status(order, status=status)
        ORDER_STATUS_CHANGES_TOTAL.labels(status=status).inc()
        return updated
