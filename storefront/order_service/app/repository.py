"""Data access helpers for order service."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Customer, Order, OrderEvent, OrderItem


class OrderRepository:
    """Persistence helpers for orders and related entities."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_or_create_customer(
        self,
        *,
        user_id: str,
        email: str | None,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> Customer:
        result = await self.session.execute(select(Customer).where(Customer.user_id == user_id))
        customer = result.scalar_one_or_none()
        if customer is not None:
            if customer.email is None and email:
                customer.email = email
                await self.session.flush()
            return customer

        customer = Customer(
            user_id=user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        self.session.add(customer)
        await self.session.flush()
        return customer

    async def create_order(
        self,
        *,
        order_number: str,
        customer: Customer,
        currency: str,
        items: Sequence[dict[str, Any]],
        subtotal_cents: int,
        discount_cents: int,
        shipping_cents: int,
        tax_cents: int,
        grand_total_cents: int,
        promotion_code: str | None,
        payment_method: str,
        shipping_address: dict[str, Any],
        billing_address: dict[str, Any],
        notes: str | None = None,
    ) -> Order:
        order = Order(
            order_number=order_number,
            customer_id=customer.id,
            user_id=customer.user_id,
            currency=currency,
            subtotal_cents=subtotal_cents,
            discount_total_cents=discount_cents,
            shipping_total_cents=shipping_cents,
            tax_total_cents=tax_cents,
            grand_total_cents=grand_total_cents,
            promotion_code=promotion_code,
            payment_method=payment_method,
            shipping_address=shipping_address,
            billing_address=billing_address,
            notes=notes,
            items=[OrderItem(**entry) for entry in items],
            events=[],
        )
        self.session.add(order)
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["items", "created_at", "updated_at"])
        return order

    async def get_order(self, order_id: int) -> Order | None:
        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
        )
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        *,
        user_id: str | None,
        customer_id: int | None,
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Order], int]:
        base: Select[tuple[Order]] = select(Order)
        count: Select[tuple[int]] = select(func.count(Order.id))

        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if customer_id is not None:
            filters.append(Order.customer_id == customer_id)
        if status is not None:
            filters.append(Order.status == status)

        if filters:
            base = base.where(and_(*filters))
            count = count.where(and_(*filters))

        base = base.order_by(Order.created_at.desc(), Order.id.desc())

        total_result = await self.session.execute(count)
        total = total_result.scalar_one()

        result = await self.session.execute(
            base.options(selectinload(Order.items)).offset(offset).limit(limit)
        )
        orders = list(result.scalars().unique())
        return orders, total

    async def add_event(
        self,
        order: Order,
        *,
        event_type: str,
        payload: str,
    ) -> OrderEvent:
        entry = OrderEvent(order=order, type=event_type, payload=payload)
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry)
        return entry

    async def update_status(self, order: Order, *, status: str) -> Order:
        order.status = status
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["updated_at", "events"])
        return order

    async def mark_paid(self, order: Order, *, payment_reference: str) -> Order:
        order.status = "confirmed"
        order.payment_status = "paid"
        order.payment_reference = payment_reference
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["updated_at", "events"])
        return order
