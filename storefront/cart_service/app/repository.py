"""Data access helpers for the cart service."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import Cart, CartItem
from .services import LineSnapshot


class CartRepository:
    """Persistence helpers for shopping carts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_or_create_cart(self, *, user_id: str) -> Cart:
        cart = await self.get_cart(user_id=user_id)
        if cart is None:
            cart = Cart(user_id=user_id)
            self.session.add(cart)
            await self.session.flush()
            await self.session.refresh(cart, attribute_names=["created_at", "updated_at", "items"])
        return cart

    async def get_cart(self, *, user_id: str) -> Cart | None:
        result = await self.session.execute(
            select(Cart).options(selectinload(Cart.items)).where(Cart.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def add_item(self, cart: Cart, *, snapshot: LineSnapshot, quantity: int) -> Cart:
        existing = next((item for item in cart.items if item.sku == snapshot.sku), None)
        if existing:
            existing.quantity += quantity
            _apply_snapshot(existing, snapshot)
        else:
            item = CartItem(quantity=quantity)
            _apply_snapshot(item, snapshot)
            cart.items.append(item)
        await self.session.flush()
        await self.session.refresh(cart, attribute_names=["items", "updated_at"])
        return cart

    async def update_quantity(self, cart: Cart, *, item_id: int, quantity: int) -> Cart:
        item = _find_item(cart, item_id)
        item.quantity = quantity
        await self.session.flush()
        await self.session.refresh(cart, attribute_names=["items", "updated_at"])
        return cart

    async def refresh_item(self, cart: Cart, *, item_id: int, snapshot: LineSnapshot) -> None:
        _apply_snapshot(_find_item(cart, item_id), snapshot)
        await self.session.flush()

    async def remove_item(self, cart: Cart, *, item_id: int) -> Cart:
        item = _find_item(cart, item_id)
        cart.items.remove(item)
        await self.session.flush()
        await self.session.refresh(cart, attribute_names=["items", "updated_at"])
        return cart

    async def clear_cart(self, cart: Cart) -> None:
        cart.items.clear()
        await self.session.flush()
        await self.session.refresh(cart, attribute_names=["items", "updated_at"])

    async def reload(self, cart: Cart) -> Cart:
        await self.session.refresh(cart, attribute_names=["items", "updated_at"])
        return cart


def _find_item(cart: Cart, item_id: int) -> CartItem:
    item = next((entry for entry in cart.items if entry.id == item_id), None)
    if item is None:
        raise KeyError("Item not found")
    return item


def _apply_snapshot(item: CartItem, snapshot: LineSnapshot) -> None:
    item.product_id = snapshot.product_id
    item.variant_id = snapshot.variant_id
    item.sku = snapshot.sku
    item.name = snapshot.name
    item.unit_price_cents = snapshot.unit_price_cents
    item.currency = snapshot.currency
    item.discount_type = snapshot.discount_type
    item.discount_value_hundredths = snapshot.discount_value_hundredths
    item.discount_starts_at = snapshot.discount_starts_at
    item.discount_ends_at = snapshot.discount_ends_at
