import logging
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.database import get_sessionmaker
from ..common.db import iso_utc
from ..common.errors import Forbidden, InsufficientStock, InvalidArgument, NotFound
from ..inventory.model import Product
from ..inventory.stock import available_quantity
from .model import CartItem
from .schemas import AddCartItem, UpdateCartItem

_logger = logging.getLogger(__name__)


def cart_item_to_dict(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "user_id": item.user_id,
        "product_id": item.product_id,
        "name": item.name,
        "price": item.price,
        "image_url": item.image_url,
        "size": item.size,
        "quantity": item.quantity,
        "created_at": iso_utc(item.created_at),
    }


async def _check_available(session: AsyncSession, product_id: int, size: Optional[str], quantity: int) -> Product:
    # Advisory only: the cart never holds stock, reduce-stock is authoritative
    prod = await session.get(Product, product_id)
    if prod is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    available = available_quantity(prod.stock, prod.size_stock, size)
    if available < quantity:
        raise InsufficientStock(available, quantity, product_id=product_id, size=size)
    return prod


async def _owned_item(session: AsyncSession, user_id: int, item_id: int) -> CartItem:
    item = await session.get(CartItem, item_id)
    if item is None:
        raise NotFound(f"Cart item {item_id} not found", {"id": item_id})
    if item.user_id != user_id:
        raise Forbidden("Cart item belongs to another user")
    return item


async def add_item(user_id: int, payload: AddCartItem) -> Dict[str, Any]:
    async with get_sessionmaker()() as session:
        async with session.begin():
            prod = await _check_available(session, payload.product_id, payload.size, payload.quantity)
            item = CartItem(
                user_id=user_id,
                product_id=prod.id,
                name=prod.name,
                price=prod.price,
                image_url=prod.image_url,
                size=payload.size,
                quantity=payload.quantity,
            )
            session.add(item)
            await session.flush()
        _logger.info("Cart item added | user_id=%s product_id=%s qty=%s", user_id, prod.id, payload.quantity)
        return cart_item_to_dict(item)


async def list_items(user_id: int) -> List[Dict[str, Any]]:
    stmt = (
        sa.select(CartItem)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at.desc(), CartItem.id.desc())
    )
    async with get_sessionmaker()() as session:
        res = await session.execute(stmt)
        return [cart_item_to_dict(i) for i in res.scalars().all()]


async def update_item(user_id: int, item_id: int, payload: UpdateCartItem) -> Dict[str, Any]:
    if payload.quantity is None and payload.size is None:
        raise InvalidArgument("Nothing to update")
    async with get_sessionmaker()() as session:
        async with session.begin():
            item = await _owned_item(session, user_id, item_id)
            quantity = payload.quantity if payload.quantity is not None else item.quantity
            size = payload.size if payload.size is not None else item.size
            await _check_available(session, item.product_id, size, quantity)
            item.quantity = quantity
            item.size = size
        return cart_item_to_dict(item)


async def remove_item(user_id: int, item_id: int) -> None:
    async with get_sessionmaker()() as session:
        async with session.begin():
            item = await _owned_item(session, user_id, item_id)
            await session.delete(item)
    _logger.info("Cart item removed | user_id=%s id=%s", user_id, item_id)
