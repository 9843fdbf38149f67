import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy as sa

from ..common.database import get_sessionmaker
from ..common.db import iso_utc
from ..common.errors import InvalidArgument, NotFound, StockBatchFailed, StoreError
from ..common.redis_client import publish_stock_update
from .model import Product
from .schemas import ProductCreate, ProductUpdate, StockItem
from .stock import Adjustment, Direction, apply_adjustment, parse_size_stock, total_of

_logger = logging.getLogger(__name__)


def product_to_dict(prod: Product) -> Dict[str, Any]:
    return {
        "id": prod.id,
        "name": prod.name,
        "price": prod.price,
        "category": prod.category,
        "color": prod.color,
        "description": prod.description,
        "image_url": prod.image_url,
        "stock": prod.stock,
        "size_stock": parse_size_stock(prod.size_stock),
        "created_at": iso_utc(prod.created_at),
        "updated_at": iso_utc(prod.updated_at),
    }


def _item_error(item: StockItem, exc: StoreError) -> Dict[str, Any]:
    err: Dict[str, Any] = {
        "productId": item.product_id,
        "quantity": item.quantity,
        "error": exc.kind,
        "message": exc.message,
    }
    if item.size is not None:
        err["size"] = item.size
    if exc.detail:
        err["detail"] = exc.detail
    return err


async def publish_adjustments(adjustments: Sequence[Adjustment]) -> None:
    for adj in adjustments:
        await publish_stock_update(adj.product_id, adj.total_stock, adj.size_stock)


async def reduce_stock_for_items(items: Sequence[StockItem]) -> Dict[str, Any]:
    """Reduce stock for a batch of line items in one transaction.

    Items fail independently. If every item fails the transaction is rolled
    back and ``StockBatchFailed`` is raised; otherwise the successful
    reductions are committed and the failures are reported alongside them.
    """
    _logger.info("Starting stock reduction | items=%s", len(items))
    adjustments: List[Adjustment] = []
    errors: List[Dict[str, Any]] = []

    async with get_sessionmaker()() as session:
        async with session.begin():
            for item in items:
                try:
                    adj = await apply_adjustment(
                        session, item.product_id, item.quantity, Direction.REDUCE, item.size
                    )
                except StoreError as e:
                    _logger.warning(
                        "Stock reduction failed | product_id=%s size=%s qty=%s err=%s",
                        item.product_id, item.size, item.quantity, e.message,
                    )
                    errors.append(_item_error(item, e))
                    continue
                adjustments.append(adj)
            if not adjustments:
                raise StockBatchFailed(errors)

    _logger.info("Stock reduction committed | success=%s errors=%s", len(adjustments), len(errors))
    await publish_adjustments(adjustments)
    return {"results": [a.to_dict() for a in adjustments], "errors": errors}


async def restore_stock_for_items(items: Sequence[StockItem]) -> Dict[str, Any]:
    """Restore stock for a batch of line items; missing products are skipped."""
    adjustments: List[Adjustment] = []
    errors: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []

    async with get_sessionmaker()() as session:
        async with session.begin():
            for item in items:
                try:
                    adj = await apply_adjustment(
                        session, item.product_id, item.quantity, Direction.RESTORE, item.size
                    )
                except NotFound as e:
                    skipped.append(_item_error(item, e))
                    continue
                except StoreError as e:
                    _logger.warning(
                        "Stock restore failed | product_id=%s size=%s err=%s", item.product_id, item.size, e.message
                    )
                    errors.append(_item_error(item, e))
                    continue
                adjustments.append(adj)

    _logger.info(
        "Stock restore committed | restored=%s skipped=%s errors=%s", len(adjustments), len(skipped), len(errors)
    )
    await publish_adjustments(adjustments)
    return {"results": [a.to_dict() for a in adjustments], "errors": errors, "skipped": skipped}


async def get_products() -> List[Dict[str, Any]]:
    async with get_sessionmaker()() as session:
        res = await session.execute(sa.select(Product).order_by(Product.created_at.desc(), Product.id.desc()))
        return [product_to_dict(p) for p in res.scalars().all()]


async def get_product(product_id: int) -> Dict[str, Any]:
    async with get_sessionmaker()() as session:
        prod = await session.get(Product, product_id)
        if prod is None:
            raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
        return product_to_dict(prod)


async def create_product(payload: ProductCreate) -> Dict[str, Any]:
    data = payload.model_dump()
    sizes = data.pop("size_stock") or {}
    if sizes:
        data["stock"] = total_of(sizes)
    async with get_sessionmaker()() as session:
        async with session.begin():
            prod = Product(size_stock=sizes or None, version=0, **data)
            session.add(prod)
            await session.flush()
        _logger.info("Product created | product_id=%s stock=%s", prod.id, prod.stock)
        result = product_to_dict(prod)
    await publish_stock_update(result["id"], result["stock"], result["size_stock"])
    return result


async def update_product(product_id: int, payload: ProductUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    sizes: Optional[Dict[str, int]] = changes.pop("size_stock", None)
    stock: Optional[int] = changes.pop("stock", None)
    if not changes and sizes is None and stock is None:
        raise InvalidArgument("No fields to update")

    async with get_sessionmaker()() as session:
        async with session.begin():
            prod = await session.get(Product, product_id, with_for_update=True)
            if prod is None:
                raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
            for field, value in changes.items():
                setattr(prod, field, value)

            stock_changed = False
            if sizes:
                prod.size_stock = dict(sizes)
                prod.stock = total_of(sizes)
                stock_changed = True
            elif sizes is not None:
                # Empty mapping turns the product back into an aggregate-only one
                prod.size_stock = None
                if stock is not None:
                    prod.stock = stock
                stock_changed = True
            elif stock is not None:
                if parse_size_stock(prod.size_stock):
                    raise InvalidArgument("stock of a product tracked by size is derived from size_stock")
                prod.stock = stock
                stock_changed = True

            if stock_changed:
                prod.version = prod.version + 1
            prod.updated_at = datetime.now(timezone.utc)
        result = product_to_dict(prod)

    _logger.info("Product updated | product_id=%s fields=%s", product_id, sorted(payload.model_fields_set))
    if stock_changed:
        await publish_stock_update(product_id, result["stock"], result["size_stock"])
    return result


async def delete_product(product_id: int) -> None:
    async with get_sessionmaker()() as session:
        async with session.begin():
            res = await session.execute(
                sa.delete(Product).where(Product.id == product_id).execution_options(synchronize_session=False)
            )
            if not res.rowcount:
                raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    _logger.info("Product deleted | product_id=%s", product_id)
