"""Stock adjustment engine.

Every change to a product's stock goes through ``apply_adjustment``. It runs
inside the caller's transaction and mutates exactly one product row with a
single UPDATE:

* aggregate-only products are decremented relative to the stored value
  (``stock = stock - q WHERE stock >= q``), so concurrent reducers can never
  drive the count below zero;
* size-tracked products are rewritten with a compare-and-swap on ``version``
  and retried when another writer got there first. The aggregate is always
  recomputed from the sizes in the same statement.
"""
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import sqlalchemy as sa
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.config import settings
from ..common.errors import Conflict, InsufficientStock, Internal, InvalidArgument, NotFound
from .model import Product

_logger = logging.getLogger(__name__)

STOCK_ADJUSTMENTS = Counter(
    "stock_adjustments_total", "Stock adjustment attempts", ["direction", "outcome"]
)


class Direction(str, enum.Enum):
    REDUCE = "reduce"
    RESTORE = "restore"


@dataclass
class Adjustment:
    product_id: int
    product_name: str
    direction: Direction
    quantity: int
    size: Optional[str]
    remaining: int
    total_stock: int
    size_stock: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "productId": self.product_id,
            "productName": self.product_name,
            "direction": self.direction.value,
            "quantity": self.quantity,
            "remainingStock": self.remaining,
            "totalStock": self.total_stock,
        }
        if self.size is not None:
            data["size"] = self.size
        return data


def parse_size_stock(raw: Any) -> Dict[str, int]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise Internal("Stored size_stock is not valid JSON")
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise Internal("Stored size_stock is not a mapping")
    return {str(k): int(v or 0) for k, v in raw.items()}


def total_of(size_stock: Mapping[str, int]) -> int:
    return sum(int(v or 0) for v in size_stock.values())


def match_size(size_stock: Mapping[str, int], size: str) -> Optional[str]:
    """Return the stored label for ``size``, compared case-insensitively."""
    if size in size_stock:
        return size
    wanted = size.strip().lower()
    for key in size_stock:
        if key.strip().lower() == wanted:
            return key
    return None


def available_quantity(stock: int, size_stock: Any, size: Optional[str]) -> int:
    sizes = parse_size_stock(size_stock)
    if not sizes:
        return int(stock or 0)
    if not size:
        raise InvalidArgument("size is required for products tracked by size")
    key = match_size(sizes, size)
    return sizes[key] if key is not None else 0


async def _read_stock(session: AsyncSession, product_id: int):
    stmt = (
        sa.select(Product.id, Product.name, Product.stock, Product.size_stock, Product.version)
        .where(Product.id == product_id)
        .with_for_update()
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    return row


async def _adjust_aggregate(session: AsyncSession, row, quantity: int, direction: Direction) -> Adjustment:
    stmt = sa.update(Product).where(Product.id == row.id)
    if direction is Direction.REDUCE:
        stmt = stmt.where(Product.stock >= quantity).values(
            stock=Product.stock - quantity, version=Product.version + 1
        )
    else:
        stmt = stmt.values(stock=Product.stock + quantity, version=Product.version + 1)
    res = await session.execute(stmt.execution_options(synchronize_session=False))
    current = await _read_stock(session, row.id)
    if not res.rowcount:
        raise InsufficientStock(current.stock, quantity, product_id=row.id)
    return Adjustment(
        product_id=row.id,
        product_name=row.name,
        direction=direction,
        quantity=quantity,
        size=None,
        remaining=current.stock,
        total_stock=current.stock,
    )


async def _adjust_size(
    session: AsyncSession, row, sizes: Dict[str, int], size: str, quantity: int, direction: Direction
) -> Optional[Adjustment]:
    key = match_size(sizes, size) or size
    available = sizes.get(key, 0)
    if direction is Direction.REDUCE:
        if available < quantity:
            raise InsufficientStock(available, quantity, product_id=row.id, size=size)
        new_qty = available - quantity
    else:
        new_qty = available + quantity

    updated = dict(sizes)
    updated[key] = new_qty
    total = total_of(updated)
    stmt = (
        sa.update(Product)
        .where(Product.id == row.id, Product.version == row.version)
        .values(stock=total, size_stock=updated, version=row.version + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if not res.rowcount:
        return None
    return Adjustment(
        product_id=row.id,
        product_name=row.name,
        direction=direction,
        quantity=quantity,
        size=key,
        remaining=new_qty,
        total_stock=total,
        size_stock=updated,
    )


async def apply_adjustment(
    session: AsyncSession,
    product_id: int,
    quantity: int,
    direction: Direction,
    size: Optional[str] = None,
) -> Adjustment:
    direction = Direction(direction)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidArgument("quantity must be a positive integer", {"quantity": quantity})

    try:
        for attempt in range(1, max(1, settings.STOCK_UPDATE_ATTEMPTS) + 1):
            row = await _read_stock(session, product_id)
            sizes = parse_size_stock(row.size_stock)
            if not sizes:
                adjustment = await _adjust_aggregate(session, row, quantity, direction)
            elif not size:
                raise InvalidArgument(
                    "size is required for products tracked by size", {"product_id": product_id}
                )
            else:
                adjustment = await _adjust_size(session, row, sizes, size, quantity, direction)
            if adjustment is not None:
                STOCK_ADJUSTMENTS.labels(direction=direction.value, outcome="ok").inc()
                return adjustment
            _logger.info("Stock changed concurrently, retrying | product_id=%s attempt=%s", product_id, attempt)
    except InsufficientStock:
        STOCK_ADJUSTMENTS.labels(direction=direction.value, outcome="insufficient").inc()
        raise
    except Exception:
        STOCK_ADJUSTMENTS.labels(direction=direction.value, outcome="error").inc()
        raise

    STOCK_ADJUSTMENTS.labels(direction=direction.value, outcome="conflict").inc()
    raise Conflict("Stock was modified concurrently, retry the request", {"product_id": product_id})
