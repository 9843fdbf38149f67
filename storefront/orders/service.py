import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.database import get_sessionmaker
from ..common.db import iso_utc
from ..common.errors import Conflict, Forbidden, Internal, InvalidArgument, InvalidState, NotFound
from ..common.kafka_client import publish_order_event
from ..inventory.service import publish_adjustments
from ..inventory.stock import Adjustment, Direction, apply_adjustment
from .model import Order
from .schemas import (
    DELETABLE_STATUSES,
    DELETED,
    ORDER_STATUSES,
    PAID,
    PAYMENT_STATUSES,
    PENDING,
    SHIPPING,
    CreateOrderRequest,
    LineItem,
)

_logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits
_MAX_PK = 2 ** 63


def generate_order_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"ORDER-{int(time.time() * 1000)}-{suffix}"


def _decode_items(raw: Optional[str]) -> Any:
    if not raw:
        return []
    try:
        return json.loads(raw)
    except ValueError:
        _logger.warning("Stored order items are not valid JSON")
        return raw


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_id": order.order_id,
        "user_id": order.user_id,
        "name": order.name,
        "email": order.email,
        "phone": order.phone,
        "address": order.address,
        "city": order.city,
        "postal_code": order.postal_code,
        "notes": order.notes,
        "total_items": order.total_items,
        "total_price": order.total_price,
        "status": order.status,
        "items": _decode_items(order.items),
        "payment_method": order.payment_method,
        "shipping_method": order.shipping_method,
        "tracking_number": order.tracking_number,
        "created_at": iso_utc(order.created_at),
        "paid_at": iso_utc(order.paid_at),
        "updated_at": iso_utc(order.updated_at),
    }


def _ref_clause(ref: Any):
    """Orders are addressed by their numeric id or by their ORDER- token."""
    ref = str(ref).strip()
    # Primary keys are signed 64-bit; larger numbers can only be a public id
    if ref.isdigit() and int(ref) < _MAX_PK:
        return sa.or_(Order.id == int(ref), Order.order_id == ref)
    return Order.order_id == ref


async def _load(session: AsyncSession, ref: Any, lock: bool = False, owner_id: Any = None) -> Order:
    stmt = sa.select(Order).where(_ref_clause(ref)).limit(1)
    if lock:
        stmt = stmt.with_for_update()
    order = (await session.execute(stmt)).scalars().first()
    if order is None:
        raise NotFound(f"Order {ref} not found", {"order_id": str(ref)})
    if owner_id is not None and str(order.user_id) != str(owner_id):
        raise Forbidden("Order belongs to another user", {"order_id": order.order_id})
    return order


def _set_status(order: Order, status: str, now: datetime) -> None:
    order.status = status
    if status in PAYMENT_STATUSES and order.paid_at is None:
        order.paid_at = now
    order.updated_at = now


def _check_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise InvalidArgument(
            "Invalid status value", {"valid_statuses": list(ORDER_STATUSES), "received": status}
        )


async def create_order(payload: CreateOrderRequest) -> Dict[str, Any]:
    data = payload.model_dump(exclude={"items", "status"})
    items = [item.model_dump(by_alias=True, exclude_none=True) for item in payload.items]
    order = Order(
        order_id=generate_order_id(),
        status=payload.status or PENDING,
        items=json.dumps(items),
        **data,
    )
    try:
        async with get_sessionmaker()() as session:
            async with session.begin():
                session.add(order)
                await session.flush()
    except IntegrityError:
        _logger.warning("Duplicate order id generated | order_id=%s", order.order_id)
        raise Conflict("Order id already exists, retry the request", {"order_id": order.order_id})

    _logger.info("Order created | order_id=%s id=%s status=%s", order.order_id, order.id, order.status)
    result = order_to_dict(order)
    await publish_order_event("order_created", {"id": order.id, "order_id": order.order_id, "status": order.status})
    return result


async def get_order(ref: Any, owner_id: Any = None) -> Dict[str, Any]:
    async with get_sessionmaker()() as session:
        return order_to_dict(await _load(session, ref, owner_id=owner_id))


async def list_user_orders(user_id: int, status: Optional[str] = None) -> List[Dict[str, Any]]:
    stmt = sa.select(Order).where(Order.user_id == user_id)
    if status:
        stmt = stmt.where(Order.status == status)
    else:
        stmt = stmt.where(Order.status != DELETED)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
    async with get_sessionmaker()() as session:
        res = await session.execute(stmt)
        return [order_to_dict(o) for o in res.scalars().all()]


async def update_status(
    ref: Any,
    status: str,
    payment_method: Optional[str] = None,
    shipping_method: Optional[str] = None,
    owner_id: Any = None,
) -> Dict[str, Any]:
    _check_status(status)
    now = datetime.now(timezone.utc)
    async with get_sessionmaker()() as session:
        async with session.begin():
            order = await _load(session, ref, lock=True, owner_id=owner_id)
            previous = order.status
            _set_status(order, status, now)
            if payment_method:
                order.payment_method = payment_method
            if shipping_method:
                order.shipping_method = shipping_method
        result = order_to_dict(order)

    _logger.info("Order status updated | order_id=%s %s -> %s", result["order_id"], previous, status)
    await publish_order_event(
        "order_status_changed",
        {"id": result["id"], "order_id": result["order_id"], "from": previous, "to": status},
    )
    return result


async def set_tracking(ref: Any, tracking_number: str, status: Optional[str] = None) -> Dict[str, Any]:
    status = status or SHIPPING
    _check_status(status)
    now = datetime.now(timezone.utc)
    async with get_sessionmaker()() as session:
        async with session.begin():
            order = await _load(session, ref, lock=True)
            previous = order.status
            order.tracking_number = tracking_number
            _set_status(order, status, now)
        result = order_to_dict(order)

    _logger.info("Tracking added | order_id=%s tracking=%s", result["order_id"], tracking_number)
    if previous != status:
        await publish_order_event(
            "order_status_changed",
            {"id": result["id"], "order_id": result["order_id"], "from": previous, "to": status},
        )
    return result


async def soft_delete_order(ref: Any) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    async with get_sessionmaker()() as session:
        async with session.begin():
            order = await _load(session, ref, lock=True)
            if order.status == DELETED:
                raise InvalidState("Order is already deleted", {"status": order.status})
            previous = order.status
            order.status = DELETED
            order.updated_at = now
        result = order_to_dict(order)

    _logger.info("Order soft deleted | order_id=%s previous=%s", result["order_id"], previous)
    await publish_order_event(
        "order_status_changed",
        {"id": result["id"], "order_id": result["order_id"], "from": previous, "to": DELETED},
    )
    return result


async def _restore_items(session: AsyncSession, order: Order) -> List[Adjustment]:
    try:
        raw_items = json.loads(order.items) if order.items else []
        items = [LineItem.model_validate(i) for i in raw_items]
    except (ValueError, TypeError, ValidationError) as e:
        raise Internal(f"Order {order.order_id} has unreadable items: {e}")

    restored: List[Adjustment] = []
    for item in items:
        try:
            adj = await apply_adjustment(session, item.product_id, item.quantity, Direction.RESTORE, item.size)
        except NotFound:
            _logger.warning(
                "Product gone, stock not restored | order_id=%s product_id=%s", order.order_id, item.product_id
            )
            continue
        restored.append(adj)
    return restored


async def delete_order(ref: Any, force: bool = False, owner_id: Any = None) -> Dict[str, Any]:
    """Remove an order row.

    Only pending, cancelled and failed orders may be deleted unless ``force``
    is set (admin only). A paid order has the stock of its items restored in
    the same transaction before the row goes away.
    """
    restored: List[Adjustment] = []
    async with get_sessionmaker()() as session:
        async with session.begin():
            order = await _load(session, ref, lock=True, owner_id=owner_id)
            order_pk, public_id, status = order.id, order.order_id, order.status
            if not force and status not in DELETABLE_STATUSES:
                raise InvalidState(
                    f"Only {', '.join(DELETABLE_STATUSES)} orders can be deleted", {"status": status}
                )
            if status == PAID:
                restored = await _restore_items(session, order)

            stmt = sa.delete(Order).where(Order.id == order_pk)
            if not force:
                stmt = stmt.where(Order.status.in_(DELETABLE_STATUSES))
            res = await session.execute(stmt.execution_options(synchronize_session=False))
            if not res.rowcount:
                raise InvalidState("Order changed while it was being deleted", {"order_id": public_id})

    _logger.info(
        "Order deleted | order_id=%s status=%s restored_items=%s forced=%s", public_id, status, len(restored), force
    )
    await publish_adjustments(restored)
    await publish_order_event("order_deleted", {"id": order_pk, "order_id": public_id, "status": status})
    return {
        "deletedId": order_pk,
        "order_id": public_id,
        "status": status,
        "restored": [a.to_dict() for a in restored],
    }
