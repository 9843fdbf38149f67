from typing import Any, Optional

from quart import Blueprint, g, jsonify, request

from ..common.auth import require_admin, require_auth
from ..common.errors import Forbidden
from ..common.validation import parse_body
from .schemas import CreateOrderRequest, TrackingRequest, UpdateStatusRequest
from .service import (
    create_order,
    delete_order,
    get_order,
    list_user_orders,
    set_tracking,
    soft_delete_order,
    update_status,
)

bp = Blueprint("orders", __name__)
admin_bp = Blueprint("admin_orders", __name__, url_prefix="/admin/orders")


def _owner() -> Optional[Any]:
    """Caller id that scopes order access; admins are not scoped."""
    return None if g.user.is_admin else g.user.id


def _check_same_user(user_id: int) -> None:
    owner = _owner()
    if owner is not None and str(owner) != str(user_id):
        raise Forbidden("Orders of another user are not accessible", {"user_id": user_id})


@bp.post("/orders")
@require_auth
async def order_create():
    body = await parse_body(CreateOrderRequest)
    _check_same_user(body.user_id)
    order = await create_order(body)
    return jsonify({
        "ok": True,
        "orderId": order["order_id"],
        "order_id": order["order_id"],
        "dbId": order["id"],
        "message": "Order created successfully",
    }), 201


@bp.get("/orders/user/<int:user_id>")
@require_auth
async def orders_for_user(user_id: int):
    _check_same_user(user_id)
    orders = await list_user_orders(user_id, request.args.get("status"))
    return jsonify({"orders": orders})


@bp.get("/orders/<ref>")
@require_auth
async def order_detail(ref: str):
    return jsonify({"order": await get_order(ref, owner_id=_owner())})


@bp.put("/orders/<ref>")
@require_auth
async def order_update(ref: str):
    body = await parse_body(UpdateStatusRequest)
    order = await update_status(ref, body.status, body.payment_method, body.shipping_method, owner_id=_owner())
    return jsonify({"ok": True, "message": "Order updated", "order": order})


@bp.delete("/orders/<ref>")
@require_auth
async def order_delete(ref: str):
    deleted = await delete_order(ref, owner_id=_owner())
    return jsonify({"ok": True, "message": "Order deleted", **deleted})


@admin_bp.get("/<ref>")
@require_admin
async def admin_order_detail(ref: str):
    return jsonify({"success": True, "order": await get_order(ref)})


@admin_bp.put("/<ref>/status")
@require_admin
async def admin_order_status(ref: str):
    body = await parse_body(UpdateStatusRequest)
    order = await update_status(ref, body.status, body.payment_method, body.shipping_method)
    return jsonify({
        "success": True,
        "message": "Order status updated successfully",
        "orderId": order["order_id"],
        "newStatus": order["status"],
        "order": order,
    })


@admin_bp.put("/<ref>/tracking")
@require_admin
async def admin_order_tracking(ref: str):
    body = await parse_body(TrackingRequest)
    order = await set_tracking(ref, body.tracking_number, body.status)
    return jsonify({
        "success": True,
        "message": "Tracking number added successfully",
        "orderId": order["order_id"],
        "trackingNumber": order["tracking_number"],
        "status": order["status"],
    })


@admin_bp.delete("/<ref>")
@require_admin
async def admin_order_delete(ref: str):
    hard = request.args.get("hard", "").strip().lower() in {"1", "true", "yes"}
    if hard:
        deleted = await delete_order(ref, force=True)
        return jsonify({"success": True, "message": "Order removed", **deleted})
    order = await soft_delete_order(ref)
    return jsonify({"success": True, "message": "Order deleted successfully", "orderId": order["order_id"]})
