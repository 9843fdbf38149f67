from quart import Blueprint, g, jsonify

from ..common.auth import require_auth
from ..common.errors import Unauthorized
from ..common.validation import parse_body
from .schemas import AddCartItem, UpdateCartItem
from .service import add_item, list_items, remove_item, update_item

bp = Blueprint("cart", __name__, url_prefix="/cart")


def _user_id() -> int:
    try:
        return int(g.user.id)
    except (TypeError, ValueError):
        raise Unauthorized("Token user id is not numeric")


@bp.post("")
@require_auth
async def cart_add():
    body = await parse_body(AddCartItem)
    item = await add_item(_user_id(), body)
    return jsonify({"success": True, "id": item["id"], "item": item}), 201


@bp.get("")
@require_auth
async def cart_list():
    return jsonify({"items": await list_items(_user_id())})


@bp.put("/<int:item_id>")
@require_auth
async def cart_update(item_id: int):
    body = await parse_body(UpdateCartItem)
    item = await update_item(_user_id(), item_id, body)
    return jsonify({"ok": True, "item": item})


@bp.delete("/<int:item_id>")
@require_auth
async def cart_remove(item_id: int):
    await remove_item(_user_id(), item_id)
    return jsonify({"ok": True})
