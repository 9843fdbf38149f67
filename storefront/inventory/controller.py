from quart import Blueprint, jsonify

from ..common.auth import require_admin, require_auth
from ..common.validation import parse_body
from .schemas import ProductCreate, ProductUpdate, StockBatchRequest
from .service import (
    create_product,
    delete_product,
    get_product,
    get_products,
    reduce_stock_for_items,
    restore_stock_for_items,
    update_product,
)

bp = Blueprint("inventory", __name__)


@bp.get("/products")
async def products_list():
    items = await get_products()
    return jsonify({"products": items})


@bp.get("/products/<int:product_id>")
async def product_detail(product_id: int):
    prod = await get_product(product_id)
    return jsonify({"product": prod})


@bp.post("/inventory/reduce-stock")
@require_auth
async def reduce_stock():
    body = await parse_body(StockBatchRequest)
    outcome = await reduce_stock_for_items(body.items)
    result = {"success": True, "message": "Stock reduced successfully", "results": outcome["results"]}
    if outcome["errors"]:
        result["errors"] = outcome["errors"]
    return jsonify(result)


@bp.post("/inventory/restore-stock")
@require_auth
async def restore_stock():
    body = await parse_body(StockBatchRequest)
    outcome = await restore_stock_for_items(body.items)
    result = {"success": True, "message": "Stock restored successfully", "results": outcome["results"]}
    if outcome["errors"]:
        result["errors"] = outcome["errors"]
    if outcome["skipped"]:
        result["skipped"] = outcome["skipped"]
    return jsonify(result)


@bp.post("/admin/products")
@require_admin
async def admin_product_create():
    body = await parse_body(ProductCreate)
    prod = await create_product(body)
    return jsonify({"product": prod}), 201


@bp.put("/admin/products/<int:product_id>")
@require_admin
async def admin_product_update(product_id: int):
    body = await parse_body(ProductUpdate)
    prod = await update_product(product_id, body)
    return jsonify({"product": prod})


@bp.delete("/admin/products/<int:product_id>")
@require_admin
async def admin_product_delete(product_id: int):
    await delete_product(product_id)
    return jsonify({"ok": True, "deletedId": product_id})
