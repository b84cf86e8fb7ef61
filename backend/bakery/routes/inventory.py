# backend/bakery/routes/inventory.py
"""
Inventory management routes.

SECURITY: All routes require authentication.
- View operations require inventory:read
- Movements and adjustments require inventory:update
- Deleting an adjustment requires inventory:delete

Time semantics:
- date_from / date_to accept ISO-8601 dates; filtering is by calendar day, inclusive.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import get_services


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

_TRUTHY = {"1", "true", "yes", "on"}


def _page_limits() -> dict:
    return {
        "default_limit": current_app.config["DEFAULT_PAGE_SIZE"],
        "max_limit": current_app.config["MAX_PAGE_SIZE"],
    }


@inventory_bp.get("")
@require_auth
@require_permission("inventory", "read")
def inventory_status_route():
    """Stock levels of active products with statistics."""
    args = request.args
    result = get_services().ledger.inventory_status(
        search=args.get("search"),
        category_id=args.get("category"),
        low_stock_only=str(args.get("low_stock", "")).lower() in _TRUTHY,
        sort=args.get("sort"),
        order=args.get("order"),
        page=args.get("page"),
        limit=args.get("limit"),
        **_page_limits(),
    )
    return jsonify(result), 200


@inventory_bp.get("/<int:product_id>/stock")
@require_auth
@require_permission("inventory", "read")
def current_stock_route(product_id: int):
    stock = get_services().ledger.current_stock(product_id)
    return jsonify({"product_id": product_id, "current_stock": stock}), 200


@inventory_bp.get("/movements")
@require_auth
@require_permission("inventory", "read")
def list_movements_route():
    args = request.args
    result = get_services().ledger.list_movements(
        product_id=args.get("product_id"),
        movement_type=args.get("type"),
        date_from=args.get("date_from"),
        date_to=args.get("date_to"),
        sort=args.get("sort"),
        order=args.get("order"),
        page=args.get("page"),
        limit=args.get("limit"),
        **_page_limits(),
    )
    return jsonify(result), 200


@inventory_bp.get("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory", "read")
def get_movement_route(movement_id: int):
    movement = get_services().ledger.get_movement(movement_id)
    return jsonify({"movement": movement.to_dict()}), 200


@inventory_bp.get("/low-stock")
@require_auth
@require_permission("inventory", "read")
def low_stock_route():
    return jsonify(get_services().ledger.list_low_stock()), 200


@inventory_bp.get("/alerts")
@require_auth
@require_permission("inventory", "read")
def stock_alerts_route():
    return jsonify(get_services().ledger.stock_alerts()), 200


@inventory_bp.post("/movement")
@require_auth
@require_permission("inventory", "update")
def record_movement_route():
    """
    Record an entry, exit, production or waste movement.

    Body: {product_id, type, quantity, reason?, reference_id?}
    """
    data = request.get_json(silent=True) or {}
    movement = get_services().ledger.record_movement(
        data.get("product_id"),
        data.get("type"),
        data.get("quantity"),
        data.get("reason"),
        reference_id=data.get("reference_id"),
        actor_id=g.current_user.id,
    )
    return jsonify({"movement": movement.to_dict(), "message": "Movement recorded"}), 201


@inventory_bp.post("/adjust")
@require_auth
@require_permission("inventory", "update")
def adjust_stock_route():
    """Set a product's stock to an absolute level. Body: {product_id, new_stock, reason?}"""
    data = request.get_json(silent=True) or {}
    result = get_services().ledger.set_stock(
        data.get("product_id"),
        data.get("new_stock"),
        data.get("reason"),
        actor_id=g.current_user.id,
    )
    return jsonify({"adjustment": result, "message": "Stock adjusted"}), 200


@inventory_bp.post("/bulk-adjust")
@require_auth
@require_permission("inventory", "update")
def bulk_adjust_route():
    """Body: {adjustments: [{product_id, new_stock, reason?}, ...]}"""
    data = request.get_json(silent=True) or {}
    result = get_services().ledger.bulk_adjust(data.get("adjustments"), actor_id=g.current_user.id)
    return jsonify(result), 200


@inventory_bp.put("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory", "update")
def update_movement_route(movement_id: int):
    """Only the reason of an adjustment row can be edited."""
    data = request.get_json(silent=True) or {}
    movement = get_services().ledger.update_movement_reason(movement_id, data.get("reason"))
    return jsonify({"movement": movement.to_dict(), "message": "Movement updated"}), 200


@inventory_bp.delete("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory", "delete")
def delete_adjustment_route(movement_id: int):
    """Delete an adjustment row and reverse its effect on stock."""
    result = get_services().ledger.delete_adjustment(movement_id, actor_id=g.current_user.id)
    return jsonify({"reversal": result, "message": "Adjustment deleted"}), 200
