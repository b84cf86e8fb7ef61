# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/bakery/routes/sales.py
"""
Sales API routes with permission enforcement.

- POST /process creates a sale with its items in one step (completed by
  default, or pending with "status": "pending")
- POST / creates an empty pending sale; POST /<id>/complete posts it
- PUT and DELETE only work on pending sales
- PUT /<id>/cancel restores stock for completed sales
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import get_services


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _page_limits() -> dict:
    return {
        "default_limit": current_app.config["DEFAULT_PAGE_SIZE"],
        "max_limit": current_app.config["MAX_PAGE_SIZE"],
    }


@sales_bp.post("/process")
@require_auth
@require_permission("sales", "create")
def process_sale_route():
    """
    Process a sale: validate stock, store header and lines, decrement stock.

    Body: {payment_method, items: [{product_id, quantity, unit_price}],
           customer_name?, customer_phone?, notes?, tax?, subtotal?, total?,
           invoice_number?, status?}
    """
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    header = {k: v for k, v in data.items() if k != "items"}

    sale = get_services().sales.process_sale(header, items, actor_id=g.current_user.id)
    return jsonify({
        "sale": sale.to_dict(include_lines=True),
        "message": "Sale processed successfully",
    }), 201


@sales_bp.post("")
@require_auth
@require_permission("sales", "create")
def create_sale_route():
    """Create an empty pending sale header."""
    data = request.get_json(silent=True) or {}
    sale = get_services().sales.create_sale(data, actor_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(), "message": "Sale created"}), 201


@sales_bp.get("")
@require_auth
@require_permission("sales", "read")
def list_sales_route():
    args = request.args
    result = get_services().sales.list_sales(
        search=args.get("search"),
        status=args.get("status"),
        employee_id=args.get("employee"),
        payment_method=args.get("payment_method"),
        date_from=args.get("date_from"),
        date_to=args.get("date_to"),
        sort=args.get("sort"),
        order=args.get("order"),
        page=args.get("page"),
        limit=args.get("limit"),
        **_page_limits(),
    )
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales", "read")
def get_sale_route(sale_id: int):
    sale = get_services().sales.get_sale(sale_id)
    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200


@sales_bp.get("/<int:sale_id>/receipt")
@require_auth
@require_permission("sales", "read")
def receipt_route(sale_id: int):
    return jsonify(get_services().sales.get_receipt(sale_id)), 200


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_permission("sales", "update")
def update_sale_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    sale = get_services().sales.update_sale(sale_id, data)
    return jsonify({"sale": sale.to_dict(include_lines=True), "message": "Sale updated"}), 200


@sales_bp.post("/<int:sale_id>/complete")
@require_auth
@require_permission("sales", "create")
def complete_sale_route(sale_id: int):
    sale = get_services().sales.complete_sale(sale_id, actor_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(include_lines=True), "message": "Sale completed"}), 200


@sales_bp.put("/<int:sale_id>/cancel")
@require_auth
@require_permission("sales", "update")
def cancel_sale_route(sale_id: int):
    """Cancel a sale; completed sales get their stock back."""
    sale = get_services().sales.cancel_sale(sale_id, actor_id=g.current_user.id)
    return jsonify({"sale": sale.to_dict(include_lines=True), "message": "Sale cancelled"}), 200


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("sales", "delete")
def delete_sale_route(sale_id: int):
    get_services().sales.delete_sale(sale_id)
    return jsonify({"message": "Sale deleted", "sale_id": sale_id}), 200
