# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

# backend/stockflow/routes/inventory.py
"""
Stock ledger, transfers and stock index read APIs.

DATETIME POLICY:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Responses serialize datetimes as ISO-8601 with trailing Z.
"""

from flask import Blueprint, jsonify, request, g

from ..decorators import require_auth, require_permission
from ..services import costing_service, stock_index_service, stock_ledger_service, transfer_service
from .helpers import arg_bool, arg_datetime, arg_int, json_body, paged


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_auth
@require_permission("inventory.write")
def create_movement():
    """
    Append one ledger entry.

    Request body:
    {
        "product_id": int,
        "type": "in" | "out" | "transfer" | "adjustment",
        "reason": str,
        "quantity": int >= 1,
        "location_from_id": int (out/transfer/negative adjustment),
        "location_to_id": int (in/transfer/positive adjustment),
        "notes": str (optional, <= 200 chars)
    }
    """
    data = json_body()
    try:
        product_id = data["product_id"]
        movement_type = data["type"]
        reason = data["reason"]
        quantity = data["quantity"]
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "validation_error"}), 400

    movement = stock_ledger_service.append_movement(
        product_id=product_id,
        movement_type=movement_type,
        reason=reason,
        quantity=quantity,
        location_from_id=data.get("location_from_id"),
        location_to_id=data.get("location_to_id"),
        operator_id=g.current_user.id,
        notes=data.get("notes"),
    )

    return jsonify(movement.to_dict()), 201


@inventory_bp.get("/movements")
@require_auth
@require_permission("inventory.read")
def list_movements():
    """
    Query params: product_id, location_id, type, reason, from_date, to_date,
    operator_id, source_type, source_id, before_sequence, include_hidden,
    limit, offset.
    """
    query = stock_ledger_service.list_movements(
        product_id=arg_int("product_id"),
        location_id=arg_int("location_id"),
        movement_type=request.args.get("type"),
        reason=request.args.get("reason"),
        from_date=arg_datetime("from_date"),
        to_date=arg_datetime("to_date"),
        operator_id=arg_int("operator_id"),
        source_type=request.args.get("source_type"),
        source_id=arg_int("source_id"),
        before_sequence=arg_int("before_sequence"),
        include_hidden=bool(arg_bool("include_hidden")),
    )
    return jsonify(paged(query))


@inventory_bp.get("/movements/summary")
@require_auth
@require_permission("inventory.read")
def movements_summary():
    include_hidden = arg_bool("include_hidden")
    return jsonify(stock_ledger_service.summarize_movements(
        from_date=arg_datetime("from_date"),
        to_date=arg_datetime("to_date"),
        bucket=request.args.get("bucket", "day"),
        include_hidden=True if include_hidden is None else include_hidden,
    ))


@inventory_bp.get("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory.read")
def get_movement(movement_id: int):
    return jsonify(stock_ledger_service.get_movement(movement_id).to_dict())


@inventory_bp.delete("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory.delete")
def hide_movement(movement_id: int):
    """Hide an entry from default listings; stock totals are unaffected."""
    movement = stock_ledger_service.hide_movement(movement_id=movement_id, operator_id=g.current_user.id)
    return jsonify(movement.to_dict())


@inventory_bp.post("/transfer")
@require_auth
@require_permission("inventory.write")
def create_transfer():
    """
    Request body:
    {
        "product_id": int,
        "from_location_id": int,
        "to_location_id": int,
        "quantity": int >= 1,
        "notes": str (optional)
    }
    """
    data = json_body()
    try:
        product_id = data["product_id"]
        from_location_id = data["from_location_id"]
        to_location_id = data["to_location_id"]
        quantity = data["quantity"]
    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}", "code": "validation_error"}), 400

    transfer = transfer_service.transfer_stock(
        product_id=product_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        quantity=quantity,
        operator_id=g.current_user.id,
        notes=data.get("notes"),
    )

    return jsonify({
        "transfer": transfer.to_dict(),
        "movement": transfer.movement.to_dict(),
    }), 201


@inventory_bp.get("/products/<int:product_id>/locations")
@require_auth
@require_permission("inventory.read")
def product_locations(product_id: int):
    return jsonify(stock_index_service.product_by_location(product_id))


@inventory_bp.get("/products/<int:product_id>/valuation")
@require_auth
@require_permission("inventory.read")
def product_valuation(product_id: int):
    return jsonify(costing_service.product_valuation(product_id, method=request.args.get("method")))


@inventory_bp.get("/locations/<int:location_id>/stock")
@require_auth
@require_permission("inventory.read")
def location_stock(location_id: int):
    return jsonify(stock_index_service.location_stock(location_id, low_only=bool(arg_bool("low_only"))))
