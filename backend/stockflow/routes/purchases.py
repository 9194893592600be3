# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

# backend/stockflow/routes/purchases.py
"""
Purchase order API.

Lifecycle: draft -> pending -> approved -> ordered -> partially_received -> received
(cancel from any state before the first receipt). Only receiving touches stock.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import purchase_service
from ..services.stock_ledger_service import movements_for_source
from .helpers import arg_datetime, arg_int, json_body, paged


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")

CREATE_FIELDS = (
    "shipping_cost", "payment_terms", "payment_method", "order_date",
    "expected_date", "receiving_location_id", "notes",
)


def _missing(e: KeyError):
    return jsonify({"error": f"Missing required field: {e}", "code": "validation_error"}), 400


@purchases_bp.get("")
@require_auth
@require_permission("purchases.read")
def list_purchases():
    query = purchase_service.list_purchases(
        status=request.args.get("status"),
        supplier_id=arg_int("supplier_id"),
        payment_status=request.args.get("payment_status"),
        from_date=arg_datetime("from_date"),
        to_date=arg_datetime("to_date"),
    )
    return jsonify(paged(query))


@purchases_bp.post("")
@require_auth
@require_permission("purchases.write")
def create_purchase():
    """
    Request body:
    {
        "supplier_id": int,
        "items": [{"product_id": int, "ordered_qty": int, "unit_price"?: number,
                   "discount"?: number, "tax"?: number}],
        "shipping_cost"?, "payment_terms"?, "payment_method"?, "order_date"?,
        "expected_date"?, "receiving_location_id"?, "notes"?
    }
    """
    data = json_body()
    try:
        supplier_id = data["supplier_id"]
        items = data["items"]
    except KeyError as e:
        return _missing(e)

    purchase = purchase_service.create_purchase(
        supplier_id=supplier_id,
        items=items,
        operator_id=g.current_user.id,
        **{k: data[k] for k in CREATE_FIELDS if k in data},
    )
    return jsonify(purchase.to_dict()), 201


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_permission("purchases.read")
def get_purchase(purchase_id: int):
    purchase = purchase_service.get_purchase(purchase_id)
    data = purchase.to_dict()
    data["movements"] = [m.to_dict() for m in movements_for_source("purchase", purchase.id)]
    return jsonify(data)


@purchases_bp.put("/<int:purchase_id>")
@require_auth
@require_permission("purchases.write")
def update_purchase(purchase_id: int):
    purchase = purchase_service.update_purchase(
        purchase_id=purchase_id,
        changes=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(purchase.to_dict())


@purchases_bp.patch("/<int:purchase_id>/status")
@require_auth
@require_permission("purchases.write")
def change_status(purchase_id: int):
    data = json_body()
    try:
        status = data["status"]
    except KeyError as e:
        return _missing(e)

    purchase = purchase_service.change_purchase_status(
        purchase_id=purchase_id,
        status=status,
        operator_id=g.current_user.id,
    )
    return jsonify(purchase.to_dict())


@purchases_bp.patch("/<int:purchase_id>/receive")
@require_auth
@require_permission("purchases.write")
def receive(purchase_id: int):
    """Body: {"items": [{"item_id": int, "quantity": int}]}"""
    data = json_body()
    try:
        items = data["items"]
    except KeyError as e:
        return _missing(e)

    purchase = purchase_service.receive_purchase(
        purchase_id=purchase_id,
        items=items,
        operator_id=g.current_user.id,
    )
    return jsonify(purchase.to_dict())


@purchases_bp.patch("/<int:purchase_id>/payment")
@require_auth
@require_permission("purchases.write")
def update_payment(purchase_id: int):
    data = json_body()
    try:
        payment_status = data["payment_status"]
    except KeyError as e:
        return _missing(e)

    purchase = purchase_service.update_purchase_payment(
        purchase_id=purchase_id,
        payment_status=payment_status,
        payment_method=data.get("payment_method"),
        amount_paid=data.get("amount_paid"),
        operator_id=g.current_user.id,
    )
    return jsonify(purchase.to_dict())


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
@require_permission("purchases.delete")
def delete_purchase(purchase_id: int):
    purchase_service.delete_purchase(purchase_id=purchase_id, operator_id=g.current_user.id)
    return "", 204
