# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

# backend/stockflow/routes/sales.py
"""
Sales order API.

Confirming a sale is the step that takes stock out and charges the
customer's balance; cancel/return put both back.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import credit_service, sales_service
from ..services.stock_ledger_service import movements_for_source
from .helpers import arg_datetime, arg_int, json_body, paged


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

CREATE_FIELDS = (
    "shipping_cost", "payment_method", "sale_date", "shipping_location_id",
    "sales_person_id", "credit_override", "notes",
)


def _missing(e: KeyError):
    return jsonify({"error": f"Missing required field: {e}", "code": "validation_error"}), 400


@sales_bp.get("")
@require_auth
@require_permission("sales.read")
def list_sales():
    query = sales_service.list_sales(
        status=request.args.get("status"),
        customer_id=arg_int("customer_id"),
        payment_status=request.args.get("payment_status"),
        from_date=arg_datetime("from_date"),
        to_date=arg_datetime("to_date"),
    )
    return jsonify(paged(query))


@sales_bp.post("")
@require_auth
@require_permission("sales.write")
def create_sale():
    """
    Request body:
    {
        "customer_id": int,
        "items": [{"product_id": int, "quantity": int, "unit_price"?: number,
                   "discount"?: number, "tax"?: number}],
        "shipping_cost"?, "payment_method"?, "sale_date"?, "shipping_location_id"?,
        "sales_person_id"?, "credit_override"?, "notes"?
    }
    """
    data = json_body()
    try:
        customer_id = data["customer_id"]
        items = data["items"]
    except KeyError as e:
        return _missing(e)

    sale = sales_service.create_sale(
        customer_id=customer_id,
        items=items,
        operator_id=g.current_user.id,
        **{k: data[k] for k in CREATE_FIELDS if k in data},
    )
    return jsonify(sale.to_dict()), 201


@sales_bp.get("/check-overdue")
@require_auth
@require_permission("sales.write")
def check_overdue():
    """
    Run the overdue sweep.

    Query params: after_id (resume cursor), batch_size, max_batches.
    """
    result = credit_service.run_overdue_sweep(
        after_id=arg_int("after_id") or 0,
        batch_size=arg_int("batch_size"),
        max_batches=arg_int("max_batches"),
        operator_id=g.current_user.id,
    )
    return jsonify(result)


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales.read")
def get_sale(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    data = sale.to_dict()
    data["movements"] = [m.to_dict() for m in movements_for_source("sale", sale.id)]
    return jsonify(data)


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_permission("sales.write")
def update_sale(sale_id: int):
    sale = sales_service.update_sale(sale_id=sale_id, changes=json_body(), operator_id=g.current_user.id)
    return jsonify(sale.to_dict())


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
@require_permission("sales.write")
def change_status(sale_id: int):
    """Body: {"status": str, "override_credit_limit"?: bool}"""
    data = json_body()
    try:
        status = data["status"]
    except KeyError as e:
        return _missing(e)

    sale = sales_service.change_sale_status(
        sale_id=sale_id,
        status=status,
        operator_id=g.current_user.id,
        override_credit_limit=data.get("override_credit_limit", False),
    )
    return jsonify(sale.to_dict())


@sales_bp.patch("/<int:sale_id>/payment")
@require_auth
@require_permission("sales.write")
def update_payment(sale_id: int):
    data = json_body()
    try:
        payment_status = data["payment_status"]
    except KeyError as e:
        return _missing(e)

    sale = sales_service.update_sale_payment(
        sale_id=sale_id,
        payment_status=payment_status,
        payment_method=data.get("payment_method"),
        amount_paid=data.get("amount_paid"),
        operator_id=g.current_user.id,
    )
    return jsonify(sale.to_dict())


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("sales.delete")
def delete_sale(sale_id: int):
    sales_service.delete_sale(sale_id=sale_id, operator_id=g.current_user.id)
    return "", 204
