# Overview: Flask API routes for customers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import credit_service, customer_service
from .helpers import arg_bool, json_body, paged


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_permission("sales.read")
def list_customers():
    query = customer_service.list_customers(
        search=request.args.get("search"),
        customer_group=request.args.get("customer_group"),
        is_active=arg_bool("is_active"),
        with_balance=bool(arg_bool("with_balance")),
    )
    return jsonify(paged(query))


@customers_bp.post("")
@require_auth
@require_permission("sales.write")
def create_customer():
    customer = customer_service.create_customer(payload=json_body(), operator_id=g.current_user.id)
    return jsonify(customer.to_dict()), 201


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_permission("sales.read")
def get_customer(customer_id: int):
    return jsonify(customer_service.get_customer(customer_id).to_dict())


@customers_bp.get("/<int:customer_id>/credit")
@require_auth
@require_permission("sales.read")
def customer_credit(customer_id: int):
    return jsonify(credit_service.customer_credit(customer_id))


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_permission("sales.write")
def update_customer(customer_id: int):
    customer = customer_service.update_customer(
        customer_id=customer_id,
        payload=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(customer.to_dict())


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_permission("sales.delete")
def delete_customer(customer_id: int):
    customer_service.delete_customer(customer_id=customer_id, operator_id=g.current_user.id)
    return "", 204
