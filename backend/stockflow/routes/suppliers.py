# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import catalog_service
from .helpers import arg_bool, json_body, paged


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@require_auth
@require_permission("purchases.read")
def list_suppliers():
    query = catalog_service.list_suppliers(search=request.args.get("search"), is_active=arg_bool("is_active"))
    return jsonify(paged(query))


@suppliers_bp.post("")
@require_auth
@require_permission("purchases.write")
def create_supplier():
    supplier = catalog_service.create_supplier(payload=json_body(), operator_id=g.current_user.id)
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>")
@require_auth
@require_permission("purchases.read")
def get_supplier(supplier_id: int):
    return jsonify(catalog_service.get_supplier(supplier_id).to_dict())


@suppliers_bp.put("/<int:supplier_id>")
@require_auth
@require_permission("purchases.write")
def update_supplier(supplier_id: int):
    supplier = catalog_service.update_supplier(
        supplier_id=supplier_id,
        payload=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(supplier.to_dict())


@suppliers_bp.delete("/<int:supplier_id>")
@require_auth
@require_permission("purchases.delete")
def delete_supplier(supplier_id: int):
    catalog_service.delete_supplier(supplier_id=supplier_id, operator_id=g.current_user.id)
    return "", 204
