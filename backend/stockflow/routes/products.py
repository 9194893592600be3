# Overview: Flask API routes for products and categories; parses input and returns JSON responses.

# backend/stockflow/routes/products.py
"""
Product and category maintenance.

current_stock is read-only here: it moves only through ledger entries
(/api/inventory/movements, purchases, sales, transfers).
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import catalog_service
from .helpers import arg_bool, arg_int, json_body, paged


products_bp = Blueprint("products", __name__, url_prefix="/api")


@products_bp.get("/products")
@require_auth
@require_permission("products.read")
def list_products():
    """
    Query params: search, category_id, supplier_id, is_active, low_stock, limit, offset.
    """
    query = catalog_service.list_products(
        search=request.args.get("search"),
        category_id=arg_int("category_id"),
        supplier_id=arg_int("supplier_id"),
        is_active=arg_bool("is_active"),
        low_stock=bool(arg_bool("low_stock")),
    )
    return jsonify(paged(query))


@products_bp.get("/products/alerts/low-stock")
@require_auth
@require_permission("products.read")
def low_stock_alerts():
    return jsonify(catalog_service.stock_alerts("low_stock"))


@products_bp.get("/products/alerts/out-of-stock")
@require_auth
@require_permission("products.read")
def out_of_stock_alerts():
    return jsonify(catalog_service.stock_alerts("out_of_stock"))


@products_bp.post("/products")
@require_auth
@require_permission("products.write")
def create_product():
    product = catalog_service.create_product(payload=json_body(), operator_id=g.current_user.id)
    return jsonify(product.to_dict()), 201


@products_bp.get("/products/<int:product_id>")
@require_auth
@require_permission("products.read")
def get_product(product_id: int):
    return jsonify(catalog_service.get_product(product_id).to_dict())


@products_bp.put("/products/<int:product_id>")
@require_auth
@require_permission("products.write")
def update_product(product_id: int):
    product = catalog_service.update_product(
        product_id=product_id,
        payload=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(product.to_dict())


@products_bp.delete("/products/<int:product_id>")
@require_auth
@require_permission("products.delete")
def delete_product(product_id: int):
    catalog_service.delete_product(product_id=product_id, operator_id=g.current_user.id)
    return "", 204


# -- CATEGORIES --

@products_bp.get("/categories")
@require_auth
@require_permission("products.read")
def list_categories():
    categories = catalog_service.list_categories(is_active=arg_bool("is_active")).all()
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)})


@products_bp.post("/categories")
@require_auth
@require_permission("products.write")
def create_category():
    category = catalog_service.create_category(payload=json_body(), operator_id=g.current_user.id)
    return jsonify(category.to_dict()), 201


@products_bp.put("/categories/<int:category_id>")
@require_auth
@require_permission("products.write")
def update_category(category_id: int):
    category = catalog_service.update_category(
        category_id=category_id,
        payload=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(category.to_dict())


@products_bp.delete("/categories/<int:category_id>")
@require_auth
@require_permission("products.delete")
def delete_category(category_id: int):
    catalog_service.delete_category(category_id=category_id, operator_id=g.current_user.id)
    return "", 204
