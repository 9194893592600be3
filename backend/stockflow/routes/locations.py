# Overview: Flask API routes for locations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import catalog_service
from ..services.stock_index_service import location_utilization
from .helpers import arg_bool, json_body


locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
@require_auth
@require_permission("inventory.read")
def list_locations():
    """Each location carries its current utilization (sum of on-hand)."""
    items = catalog_service.list_locations(is_active=arg_bool("is_active"), type=request.args.get("type"))
    return jsonify({"items": items, "count": len(items)})


@locations_bp.post("")
@require_auth
@require_permission("inventory.write")
def create_location():
    location = catalog_service.create_location(payload=json_body(), operator_id=g.current_user.id)
    return jsonify(location.to_dict(utilization=0)), 201


@locations_bp.get("/<int:location_id>")
@require_auth
@require_permission("inventory.read")
def get_location(location_id: int):
    location = catalog_service.get_location(location_id)
    return jsonify(location.to_dict(utilization=location_utilization(location.id)))


@locations_bp.put("/<int:location_id>")
@require_auth
@require_permission("inventory.write")
def update_location(location_id: int):
    location = catalog_service.update_location(
        location_id=location_id,
        payload=json_body(),
        operator_id=g.current_user.id,
    )
    return jsonify(location.to_dict(utilization=location_utilization(location.id)))


@locations_bp.delete("/<int:location_id>")
@require_auth
@require_permission("inventory.delete")
def delete_location(location_id: int):
    catalog_service.delete_location(location_id=location_id, operator_id=g.current_user.id)
    return "", 204
