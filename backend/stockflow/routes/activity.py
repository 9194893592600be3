# Overview: Flask API routes for the activity log (read-only).

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_permission
from ..services import audit_service
from .helpers import arg_datetime, arg_int


activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity-logs")


@activity_bp.get("")
@require_auth
@require_permission("reports.read")
def list_activity():
    """
    Query params: user_id, action, resource, resource_id, from_date, to_date,
    limit (default 50, max 500), offset.
    """
    limit = arg_int("limit") or 50
    offset = arg_int("offset") or 0
    rows, total = audit_service.list_activity(
        user_id=arg_int("user_id"),
        action=request.args.get("action"),
        resource=request.args.get("resource"),
        resource_id=request.args.get("resource_id"),
        from_date=arg_datetime("from_date"),
        to_date=arg_datetime("to_date"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [r.to_dict() for r in rows], "count": total, "limit": limit, "offset": offset})
