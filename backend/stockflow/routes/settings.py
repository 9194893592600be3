# Overview: Flask API routes for business settings; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g

from ..decorators import require_auth, require_permission
from ..services import settings_service
from .helpers import json_body


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
@require_permission("settings.read")
def get_settings():
    return jsonify({
        "settings": settings_service.get_all_settings(),
        "catalog": {
            key: {"type": d.value_type, "default": d.default, "description": d.description}
            for key, d in sorted(settings_service.SETTINGS_CATALOG.items())
        },
    })


@settings_bp.put("")
@require_auth
@require_permission("settings.write")
def update_settings():
    """Body: {"<setting key>": value, ...}; all keys are validated before any is stored."""
    settings = settings_service.update_settings(values=json_body(), actor_user_id=g.current_user.id)
    return jsonify({"settings": settings})
