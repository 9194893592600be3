# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/stockflow/routes/auth.py
"""
Authentication API routes

- POST /api/auth/login   -> bearer token
- POST /api/auth/logout  -> revoke the current token
- GET  /api/auth/me      -> current user and effective permissions
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..services import audit_service, auth_service, session_service, permission_service
from ..time_utils import to_utc_z
from ..decorators import require_auth
from .helpers import json_body


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """Authenticate user and create session token."""
    data = json_body()
    username = data.get("username") or data.get("email")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username/email and password required", "code": "validation_error"}), 400

    user = auth_service.authenticate(username, password)
    if not user:
        db.session.rollback()
        return jsonify({"error": "Invalid credentials"}), 401

    audit_service.record_activity(
        actor_user_id=user.id,
        action="login",
        resource="user",
        resource_id=user.id,
        description=f"User {user.username} logged in",
    )
    db.session.commit()

    session, token = session_service.create_session(
        user.id,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )

    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
        "token": token,
        "expires_at": to_utc_z(session.expires_at),
    })


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    audit_service.record_activity(
        actor_user_id=g.current_user.id,
        action="logout",
        resource="user",
        resource_id=g.current_user.id,
        description=f"User {g.current_user.username} logged out",
    )
    db.session.commit()
    return jsonify({"message": "Logged out"})


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
    })
