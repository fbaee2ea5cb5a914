# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/login      username (or email) + password -> bearer token
- POST /api/auth/logout     revoke the presented token
- GET  /api/auth/me         current user, roles and permissions

Accounts are created by administrators via the CLI (flask users create).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, permission_service, session_service
from ..decorators import bearer_token, require_auth
from fleetops.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    The token must be sent as `Authorization: Bearer <token>` on protected
    routes. Failed attempts are written to security_events.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(username, password)
        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                reason=f"Invalid credentials for '{username}'",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )
        permission_service.log_security_event(
            user_id=user.id,
            event_type="LOGIN",
            success=True,
            resource=request.path,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return jsonify({
            "user": user.to_dict(),
            "roles": permission_service.get_user_role_names(user.id),
            "permissions": sorted(permission_service.get_user_permissions(user.id)),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """Revoke the bearer token. WHY: explicit logout prevents token reuse."""
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authorization header required"}), 401

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "roles": permission_service.get_user_role_names(user.id),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    }), 200
