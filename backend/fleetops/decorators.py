# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user and g.session_context. Returns 401 when the header
    is missing, the token is invalid or expired, or the user is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def check_permission(permission_code: str):
    """
    Inline permission check for routes whose required permission depends on
    the request body. Returns a (response, status) tuple on denial, else None.
    """
    if not _is_authenticated():
        return jsonify({"error": "Authentication required"}), 401

    try:
        permission_service.require_permission(
            user_id=g.current_user.id,
            permission_code=permission_code,
            resource=request.path,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
    except PermissionDeniedError as e:
        return jsonify({
            "error": "Permission denied",
            "required_permission": permission_code,
            "message": str(e)
        }), 403
    return None


def require_permission(permission_code: str):
    """Require a specific permission. Must be stacked under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            denied = check_permission(permission_code)
            if denied is not None:
                return denied
            return f(*args, **kwargs)

        return decorated_function
    return decorator
