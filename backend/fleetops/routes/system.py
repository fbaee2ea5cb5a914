# backend/fleetops/routes/system.py
"""
System health endpoint.

Checks database connectivity and that roles/permissions have been seeded
(flask system init).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import AccountingPeriod, Permission, Role, Trip, User
from ..permissions import DEFAULT_ROLES
from fleetops.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "trips": db.session.query(Trip).count(),
            "users": db.session.query(User).count(),
            "closed_periods": db.session.query(AccountingPeriod).filter_by(is_closed=True).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error"
        }


def check_auth_health() -> dict:
    """Degraded when default roles or permissions are missing."""
    start_time = time.time()
    try:
        existing = {name for (name,) in db.session.query(Role.name).all()}
        missing_roles = [name for name, _ in DEFAULT_ROLES if name not in existing]
        permission_count = db.session.query(Permission).count()
        elapsed_ms = round((time.time() - start_time) * 1000, 2)

        if missing_roles or permission_count == 0:
            return {
                "status": "degraded",
                "latency_ms": elapsed_ms,
                "warning": f"Missing roles: {', '.join(missing_roles)}" if missing_roles else "Permissions not initialized",
                "details": {"permission_count": permission_count},
            }

        return {
            "status": "healthy",
            "latency_ms": elapsed_ms,
            "details": {"permission_count": permission_count},
        }
    except Exception:
        current_app.logger.exception("Auth health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Auth service error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "auth": check_auth_health(),
    }
    statuses = {check["status"] for check in checks.values()}

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
