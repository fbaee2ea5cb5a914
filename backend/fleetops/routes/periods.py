# Overview: Flask API routes for accounting periods (read-only); returns JSON responses.

"""
Accounting Period API Routes

Read-only. Periods are created and closed through the CLI
(flask periods create / flask periods close).

- GET /api/periods                         all periods, oldest first
- GET /api/periods/locked?date=YYYY-MM-DD  is this date frozen?
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import AccountingPeriod
from ..services import period_service
from ..decorators import require_auth, require_permission
from fleetops.time_utils import parse_iso_date


periods_bp = Blueprint("periods", __name__, url_prefix="/api/periods")


@periods_bp.get("")
@require_auth
@require_permission("VIEW_TRIPS")
def list_periods_route():
    periods = db.session.query(AccountingPeriod).order_by(AccountingPeriod.start_date.asc()).all()
    return jsonify({"periods": [p.to_dict() for p in periods]}), 200


@periods_bp.get("/locked")
@require_auth
@require_permission("VIEW_TRIPS")
def date_locked_route():
    """
    Response:
        {"date": "2026-01-15", "locked": true, "period": {...}}
    """
    try:
        value = parse_iso_date(request.args.get("date"))
    except ValueError:
        return jsonify({"error": "Invalid date; expected YYYY-MM-DD"}), 400
    if value is None:
        return jsonify({"error": "date is required"}), 400

    try:
        period = period_service.find_locking_period(value)
        return jsonify({
            "date": value.isoformat(),
            "locked": period is not None,
            "period": period.to_dict() if period else None,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to check period lock")
        return jsonify({"error": "Internal server error"}), 500
