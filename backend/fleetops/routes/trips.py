# Overview: Flask API routes for trips; parses input and returns JSON responses.

"""
Trip Lifecycle API Routes

- POST  /api/trips                                  create a draft trip
- GET   /api/trips                                  list trips (optional ?status=)
- GET   /api/trips/:id                              trip + allowed next transitions
- PATCH /api/trips/:id                              guarded field update
- POST  /api/trips/:id/transitions                  request a status change
- GET   /api/trips/:id/transitions/:status/check    pre-flight reasons, no writes
- GET   /api/trips/:id/audit                        audit trail, newest first
- GET   /api/trips/:id/financials                   derived revenue / expense / margin
- GET   /api/trips/financials/summary               official vs pending buckets

SECURITY:
- Every route requires authentication
- The permission for a transition depends on the requested target status
  (MANAGE_TRIP_WORKFLOW, CLOSE_TRIPS, CANCEL_TRIPS)
- Acting user IDs come from the session (g.current_user), never the body
"""

from decimal import Decimal, InvalidOperation

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Trip
from ..services import audit_service, financial_service, trip_lifecycle_service
from ..services.context import TransitionContext
from ..services.outcomes import NotFoundError
from ..services.trip_lifecycle_service import LifecycleError
from ..validation import ConflictError, ValidationError
from ..decorators import check_permission, require_auth, require_permission
from fleetops.time_utils import parse_iso_date, parse_iso_datetime
from .responses import current_settings, outcome_response


trips_bp = Blueprint("trips", __name__, url_prefix="/api/trips")


def _context(**kwargs) -> TransitionContext:
    return TransitionContext(user_id=g.current_user.id, settings=current_settings(), **kwargs)


# =============================================================================
# DATA ENTRY
# =============================================================================

@trips_bp.post("")
@require_auth
@require_permission("EDIT_TRIPS")
def create_trip_route():
    """
    Create a DRAFT trip.

    Request body: trip_code and departure_date required; vehicle_id,
    driver_id, route_id, customer_id, cargo_description, freight_revenue,
    additional_charges, planned_arrival_date, notes optional.

    Returns:
        201: Trip created
        400: Invalid input
        409: trip_code already exists
        423: departure_date in a closed accounting period
    """
    try:
        outcome = trip_lifecycle_service.create_trip(request.get_json(silent=True), _context())
        return outcome_response(outcome, "trip", success_status=201)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create trip")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.get("")
@require_auth
@require_permission("VIEW_TRIPS")
def list_trips_route():
    """List trips, newest departure first. Optional ?status=<status>&limit=<n>."""
    status = request.args.get("status")
    limit = request.args.get("limit", 100, type=int)

    try:
        q = db.session.query(Trip)
        if status:
            trip_lifecycle_service.validate_status(status)
            q = q.filter(Trip.status == status)
        trips = q.order_by(Trip.departure_date.desc(), Trip.id.desc()).limit(limit).all()
        return jsonify({"trips": [t.to_dict() for t in trips], "count": len(trips)}), 200
    except LifecycleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list trips")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.get("/<int:trip_id>")
@require_auth
@require_permission("VIEW_TRIPS")
def get_trip_route(trip_id: int):
    """
    Trip detail plus the reasons each reachable transition is currently
    blocked (empty list = allowed). Lets clients render disabled actions.
    """
    try:
        trip = trip_lifecycle_service.get_trip(trip_id)
        options = trip_lifecycle_service.transition_options(trip_id, _context())
        return jsonify({"trip": trip.to_dict(), "transitions": options}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load trip")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.patch("/<int:trip_id>")
@require_auth
@require_permission("EDIT_TRIPS")
def update_trip_route(trip_id: int):
    """
    Guarded field update.

    Returns:
        200: Updated
        400: Invalid input, or trip closed (audited as UPDATE_ATTEMPT_CLOSED)
        404: Trip not found
        409: trip_code already exists
        423: Period lock (audited as UPDATE_ATTEMPT)
    """
    try:
        outcome = trip_lifecycle_service.update_trip_fields(
            trip_id, request.get_json(silent=True), _context()
        )
        return outcome_response(outcome, "trip")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update trip")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================

@trips_bp.post("/<int:trip_id>/transitions")
@require_auth
def transition_trip_route(trip_id: int):
    """
    Request a status change.

    Request body:
    {
        "status": "completed",
        "arrival_time": "2026-01-03T18:00:00Z",   (complete only)
        "distance_km": "412.5"                     (complete only)
    }

    Returns:
        200: Transition applied
        400: Guard failures (every reason listed) or bad input
        403: Missing the permission for this target status
        404: Trip not found
        423: Trip departure date in a closed accounting period
    """
    data = request.get_json(silent=True) or {}
    target = data.get("status")
    if not target:
        return jsonify({"error": "status is required"}), 400

    try:
        permission_code = trip_lifecycle_service.required_permission(target)
    except LifecycleError as e:
        return jsonify({"error": str(e)}), 400

    denied = check_permission(permission_code)
    if denied is not None:
        return denied

    try:
        arrival_time = parse_iso_datetime(data.get("arrival_time"))
        distance = data.get("distance_km")
        distance_km = Decimal(str(distance)) if distance is not None else None
    except (ValueError, InvalidOperation):
        return jsonify({"error": "Invalid arrival_time or distance_km"}), 400
    if distance_km is not None and not distance_km.is_finite():
        return jsonify({"error": "Invalid arrival_time or distance_km"}), 400

    try:
        outcome = trip_lifecycle_service.request_transition(
            trip_id,
            target,
            _context(arrival_time=arrival_time, distance_km=distance_km),
        )
        return outcome_response(outcome, "trip")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to transition trip")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.get("/<int:trip_id>/transitions/<status>/check")
@require_auth
@require_permission("VIEW_TRIPS")
def check_transition_route(trip_id: int, status: str):
    """Pre-flight: {"allowed": bool, "reasons": [...]}. Never writes."""
    try:
        reasons = trip_lifecycle_service.validate_transition(trip_id, status, _context())
        return jsonify({"allowed": not reasons, "reasons": reasons}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except LifecycleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to check transition")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# AUDIT & FINANCIALS
# =============================================================================

@trips_bp.get("/<int:trip_id>/audit")
@require_auth
@require_permission("VIEW_TRIP_AUDIT")
def trip_audit_route(trip_id: int):
    limit = request.args.get("limit", type=int)
    try:
        trip_lifecycle_service.get_trip(trip_id)
        entries = audit_service.get_audit_trail(trip_id, limit=limit)
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load trip audit trail")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.get("/<int:trip_id>/financials")
@require_auth
@require_permission("VIEW_FINANCIALS")
def trip_financials_route(trip_id: int):
    try:
        financials = financial_service.aggregate_trip(trip_id)
        return jsonify({"financials": financials.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to aggregate trip financials")
        return jsonify({"error": "Internal server error"}), 500


@trips_bp.get("/financials/summary")
@require_auth
@require_permission("VIEW_FINANCIALS")
def financial_summary_route():
    """?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD (both required)."""
    try:
        start_date = parse_iso_date(request.args.get("start_date"))
        end_date = parse_iso_date(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "Invalid date; expected YYYY-MM-DD"}), 400
    if start_date is None or end_date is None:
        return jsonify({"error": "start_date and end_date are required"}), 400

    try:
        return jsonify(financial_service.summarize_period(start_date, end_date)), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to summarize trip financials")
        return jsonify({"error": "Internal server error"}), 500
