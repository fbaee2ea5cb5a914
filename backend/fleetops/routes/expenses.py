# Overview: Flask API routes for expenses and allocations; parses input and returns JSON responses.

"""
Expense & Allocation API Routes

- POST   /api/expenses                       create a draft expense
- GET    /api/expenses/:id                   expense detail
- POST   /api/expenses/:id/confirm           draft -> confirmed
- POST   /api/expenses/:id/cancel            draft | confirmed -> cancelled
- POST   /api/expenses/:id/assign            set / clear the direct trip
- GET    /api/expenses/:id/allocations       allocation rows + allocated total
- POST   /api/expenses/:id/allocations       allocate a percentage to a trip
- DELETE /api/expenses/allocations/:id       remove an allocation
- GET    /api/expenses/trip/:trip_id         expenses linked to a trip

Refusals: 400 guard failure, 409 budget / exclusivity, 423 period lock.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import Expense
from ..services import expense_service
from ..services.outcomes import NotFoundError
from ..validation import (
    EXPENSE_POLICY,
    ConflictError,
    ValidationError,
    enforce_rules_expense,
    validate_payload,
)
from ..decorators import require_auth, require_permission
from .responses import current_settings, outcome_response


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("")
@require_auth
@require_permission("MANAGE_EXPENSES")
def create_expense_route():
    """
    Create a DRAFT expense.

    Request body:
    {
        "expense_code": "EXP-001",
        "description": "Fuel",
        "amount": "250.00",
        "expense_date": "2026-01-02",
        "trip_id": 7,          (optional, direct assignment)
        "notes": "..."         (optional)
    }
    """
    try:
        patch = validate_payload(
            model=Expense,
            payload=request.get_json(silent=True),
            policy=EXPENSE_POLICY,
            partial=False,
        )
        enforce_rules_expense(patch)

        outcome = expense_service.create_expense(
            **patch,
            user_id=g.current_user.id,
            settings=current_settings(),
        )
        return outcome_response(outcome, "expense", success_status=201)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("/<int:expense_id>")
@require_auth
@require_permission("VIEW_EXPENSES")
def get_expense_route(expense_id: int):
    try:
        expense = expense_service.get_expense(expense_id)
        return jsonify({"expense": expense.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@expenses_bp.get("/trip/<int:trip_id>")
@require_auth
@require_permission("VIEW_EXPENSES")
def list_trip_expenses_route(trip_id: int):
    """Expenses linked to a trip directly or via allocation. Optional ?status=."""
    status = request.args.get("status")
    if status and status not in expense_service.VALID_EXPENSE_STATUSES:
        return jsonify({"error": f"Invalid status '{status}'"}), 400

    try:
        expenses = expense_service.get_expenses_for_trip(trip_id, status=status)
        return jsonify({"expenses": [e.to_dict() for e in expenses], "count": len(expenses)}), 200
    except Exception:
        current_app.logger.exception("Failed to list trip expenses")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/confirm")
@require_auth
@require_permission("CONFIRM_EXPENSES")
def confirm_expense_route(expense_id: int):
    try:
        outcome = expense_service.confirm_expense(
            expense_id, user_id=g.current_user.id, settings=current_settings()
        )
        return outcome_response(outcome, "expense")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to confirm expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/cancel")
@require_auth
@require_permission("MANAGE_EXPENSES")
def cancel_expense_route(expense_id: int):
    try:
        outcome = expense_service.cancel_expense(
            expense_id, user_id=g.current_user.id, settings=current_settings()
        )
        return outcome_response(outcome, "expense")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to cancel expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/assign")
@require_auth
@require_permission("MANAGE_EXPENSES")
def assign_expense_route(expense_id: int):
    """Request body: {"trip_id": 7} to assign, {"trip_id": null} to clear."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "trip_id" not in data:
        return jsonify({"error": "trip_id is required (null to clear)"}), 400

    trip_id = data.get("trip_id")
    if trip_id is not None and (isinstance(trip_id, bool) or not isinstance(trip_id, int)):
        return jsonify({"error": "trip_id must be an integer or null"}), 400

    try:
        outcome = expense_service.assign_expense_to_trip(
            expense_id, trip_id, user_id=g.current_user.id, settings=current_settings()
        )
        return outcome_response(outcome, "expense")
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to assign expense")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ALLOCATIONS
# =============================================================================

@expenses_bp.get("/<int:expense_id>/allocations")
@require_auth
@require_permission("VIEW_EXPENSES")
def list_allocations_route(expense_id: int):
    try:
        expense_service.get_expense(expense_id)
        allocations = expense_service.get_allocations_for_expense(expense_id)
        total = expense_service.allocated_percentage(expense_id)
        return jsonify({
            "allocations": [a.to_dict() for a in allocations],
            "allocated_percentage": expense_service.format_pct(total),
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list allocations")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/allocations")
@require_auth
@require_permission("ALLOCATE_EXPENSES")
def create_allocation_route(expense_id: int):
    """
    Request body: {"trip_id": 7, "percentage": "60"}

    Returns:
        201: Allocation created
        400: Bad percentage, cancelled expense, closed / cancelled trip
        404: Expense or trip not found
        409: Budget exceeded or expense directly assigned
        423: Period lock
    """
    data = request.get_json(silent=True) or {}
    trip_id = data.get("trip_id")
    percentage = data.get("percentage")

    if isinstance(trip_id, bool) or not isinstance(trip_id, int):
        return jsonify({"error": "trip_id must be an integer"}), 400
    if percentage is None:
        return jsonify({"error": "percentage is required"}), 400

    try:
        outcome = expense_service.create_allocation(
            expense_id,
            trip_id,
            percentage,
            user_id=g.current_user.id,
            settings=current_settings(),
        )
        return outcome_response(outcome, "allocation", success_status=201)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to create allocation")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.delete("/allocations/<int:allocation_id>")
@require_auth
@require_permission("ALLOCATE_EXPENSES")
def delete_allocation_route(allocation_id: int):
    try:
        removed = expense_service.delete_allocation(allocation_id)
        return jsonify({"allocation": removed, "deleted": True}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete allocation")
        return jsonify({"error": "Internal server error"}), 500
