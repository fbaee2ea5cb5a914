# Overview: Service-layer operations for the trip lifecycle; guarded transitions, field updates and audit.

"""
Trip Financial Lifecycle Service

================================================================================
PURPOSE: Move a trip from creation to an irreversible financial close
================================================================================

STATE MACHINE:
    draft -> confirmed -> dispatched -> in_progress -> completed -> closed
      |          |             |              |             |
      +----------+-------------+--------------+-------------+--> cancelled

    draft may also go straight to dispatched.

    closed:    terminal. Every financial and assignment field is read-only.
    cancelled: terminal. All data retained as-is.

RULES (NON-NEGOTIABLE):
1. No shortcuts except dispatch-from-draft and cancellation
2. closed is reachable only from completed, and only when every close guard
   holds (all failures are reported together, never just the first)
3. Any mutation of a trip whose departure_date falls in a closed accounting
   period is refused, whatever the trip status
4. Guards, field changes and the audit row form one transaction. On refusal
   the only persisted effect is a blocked audit row
5. Any update attempt on a closed trip is refused and recorded as
   UPDATE_ATTEMPT_CLOSED, whichever field it touched

CONCURRENCY:
    The trip row is read FOR UPDATE and carries a version_id column. A racing
    writer that commits first makes our flush raise StaleDataError; the whole
    unit is then re-run, re-evaluating every guard on fresh data. Expense
    writes bump the version of every trip they touch, so the draft-expense
    check in close() cannot miss an expense committed alongside it.

There is no reopen/adjustment workflow. Closed is permanent in this core.
================================================================================
"""

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import Trip
from ..validation import (
    TRIP_POLICY,
    ConflictError,
    enforce_rules_trip,
    validate_payload,
)
from fleetops.time_utils import utcnow
from . import audit_service, expense_service, financial_service
from .concurrency import lock_for_update, run_with_retry
from .context import TransitionContext
from .outcomes import (
    NotFoundError,
    Outcome,
    RefusalError,
    ValidationRefusal,
    merge_refusals,
)
from .period_service import period_lock_refusal


TRIP_STATUS_DRAFT = "draft"
TRIP_STATUS_CONFIRMED = "confirmed"
TRIP_STATUS_DISPATCHED = "dispatched"
TRIP_STATUS_IN_PROGRESS = "in_progress"
TRIP_STATUS_COMPLETED = "completed"
TRIP_STATUS_CLOSED = "closed"
TRIP_STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {
    TRIP_STATUS_DRAFT,
    TRIP_STATUS_CONFIRMED,
    TRIP_STATUS_DISPATCHED,
    TRIP_STATUS_IN_PROGRESS,
    TRIP_STATUS_COMPLETED,
    TRIP_STATUS_CLOSED,
    TRIP_STATUS_CANCELLED,
}

TERMINAL_STATUSES = {TRIP_STATUS_CLOSED, TRIP_STATUS_CANCELLED}

# The only valid edges of the graph
ALLOWED_TRANSITIONS = {
    TRIP_STATUS_DRAFT: {TRIP_STATUS_CONFIRMED, TRIP_STATUS_DISPATCHED, TRIP_STATUS_CANCELLED},
    TRIP_STATUS_CONFIRMED: {TRIP_STATUS_DISPATCHED, TRIP_STATUS_CANCELLED},
    TRIP_STATUS_DISPATCHED: {TRIP_STATUS_IN_PROGRESS, TRIP_STATUS_CANCELLED},
    TRIP_STATUS_IN_PROGRESS: {TRIP_STATUS_COMPLETED, TRIP_STATUS_CANCELLED},
    TRIP_STATUS_COMPLETED: {TRIP_STATUS_CLOSED, TRIP_STATUS_CANCELLED},
    TRIP_STATUS_CLOSED: set(),
    TRIP_STATUS_CANCELLED: set(),
}

# Permission gating each target status (enforced by the HTTP layer)
TRANSITION_PERMISSIONS = {
    TRIP_STATUS_CONFIRMED: "MANAGE_TRIP_WORKFLOW",
    TRIP_STATUS_DISPATCHED: "MANAGE_TRIP_WORKFLOW",
    TRIP_STATUS_IN_PROGRESS: "MANAGE_TRIP_WORKFLOW",
    TRIP_STATUS_COMPLETED: "MANAGE_TRIP_WORKFLOW",
    TRIP_STATUS_CLOSED: "CLOSE_TRIPS",
    TRIP_STATUS_CANCELLED: "CANCEL_TRIPS",
}

# Fields written by each transition (besides status); used for audit snapshots
_TRANSITION_FIELDS = {
    TRIP_STATUS_CONFIRMED: ["confirmed_at", "confirmed_by_user_id"],
    TRIP_STATUS_DISPATCHED: ["dispatched_at"],
    TRIP_STATUS_IN_PROGRESS: ["actual_departure_time"],
    TRIP_STATUS_COMPLETED: ["actual_arrival_time", "actual_distance_km", "completed_at"],
    TRIP_STATUS_CLOSED: ["closed_at", "closed_by_user_id"],
    TRIP_STATUS_CANCELLED: ["cancelled_at", "cancelled_by_user_id"],
}


class LifecycleError(ValueError):
    """
    Raised for an unknown status value.

    Guard failures are NOT LifecycleErrors; they come back as refused
    Outcomes.
    """
    pass


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True if `from_status -> to_status` is an edge of the lifecycle graph."""
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def required_permission(target_status: str) -> str:
    validate_status(target_status)
    if target_status not in TRANSITION_PERMISSIONS:
        raise LifecycleError(f"'{target_status}' is not a transition target")
    return TRANSITION_PERMISSIONS[target_status]


def audit_action_for(target_status: str) -> str:
    if target_status == TRIP_STATUS_CLOSED:
        return audit_service.ACTION_CLOSE
    if target_status == TRIP_STATUS_CANCELLED:
        return audit_service.ACTION_CANCEL
    return audit_service.ACTION_STATUS_CHANGE


# =============================================================================
# READS
# =============================================================================

def get_trip(trip_id: int) -> Trip:
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    return trip


def _lock_trip(trip_id: int) -> Trip:
    trip = lock_for_update(db.session.query(Trip).filter(Trip.id == trip_id)).first()
    if trip is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    return trip


# =============================================================================
# GUARDS
# =============================================================================

def _structural_reasons(trip: Trip, target: str) -> list[str]:
    if target in ALLOWED_TRANSITIONS[trip.status]:
        return []
    if trip.status == TRIP_STATUS_CLOSED:
        return [f"Trip {trip.trip_code} is closed; no further changes are allowed"]
    if trip.status == TRIP_STATUS_CANCELLED:
        return [f"Trip {trip.trip_code} is cancelled"]
    if target == TRIP_STATUS_IN_PROGRESS:
        return [f"Only dispatched trips can be started (current status '{trip.status}')"]
    if target == TRIP_STATUS_CLOSED:
        return [f"Only completed trips can be closed (current status '{trip.status}')"]
    if target == trip.status:
        return [f"Trip {trip.trip_code} is already '{trip.status}'"]
    return [f"Cannot move trip {trip.trip_code} from '{trip.status}' to '{target}'"]


def _complete_reasons(trip: Trip, context: TransitionContext) -> list[str]:
    reasons = []
    if trip.actual_departure_time is None:
        reasons.append("Actual departure time is not recorded")
    if context.arrival_time is None:
        reasons.append("Actual arrival time is required")
    elif trip.actual_departure_time is not None and context.arrival_time < trip.actual_departure_time:
        reasons.append("Actual arrival time cannot be before actual departure time")
    distance = financial_service.to_cents(context.distance_km)
    if distance is None or distance <= 0:
        reasons.append("Actual distance must be greater than 0 km")
    return reasons


def _close_reasons(trip: Trip) -> list[str]:
    reasons = []
    financials = financial_service.aggregate_for_trip(trip)
    if financials.total_revenue <= 0:
        reasons.append("Total revenue must be greater than 0")
    if trip.actual_departure_time is None:
        reasons.append("Actual departure time is not recorded")
    if trip.actual_arrival_time is None:
        reasons.append("Actual arrival time is not recorded")
    if trip.actual_distance_km is None or trip.actual_distance_km <= 0:
        reasons.append("Actual distance must be greater than 0 km")
    drafts = expense_service.count_draft_expenses_for_trip(trip.id)
    if drafts:
        reasons.append(
            f"unconfirmed expense exists: {drafts} draft expense(s) must be confirmed before closing"
        )
    return reasons


def evaluate_guards(trip: Trip, target: str, context: TransitionContext) -> list[RefusalError]:
    """
    Evaluate every guard for `trip -> target` without touching the session.

    Returns an empty list when the transition may proceed.
    """
    errors: list[RefusalError] = []

    reasons = _structural_reasons(trip, target)
    if target == TRIP_STATUS_COMPLETED:
        reasons.extend(_complete_reasons(trip, context))
    elif target == TRIP_STATUS_CLOSED and trip.status not in TERMINAL_STATUSES:
        reasons.extend(_close_reasons(trip))
    if reasons:
        errors.append(ValidationRefusal(reasons))

    if context.settings.period_lock_enforced:
        locked = period_lock_refusal(trip.departure_date, label="Trip departure date")
        if locked is not None:
            errors.append(locked)

    return errors


def validate_transition(trip_id: int, target_status: str, context: Optional[TransitionContext] = None) -> list[str]:
    """
    Pre-flight check: every reason `target_status` would be refused right now.

    Read-only and idempotent; never writes an audit row. An empty list means
    the transition would currently succeed.
    """
    validate_status(target_status)
    context = context or TransitionContext()
    trip = get_trip(trip_id)

    reasons: list[str] = []
    for err in evaluate_guards(trip, target_status, context):
        reasons.extend(err.reasons)
    return reasons


def transition_options(trip_id: int, context: Optional[TransitionContext] = None) -> dict[str, list[str]]:
    """Reasons per target reachable from the current status (empty list = allowed)."""
    context = context or TransitionContext()
    trip = get_trip(trip_id)
    return {
        target: validate_transition(trip_id, target, context)
        for target in sorted(ALLOWED_TRANSITIONS[trip.status])
    }


# =============================================================================
# TRANSITIONS
# =============================================================================

def _apply_transition(trip: Trip, target: str, context: TransitionContext, now) -> None:
    trip.status = target

    if target == TRIP_STATUS_CONFIRMED:
        trip.confirmed_at = now
        trip.confirmed_by_user_id = context.user_id
    elif target == TRIP_STATUS_DISPATCHED:
        trip.dispatched_at = now
    elif target == TRIP_STATUS_IN_PROGRESS:
        trip.actual_departure_time = now
    elif target == TRIP_STATUS_COMPLETED:
        trip.actual_arrival_time = context.arrival_time
        trip.actual_distance_km = financial_service.to_cents(context.distance_km)
        trip.completed_at = now
    elif target == TRIP_STATUS_CLOSED:
        trip.closed_at = now
        trip.closed_by_user_id = context.user_id
    elif target == TRIP_STATUS_CANCELLED:
        # Cancellation retains every other field untouched.
        trip.cancelled_at = now
        trip.cancelled_by_user_id = context.user_id


def _attempted_values(target: str, context: TransitionContext) -> dict:
    values = {"status": target}
    if target == TRIP_STATUS_COMPLETED:
        values["actual_arrival_time"] = context.arrival_time
        values["actual_distance_km"] = context.distance_km
    return values


def request_transition(
    trip_id: int,
    target_status: str,
    context: Optional[TransitionContext] = None,
) -> Outcome:
    """
    Attempt `trip -> target_status`.

    Returns:
        Outcome(ok=True, entity=trip) after commit, or
        Outcome(ok=False, reasons=[...]) with the trip unchanged and a
        blocked audit entry written.

    Raises:
        LifecycleError: If target_status is not a known status
        NotFoundError: If the trip does not exist
        SQLAlchemyError: On store failure (outcome unknown; not retried)
    """
    validate_status(target_status)
    context = context or TransitionContext()
    transitioned = {}

    def _unit():
        trip = _lock_trip(trip_id)
        now = utcnow()

        errors = evaluate_guards(trip, target_status, context)
        if errors:
            raise merge_refusals(errors)

        fields = ["status"] + _TRANSITION_FIELDS[target_status]
        old_values = audit_service.snapshot(trip, fields)
        _apply_transition(trip, target_status, context, now)
        new_values = audit_service.snapshot(trip, fields)

        audit_service.record_trip_event(
            trip=trip,
            action=audit_action_for(target_status),
            old_values=old_values,
            new_values=new_values,
            user_id=context.user_id,
            created_at=now,
        )
        db.session.commit()
        transitioned["from_status"] = old_values["status"]
        return trip

    try:
        trip = run_with_retry(_unit, attempts=context.settings.conflict_retry_attempts)
    except RefusalError as err:
        db.session.rollback()
        trip = get_trip(trip_id)
        action = (
            audit_service.ACTION_UPDATE_ATTEMPT_CLOSED
            if trip.status == TRIP_STATUS_CLOSED
            else audit_action_for(target_status)
        )
        audit_service.record_trip_event(
            trip=trip,
            action=action,
            old_values=audit_service.snapshot(trip, ["status"]),
            new_values=_attempted_values(target_status, context),
            blocked=True,
            reasons=err.reasons,
            user_id=context.user_id,
        )
        db.session.commit()
        return Outcome.refused(err, entity=trip)

    if context.notify is not None:
        context.notify("trip.transitioned", {
            "trip_id": trip.id,
            "trip_code": trip.trip_code,
            "from_status": transitioned["from_status"],
            "to_status": trip.status,
        })
    return Outcome.success(trip)


def confirm_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    return request_transition(trip_id, TRIP_STATUS_CONFIRMED, context)


def dispatch_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    return request_transition(trip_id, TRIP_STATUS_DISPATCHED, context)


def start_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    return request_transition(trip_id, TRIP_STATUS_IN_PROGRESS, context)


def complete_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    """in_progress -> completed; context must carry arrival_time and distance_km."""
    return request_transition(trip_id, TRIP_STATUS_COMPLETED, context)


def close_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    return request_transition(trip_id, TRIP_STATUS_CLOSED, context)


def cancel_trip(trip_id: int, context: Optional[TransitionContext] = None) -> Outcome:
    return request_transition(trip_id, TRIP_STATUS_CANCELLED, context)


# =============================================================================
# DATA ENTRY
# =============================================================================

def _ensure_unique_code(trip_code: str, *, exclude_id: Optional[int] = None) -> None:
    q = db.session.query(Trip).filter(Trip.trip_code == trip_code)
    if exclude_id is not None:
        q = q.filter(Trip.id != exclude_id)
    if q.first():
        raise ConflictError(f"Trip code {trip_code} already exists")


def create_trip(payload: dict, context: Optional[TransitionContext] = None) -> Outcome:
    """
    Create a DRAFT trip from a data-entry payload.

    Raises:
        ValidationError: On malformed or non-writable fields
        ConflictError: If trip_code is already used
    """
    context = context or TransitionContext()
    patch = validate_payload(model=Trip, payload=payload, policy=TRIP_POLICY, partial=False)
    enforce_rules_trip(patch)
    _ensure_unique_code(patch["trip_code"])

    if context.settings.period_lock_enforced:
        locked = period_lock_refusal(patch["departure_date"], label="Trip departure date")
        if locked is not None:
            return Outcome.refused(locked)

    trip = Trip(status=TRIP_STATUS_DRAFT, **patch)
    db.session.add(trip)
    db.session.commit()
    return Outcome.success(trip)


def update_trip_fields(
    trip_id: int,
    fields: dict,
    context: Optional[TransitionContext] = None,
) -> Outcome:
    """
    Guarded update of data-entry fields.

    - closed trip: refused, audited as UPDATE_ATTEMPT_CLOSED (any field)
    - current or requested departure_date in a closed period: refused,
      audited as UPDATE_ATTEMPT
    - otherwise the changed fields are written and audited as UPDATE

    Status and lifecycle timestamps are not writable here.

    Raises:
        NotFoundError: If the trip does not exist
        ValidationError: On malformed or non-writable fields (open trips only)
        ConflictError: If a new trip_code is already used
    """
    context = context or TransitionContext()
    trip = get_trip(trip_id)
    attempted = fields if isinstance(fields, dict) else {"payload": str(fields)}

    patch = None
    if trip.status != TRIP_STATUS_CLOSED:
        patch = validate_payload(model=Trip, payload=fields, policy=TRIP_POLICY, partial=True)
        enforce_rules_trip(patch)
        if "trip_code" in patch:
            _ensure_unique_code(patch["trip_code"], exclude_id=trip_id)

    def _unit():
        trip = _lock_trip(trip_id)

        if trip.status == TRIP_STATUS_CLOSED:
            raise ValidationRefusal([
                f"Trip {trip.trip_code} is closed; financial and assignment fields are read-only"
            ])

        if context.settings.period_lock_enforced:
            errors = []
            for value, label in (
                (trip.departure_date, "Trip departure date"),
                (patch.get("departure_date"), "Requested departure date"),
            ):
                locked = period_lock_refusal(value, label=label)
                if locked is not None:
                    errors.append(locked)
            if errors:
                raise merge_refusals(errors)

        changed = {key: value for key, value in patch.items() if getattr(trip, key) != value}
        if not changed:
            return trip

        now = utcnow()
        old_values = audit_service.snapshot(trip, changed.keys())
        for key, value in changed.items():
            setattr(trip, key, value)

        audit_service.record_trip_event(
            trip=trip,
            action=audit_service.ACTION_UPDATE,
            old_values=old_values,
            new_values=changed,
            user_id=context.user_id,
            created_at=now,
        )
        db.session.commit()
        return trip

    try:
        trip = run_with_retry(_unit, attempts=context.settings.conflict_retry_attempts)
    except RefusalError as err:
        db.session.rollback()
        trip = get_trip(trip_id)
        action = (
            audit_service.ACTION_UPDATE_ATTEMPT_CLOSED
            if trip.status == TRIP_STATUS_CLOSED
            else audit_service.ACTION_UPDATE_ATTEMPT
        )
        columns = Trip.__table__.columns.keys()
        touched = list(patch.keys()) if patch is not None else [k for k in attempted if k in columns]
        audit_service.record_trip_event(
            trip=trip,
            action=action,
            old_values=audit_service.snapshot(trip, touched),
            new_values=patch if patch is not None else attempted,
            blocked=True,
            reasons=err.reasons,
            user_id=context.user_id,
        )
        db.session.commit()
        return Outcome.refused(err, entity=trip)

    return Outcome.success(trip)
