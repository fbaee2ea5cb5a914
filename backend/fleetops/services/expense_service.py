# Overview: Service-layer operations for expenses and their allocation ledger.

"""
Expense Confirmation & Allocation Ledger

================================================================================
PURPOSE: Count every expense against trips exactly once
================================================================================

AN EXPENSE IS EITHER:
- direct:    expense.trip_id is set, zero allocation rows
- allocated: expense.trip_id is NULL, allocation rows split it by percentage
- neither:   not yet charged to any trip
NEVER BOTH.

STATUS:
    draft -> confirmed
    draft | confirmed -> cancelled

    Only confirmed expenses count toward trip financials. A trip cannot be
    closed while any expense linked to it (direct or allocated) is draft.

RULES (NON-NEGOTIABLE):
1. SUM(allocation.percentage) per expense <= budget (100%) at all times
2. The read-sum-insert sequence in create_allocation runs while holding the
   expense row (SELECT ... FOR UPDATE plus a version bump), so two concurrent
   requests cannot both pass the budget check
3. Anything dated inside a closed accounting period is frozen
4. Closed trips cannot gain or lose expenses; such attempts are refused and
   recorded on the trip's audit trail as UPDATE_ATTEMPT_CLOSED
5. Every trip an expense write links to or unlinks from is read FOR UPDATE
   and has its version bumped on commit, so the write serializes with a
   concurrent close() of that trip

Refusals are returned as Outcome(ok=False, reasons=[...]) and never raised
past this module. Store failures propagate unchanged.
================================================================================
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_

from ..extensions import db
from ..models import Expense, ExpenseAllocation, Trip
from ..validation import ConflictError
from fleetops.time_utils import utcnow
from . import audit_service, financial_service
from .concurrency import lock_for_update, run_with_retry
from .context import DEFAULT_SETTINGS, LifecycleSettings
from .outcomes import (
    ConstraintViolation,
    NotFoundError,
    Outcome,
    RefusalError,
    ValidationRefusal,
    merge_refusals,
)
from .period_service import period_lock_refusal


EXPENSE_STATUS_DRAFT = "draft"
EXPENSE_STATUS_CONFIRMED = "confirmed"
EXPENSE_STATUS_CANCELLED = "cancelled"

VALID_EXPENSE_STATUSES = {EXPENSE_STATUS_DRAFT, EXPENSE_STATUS_CONFIRMED, EXPENSE_STATUS_CANCELLED}


def format_pct(value: Decimal) -> str:
    """60.00 -> "60", 12.50 -> "12.5"."""
    return format(value.normalize(), "f")


# =============================================================================
# READS
# =============================================================================

def get_expense(expense_id: int) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def get_allocations_for_expense(expense_id: int) -> list[ExpenseAllocation]:
    return (
        db.session.query(ExpenseAllocation)
        .filter(ExpenseAllocation.expense_id == expense_id)
        .order_by(ExpenseAllocation.id.asc())
        .all()
    )


def allocated_percentage(expense_id: int) -> Decimal:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(ExpenseAllocation.percentage), 0))
        .filter(ExpenseAllocation.expense_id == expense_id)
        .scalar()
    )
    return Decimal(str(total))


def get_expenses_for_trip(trip_id: int, *, status: Optional[str] = None) -> list[Expense]:
    """Expenses linked to the trip directly or through an allocation."""
    allocated_ids = (
        db.session.query(ExpenseAllocation.expense_id)
        .filter(ExpenseAllocation.trip_id == trip_id)
    )
    q = db.session.query(Expense).filter(
        or_(Expense.trip_id == trip_id, Expense.id.in_(allocated_ids))
    )
    if status is not None:
        q = q.filter(Expense.status == status)
    return q.order_by(Expense.expense_date.asc(), Expense.id.asc()).all()


def count_draft_expenses_for_trip(trip_id: int) -> int:
    return len(get_expenses_for_trip(trip_id, status=EXPENSE_STATUS_DRAFT))


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _lock_expense(expense_id: int) -> Expense:
    expense = lock_for_update(db.session.query(Expense).filter(Expense.id == expense_id)).first()
    if expense is None:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def _lock_trip(trip_id: int) -> Trip:
    trip = lock_for_update(db.session.query(Trip).filter(Trip.id == trip_id)).first()
    if trip is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    return trip


def _touch_trips(*trips: Trip) -> None:
    """
    Bump the version of every trip this unit changed the expenses of.

    close() re-checks draft expenses under the trip version, so a racing
    close and expense write cannot both commit against the same version.
    """
    now = utcnow()
    for trip in trips:
        trip.updated_at = now


def _closed_trip_refusal(trip: Trip, what: str) -> ValidationRefusal:
    return ValidationRefusal(
        [f"Trip {trip.trip_code} is closed; {what}"],
        detail={"closed_trip_ids": [trip.id]},
    )


def _date_locks(settings: LifecycleSettings, *checks: tuple) -> list[RefusalError]:
    if not settings.period_lock_enforced:
        return []
    errors = []
    for value, label in checks:
        refusal = period_lock_refusal(value, label=label)
        if refusal is not None:
            errors.append(refusal)
    return errors


def _record_closed_trip_attempts(err: RefusalError, attempted: dict, user_id: Optional[int]) -> None:
    """
    Append UPDATE_ATTEMPT_CLOSED entries for every closed trip a refused
    expense mutation touched. Runs after rollback, in its own commit.
    """
    trip_ids = err.detail.get("closed_trip_ids") or []
    if not trip_ids:
        return
    for trip_id in trip_ids:
        trip = db.session.get(Trip, trip_id)
        if trip is None:
            continue
        audit_service.record_trip_event(
            trip=trip,
            action=audit_service.ACTION_UPDATE_ATTEMPT_CLOSED,
            new_values=attempted,
            blocked=True,
            reasons=err.reasons,
            user_id=user_id,
        )
    db.session.commit()


def _run_guarded(unit, *, settings: LifecycleSettings, attempted: dict, user_id: Optional[int]) -> Outcome:
    try:
        entity = run_with_retry(unit, attempts=settings.conflict_retry_attempts)
    except RefusalError as err:
        db.session.rollback()
        _record_closed_trip_attempts(err, attempted, user_id)
        return Outcome.refused(err)
    return Outcome.success(entity)


# =============================================================================
# DATA ENTRY
# =============================================================================

def create_expense(
    *,
    expense_code: str,
    description: str,
    amount: Decimal,
    expense_date: date,
    trip_id: Optional[int] = None,
    notes: Optional[str] = None,
    user_id: Optional[int] = None,
    settings: LifecycleSettings = DEFAULT_SETTINGS,
) -> Outcome:
    """
    Create a DRAFT expense, optionally assigned directly to a trip.

    Raises:
        NotFoundError: If trip_id does not exist
        ConflictError: If expense_code is already used
    """
    if db.session.query(Expense).filter_by(expense_code=expense_code).first():
        raise ConflictError(f"Expense code {expense_code} already exists")

    def _unit():
        errors: list[RefusalError] = []
        if amount is None or amount <= 0:
            errors.append(ValidationRefusal(["Expense amount must be > 0"]))

        checks = [(expense_date, "expense date")]
        if trip_id is not None:
            trip = _lock_trip(trip_id)
            if trip.status == "closed":
                errors.append(_closed_trip_refusal(trip, "cannot add expenses"))
            checks.append((trip.departure_date, f"trip {trip.trip_code} departure date"))
        errors.extend(_date_locks(settings, *checks))

        if errors:
            raise merge_refusals(errors)

        expense = Expense(
            expense_code=expense_code,
            description=description,
            amount=amount,
            expense_date=expense_date,
            trip_id=trip_id,
            notes=notes,
            status=EXPENSE_STATUS_DRAFT,
        )
        db.session.add(expense)
        if trip_id is not None:
            _touch_trips(trip)
        db.session.commit()
        return expense

    return _run_guarded(
        _unit,
        settings=settings,
        attempted={"expense_code": expense_code, "amount": amount, "trip_id": trip_id},
        user_id=user_id,
    )


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def confirm_expense(
    expense_id: int,
    *,
    user_id: Optional[int] = None,
    settings: LifecycleSettings = DEFAULT_SETTINGS,
) -> Outcome:
    """
    Confirm a DRAFT expense (draft -> confirmed).

    Confirmation makes the expense count toward trip profit.

    Raises:
        NotFoundError: If expense not found
    """
    def _unit():
        expense = _lock_expense(expense_id)

        errors: list[RefusalError] = []
        if expense.status != EXPENSE_STATUS_DRAFT:
            errors.append(ValidationRefusal([
                f"Cannot confirm expense {expense.expense_code}: "
                f"current status is '{expense.status}', must be '{EXPENSE_STATUS_DRAFT}'"
            ]))
        errors.extend(_date_locks(settings, (expense.expense_date, "expense date")))
        if errors:
            raise merge_refusals(errors)

        expense.status = EXPENSE_STATUS_CONFIRMED
        expense.confirmed_at = utcnow()
        expense.confirmed_by_user_id = user_id
        db.session.commit()
        return expense

    return _run_guarded(_unit, settings=settings, attempted={"status": EXPENSE_STATUS_CONFIRMED}, user_id=user_id)


def cancel_expense(
    expense_id: int,
    *,
    user_id: Optional[int] = None,
    settings: LifecycleSettings = DEFAULT_SETTINGS,
) -> Outcome:
    """
    Cancel an expense (draft | confirmed -> cancelled).

    Allocation rows are retained for traceability; cancelled expenses simply
    stop counting. Refused when any linked trip is closed, since that would
    change frozen financials.
    """
    def _unit():
        expense = _lock_expense(expense_id)

        errors: list[RefusalError] = []
        if expense.status == EXPENSE_STATUS_CANCELLED:
            errors.append(ValidationRefusal([f"Expense {expense.expense_code} is already cancelled"]))

        linked_trips = []
        if expense.trip_id is not None:
            linked_trips.append(_lock_trip(expense.trip_id))
        linked_trips.extend(_lock_trip(alloc.trip_id) for alloc in get_allocations_for_expense(expense.id))

        closed = [t for t in linked_trips if t.status == "closed"]
        if closed:
            errors.append(ValidationRefusal(
                [f"Trip {t.trip_code} is closed; its expenses cannot be cancelled" for t in closed],
                detail={"closed_trip_ids": [t.id for t in closed]},
            ))
        errors.extend(_date_locks(settings, (expense.expense_date, "expense date")))
        if errors:
            raise merge_refusals(errors)

        expense.status = EXPENSE_STATUS_CANCELLED
        expense.cancelled_at = utcnow()
        expense.cancelled_by_user_id = user_id
        _touch_trips(*linked_trips)
        db.session.commit()
        return expense

    return _run_guarded(
        _unit,
        settings=settings,
        attempted={"expense_id": expense_id, "status": EXPENSE_STATUS_CANCELLED},
        user_id=user_id,
    )


# =============================================================================
# DIRECT ASSIGNMENT
# =============================================================================

def assign_expense_to_trip(
    expense_id: int,
    trip_id: Optional[int],
    *,
    user_id: Optional[int] = None,
    settings: LifecycleSettings = DEFAULT_SETTINGS,
) -> Outcome:
    """
    Set (or clear, with trip_id=None) the direct trip of an expense.

    Refused when the expense already has allocations: an expense is either
    directly assigned or allocated, never both.
    """
    def _unit():
        expense = _lock_expense(expense_id)

        errors: list[RefusalError] = []
        if expense.status == EXPENSE_STATUS_CANCELLED:
            errors.append(ValidationRefusal([f"Expense {expense.expense_code} is cancelled"]))

        if trip_id is not None and get_allocations_for_expense(expense.id):
            errors.append(ConstraintViolation([
                f"Expense {expense.expense_code} already has allocations, cannot also assign directly"
            ]))

        checks = [(expense.expense_date, "expense date")]
        held: list[Trip] = []
        touched_closed: list[Trip] = []
        if expense.trip_id is not None and expense.trip_id != trip_id:
            current = _lock_trip(expense.trip_id)
            held.append(current)
            if current.status == "closed":
                touched_closed.append(current)
            checks.append((current.departure_date, f"trip {current.trip_code} departure date"))
        if trip_id is not None:
            target = _lock_trip(trip_id)
            held.append(target)
            if target.status == "closed":
                touched_closed.append(target)
            elif target.status == "cancelled":
                errors.append(ValidationRefusal([f"Trip {target.trip_code} is cancelled"]))
            checks.append((target.departure_date, f"trip {target.trip_code} departure date"))

        if touched_closed:
            errors.append(ValidationRefusal(
                [f"Trip {t.trip_code} is closed; its expenses cannot change" for t in touched_closed],
                detail={"closed_trip_ids": [t.id for t in touched_closed]},
            ))
        errors.extend(_date_locks(settings, *checks))
        if errors:
            raise merge_refusals(errors)

        expense.trip_id = trip_id
        _touch_trips(*held)
        db.session.commit()
        return expense

    return _run_guarded(
        _unit,
        settings=settings,
        attempted={"expense_id": expense_id, "trip_id": trip_id},
        user_id=user_id,
    )


# =============================================================================
# ALLOCATIONS
# =============================================================================

def create_allocation(
    expense_id: int,
    trip_id: int,
    percentage,
    *,
    user_id: Optional[int] = None,
    settings: LifecycleSettings = DEFAULT_SETTINGS,
) -> Outcome:
    """
    Allocate `percentage` of an expense to a trip.

    Guards (all evaluated, all reported):
    - percentage in (0, 100]
    - expense not cancelled and not directly assigned
    - target trip neither closed nor cancelled
    - neither the expense date nor the trip departure date is period-locked
    - existing allocations + percentage <= budget

    The expense row is held FOR UPDATE and its version bumped in the same
    transaction as the insert; a concurrent allocation that read the old sum
    fails its flush with StaleDataError and is re-run against the new sum.

    Raises:
        NotFoundError: If expense or trip not found
    """
    # Guards run on the value as stored: Numeric(5, 2)
    pct = financial_service.to_cents(percentage)

    def _unit():
        expense = _lock_expense(expense_id)
        trip = _lock_trip(trip_id)

        errors: list[RefusalError] = []
        if pct is None or pct <= 0 or pct > 100:
            errors.append(ValidationRefusal(["Allocation percentage must be greater than 0 and at most 100"]))

        if expense.status == EXPENSE_STATUS_CANCELLED:
            errors.append(ValidationRefusal([f"Expense {expense.expense_code} is cancelled"]))

        if expense.trip_id is not None:
            errors.append(ConstraintViolation([
                f"Expense {expense.expense_code} is already directly assigned to trip {expense.trip_id}, "
                f"cannot also allocate"
            ]))

        if trip.status == "closed":
            errors.append(_closed_trip_refusal(trip, "cannot allocate expenses to it"))
        elif trip.status == "cancelled":
            errors.append(ValidationRefusal([f"Trip {trip.trip_code} is cancelled"]))

        errors.extend(_date_locks(
            settings,
            (expense.expense_date, "expense date"),
            (trip.departure_date, f"trip {trip.trip_code} departure date"),
        ))

        if pct is not None:
            current = allocated_percentage(expense.id)
            budget = settings.allocation_budget_pct
            if current + pct > budget:
                errors.append(ConstraintViolation(
                    [
                        f"Allocation total exceeds {format_pct(budget)}%: "
                        f"{format_pct(current)} + {format_pct(pct)} = {format_pct(current + pct)}"
                    ],
                    detail={"current_percentage": str(current), "requested_percentage": str(pct)},
                ))

        if errors:
            raise merge_refusals(errors)

        allocation = ExpenseAllocation(
            expense_id=expense.id,
            trip_id=trip.id,
            percentage=pct,
            created_by_user_id=user_id,
        )
        db.session.add(allocation)
        # Version bump: concurrent allocations on this expense now conflict.
        expense.updated_at = utcnow()
        _touch_trips(trip)
        db.session.commit()
        return allocation

    return _run_guarded(
        _unit,
        settings=settings,
        attempted={"expense_id": expense_id, "allocation_percentage": str(percentage)},
        user_id=user_id,
    )


def delete_allocation(allocation_id: int) -> dict:
    """
    Remove an allocation row unconditionally.

    Trip aggregates are derived on read by financial_service, so nothing
    else needs recomputing here.

    Returns:
        Snapshot of the removed row

    Raises:
        NotFoundError: If allocation not found
    """
    allocation = db.session.get(ExpenseAllocation, allocation_id)
    if allocation is None:
        raise NotFoundError(f"Allocation {allocation_id} not found")

    removed = allocation.to_dict()
    db.session.delete(allocation)
    db.session.commit()
    return removed
