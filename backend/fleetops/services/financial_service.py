# Overview: Read-only trip financial aggregation (revenue, expense, profit, margin).

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from ..extensions import db
from ..models import Expense, ExpenseAllocation, Trip
from .outcomes import NotFoundError


ZERO = Decimal("0")
CENT = Decimal("0.01")

EXPENSE_STATUS_CONFIRMED = "confirmed"


@dataclass(frozen=True)
class TripFinancials:
    trip_id: int
    direct_expenses: Decimal
    allocated_expenses: Decimal
    total_revenue: Decimal
    total_expense: Decimal
    profit: Decimal
    margin_pct: Decimal

    def to_dict(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "direct_expenses": str(self.direct_expenses),
            "allocated_expenses": str(self.allocated_expenses),
            "total_revenue": str(self.total_revenue),
            "total_expense": str(self.total_expense),
            "profit": str(self.profit),
            "margin_pct": str(self.margin_pct),
        }


def to_cents(value) -> Optional[Decimal]:
    """
    Parse `value` and round it to the 2-place scale of the Numeric columns.

    Returns None for anything that is not a finite number (None, "abc",
    NaN, Infinity), so guards can refuse it instead of raising.
    """
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed.quantize(CENT, rounding=ROUND_HALF_UP)


def _margin(profit: Decimal, revenue: Decimal) -> Decimal:
    if revenue <= ZERO:
        return ZERO
    return (profit / revenue * 100).quantize(CENT, rounding=ROUND_HALF_UP)


def direct_expense_total(trip_id: int) -> Decimal:
    """Sum of confirmed expenses assigned directly to the trip."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Expense.amount), 0))
        .filter(
            Expense.trip_id == trip_id,
            Expense.status == EXPENSE_STATUS_CONFIRMED,
        )
        .scalar()
    )
    return Decimal(str(total)).quantize(CENT, rounding=ROUND_HALF_UP)


def allocated_expense_total(trip_id: int) -> Decimal:
    """
    Sum of amount * percentage / 100 over allocations to the trip whose
    expense is confirmed. Computed in Python to keep Decimal precision on
    backends without a native decimal type.
    """
    rows = (
        db.session.query(Expense.amount, ExpenseAllocation.percentage)
        .join(ExpenseAllocation, ExpenseAllocation.expense_id == Expense.id)
        .filter(
            ExpenseAllocation.trip_id == trip_id,
            Expense.status == EXPENSE_STATUS_CONFIRMED,
        )
        .all()
    )
    total = ZERO
    for amount, percentage in rows:
        total += Decimal(str(amount)) * Decimal(str(percentage)) / 100
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def aggregate_for_trip(trip: Trip) -> TripFinancials:
    direct = direct_expense_total(trip.id)
    allocated = allocated_expense_total(trip.id)
    revenue = Decimal(str(trip.total_revenue)).quantize(CENT, rounding=ROUND_HALF_UP)
    expense = direct + allocated
    profit = revenue - expense

    return TripFinancials(
        trip_id=trip.id,
        direct_expenses=direct,
        allocated_expenses=allocated,
        total_revenue=revenue,
        total_expense=expense,
        profit=profit,
        margin_pct=_margin(profit, revenue),
    )


def aggregate_trip(trip_id: int) -> TripFinancials:
    """
    Derive revenue / expense / profit for one trip. Never mutates state.

    Raises:
        NotFoundError: If the trip does not exist
    """
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    return aggregate_for_trip(trip)


def _bucket(financials: list[TripFinancials]) -> dict:
    revenue = sum((f.total_revenue for f in financials), ZERO)
    expense = sum((f.total_expense for f in financials), ZERO)
    profit = revenue - expense
    return {
        "count": len(financials),
        "revenue": str(revenue),
        "expense": str(expense),
        "profit": str(profit),
        "margin_pct": str(_margin(profit, revenue)),
    }


def summarize_period(start_date: date, end_date: date) -> dict:
    """
    Split trips departing in [start_date, end_date] into:

    - official: closed trips (financials frozen)
    - pending: completed trips not yet closed

    Other statuses are not counted. Richer report views are built outside
    this core.
    """
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date")

    trips = (
        db.session.query(Trip)
        .filter(
            Trip.departure_date >= start_date,
            Trip.departure_date <= end_date,
            Trip.status.in_(("closed", "completed")),
        )
        .order_by(Trip.departure_date.asc(), Trip.id.asc())
        .all()
    )

    official = [aggregate_for_trip(t) for t in trips if t.status == "closed"]
    pending = [aggregate_for_trip(t) for t in trips if t.status == "completed"]

    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "official": _bucket(official),
        "pending": _bucket(pending),
    }
