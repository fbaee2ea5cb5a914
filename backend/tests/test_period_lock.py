"""
Accounting period lock tests.

Verifies:
- A closed period locks every date in [start_date, end_date], both ends included
- Trips and expenses dated inside a closed period are frozen whatever their status
- Refusals name the locking period and are audited on the trip
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from fleetops.services import audit_service, expense_service, period_service
from fleetops.services import trip_lifecycle_service as lifecycle
from fleetops.services.context import LifecycleSettings, TransitionContext
from fleetops.services.outcomes import REFUSAL_PERIOD_LOCK


JAN_LOCK_TEXT = "2026-01 (2026-01-01 to 2026-01-31)"


@pytest.fixture
def january(db_session):
    return period_service.create_accounting_period("2026-01", date(2026, 1, 1), date(2026, 1, 31))


@pytest.fixture
def close_january(january):
    def _close():
        return period_service.close_accounting_period("2026-01")
    return _close


class TestLockBoundaries:

    def test_open_period_does_not_lock(self, january):
        assert not period_service.is_date_locked(date(2026, 1, 15))

    @pytest.mark.parametrize(
        "value,locked",
        [
            (date(2025, 12, 31), False),
            (date(2026, 1, 1), True),
            (date(2026, 1, 31), True),
            (date(2026, 2, 1), False),
            (datetime(2026, 1, 31, 23, 59), True),
            (None, False),
        ],
    )
    def test_inclusive_range(self, close_january, value, locked):
        close_january()
        assert period_service.is_date_locked(value) is locked

    def test_refusal_names_period(self, close_january):
        close_january()
        refusal = period_service.period_lock_refusal(date(2026, 1, 10), label="Expense date")

        assert refusal.kind == REFUSAL_PERIOD_LOCK
        assert refusal.reasons == [
            f"Expense date 2026-01-10 falls in closed accounting period {JAN_LOCK_TEXT}"
        ]
        assert refusal.detail["locked_period"]["period_code"] == "2026-01"


class TestTripLock:

    def test_update_refused_in_closed_period(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 1, 15), status="completed")
        close_january()

        outcome = lifecycle.update_trip_fields(trip.id, {"freight_revenue": "2000.00"})

        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert any(JAN_LOCK_TEXT in r for r in outcome.reasons)
        assert lifecycle.get_trip(trip.id).freight_revenue == Decimal("1000.00")

        entry = audit_service.get_audit_trail(trip.id, limit=1)[0]
        assert entry.action == audit_service.ACTION_UPDATE_ATTEMPT
        assert entry.blocked is True
        assert JAN_LOCK_TEXT in entry.block_reason

    def test_transition_refused_in_closed_period(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 1, 20))
        close_january()

        outcome = lifecycle.confirm_trip(trip.id)

        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert lifecycle.get_trip(trip.id).status == "draft"

        entry = audit_service.get_audit_trail(trip.id, limit=1)[0]
        assert entry.action == audit_service.ACTION_STATUS_CHANGE
        assert entry.blocked is True

    def test_lock_reported_with_other_reasons(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 1, 20))
        close_january()

        reasons = lifecycle.validate_transition(trip.id, "closed")

        assert any("Only completed trips can be closed" in r for r in reasons)
        assert any(JAN_LOCK_TEXT in r for r in reasons)

    def test_moving_departure_into_closed_period(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 2, 10))
        close_january()

        outcome = lifecycle.update_trip_fields(trip.id, {"departure_date": "2026-01-30"})

        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert any(r.startswith("Requested departure date 2026-01-30") for r in outcome.reasons)
        assert lifecycle.get_trip(trip.id).departure_date == date(2026, 2, 10)

    def test_trip_outside_period_unaffected(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 2, 1))
        close_january()
        assert lifecycle.confirm_trip(trip.id).ok

    def test_create_trip_in_closed_period(self, close_january):
        close_january()
        outcome = lifecycle.create_trip({"trip_code": "T-JAN", "departure_date": "2026-01-05"})
        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK

    def test_lock_can_be_disabled(self, make_trip, close_january):
        trip = make_trip(departure_date=date(2026, 1, 15))
        close_january()
        ctx = TransitionContext(settings=LifecycleSettings(period_lock_enforced=False))

        outcome = lifecycle.update_trip_fields(trip.id, {"notes": "late paperwork"}, ctx)

        assert outcome.ok
        assert outcome.entity.notes == "late paperwork"


class TestExpenseLock:

    def test_confirm_refused_in_closed_period(self, make_expense, close_january):
        expense = make_expense(expense_date=date(2026, 1, 31))
        close_january()

        outcome = expense_service.confirm_expense(expense.id)

        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert expense_service.get_expense(expense.id).status == "draft"

    def test_allocation_refused_when_trip_locked(self, make_trip, make_expense, close_january):
        trip = make_trip(departure_date=date(2026, 1, 15))
        expense = make_expense(expense_date=date(2026, 2, 3))
        close_january()

        outcome = expense_service.create_allocation(expense.id, trip.id, 20)

        assert not outcome.ok
        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert expense_service.allocated_percentage(expense.id) == Decimal("0")

    def test_period_lock_wins_kind_over_constraint(self, make_trip, make_expense, close_january):
        trip = make_trip(departure_date=date(2026, 1, 15))
        expense = make_expense(expense_date=date(2026, 1, 15))
        close_january()

        outcome = expense_service.create_allocation(expense.id, trip.id, 150)

        assert outcome.kind == REFUSAL_PERIOD_LOCK
        assert any("Allocation total exceeds" in r for r in outcome.reasons)


class TestPeriodAdministration:

    def test_close_is_idempotent(self, close_january):
        first = close_january()
        closed_at = first.closed_at
        second = close_january()

        assert second.is_closed
        assert second.closed_at == closed_at

    def test_overlapping_period_rejected(self, january):
        with pytest.raises(ValueError):
            period_service.create_accounting_period("2026-01b", date(2026, 1, 20), date(2026, 2, 20))

    def test_inverted_range_rejected(self, db_session):
        with pytest.raises(ValueError):
            period_service.create_accounting_period("BAD", date(2026, 3, 31), date(2026, 3, 1))

    def test_close_unknown_period(self, db_session):
        with pytest.raises(ValueError):
            period_service.close_accounting_period("1999-01")

    def test_closed_periods_listing(self, close_january):
        close_january()
        period_service.create_accounting_period("2026-02", date(2026, 2, 1), date(2026, 2, 28))

        assert [p.period_code for p in period_service.get_closed_periods()] == ["2026-01"]
