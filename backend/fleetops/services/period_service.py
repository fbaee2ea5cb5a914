# Overview: Service-layer operations for accounting-period locking.

"""
Accounting Period Lock Service

A closed accounting period freezes every financial record dated inside it,
regardless of that record's own status. The check is a plain read against
accounting_periods on every call (no caching), so a period closed moments ago
is honored by the very next write.

The trip/expense core only reads periods. create_accounting_period and
close_accounting_period exist for the administrative CLI.
"""

from __future__ import annotations

from datetime import date, datetime

from ..extensions import db
from ..models import AccountingPeriod
from fleetops.time_utils import as_date, utcnow
from .outcomes import PeriodLockRefusal


def find_locking_period(value: date | datetime | None) -> AccountingPeriod | None:
    """Return the closed period containing `value`, or None."""
    d = as_date(value)
    if d is None:
        return None

    return (
        db.session.query(AccountingPeriod)
        .filter(
            AccountingPeriod.is_closed.is_(True),
            AccountingPeriod.start_date <= d,
            AccountingPeriod.end_date >= d,
        )
        .order_by(AccountingPeriod.start_date.asc(), AccountingPeriod.id.asc())
        .first()
    )


def is_date_locked(value: date | datetime | None) -> bool:
    """True iff a closed accounting period covers `value` (inclusive on both ends)."""
    return find_locking_period(value) is not None


def get_closed_periods() -> list[AccountingPeriod]:
    return (
        db.session.query(AccountingPeriod)
        .filter(AccountingPeriod.is_closed.is_(True))
        .order_by(AccountingPeriod.start_date.asc())
        .all()
    )


def period_lock_refusal(value: date | datetime | None, *, label: str) -> PeriodLockRefusal | None:
    """
    Build the refusal for a locked date, or None when the date is open.

    `label` names the date being checked ("trip departure date",
    "expense date") so several checks can be merged into one reasons list.
    """
    period = find_locking_period(value)
    if period is None:
        return None

    d = as_date(value)
    return PeriodLockRefusal(
        [f"{label} {d.isoformat()} falls in closed accounting period {period.describe()}"],
        detail={
            "locked_period": {
                "period_code": period.period_code,
                "start_date": period.start_date.isoformat(),
                "end_date": period.end_date.isoformat(),
            }
        },
    )


def create_accounting_period(period_code: str, start_date: date, end_date: date) -> AccountingPeriod:
    """Administrative: register an open period. Ranges of different periods may not overlap."""
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date")

    existing = db.session.query(AccountingPeriod).filter_by(period_code=period_code).first()
    if existing:
        raise ValueError(f"Accounting period {period_code} already exists")

    overlap = (
        db.session.query(AccountingPeriod)
        .filter(
            AccountingPeriod.start_date <= end_date,
            AccountingPeriod.end_date >= start_date,
        )
        .first()
    )
    if overlap:
        raise ValueError(f"Date range overlaps accounting period {overlap.describe()}")

    period = AccountingPeriod(
        period_code=period_code,
        start_date=start_date,
        end_date=end_date,
        is_closed=False,
    )
    db.session.add(period)
    db.session.commit()
    return period


def close_accounting_period(period_code: str) -> AccountingPeriod:
    """Administrative: close a period. Idempotent; there is no reopen."""
    period = db.session.query(AccountingPeriod).filter_by(period_code=period_code).first()
    if period is None:
        raise ValueError(f"Accounting period {period_code} not found")

    if not period.is_closed:
        period.is_closed = True
        period.closed_at = utcnow()
        db.session.commit()
    return period
