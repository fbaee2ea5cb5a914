# Overview: Service-layer operations for the append-only trip audit trail.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..extensions import db
from ..models import Trip, TripAuditLog
from fleetops.time_utils import to_utc_z, utcnow
"""
Trip Audit Trail Invariants (authoritative)

- Append-only: this module only inserts. There is no update or delete path.
- One row per transition attempt (successful or blocked) and per refused
  mutation of a trip.
- Rows are written inside the caller's transaction (flush, never commit) so a
  successful transition and its audit row commit or roll back together.
- created_at is set explicitly from the same clock as the lifecycle timestamps.
"""


ACTION_STATUS_CHANGE = "STATUS_CHANGE"
ACTION_CLOSE = "CLOSE"
ACTION_CANCEL = "CANCEL"
ACTION_UPDATE = "UPDATE"
ACTION_UPDATE_ATTEMPT = "UPDATE_ATTEMPT"
ACTION_UPDATE_ATTEMPT_CLOSED = "UPDATE_ATTEMPT_CLOSED"

AUDIT_ACTIONS = {
    ACTION_STATUS_CHANGE,
    ACTION_CLOSE,
    ACTION_CANCEL,
    ACTION_UPDATE,
    ACTION_UPDATE_ATTEMPT,
    ACTION_UPDATE_ATTEMPT_CLOSED,
}


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def snapshot(trip: Trip, fields: Iterable[str]) -> dict:
    """JSON-safe {field: value} for the given trip attributes."""
    return {name: _json_value(getattr(trip, name)) for name in fields}


def jsonable(values: Optional[dict]) -> Optional[dict]:
    if values is None:
        return None
    return {key: _json_value(value) for key, value in values.items()}


def record_trip_event(
    *,
    trip: Trip,
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    blocked: bool = False,
    reasons: Optional[list[str]] = None,
    user_id: Optional[int] = None,
    created_at: Optional[datetime] = None,
) -> TripAuditLog:
    """
    Append one audit row to the current session.

    Blocked rows must carry at least one reason; block_reason stores them
    one per line.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action '{action}'")
    if blocked and not reasons:
        raise ValueError("Blocked audit entries require a reason")

    entry = TripAuditLog(
        trip_id=trip.id,
        trip_code=trip.trip_code,
        action=action,
        old_values=jsonable(old_values),
        new_values=jsonable(new_values),
        blocked=blocked,
        block_reason="\n".join(reasons) if blocked else None,
        user_id=user_id,
        created_at=created_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def get_audit_trail(trip_id: int, *, limit: int | None = None) -> list[TripAuditLog]:
    """Audit entries for a trip, newest first."""
    q = (
        db.session.query(TripAuditLog)
        .filter(TripAuditLog.trip_id == trip_id)
        .order_by(TripAuditLog.created_at.desc(), TripAuditLog.id.desc())
    )
    if limit is not None:
        q = q.limit(limit)
    return q.all()
