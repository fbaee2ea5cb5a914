from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from fleetops.time_utils import to_utc_z, to_iso_date


def _money(value) -> str | None:
    return None if value is None else str(value)


class Trip(db.Model):
    """
    A single transport job tracked through its financial lifecycle.

    LIFECYCLE (owned by trip_lifecycle_service):
        draft -> confirmed -> dispatched -> in_progress -> completed -> closed
        any non-terminal state except closed -> cancelled

    OWNERSHIP:
    - status, lifecycle timestamps and actors: trip_lifecycle_service only
    - everything else: data entry, via update_trip_fields, until closed
    - after closed: nothing (no reopen workflow exists)

    Vehicle/driver/route/customer ids reference external catalogs and are
    kept as opaque identifiers.
    """
    __tablename__ = "trips"
    __table_args__ = (
        db.Index("ix_trips_status_departure", "status", "departure_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    trip_code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    # Schedule. departure_date drives accounting-period locking.
    departure_date = db.Column(db.Date, nullable=False, index=True)
    planned_arrival_date = db.Column(db.Date, nullable=True)
    actual_departure_time = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_arrival_time = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_distance_km = db.Column(db.Numeric(10, 2), nullable=True)

    # Assignment (external catalogs)
    vehicle_id = db.Column(db.String(64), nullable=True, index=True)
    driver_id = db.Column(db.String(64), nullable=True, index=True)
    route_id = db.Column(db.String(64), nullable=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    cargo_description = db.Column(db.String(255), nullable=True)

    # Revenue
    freight_revenue = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))
    additional_charges = db.Column(db.Numeric(18, 2), nullable=False, default=Decimal("0"))

    notes = db.Column(db.Text, nullable=True)

    # Lifecycle timestamps + actors
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_revenue(self) -> Decimal:
        return (self.freight_revenue or Decimal("0")) + (self.additional_charges or Decimal("0"))

    def __repr__(self) -> str:
        return f"<Trip id={self.id} code={self.trip_code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trip_code": self.trip_code,
            "status": self.status,
            "departure_date": to_iso_date(self.departure_date),
            "planned_arrival_date": to_iso_date(self.planned_arrival_date),
            "actual_departure_time": to_utc_z(self.actual_departure_time),
            "actual_arrival_time": to_utc_z(self.actual_arrival_time),
            "actual_distance_km": _money(self.actual_distance_km),
            "vehicle_id": self.vehicle_id,
            "driver_id": self.driver_id,
            "route_id": self.route_id,
            "customer_id": self.customer_id,
            "cargo_description": self.cargo_description,
            "freight_revenue": _money(self.freight_revenue),
            "additional_charges": _money(self.additional_charges),
            "total_revenue": _money(self.total_revenue),
            "notes": self.notes,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "dispatched_at": to_utc_z(self.dispatched_at),
            "completed_at": to_utc_z(self.completed_at),
            "closed_at": to_utc_z(self.closed_at),
            "closed_by_user_id": self.closed_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TripAuditLog(db.Model):
    """
    Append-only record of every trip transition attempt and every refused
    mutation of a trip.

    IMMUTABLE: Never update or delete. audit_service only ever inserts.

    blocked=True rows describe a refused attempt; block_reason lists every
    failed condition, one per line. old_values/new_values are JSON snapshots
    of the fields involved (new_values holds the attempted values when blocked).
    """
    __tablename__ = "trip_audit_log"
    __table_args__ = (
        db.Index("ix_trip_audit_trip_created", "trip_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(db.Integer, db.ForeignKey("trips.id"), nullable=False, index=True)
    trip_code = db.Column(db.String(32), nullable=True)

    action = db.Column(db.String(32), nullable=False, index=True)
    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    blocked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    block_reason = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    trip = db.relationship("Trip", backref=db.backref("audit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "trip_code": self.trip_code,
            "action": self.action,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "blocked": self.blocked,
            "block_reason": self.block_reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
