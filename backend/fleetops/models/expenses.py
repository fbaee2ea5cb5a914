from __future__ import annotations

from ..extensions import db
from fleetops.time_utils import to_utc_z, to_iso_date


class Expense(db.Model):
    """
    A cost record. Counted against trips in exactly one of two ways:

    - direct: trip_id is set, no allocation rows exist
    - allocated: trip_id is NULL, one or more ExpenseAllocation rows split it

    Never both. Only CONFIRMED expenses count toward trip financials.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_trip_status", "trip_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    amount = db.Column(db.Numeric(18, 2), nullable=False)
    expense_date = db.Column(db.Date, nullable=False, index=True)

    # Direct assignment (mutually exclusive with allocations)
    trip_id = db.Column(db.Integer, db.ForeignKey("trips.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
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

    trip = db.relationship("Trip", backref=db.backref("direct_expenses", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Expense id={self.id} code={self.expense_code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_code": self.expense_code,
            "description": self.description,
            "status": self.status,
            "amount": str(self.amount) if self.amount is not None else None,
            "expense_date": to_iso_date(self.expense_date),
            "trip_id": self.trip_id,
            "notes": self.notes,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ExpenseAllocation(db.Model):
    """
    Percentage share of an expense charged to one trip.

    INVARIANT: for one expense_id, SUM(percentage) <= 100, checked by
    expense_service.create_allocation while holding the expense row.
    """
    __tablename__ = "expense_allocations"
    __table_args__ = (
        db.CheckConstraint("percentage > 0 AND percentage <= 100", name="ck_expense_allocations_percentage"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    trip_id = db.Column(db.Integer, db.ForeignKey("trips.id"), nullable=False, index=True)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    expense = db.relationship("Expense", backref=db.backref("allocations", lazy=True))
    trip = db.relationship("Trip", backref=db.backref("expense_allocations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "trip_id": self.trip_id,
            "percentage": str(self.percentage),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
