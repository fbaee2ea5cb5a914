from __future__ import annotations

from ..extensions import db
from fleetops.time_utils import to_utc_z, to_iso_date

class AccountingPeriod(db.Model):
    """
    Fiscal period. Once is_closed is set, every financial record dated inside
    [start_date, end_date] is frozen regardless of its own status.

    Read-only to the trip/expense core. Created and closed by an
    administrative workflow (see `flask periods ...`).
    """
    __tablename__ = "accounting_periods"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_accounting_periods_range"),
        db.Index("ix_accounting_periods_closed_range", "is_closed", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period_code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    is_closed = db.Column(db.Boolean, nullable=False, default=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def describe(self) -> str:
        return f"{self.period_code} ({self.start_date.isoformat()} to {self.end_date.isoformat()})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period_code": self.period_code,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "is_closed": self.is_closed,
            "closed_at": to_utc_z(self.closed_at),
        }
