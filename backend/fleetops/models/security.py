from __future__ import annotations

from ..extensions import db
from fleetops.time_utils import to_utc_z

class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track denied permission checks, failed logins and logouts.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Nullable for anonymous

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PERMISSION_DENIED, LOGIN_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/api/trips/7/transitions"
    action = db.Column(db.String(64), nullable=True)     # e.g., "CLOSE_TRIPS"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
