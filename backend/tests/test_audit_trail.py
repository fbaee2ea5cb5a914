"""
Trip audit trail tests.

The audit service only appends, inside the caller's transaction.
"""

from datetime import timedelta

import pytest

from fleetops.extensions import db
from fleetops.models import TripAuditLog
from fleetops.services import audit_service
from fleetops.time_utils import utcnow


class TestRecordTripEvent:

    def test_values_are_json_safe(self, make_trip):
        trip = make_trip()
        entry = audit_service.record_trip_event(
            trip=trip,
            action=audit_service.ACTION_UPDATE,
            old_values=audit_service.snapshot(trip, ["freight_revenue", "departure_date"]),
            new_values={"closed_at": utcnow().replace(microsecond=0)},
        )
        db.session.commit()

        assert entry.id is not None
        assert entry.trip_code == trip.trip_code
        assert entry.old_values == {"freight_revenue": "1000.00", "departure_date": "2026-01-15"}
        assert entry.new_values["closed_at"].endswith("Z")

    def test_unknown_action_rejected(self, make_trip):
        trip = make_trip()
        with pytest.raises(ValueError):
            audit_service.record_trip_event(trip=trip, action="DELETE")

    def test_blocked_requires_reason(self, make_trip):
        trip = make_trip()
        with pytest.raises(ValueError):
            audit_service.record_trip_event(
                trip=trip,
                action=audit_service.ACTION_UPDATE_ATTEMPT,
                blocked=True,
                reasons=[],
            )

    def test_block_reason_one_per_line(self, make_trip):
        trip = make_trip()
        entry = audit_service.record_trip_event(
            trip=trip,
            action=audit_service.ACTION_CLOSE,
            blocked=True,
            reasons=["first", "second"],
        )
        assert entry.block_reason == "first\nsecond"

    def test_flush_only_rolls_back_with_caller(self, make_trip):
        trip = make_trip()
        audit_service.record_trip_event(trip=trip, action=audit_service.ACTION_UPDATE)
        db.session.rollback()

        assert db.session.query(TripAuditLog).count() == 0


class TestGetAuditTrail:

    def test_newest_first_with_limit(self, make_trip):
        trip = make_trip()
        base = utcnow()
        for offset, action in enumerate((
            audit_service.ACTION_STATUS_CHANGE,
            audit_service.ACTION_UPDATE,
            audit_service.ACTION_CANCEL,
        )):
            audit_service.record_trip_event(
                trip=trip,
                action=action,
                created_at=base + timedelta(seconds=offset),
            )
        db.session.commit()

        trail = audit_service.get_audit_trail(trip.id)
        assert [e.action for e in trail] == ["CANCEL", "UPDATE", "STATUS_CHANGE"]

        latest = audit_service.get_audit_trail(trip.id, limit=1)
        assert [e.action for e in latest] == ["CANCEL"]

    def test_scoped_to_trip(self, make_trip):
        first = make_trip()
        second = make_trip()
        audit_service.record_trip_event(trip=first, action=audit_service.ACTION_UPDATE)
        db.session.commit()

        assert audit_service.get_audit_trail(second.id) == []

    def test_to_dict(self, make_trip):
        trip = make_trip()
        entry = audit_service.record_trip_event(
            trip=trip,
            action=audit_service.ACTION_CLOSE,
            blocked=True,
            reasons=["nope"],
        )
        db.session.commit()

        body = entry.to_dict()
        assert body["action"] == "CLOSE"
        assert body["blocked"] is True
        assert body["block_reason"] == "nope"
