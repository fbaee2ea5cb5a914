"""
HTTP API tests.

Verifies:
- A trip can be walked from creation to close over HTTP
- Refusals map to 400 (guards), 409 (allocation constraints), 423 (period lock)
- Read endpoints (detail, check, audit, financials, periods, health)
"""

from datetime import date
from decimal import Decimal

import pytest

from fleetops.services import period_service


def _transition(client, headers, trip_id, status, **extra):
    return client.post(
        f"/api/trips/{trip_id}/transitions",
        json={"status": status, **extra},
        headers=headers,
    )


# =============================================================================
# FULL FLOW
# =============================================================================


class TestTripFlow:

    def test_create_to_close(self, client, admin_headers):
        resp = client.post(
            "/api/trips",
            json={
                "trip_code": "T-2026-0001",
                "departure_date": "2026-03-02",
                "freight_revenue": "1000.00",
                "vehicle_id": "TRK-12",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        trip_id = resp.get_json()["trip"]["id"]

        resp = client.post(
            "/api/expenses",
            json={
                "expense_code": "EXP-2026-0001",
                "description": "Diesel",
                "amount": "300.00",
                "expense_date": "2026-03-02",
                "trip_id": trip_id,
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        expense_id = resp.get_json()["expense"]["id"]

        for status in ("confirmed", "dispatched", "in_progress"):
            assert _transition(client, admin_headers, trip_id, status).status_code == 200

        resp = _transition(
            client, admin_headers, trip_id, "completed",
            arrival_time="2099-01-01T00:00:00Z", distance_km="412.5",
        )
        assert resp.status_code == 200
        assert resp.get_json()["trip"]["actual_distance_km"] == "412.50"

        # Draft expense blocks close
        resp = _transition(client, admin_headers, trip_id, "closed")
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["ok"] is False
        assert body["kind"] == "validation"
        assert any("unconfirmed expense exists" in r for r in body["reasons"])
        assert body["trip"]["status"] == "completed"

        assert client.post(f"/api/expenses/{expense_id}/confirm", headers=admin_headers).status_code == 200

        resp = _transition(client, admin_headers, trip_id, "closed")
        assert resp.status_code == 200
        assert resp.get_json()["trip"]["status"] == "closed"

        financials = client.get(f"/api/trips/{trip_id}/financials", headers=admin_headers).get_json()
        assert financials["financials"]["profit"] == "700.00"
        assert financials["financials"]["margin_pct"] == "70.00"

        resp = client.patch(
            f"/api/trips/{trip_id}",
            json={"freight_revenue": "5000.00"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

        audit = client.get(f"/api/trips/{trip_id}/audit", headers=admin_headers).get_json()
        actions = [e["action"] for e in audit["entries"]]
        assert actions[0] == "UPDATE_ATTEMPT_CLOSED"
        assert "CLOSE" in actions
        assert audit["entries"][0]["blocked"] is True

    def test_detail_lists_transition_options(self, client, admin_headers, make_trip):
        trip = make_trip()
        resp = client.get(f"/api/trips/{trip.id}", headers=admin_headers)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["trip"]["trip_code"] == trip.trip_code
        assert body["transitions"] == {"cancelled": [], "confirmed": [], "dispatched": []}

    def test_list_filters_by_status(self, client, admin_headers, make_trip):
        make_trip()
        make_trip(status="completed")

        resp = client.get("/api/trips?status=completed", headers=admin_headers)
        assert resp.status_code == 200
        assert [t["status"] for t in resp.get_json()["trips"]] == ["completed"]

        assert client.get("/api/trips?status=archived", headers=admin_headers).status_code == 400


# =============================================================================
# REFUSAL STATUS CODES
# =============================================================================


class TestRefusalStatusCodes:

    def test_invalid_target_status(self, client, admin_headers, make_trip):
        trip = make_trip()
        assert _transition(client, admin_headers, trip.id, "archived").status_code == 400
        resp = client.post(f"/api/trips/{trip.id}/transitions", json={}, headers=admin_headers)
        assert resp.status_code == 400

    def test_missing_trip(self, client, admin_headers):
        assert client.get("/api/trips/9999", headers=admin_headers).status_code == 404
        assert _transition(client, admin_headers, 9999, "confirmed").status_code == 404

    def test_bad_distance(self, client, admin_headers, make_trip):
        trip = make_trip(status="in_progress")
        resp = _transition(client, admin_headers, trip.id, "completed", distance_km="far")
        assert resp.status_code == 400

    @pytest.mark.parametrize("distance", ["NaN", "Infinity", "-Infinity"])
    def test_distance_must_be_finite(self, client, admin_headers, make_trip, distance):
        trip = make_trip(status="in_progress")
        resp = _transition(
            client, admin_headers, trip.id, "completed",
            arrival_time="2099-01-01T00:00:00Z", distance_km=distance,
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid arrival_time or distance_km"
        detail = client.get(f"/api/trips/{trip.id}", headers=admin_headers).get_json()
        assert detail["trip"]["status"] == "in_progress"

    def test_allocation_over_budget_is_409(self, client, admin_headers, make_trip, make_expense):
        trip_a = make_trip()
        trip_b = make_trip()
        expense = make_expense()

        resp = client.post(
            f"/api/expenses/{expense.id}/allocations",
            json={"trip_id": trip_a.id, "percentage": "60"},
            headers=admin_headers,
        )
        assert resp.status_code == 201

        resp = client.post(
            f"/api/expenses/{expense.id}/allocations",
            json={"trip_id": trip_b.id, "percentage": "50"},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["kind"] == "constraint"
        assert body["error"] == "Allocation total exceeds 100%: 60 + 50 = 110"

        listing = client.get(f"/api/expenses/{expense.id}/allocations", headers=admin_headers).get_json()
        assert listing["allocated_percentage"] == "60"
        assert len(listing["allocations"]) == 1

    def test_period_lock_is_423(self, client, admin_headers, make_trip):
        trip = make_trip(departure_date=date(2026, 1, 15))
        period_service.create_accounting_period("2026-01", date(2026, 1, 1), date(2026, 1, 31))
        period_service.close_accounting_period("2026-01")

        resp = client.patch(
            f"/api/trips/{trip.id}",
            json={"notes": "late"},
            headers=admin_headers,
        )

        assert resp.status_code == 423
        body = resp.get_json()
        assert body["kind"] == "period_lock"
        assert body["detail"]["locked_period"]["period_code"] == "2026-01"

    def test_duplicate_trip_code_is_409(self, client, admin_headers, make_trip):
        make_trip(trip_code="T-DUP")
        resp = client.post(
            "/api/trips",
            json={"trip_code": "T-DUP", "departure_date": "2026-03-01"},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_non_writable_field_is_400(self, client, admin_headers, make_trip):
        trip = make_trip()
        resp = client.patch(f"/api/trips/{trip.id}", json={"status": "closed"}, headers=admin_headers)
        assert resp.status_code == 400
        assert "not allowed" in resp.get_json()["error"]


# =============================================================================
# READ ENDPOINTS
# =============================================================================


class TestReadEndpoints:

    def test_check_never_writes(self, client, admin_headers, make_trip):
        trip = make_trip()

        resp = client.get(f"/api/trips/{trip.id}/transitions/closed/check", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["allowed"] is False
        assert resp.get_json()["reasons"]

        resp = client.get(f"/api/trips/{trip.id}/transitions/confirmed/check", headers=admin_headers)
        assert resp.get_json() == {"allowed": True, "reasons": []}

        audit = client.get(f"/api/trips/{trip.id}/audit", headers=admin_headers).get_json()
        assert audit["count"] == 0

    def test_financial_summary(self, client, admin_headers, make_trip):
        make_trip(status="completed", freight_revenue=Decimal("250.00"))

        resp = client.get(
            "/api/trips/financials/summary?start_date=2026-01-01&end_date=2026-01-31",
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["pending"]["revenue"] == "250.00"

        resp = client.get("/api/trips/financials/summary", headers=admin_headers)
        assert resp.status_code == 400

    def test_trip_expenses(self, client, admin_headers, make_trip, make_expense):
        trip = make_trip()
        make_expense(trip_id=trip.id)

        resp = client.get(f"/api/expenses/trip/{trip.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

    def test_period_lock_lookup(self, client, admin_headers):
        period_service.create_accounting_period("2026-01", date(2026, 1, 1), date(2026, 1, 31))
        period_service.close_accounting_period("2026-01")

        body = client.get("/api/periods/locked?date=2026-01-31", headers=admin_headers).get_json()
        assert body["locked"] is True
        assert body["period"]["period_code"] == "2026-01"

        body = client.get("/api/periods/locked?date=2026-02-01", headers=admin_headers).get_json()
        assert body["locked"] is False

        assert client.get("/api/periods/locked?date=soon", headers=admin_headers).status_code == 400


class TestHealth:

    def test_healthy(self, client, setup_roles):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_degraded_without_roles(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["auth"]["status"] == "degraded"
