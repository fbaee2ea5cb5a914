"""
Authorization tests for the FleetOps API.

Verifies:
- Unauthenticated requests return 401
- Viewer role denied every write (403), denials are logged
- Dispatcher runs the workflow but cannot close trips
- Accountant closes trips but cannot run the workflow
- Login issues a bearer token; failures are logged
"""

import pytest

from fleetops.extensions import db
from fleetops.models import SecurityEvent

DEFAULT_PASSWORD = "Password123!"


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/trips"),
            ("POST", "/api/trips"),
            ("GET", "/api/trips/1"),
            ("PATCH", "/api/trips/1"),
            ("POST", "/api/trips/1/transitions"),
            ("GET", "/api/trips/1/transitions/closed/check"),
            ("GET", "/api/trips/1/audit"),
            ("GET", "/api/trips/1/financials"),
            ("GET", "/api/trips/financials/summary"),
            ("POST", "/api/expenses"),
            ("POST", "/api/expenses/1/confirm"),
            ("POST", "/api/expenses/1/allocations"),
            ("DELETE", "/api/expenses/allocations/1"),
            ("GET", "/api/periods"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, setup_roles, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, setup_roles):
        resp = client.get("/api/trips", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# VIEWER - READ ONLY
# =============================================================================


class TestViewerDenied:

    def test_can_list_trips(self, client, viewer_headers, make_trip):
        make_trip()
        resp = client.get("/api/trips", headers=viewer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

    def test_cannot_create_trip(self, client, viewer_headers):
        resp = client.post(
            "/api/trips",
            json={"trip_code": "T-V", "departure_date": "2026-02-01"},
            headers=viewer_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "EDIT_TRIPS"

    def test_cannot_transition(self, client, viewer_headers, make_trip):
        trip = make_trip()
        resp = client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "confirmed"},
            headers=viewer_headers,
        )
        assert resp.status_code == 403

    def test_cannot_view_financials(self, client, viewer_headers, make_trip):
        trip = make_trip()
        resp = client.get(f"/api/trips/{trip.id}/financials", headers=viewer_headers)
        assert resp.status_code == 403

    def test_denial_is_logged(self, client, viewer_user, viewer_headers, make_trip):
        trip = make_trip()
        client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "cancelled"},
            headers=viewer_headers,
        )

        event = (
            db.session.query(SecurityEvent)
            .filter_by(event_type="PERMISSION_DENIED", user_id=viewer_user.id)
            .one()
        )
        assert event.success is False
        assert event.action == "CANCEL_TRIPS"


# =============================================================================
# TRANSITION PERMISSIONS DEPEND ON TARGET STATUS
# =============================================================================


class TestTransitionPermissions:

    def test_dispatcher_can_dispatch(self, client, dispatcher_headers, make_trip):
        trip = make_trip()
        resp = client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "dispatched"},
            headers=dispatcher_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["trip"]["status"] == "dispatched"

    def test_dispatcher_cannot_close(self, client, dispatcher_headers, make_trip, run_to_completed):
        trip = make_trip()
        run_to_completed(trip.id)

        resp = client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "closed"},
            headers=dispatcher_headers,
        )

        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "CLOSE_TRIPS"

    def test_accountant_can_close(self, client, accountant_user, accountant_headers, make_trip, run_to_completed):
        trip = make_trip()
        run_to_completed(trip.id)

        resp = client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "closed"},
            headers=accountant_headers,
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["trip"]["status"] == "closed"
        assert body["trip"]["closed_by_user_id"] == accountant_user.id

    def test_accountant_cannot_start(self, client, accountant_headers, make_trip):
        trip = make_trip(status="dispatched")
        resp = client.post(
            f"/api/trips/{trip.id}/transitions",
            json={"status": "in_progress"},
            headers=accountant_headers,
        )
        assert resp.status_code == 403


# =============================================================================
# LOGIN / LOGOUT
# =============================================================================


class TestLogin:

    def test_login_returns_token(self, client, dispatcher_user):
        resp = client.post(
            "/api/auth/login",
            json={"username": "dispatcher", "password": DEFAULT_PASSWORD},
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["roles"] == ["dispatcher"]
        assert "MANAGE_TRIP_WORKFLOW" in body["permissions"]
        assert "CLOSE_TRIPS" not in body["permissions"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.get_json()["user"]["username"] == "dispatcher"

    def test_bad_password_logged(self, client, dispatcher_user):
        resp = client.post(
            "/api/auth/login",
            json={"username": "dispatcher", "password": "wrong-password"},
        )

        assert resp.status_code == 401
        assert db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").count() == 1

    def test_missing_fields(self, client, setup_roles):
        resp = client.post("/api/auth/login", json={"username": "dispatcher"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, dispatcher_headers):
        resp = client.post("/api/auth/logout", headers=dispatcher_headers)
        assert resp.status_code == 200

        resp = client.get("/api/auth/me", headers=dispatcher_headers)
        assert resp.status_code == 401
