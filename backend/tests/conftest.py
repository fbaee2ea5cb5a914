"""
Pytest fixtures for FleetOps backend tests.

Provides test database setup, role/permission seeding, users with bearer
tokens, trip/expense factories and the test client.
"""

from datetime import date, timedelta
from decimal import Decimal
from itertools import count

import pytest

from fleetops import create_app
from fleetops.config import TestConfig
from fleetops.extensions import db
from fleetops.models import Expense, Trip
from fleetops.services import permission_service, session_service
from fleetops.services.auth_service import assign_role, create_default_roles, create_user
from fleetops.services.context import TransitionContext
from fleetops.services.trip_lifecycle_service import request_transition
from fleetops.time_utils import utcnow


DEFAULT_PASSWORD = "Password123!"
DEPARTURE = date(2026, 1, 15)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Setup default roles and permissions."""
    create_default_roles()
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    db_session.commit()


def _make_user(username: str, role: str):
    user = create_user(
        username=username,
        email=f"{username}@fleetops.test",
        password=DEFAULT_PASSWORD,
    )
    assign_role(user.id, role)
    return user


def auth_headers(user) -> dict:
    """Open a session for `user` and return Authorization headers."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_user(setup_roles):
    return _make_user("admin", "admin")


@pytest.fixture(scope='function')
def dispatcher_user(setup_roles):
    return _make_user("dispatcher", "dispatcher")


@pytest.fixture(scope='function')
def accountant_user(setup_roles):
    return _make_user("accountant", "accountant")


@pytest.fixture(scope='function')
def viewer_user(setup_roles):
    return _make_user("viewer", "viewer")


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture(scope='function')
def dispatcher_headers(dispatcher_user):
    return auth_headers(dispatcher_user)


@pytest.fixture(scope='function')
def accountant_headers(accountant_user):
    return auth_headers(accountant_user)


@pytest.fixture(scope='function')
def viewer_headers(viewer_user):
    return auth_headers(viewer_user)


# =============================================================================
# DOMAIN FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_trip(db_session):
    """Insert a trip row directly (bypasses the lifecycle service)."""
    seq = count(1)

    def _make(
        trip_code=None,
        departure_date=DEPARTURE,
        freight_revenue=Decimal("1000.00"),
        status="draft",
        **fields,
    ):
        trip = Trip(
            trip_code=trip_code or f"TRIP-{next(seq):04d}",
            departure_date=departure_date,
            freight_revenue=freight_revenue,
            status=status,
            **fields,
        )
        db_session.add(trip)
        db_session.commit()
        return trip

    return _make


@pytest.fixture(scope='function')
def make_expense(db_session):
    """Insert an expense row directly."""
    seq = count(1)

    def _make(
        amount=Decimal("100.00"),
        expense_date=DEPARTURE,
        trip_id=None,
        status="draft",
        expense_code=None,
    ):
        expense = Expense(
            expense_code=expense_code or f"EXP-{next(seq):04d}",
            description="Fuel",
            amount=amount,
            expense_date=expense_date,
            trip_id=trip_id,
            status=status,
        )
        db_session.add(expense)
        db_session.commit()
        return expense

    return _make


@pytest.fixture(scope='function')
def run_to_completed():
    """Drive a draft trip through confirm, dispatch, start and complete."""
    def _run(trip_id, user_id=None, distance_km=Decimal("400")):
        ctx = TransitionContext(user_id=user_id)
        for target in ("confirmed", "dispatched", "in_progress"):
            outcome = request_transition(trip_id, target, ctx)
            assert outcome.ok, outcome.reasons

        done = TransitionContext(
            user_id=user_id,
            arrival_time=utcnow() + timedelta(hours=6),
            distance_km=distance_km,
        )
        outcome = request_transition(trip_id, "completed", done)
        assert outcome.ok, outcome.reasons
        return outcome.entity

    return _run
