"""
CLI command tests (flask system / users / periods).
"""

from datetime import date

from fleetops.extensions import db
from fleetops.models import AccountingPeriod, User
from fleetops.services import period_service, permission_service


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init"])
        second = runner.invoke(args=["system", "init"])

        assert first.exit_code == 0, first.output
        assert "Created user: admin" in first.output
        assert "already exists" in second.output

        admin = db.session.query(User).filter_by(username="admin").one()
        assert "CLOSE_TRIPS" in permission_service.get_user_permissions(admin.id)


class TestUserCommands:

    def test_create_and_list(self, app, setup_roles):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create",
            "--username", "acc1",
            "--email", "acc1@fleetops.test",
            "--password", "Password123!",
            "--role", "accountant",
        ])
        assert result.exit_code == 0, result.output
        assert "Created user: acc1" in result.output

        listing = runner.invoke(args=["users", "list"])
        assert "acc1" in listing.output
        assert "accountant" in listing.output

    def test_weak_password_rejected(self, app, setup_roles):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--username", "weak",
            "--email", "weak@fleetops.test",
            "--password", "short",
            "--role", "viewer",
        ])
        assert "Password validation failed" in result.output
        assert db.session.query(User).filter_by(username="weak").first() is None


class TestPeriodCommands:

    def test_create_close_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        created = runner.invoke(args=[
            "periods", "create", "--code", "2026-01", "--start", "2026-01-01", "--end", "2026-01-31",
        ])
        assert created.exit_code == 0, created.output

        closed = runner.invoke(args=["periods", "close", "2026-01", "--yes"])
        assert closed.exit_code == 0, closed.output
        assert "Closed accounting period 2026-01 (2026-01-01 to 2026-01-31)" in closed.output

        db.session.expire_all()
        assert db.session.query(AccountingPeriod).filter_by(period_code="2026-01").one().is_closed
        assert "CLOSED" in runner.invoke(args=["periods", "list"]).output

    def test_close_aborts_without_confirmation(self, app, db_session):
        period_service.create_accounting_period("2026-02", date(2026, 2, 1), date(2026, 2, 28))
        runner = app.test_cli_runner()

        result = runner.invoke(args=["periods", "close", "2026-02"], input="n\n")

        assert result.exit_code != 0
        db.session.expire_all()
        assert not db.session.query(AccountingPeriod).filter_by(period_code="2026-02").one().is_closed

    def test_overlap_reported(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["periods", "create", "--code", "A", "--start", "2026-01-01", "--end", "2026-01-31"])

        result = runner.invoke(args=["periods", "create", "--code", "B", "--start", "2026-01-15", "--end", "2026-02-15"])

        assert result.exit_code != 0
        assert "overlaps" in result.output
