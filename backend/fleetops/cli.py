# Overview: Flask CLI command groups for bootstrap, accounting periods, and inspection.

# backend/fleetops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: roles, permissions, role grants and one admin user.
# - python -m flask system init-permissions
#   Initialize permissions and assign defaults to roles.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username acc1 --email acc1@fleetops.local --password "Password123!" --role accountant
#
# Accounting periods:
# - python -m flask periods list
# - python -m flask periods create --code 2026-01 --start 2026-01-01 --end 2026-01-31
# - python -m flask periods close 2026-01
#   Closing is permanent: every trip and expense dated inside the period is frozen.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import AccountingPeriod, User
from .permissions import DEFAULT_ROLES
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import period_service, permission_service
from .time_utils import parse_iso_date


ROLE_NAMES = [name for name, _ in DEFAULT_ROLES]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-password', default='Password123!', show_default=True, help='Password for the admin user')
@with_appcontext
def init_system(admin_password):
    """
    Initialize roles, permissions and a default admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing FleetOps back office...")

    created_roles = create_default_roles()
    click.echo(f"PASS Roles ready ({created_roles} new): {', '.join(ROLE_NAMES)}")

    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    existing = db.session.query(User).filter_by(username="admin").first()
    if existing:
        click.echo("WARN  User 'admin' already exists, skipping...")
    else:
        try:
            user = create_user(
                username="admin",
                email="admin@fleetops.local",
                password=admin_password,
                full_name="Administrator",
            )
            assign_role(user.id, "admin")
            click.echo("PASS Created user: admin (admin@fleetops.local) with role 'admin'")
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for 'admin': {str(e)}")

    click.echo("DONE System initialized")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Create permission rows and default role grants (idempotent)."""
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_NAMES), prompt=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, email, password, role, full_name):
    """
    Create a new user.

    Password must have 8+ chars, uppercase, lowercase, digit, special char.
    """
    try:
        user = create_user(username=username, email=email, password=password, full_name=full_name)
        assign_role(user.id, role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*90)

    for user in users:
        roles_str = ", ".join(permission_service.get_user_role_names(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("="*90 + "\n")


# =============================================================================
# ACCOUNTING PERIODS
# =============================================================================

@click.group('periods')
def periods_group():
    """Accounting period administration."""


@periods_group.command('list')
@with_appcontext
def list_periods():
    periods = db.session.query(AccountingPeriod).order_by(AccountingPeriod.start_date.asc()).all()
    if not periods:
        click.echo("No accounting periods defined.")
        return

    for period in periods:
        state = "CLOSED" if period.is_closed else "open"
        click.echo(f"{period.period_code:<12} {period.start_date} .. {period.end_date}  {state}")


@periods_group.command('create')
@click.option('--code', required=True, help='Period code, e.g. 2026-01')
@click.option('--start', 'start', required=True, help='First day (YYYY-MM-DD)')
@click.option('--end', 'end', required=True, help='Last day (YYYY-MM-DD)')
@with_appcontext
def create_period_cli(code, start, end):
    try:
        period = period_service.create_accounting_period(code, parse_iso_date(start), parse_iso_date(end))
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created accounting period {period.describe()}")


@periods_group.command('close')
@click.argument('code')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def close_period_cli(code, yes):
    """Close a period. There is no reopen."""
    if not yes:
        click.confirm(f"WARN Closing {code} freezes every record dated inside it. Continue?", abort=True)
    try:
        period = period_service.close_accounting_period(code)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Closed accounting period {period.describe()}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(periods_group)
