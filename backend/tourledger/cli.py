# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tourledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username ana --password "Password123!" --role supervisor --supervisor-name "Ana"
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#
# Catalog:
# - python -m flask tours create --name "Tour A" --price 700 --stock 20
#   Create a tour (--stock -1 for unlimited).
#
# Ledger:
# - python -m flask ledger check [--include-unlimited]
#   Compare each tour's sold counter with its active sale lines.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import ROLES, User
from .services import catalog_service
from .services.auth_service import create_user, PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--supervisor-name', default=None, help='Name recorded on sales (required for supervisors)')
@with_appcontext
def create_user_cli(username, password, role, supervisor_name):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            username=username,
            password=password,
            role=role,
            supervisor_name=supervisor_name,
        )
        click.echo(f"PASS Created user: {user.username} with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<12} {'Supervisor name':<30} {'Active'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.username:<20} {user.role:<12} "
            f"{(user.supervisor_name or '-'):<30} {active_str}"
        )

    click.echo("="*80 + "\n")


@click.group('tours')
def tours_group():
    """Catalog commands."""


@tours_group.command('create')
@click.option('--name', required=True, help='Tour name')
@click.option('--price', type=int, default=0, show_default=True, help='Unit price')
@click.option('--stock', type=int, default=0, show_default=True, help='Initial stock (-1 = unlimited)')
@click.option('--line', default=None, help='Product line')
@with_appcontext
def create_tour_cli(name, price, stock, line):
    try:
        tour = catalog_service.create_tour({"name": name, "price": price, "stock": stock, "line": line})
    except LedgerError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Created tour {tour.id}: {tour.name} (stock={tour.stock})")


@click.group('ledger')
def ledger_group():
    """Ledger consistency commands."""


@ledger_group.command('check')
@click.option('--include-unlimited', is_flag=True, help='Also report unlimited tours')
@with_appcontext
def ledger_check(include_unlimited):
    """
    Verify that each tour's sold counter equals the units on its active
    (non-voided) sale lines. Exits with status 1 when drift is found.
    """
    drifts = catalog_service.audit_counters(include_unlimited=include_unlimited)
    if not drifts:
        click.echo("PASS All tour counters match their sale lines.")
        return

    click.echo(f"FAIL {len(drifts)} tour(s) with counter drift:")
    for d in drifts:
        click.echo(
            f"  tour {d.tour_id} {d.name!r}: sold={d.sold} active_units={d.active_units} "
            f"drift={d.drift:+d} stock={d.stock}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(tours_group)
    app.cli.add_command(ledger_group)
