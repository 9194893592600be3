# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--location-code MAIN]
#   Idempotent bootstrap: creates tables, default users and a default warehouse
#   that purchases receive into and sales ship from.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jo --email jo@stockflow.local --password "Password123!" --role staff
#
# Stock index:
# - python -m flask inventory verify
#   Replay the ledger and report index / product total discrepancies (exit 1 if any).
# - python -m flask inventory rebuild-index
#   Rewrite stock_levels and products.current_stock from the ledger.
#
# Credit:
# - python -m flask sales check-overdue [--batch-size 200] [--max-batches N]
#   Promote past-due unpaid sales to overdue.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Location, User
from .services import credit_service, settings_service, stock_index_service
from .services.auth_service import create_user
from .errors import StockFlowError


DEFAULT_USERS = (
    ("admin", "admin@stockflow.local", "admin"),
    ("manager", "manager@stockflow.local", "manager"),
    ("staff", "staff@stockflow.local", "staff"),
)
DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--location-code', default='MAIN', show_default=True, help='Code of the default warehouse')
@with_appcontext
def init_system(location_code):
    """Create tables, default users and the default warehouse."""
    click.echo("START Initializing StockFlow...")
    db.create_all()
    click.echo("PASS Tables ready")

    location = db.session.query(Location).filter_by(code=location_code).first()
    if location is None:
        location = Location(name="Main Warehouse", code=location_code, type="warehouse")
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.code} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.code} (ID: {location.id})")

    defaults = {}
    for key in (settings_service.KEY_DEFAULT_RECEIVING_LOCATION, settings_service.KEY_DEFAULT_SHIPPING_LOCATION):
        if settings_service.get_setting(key) is None:
            defaults[key] = location.id
    if defaults:
        settings_service.update_settings(values=defaults, actor_user_id=None)
        click.echo(f"PASS Default locations set: {', '.join(sorted(defaults))}")

    click.echo("\nUSERS Creating default users...")
    for username, email, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        create_user(username=username, email=email, password=DEFAULT_PASSWORD, role=role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")

    click.echo("\nDONE StockFlow initialized")
    click.echo(f"Default password for all users: {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<35} {'Role':<10} {'Active'}")
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<35} {user.role:<10} {'yes' if user.is_active else 'no'}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(['admin', 'manager', 'staff']), default='staff', show_default=True)
@click.option('--permission', 'permissions', multiple=True, help='Extra capability, e.g. reports.read')
@with_appcontext
def create_user_cli(username, email, password, role, permissions):
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            permissions=list(permissions),
        )
    except StockFlowError as e:
        db.session.rollback()
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('inventory')
def inventory_group():
    """Stock index maintenance."""


@inventory_group.command('verify')
@with_appcontext
def verify_index():
    discrepancies = stock_index_service.verify_stock_index()
    if not discrepancies:
        click.echo("PASS Stock index matches the ledger")
        return
    for row in discrepancies:
        click.echo(f"FAIL {row}")
    raise click.exceptions.Exit(1)


@inventory_group.command('rebuild-index')
@with_appcontext
def rebuild_index():
    changed = stock_index_service.rebuild_stock_index()
    click.echo(f"PASS Rebuilt stock index from the ledger ({changed} row(s) changed)")


@click.group('sales')
def sales_group():
    """Sales maintenance jobs."""


@sales_group.command('check-overdue')
@click.option('--batch-size', type=int, default=None, help='Sales per transaction (default from config)')
@click.option('--max-batches', type=int, default=None, help='Stop after this many batches')
@click.option('--after-id', type=int, default=0, show_default=True, help='Resume cursor')
@with_appcontext
def check_overdue(batch_size, max_batches, after_id):
    result = credit_service.run_overdue_sweep(
        after_id=after_id,
        batch_size=batch_size,
        max_batches=max_batches,
    )
    click.echo(f"PASS Marked {result['updated_count']} sale(s) overdue (cursor {result['cursor']})")
    if not result["completed"]:
        click.echo(f"WARN  Stopped early; resume with --after-id {result['cursor']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(sales_group)
