# Overview: Flask CLI command groups for bootstrap, inspection, and seller administration.

# backend/marketplace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the singleton admin (ADMIN_EMAIL / ADMIN_PASSWORD).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection:
# - python -m flask users list [--role seller]
#   List accounts with approval state and balances.
#
# Seller administration:
# - python -m flask sellers approve 3 [--revoke]
#   Approve (or un-approve) a seller so they can log in.
# - python -m flask sellers recharge 3 250.00 [--note "Bank transfer"]
#   Add credit to a seller's balance (journaled as the admin).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, ROLE_ADMIN
from .services import auth_service, ledger_service, user_service
from .time_utils import money
from .validation import MarketplaceError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the marketplace: schema and the singleton admin account.

    SECURITY: Change the default admin password immediately in production!
    """
    click.echo("START Initializing marketplace...")

    db.create_all()
    click.echo("PASS Schema ready")

    try:
        admin, created = auth_service.ensure_admin()
    except MarketplaceError as e:
        click.echo(f"FAIL Could not create admin: {e.message}")
        raise SystemExit(1)

    if created:
        click.echo(f"PASS Created admin: {admin.email}")
    else:
        click.echo(f"PASS Using existing admin: {admin.email} (ID: {admin.id})")

    click.echo("DONE Marketplace initialized")


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


@click.group('users')
def users_group():
    """User inspection commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(['admin', 'seller']), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with approval state and balances."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Role':<8} {'Email':<32} {'Approved':<9} {'Active':<7} {'Credit':>12} {'Pending':>12}")
    click.echo("="*100)

    for user in users:
        approved_str = "Yes" if user.approved else "No"
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.role:<8} {user.email:<32} {approved_str:<9} {active_str:<7} "
            f"{money(user.credit_amount):>12} {money(user.pending_amount):>12}"
        )

    click.echo("="*100 + "\n")


@click.group('sellers')
def sellers_group():
    """Seller administration commands."""


@sellers_group.command('approve')
@click.argument('seller_id', type=int)
@click.option('--revoke', is_flag=True, help='Withdraw approval instead')
@with_appcontext
def approve_seller_cli(seller_id, revoke):
    """Approve a seller account."""
    try:
        seller = user_service.set_seller_approval(seller_id, not revoke)
    except MarketplaceError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    state = "approved" if seller.approved else "not approved"
    click.echo(f"PASS Seller {seller.id} ({seller.email}) is now {state}")


@sellers_group.command('recharge')
@click.argument('seller_id', type=int)
@click.argument('amount')
@click.option('--note', default=None, help='Journal note')
@with_appcontext
def recharge_seller_cli(seller_id, amount, note):
    """Add credit to a seller's balance."""
    admin = (
        db.session.query(User)
        .filter_by(role=ROLE_ADMIN)
        .order_by(User.id.asc())
        .first()
    )
    if not admin:
        click.echo("FAIL No admin account; run 'python -m flask system init' first")
        raise SystemExit(1)

    try:
        entry = ledger_service.recharge_credit(seller_id, amount, admin, note=note or "CLI recharge")
    except MarketplaceError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(
        f"PASS Seller {seller_id} credit {money(entry.credit_after)} "
        f"(+{money(entry.credit_delta)}), pending {money(entry.pending_after)}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sellers_group)
