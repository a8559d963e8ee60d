# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bizdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Business management:
# - python -m flask businesses create --name "Corner Shop" --email owner@shop.local
#   Register a business with its owner and default accounts (prompts for password).
# - python -m flask businesses list
#   List all businesses.
#
# Ledger checks:
# - python -m flask ledger verify --business-id 1
#   Replay every account and product log and report any drift.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired or revoked session tokens older than 30 days.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Account, Business, Product, User
from .services import reporting_service
from .services.auth_service import PasswordValidationError, register_business
from .services.context import LedgerContext
from .services.session_service import cleanup_expired_sessions


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create any missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Schema is up to date. Register a business with 'python -m flask businesses create'.")


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


# =============================================================================
# BUSINESS MANAGEMENT COMMANDS
# =============================================================================

@click.group('businesses')
def businesses_group():
    """Business (tenant) management commands."""


@businesses_group.command('create')
@click.option('--name', prompt=True, help='Business name')
@click.option('--email', prompt=True, help='Owner email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Owner password')
@click.option('--currency', default=None, help='ISO currency code (defaults to DEFAULT_CURRENCY)')
@click.option('--tax-rate-bps', type=int, default=None, help='Tax rate in basis points (1600 = 16%)')
@click.option('--tax-inclusive', is_flag=True, help='Prices already include tax')
@with_appcontext
def create_business_cli(name, email, password, currency, tax_rate_bps, tax_inclusive):
    """
    Register a business with its owner and the default Cash and
    Bank Account asset accounts.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    """
    try:
        business, owner = register_business(
            name,
            email,
            password,
            currency=currency,
            tax_rate_bps=tax_rate_bps,
            tax_inclusive=tax_inclusive,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit")
        return
    except LedgerError as e:
        click.echo(f"FAIL Failed to create business: {e.message}")
        return

    click.echo(f"PASS Created business: {business.name} (ID: {business.id}, {business.currency})")
    click.echo(f"     Owner: {owner.email} (ID: {owner.id})")
    click.echo("SECURITY Password securely hashed with bcrypt")


@businesses_group.command('list')
@with_appcontext
def list_businesses():
    """List all businesses with user and account counts."""
    businesses = db.session.query(Business).order_by(Business.id).all()
    if not businesses:
        click.echo("No businesses found.")
        return

    click.echo(f"\n{'ID':<6} {'Name':<30} {'Currency':<9} {'Tax bps':<8} {'Users':<6} {'Accounts':<8}")
    click.echo("-" * 72)
    for b in businesses:
        users = db.session.query(User).filter_by(business_id=b.id).count()
        accounts = db.session.query(Account).filter_by(business_id=b.id).count()
        click.echo(f"{b.id:<6} {b.name[:30]:<30} {b.currency:<9} {b.tax_rate_bps:<8} {users:<6} {accounts:<8}")


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger consistency checks."""


@ledger_group.command('verify')
@click.option('--business-id', type=int, required=True, help='Business ID')
@with_appcontext
def verify_ledger(business_id):
    """Check every account balance and product stock against its log."""
    ctx = LedgerContext(business_id=business_id, user_id=None)
    failures = 0

    for account in db.session.query(Account).filter_by(business_id=business_id).order_by(Account.id):
        result = reporting_service.verify_account(ctx, account.id)
        if not result["ok"]:
            failures += 1
            click.echo(f"FAIL Account {account.name}: stored {result['balance_cents']}, "
                       f"expected {result['expected_balance_cents']}")

    for product in db.session.query(Product).filter_by(business_id=business_id).order_by(Product.id):
        result = reporting_service.verify_product_stock(ctx, product.id)
        if not result["ok"]:
            failures += 1
            click.echo(f"FAIL Product {product.sku}: stock {result['stock']}, log total {result['log_total']}")

    if failures:
        raise click.ClickException(f"{failures} ledger inconsistencies found")
    click.echo("PASS All balances and stock levels match their logs.")


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Routine maintenance tasks."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(businesses_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
