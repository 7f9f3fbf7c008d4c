# Overview: Flask CLI command groups for bootstrap, supervisor PINs, and fiscal retries.

# backend/fiscalpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--branch-code CC --branch-name "Casa Central"]
#   Idempotent: creates tables, default roles, payment methods, and a first branch with register 1.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users / supervisor PINs:
# - python -m flask users list
#   List users with role, branch and whether a PIN is set.
# - python -m flask users set-pin maria 4821
#   bcrypt-hash and store a supervisor PIN (4-8 digits).
#
# Fiscal documents:
# - python -m flask invoices retry-pending
#   Run one retry sweep now (PENDING invoices, then credit notes).
# - python -m flask invoices run-scheduler
#   Run the periodic retry scheduler in the foreground until Ctrl+C.
# - python -m flask invoices failed [--limit 50]
#   List FAILED invoices that need manual intervention.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, CashRegister, Invoice, User
from .services.auth_service import create_default_roles, set_user_pin, validate_pin_format
from .services.fiscal_state import STATUS_FAILED
from .services.invoice_retry_scheduler import get_retry_scheduler
from .services.payment_service import create_default_payment_methods
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch-code', default='CC', help='Code of the first branch (used in sale numbers)')
@click.option('--branch-name', default='Casa Central', help='Name of the first branch')
@with_appcontext
def init_system(branch_code, branch_name):
    """
    Initialize the database: tables, roles, payment methods, first branch.

    Creates:
    - Roles: owner, manager, cashier
    - Payment methods: CASH, DEBIT, CREDIT, QR, TRANSFER
    - One branch with register 1 (if no branch exists)
    """
    click.echo("START Initializing fiscal POS...")

    db.create_all()

    roles = create_default_roles()
    click.echo(f"PASS Roles: {', '.join(role.name for role in roles)}")

    methods = create_default_payment_methods()
    click.echo(f"PASS Payment methods: {', '.join(method.code for method in methods)}")

    branch = db.session.query(Branch).first()
    if not branch:
        branch = Branch(code=branch_code.upper(), name=branch_name)
        db.session.add(branch)
        db.session.flush()
        db.session.add(CashRegister(branch_id=branch.id, register_number=1, name="Caja 1"))
        click.echo(f"PASS Created branch {branch.code} - {branch.name} with register 1")
    else:
        click.echo(f"PASS Using existing branch {branch.code} - {branch.name}")

    db.session.commit()
    click.echo("DONE")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.confirm("This deletes ALL data. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# USERS / SUPERVISOR PINS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and supervisor PIN commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Branch':<8} {'Active':<8} {'PIN'}")
    click.echo("="*80)
    for user in users:
        role = user.role.name if user.role else "none"
        active_str = "Yes" if user.is_active else "No"
        pin_str = "set" if user.pin_hash else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {role:<10} {str(user.branch_id or '-'):<8} {active_str:<8} {pin_str}")
    click.echo("="*80 + "\n")


@users_group.command('set-pin')
@click.argument('username')
@click.argument('pin')
@with_appcontext
def set_pin(username, pin):
    """Hash and store a supervisor PIN for USERNAME."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User not found: {username}")
        raise SystemExit(1)

    try:
        validate_pin_format(pin)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    set_user_pin(user, pin)
    db.session.commit()
    click.echo(f"PASS PIN set for {user.username}")


# =============================================================================
# FISCAL DOCUMENTS
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Fiscal invoice and credit note maintenance."""


@invoices_group.command('retry-pending')
@with_appcontext
def retry_pending():
    """Run one retry sweep synchronously."""
    result = get_retry_scheduler().run_once()
    click.echo(
        f"PASS Attempted {result.attempted}: {result.issued} issued, "
        f"{result.pending} still pending, {result.failed} failed"
    )
    for error in result.errors:
        click.echo(f"FAIL {error}")


@invoices_group.command('run-scheduler')
@with_appcontext
def run_scheduler():
    """Run the retry scheduler in the foreground."""
    scheduler = get_retry_scheduler()
    scheduler.start()
    click.echo(f"START Retry scheduler running every {current_app.config['INVOICE_RETRY_INTERVAL_SECONDS']}s (Ctrl+C to stop)")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        scheduler.stop()


@invoices_group.command('failed')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_failed(limit):
    """List FAILED invoices awaiting manual intervention."""
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.status == STATUS_FAILED)
        .order_by(Invoice.created_at.desc())
        .limit(limit)
        .all()
    )
    if not invoices:
        click.echo("No failed invoices.")
        return
    for invoice in invoices:
        click.echo(
            f"{invoice.id:<6} {invoice.invoice_type} {invoice.formatted_number}  sale={invoice.sale_id:<6} "
            f"retries={invoice.retry_count}  {invoice.error_message or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
