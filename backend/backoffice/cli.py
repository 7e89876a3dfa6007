# Overview: Flask CLI command groups for schema bootstrap and ledger maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to backoffice (PowerShell: $env:FLASK_APP="backoffice").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Credits:
# - python -m flask credits mark-overdue [--as-of 2025-03-01]
#   Persist OVERDUE on installments past due with a balance (best-effort batch).
#
# Stock:
# - python -m flask stock verify 12
#   Check that a product's movement chain is exact and ends at its stock on hand.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import credit_service, stock_ledger


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("OK Schema created")


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
    db.create_all()
    click.echo("OK Schema recreated")


@click.group('credits')
def credits_group():
    """Installment credit maintenance."""


@credits_group.command('mark-overdue')
@click.option('--as-of', 'as_of', type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help='Business date to evaluate (default: today)')
@with_appcontext
def mark_overdue(as_of):
    """Flag installments past their due date that still carry a balance."""
    updated = credit_service.mark_overdue_installments(as_of.date() if as_of else None)
    click.echo(f"OK {updated} installment(s) marked OVERDUE")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('verify')
@click.argument('product_id', type=int)
@with_appcontext
def verify_stock(product_id):
    """Audit the movement chain of one product."""
    try:
        problems = stock_ledger.verify_movement_chain(product_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if not problems:
        click.echo(f"OK Movement chain for product {product_id} is exact")
        return

    for problem in problems:
        click.echo(
            f"FAIL movement={problem['movement_id']} {problem['problem']} "
            f"(expected {problem['expected']}, got {problem['actual']})"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(credits_group)
    app.cli.add_command(stock_group)
