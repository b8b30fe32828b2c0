# Overview: Flask CLI command groups for scheduled sweeps, inspection, and maintenance.

# backend/marketplace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to marketplace (PowerShell: $env:FLASK_APP="marketplace").
# - Use: python -m flask <group> <command> [options]
#
# Scheduled sweeps (point cron / the job runner at these):
# - python -m flask offers expire-overdue [--as-of 2026-01-31T00:00:00Z]
#   Expire submitted/viewed offers whose deadline has passed.
# - python -m flask reviews publish-held [--as-of 2026-01-31T00:00:00Z]
#   Publish held reviews whose hold window has passed.
#
# Inspection:
# - python -m flask transactions list --status in_cooling_off --limit 20
#   List transactions with optional status filter.
# - python -m flask transactions timeline 42
#   Show the timeline of one transaction.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import offer_service, review_service, transaction_service
from .services.lifecycle_service import TRANSACTION_STATUSES
from .time_utils import parse_iso_datetime


def _as_of(value):
    try:
        return parse_iso_datetime(value)
    except ValueError as exc:
        raise click.BadParameter(f"Not an ISO-8601 datetime: {value}") from exc


@click.group('offers')
def offers_group():
    """Offer lifecycle commands."""


@offers_group.command('expire-overdue')
@click.option('--as-of', 'as_of', help='Treat this ISO-8601 instant as now (default: current time)')
@with_appcontext
def expire_overdue_cli(as_of):
    """Expire offers whose response deadline has passed."""
    expired = offer_service.expire_overdue_offers(now=_as_of(as_of))
    click.echo(f"Expired {expired} overdue offers.")


@click.group('reviews')
def reviews_group():
    """Review moderation commands."""


@reviews_group.command('publish-held')
@click.option('--as-of', 'as_of', help='Treat this ISO-8601 instant as now (default: current time)')
@with_appcontext
def publish_held_cli(as_of):
    """Publish held reviews whose hold window has passed."""
    published = review_service.publish_expired_holds(now=_as_of(as_of))
    click.echo(f"Published {published} held reviews.")


@click.group('transactions')
def transactions_group():
    """Transaction inspection commands."""


@transactions_group.command('list')
@click.option('--status', type=click.Choice(list(TRANSACTION_STATUSES)), help='Filter by status')
@click.option('--limit', type=int, default=20, show_default=True, help='Max transactions to show')
@with_appcontext
def list_transactions_cli(status, limit):
    """
    List transactions.

    Example:
        flask transactions list
        flask transactions list --status settling
    """
    transactions = transaction_service.list_transactions(status=status, limit=limit)

    if not transactions:
        click.echo("No transactions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Property':<9} {'Offer':<7} {'Status':<16} {'Sale Price':<16} {'Settlement':<12} {'Cooling-off ends'}")
    click.echo("="*100)

    for txn in transactions:
        price = f"${txn.sale_price_cents / 100:,.2f}"
        settlement = txn.settlement_date.isoformat() if txn.settlement_date else "-"
        cooling_off = str(txn.cooling_off_ends_at)[:19] if txn.cooling_off_ends_at else "-"
        click.echo(f"{txn.id:<5} {txn.property_id:<9} {txn.offer_id:<7} {txn.status:<16} "
                  f"{price:<16} {settlement:<12} {cooling_off}")

    click.echo("="*100 + "\n")


@transactions_group.command('timeline')
@click.argument('transaction_id', type=int)
@with_appcontext
def timeline_cli(transaction_id):
    """Show the timeline of one transaction."""
    events = transaction_service.get_timeline(transaction_id)
    for event in events:
        click.echo(f"{str(event.occurred_at)[:19]}  {event.event_type:<28} {event.title}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db_cli(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.confirm("This deletes ALL data. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("Database reset.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(offers_group)
    app.cli.add_command(reviews_group)
    app.cli.add_command(transactions_group)
    app.cli.add_command(system_group)
