# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/settlepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to settlepos (PowerShell: $env:FLASK_APP="settlepos").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Order locks:
# - python -m flask locks release-expired [--ttl 300]
#   Clear order locks older than the TTL.
#
# Shift inspection:
# - python -m flask shifts list --status SUBMITTED --limit 20
#   List recent cashier shifts with expected drawer cash.
#
# Rider variance inspection:
# - python -m flask variances list --status OPEN
#   List rider variances awaiting action.
#
# Receipts:
# - python -m flask receipts next
#   Show the next official receipt number without consuming it.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models.states import ShiftStatus, VarianceStatus
from .services import lock_service, receipt_service, shift_service, variance_service
from .time_utils import to_utc_z, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Existing data is left alone."""
    click.echo("BUILD  Creating missing tables...")
    db.create_all()
    click.echo("PASS Database ready.")


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


@click.group('locks')
def locks_group():
    """Order lock maintenance."""


@locks_group.command('release-expired')
@click.option('--ttl', type=int, default=None, help='TTL in seconds (defaults to ORDER_LOCK_TTL_SECONDS)')
@with_appcontext
def release_expired(ttl):
    """
    Clear order locks older than the TTL.

    Example:
        flask locks release-expired
        flask locks release-expired --ttl 60
    """
    count = lock_service.release_expired_locks(ttl_seconds=ttl)
    click.echo(f"PASS Released {count} expired order lock(s)")


@click.group('shifts')
def shifts_group():
    """Cashier shift inspection commands."""


@shifts_group.command('list')
@click.option('--status', type=click.Choice([s.value for s in ShiftStatus]), help='Filter by status')
@click.option('--cashier-id', type=int, help='Filter by cashier')
@click.option('--limit', type=int, default=20, help='Max rows')
@with_appcontext
def list_shifts_cli(status, cashier_id, limit):
    """
    List recent cashier shifts.

    Example:
        flask shifts list
        flask shifts list --status SUBMITTED
    """
    shifts = shift_service.list_shifts(
        status=ShiftStatus(status) if status else None,
        cashier_id=cashier_id,
        limit=limit,
    )

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Cashier':<8} {'Status':<18} {'Float':>10} {'Expected':>12} {'Counted':>12} {'Opened'}")
    click.echo("="*100)
    for s in shifts:
        expected = shift_service.drawer_snapshot(s.id).expected
        counted = s.final_closing_total if s.final_closing_total is not None else s.closing_total
        click.echo(
            f"{s.id:<6} {s.cashier_id:<8} {s.status.value:<18} {str(s.opening_float):>10} "
            f"{str(expected):>12} {str(counted if counted is not None else '-'):>12} {to_utc_z(s.opened_at)}"
        )
    click.echo("="*100 + "\n")


@click.group('variances')
def variances_group():
    """Rider variance inspection commands."""


@variances_group.command('list')
@click.option('--status', type=click.Choice([s.value for s in VarianceStatus]), help='Filter by status')
@click.option('--rider-id', type=int, help='Filter by rider')
@with_appcontext
def list_variances_cli(status, rider_id):
    """
    List rider variances.

    Example:
        flask variances list --status OPEN
    """
    rows = variance_service.list_variances(
        status=VarianceStatus(status) if status else None,
        rider_id=rider_id,
    )

    if not rows:
        click.echo("No variances found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'Run':<6} {'Rider':<7} {'Order':<7} {'Expected':>10} {'Actual':>10} {'Variance':>10} {'Status'}")
    click.echo("="*90)
    for v in rows:
        click.echo(
            f"{v.id:<6} {v.run_id:<6} {v.rider_id:<7} {str(v.order_id or '-'):<7} "
            f"{str(v.expected):>10} {str(v.actual):>10} {str(v.variance):>10} {v.status.value}"
        )
    click.echo("="*90 + "\n")


@click.group('receipts')
def receipts_group():
    """Official receipt numbering."""


@receipts_group.command('next')
@with_appcontext
def next_receipt():
    """Show the next receipt number without consuming it."""
    seq = receipt_service.peek_next_seq()
    click.echo(receipt_service.format_receipt_no(seq, utcnow()))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(locks_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(variances_group)
    app.cli.add_command(receipts_group)
