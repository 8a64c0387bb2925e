# Overview: Flask CLI command groups for bootstrap, inspection, and reporting.

# backend/franchise_ledger/cli.py
# Commands Legend (run from the backend directory):
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask franchises list
#   List all franchises.
# - python -m flask franchises create --name "Downtown" --code "DT01"
#   Create a new franchise (tenant).
# - python -m flask franchises set-status --id 2 --status maintenance
#   Change a franchise's status (active, inactive, maintenance).
# - python -m flask reports profit-loss [--franchise-id 1] [--start 2024-01-01] [--end 2024-01-31]
#   Print the P&L summary and COGS reconciliation.

import json

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import franchise_service, reporting_service
from .services.scope_service import CallerIdentity, Role

CLI_IDENTITY = CallerIdentity(user_id="cli", role=Role.ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('franchises')
def franchises_group():
    """Franchise (tenant) management commands."""


@franchises_group.command('list')
@with_appcontext
def list_franchises_cli():
    """List all franchises."""
    franchises = franchise_service.list_franchises(identity=CLI_IDENTITY)

    if not franchises:
        click.echo("No franchises found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Status':<12} {'Location'}")
    click.echo("="*72)
    for franchise in franchises:
        click.echo(
            f"{franchise.id:<5} {franchise.name:<30} {franchise.code:<12} "
            f"{franchise.status.value:<12} {franchise.location or '-'}"
        )
    click.echo("="*72 + "\n")


@franchises_group.command('create')
@click.option('--name', required=True, help='Franchise name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--location', default=None, help='Location')
@click.option('--manager', default=None, help='Manager name')
@with_appcontext
def create_franchise_cli(name, code, location, manager):
    """Create a new franchise (tenant)."""
    try:
        franchise = franchise_service.create_franchise(
            identity=CLI_IDENTITY,
            name=name,
            code=code,
            location=location,
            manager_name=manager,
        )
    except LedgerError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)
    db.session.commit()
    click.echo(f"PASS Created franchise: {franchise.name} (ID: {franchise.id}, Code: {franchise.code})")


@franchises_group.command('set-status')
@click.option('--id', 'franchise_id', required=True, type=int, help='Franchise ID')
@click.option('--status', required=True, type=click.Choice(['active', 'inactive', 'maintenance']))
@with_appcontext
def set_franchise_status_cli(franchise_id, status):
    """Change a franchise's status."""
    try:
        franchise = franchise_service.set_franchise_status(
            identity=CLI_IDENTITY, franchise_id=franchise_id, status=status
        )
    except LedgerError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)
    db.session.commit()
    click.echo(f"PASS {franchise.code} is now {franchise.status.value}")


@click.group('reports')
def reports_group():
    """Reporting commands."""


@reports_group.command('profit-loss')
@click.option('--franchise-id', type=int, default=None, help='Limit to one franchise')
@click.option('--start', default=None, help='ISO-8601 start (default: last REPORT_DEFAULT_DAYS days)')
@click.option('--end', default=None, help='ISO-8601 end (default: now)')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
@with_appcontext
def profit_loss_cli(franchise_id, start, end, as_json):
    """Print the P&L and COGS reconciliation."""
    try:
        report = reporting_service.compute_profit_loss(
            identity=CLI_IDENTITY, franchise_id=franchise_id, start=start, end=end
        )
    except LedgerError as exc:
        raise click.ClickException(exc.message)

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    recon = report["cogs_reconciliation"]
    click.echo(f"Period:        {report['period']['start']} .. {report['period']['end']}")
    click.echo(f"Revenue:       {report['revenue']:.2f}")
    click.echo(f"COGS:          {report['cogs']:.2f}")
    click.echo(f"Gross profit:  {report['gross_profit']:.2f} ({report['gross_margin_pct']:.2f}%)")
    click.echo(f"Net profit:    {report['net_profit']:.2f} ({report['net_margin_pct']:.2f}%)")
    click.echo(f"COGS check:    {recon['cross_check_cogs']:.2f} (difference {recon['difference']:.2f})")
    if recon["integrity_alert"]:
        click.echo("WARN COGS derivations diverge beyond tolerance")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(franchises_group)
    app.cli.add_command(reports_group)
