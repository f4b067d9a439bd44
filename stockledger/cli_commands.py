"""
Flask CLI commands for stock ledger maintenance.

Commands:
- flask init-db: Create the ledger tables
- flask verify-stock: Compare snapshots with the movement log
"""

import click
from flask import current_app
from stockledger.database import create_tables
from stockledger.services.reconciliation_service import verify_ledger
from stockledger.utils.formatters import format_quantity


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables (development / first deploy)."""
        create_tables()
        click.echo(click.style('Tables created.', fg='green'))

    @app.cli.command('verify-stock')
    @click.option('--organization-id', default=None, help='Only check this organization')
    def verify_stock(organization_id):
        """Recompute every snapshot from its movements and report drift."""
        discrepancies = verify_ledger(
            current_app.extensions['stock_uow_factory'],
            organization_id=organization_id
        )

        if not discrepancies:
            click.echo(click.style('Stock snapshots match the movement log.', fg='green'))
            return

        for d in discrepancies:
            actual = format_quantity(d.actual) if d.actual is not None else 'missing'
            click.echo(
                f'  org={d.organization_id} product={d.product_id} '
                f'expected={format_quantity(d.expected)} actual={actual}'
            )
        click.echo(click.style(f'{len(discrepancies)} snapshot(s) out of sync.', fg='red', bold=True))
        raise SystemExit(1)
