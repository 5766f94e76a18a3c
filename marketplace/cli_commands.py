"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask cart-summary: Print a customer's cart grouped by seller
"""

import click
from flask import current_app
from marketplace.database import create_tables, get_session
from marketplace.services import cart_service


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        create_tables()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('cart-summary')
    @click.option('--customer-id', required=True, type=int, help='Customer id')
    def cart_summary(customer_id):
        """Show a customer's cart grouped by seller with snapshot subtotals."""
        summary = cart_service.get_cart_summary(
            get_session(), customer_id,
            default_tier_type=current_app.config['DEFAULT_PRICING_TIER'],
            currency=current_app.config['CURRENCY_CODE'],
        )
        if not summary['groups']:
            click.echo(click.style(f'Cart of customer {customer_id} is empty.', fg='yellow'))
            return

        for group in summary['groups']:
            click.echo(click.style(f"\n{group['seller_name']} (seller {group['seller_id']})", bold=True))
            for line in group['lines']:
                label = line['garment_type'] or (
                    f"package {line['package_id']}" if line['package_id'] else f"product {line['product_id']}"
                )
                click.echo(f"   {line['quantity']} x {label} @ {line['unit_price']} = {line['line_subtotal']}")
            click.echo(f"   Subtotal: {group['group_subtotal_display']}")
        click.echo(click.style(f"\nTotal: {summary['grand_total_display']}", fg='green', bold=True))
