# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/erpcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="erpcore:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Idempotent: create any missing tables. Safe to re-run.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add-variant --product "Cotton Kurta" --sku KURTA-RED-M --price 250000 --opening-stock 10
#   Create a variant (and its product if missing) with opening stock booked to the ledger.
#
# Stock inspection:
# - python -m flask stock levels --sku KURTA-RED-M
#   Show sellable / reserved / damaged / available for one variant.
# - python -m flask stock verify
#   Re-derive every counter from movements and report drift.
#
# Inventory maker-checker:
# - python -m flask inventory pending
#   List transactions awaiting approval, oldest first.
# - python -m flask inventory approve 12 --actor checker-1
#   Approve a pending transaction.
#
# Orders:
# - python -m flask orders show 42
# - python -m flask orders history 42

import sys

import click
from flask.cli import with_appcontext

from .errors import CoreError
from .extensions import db
from .models import Product, Variant
from .services import (
    catalog_service,
    inventory_transaction_service,
    maintenance_service,
    order_service,
    stock_ledger_service,
)


def _fail(exc: CoreError):
    click.echo(f"FAIL {exc.message}", err=True)
    sys.exit(1)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """
    Create missing tables. Existing tables and data are left untouched.

    Production deployments should prefer `flask db upgrade`; this is the
    one-shot bootstrap for fresh SQLite installs.
    """
    created = maintenance_service.ensure_schema()
    if created:
        click.echo(f"PASS Created tables: {', '.join(created)}")
    else:
        click.echo("PASS Schema already up to date")


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

    click.echo("DELETE  Dropping and recreating all tables...")
    maintenance_service.reset_schema()
    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap commands."""


@catalog_group.command('add-variant')
@click.option('--product', 'product_name', required=True, help='Product name (created if missing)')
@click.option('--sku', required=True)
@click.option('--price', 'selling_price_paisa', type=int, required=True, help='Selling price in paisa')
@click.option('--cost', 'cost_price_paisa', type=int, default=0, help='Cost price in paisa')
@click.option('--opening-stock', type=int, default=0)
@click.option('--reorder-level', type=int, default=0)
@click.option('--actor', default='cli')
@with_appcontext
def add_variant(product_name, sku, selling_price_paisa, cost_price_paisa, opening_stock, reorder_level, actor):
    """Create a variant with opening stock."""
    try:
        product = db.session.query(Product).filter_by(name=product_name).first()
        if product is None:
            product = catalog_service.create_product(name=product_name)
            click.echo(f"PASS Created product: {product.name} (ID: {product.id})")

        variant = catalog_service.create_variant(
            product_id=product.id,
            sku=sku,
            selling_price_paisa=selling_price_paisa,
            cost_price_paisa=cost_price_paisa,
            opening_stock=opening_stock,
            reorder_level=reorder_level,
            actor=actor,
        )
    except CoreError as exc:
        _fail(exc)
    click.echo(f"PASS Created variant {variant.sku} (ID: {variant.id}), sellable={variant.sellable_stock}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('levels')
@click.option('--sku', required=True)
@with_appcontext
def stock_levels(sku):
    """Show the three buckets and available stock for a SKU."""
    variant = db.session.query(Variant).filter_by(sku=sku.strip().upper()).first()
    if variant is None:
        click.echo(f"FAIL Variant {sku} not found", err=True)
        sys.exit(1)

    levels = stock_ledger_service.get_stock_levels(variant.id)
    click.echo(f"{levels['sku']} (ID: {levels['variant_id']})")
    click.echo(f"  sellable:  {levels['sellable_stock']}")
    click.echo(f"  reserved:  {levels['reserved_stock']}")
    click.echo(f"  damaged:   {levels['damaged_stock']}")
    click.echo(f"  available: {levels['available_stock']}")


@stock_group.command('verify')
@with_appcontext
def stock_verify():
    """Compare every counter against its movement history."""
    report = maintenance_service.verify_ledger()
    if not report["problems"]:
        click.echo(f"PASS {report['checked']} variants verified, no drift")
        return

    for row in report["problems"]:
        click.echo(f"FAIL {row['sku']} (ID: {row['variant_id']}): drift={row['drift']} reservation_ok={row['reservation_ok']}")
    sys.exit(1)


@click.group('inventory')
def inventory_group():
    """Inventory transaction maker-checker commands."""


@inventory_group.command('pending')
@with_appcontext
def inventory_pending():
    """List pending inventory transactions (oldest first)."""
    rows = inventory_transaction_service.list_pending_approvals()
    if not rows:
        click.echo("No pending transactions")
        return
    for tx in rows:
        click.echo(
            f"{tx.id:>5}  {tx.invoice_no:<22} {tx.transaction_type:<16} "
            f"qty={tx.total_quantity:<6} by={tx.created_by or '-'}"
        )


@inventory_group.command('approve')
@click.argument('transaction_id', type=int)
@click.option('--actor', required=True, help='Checker approving the transaction')
@with_appcontext
def inventory_approve(transaction_id, actor):
    """Approve a pending transaction and apply its stock effect."""
    try:
        tx = inventory_transaction_service.approve_transaction(transaction_id, actor=actor)
    except CoreError as exc:
        _fail(exc)
    click.echo(f"PASS {tx.invoice_no} approved by {actor}")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
def orders_show(order_id):
    try:
        order = order_service.get_order(order_id, include_deleted=True)
    except CoreError as exc:
        _fail(exc)
    click.echo(
        f"{order.order_number} [{order.fulfillment_type}] status={order.status} "
        f"stock_state={order.stock_state} total={order.total_paisa}"
    )
    for item in order.items:
        click.echo(f"  {item.sku:<20} x{item.quantity:<4} {item.total_price_paisa:>10}  return={item.return_status}")


@orders_group.command('history')
@click.argument('order_id', type=int)
@with_appcontext
def orders_history(order_id):
    try:
        logs = order_service.get_order_history(order_id)
    except CoreError as exc:
        _fail(exc)
    for entry in logs:
        transition = f"{entry.old_status or '-'} -> {entry.new_status or '-'}" if entry.new_status else ""
        click.echo(f"{entry.created_at}  {entry.action:<22} {transition:<30} {entry.actor or '-'}  {entry.reason or ''}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
