# Overview: Flask CLI command groups for bootstrap, ledger maintenance and POS shift operations.

# backend/mercado/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app mercado <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app mercado system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - flask --app mercado catalog seed
#   Create a small demo catalog (idempotent: existing SKUs are skipped).
# - flask --app mercado catalog list
#   List products with price, cost and stock.
#
# Inventory ledger:
# - flask --app mercado ledger reconcile [--repair]
#   Compare cached stock with the movement ledger; --repair rewrites the cache.
#
# POS terminal (uses POS_DATABASE_URL / ORDER_STORE_URL):
# - flask --app mercado pos queue
#   Show the sales waiting to be synced.
# - flask --app mercado pos sync [--in-process]
#   Push queued sales to the order store now.
# - flask --app mercado pos report
#   End-of-shift report over the queued sales.
# - flask --app mercado pos clear --yes [--sale-id 3 --sale-id 4]
#   Drop queued sales after manual reconciliation.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Category
from .pos import InProcessRemoteStore, PosTerminal
from .services import catalog_service
from .services.inventory_service import reconcile_stock
from .validation import ConflictError


def _money(cents: int) -> str:
    return f"Bs {cents / 100:,.2f}"


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("WARN  Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# CATALOG
# =============================================================================

DEMO_CATEGORIES = [
    ("lacteos", "Lácteos", ["Leche", "Yogurt", "Quesos"]),
    ("bebidas", "Bebidas", ["Gaseosas", "Jugos", "Agua"]),
    ("abarrotes", "Abarrotes", ["Arroz", "Fideos", "Aceite"]),
]

DEMO_PRODUCTS = [
    # sku, name, category, price, cost, discount %, bundle tiers, opening stock
    ("7750001000011", "Leche entera 1L", "lacteos", 1000, None, None, [{"quantity": 3, "price_cents": 2000}, {"quantity": 6, "price_cents": 3500}], 120),
    ("7750001000028", "Yogurt frutilla 1L", "lacteos", 1450, 980, 10, [], 40),
    ("7750002000010", "Agua sin gas 2L", "bebidas", 800, 450, None, [{"quantity": 6, "price_cents": 4200}], 200),
    ("7750003000019", "Arroz grano largo 1kg", "abarrotes", 1200, None, None, [], 80),
    ("7750003000026", "Aceite vegetal 900ml", "abarrotes", 2150, 1600, 5, [], 60),
]


@click.group('catalog')
def catalog_group():
    """Catalog inspection and seeding."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """Create the demo catalog. Opening stock goes through the ledger as receptions."""
    categories = {}
    for slug, name, subcategories in DEMO_CATEGORIES:
        category = db.session.query(Category).filter_by(slug=slug).first()
        if category is None:
            category = catalog_service.create_category(slug, name, subcategories)
            click.echo(f"PASS Created category {slug}")
        categories[slug] = category

    for sku, name, slug, price, cost, discount, tiers, stock in DEMO_PRODUCTS:
        try:
            product = catalog_service.create_product(
                sku=sku,
                name=name,
                category=categories[slug],
                price_cents=price,
                cost_cents=cost,
                discount_percent=discount,
                bundle_offers=tiers,
                initial_stock=stock,
            )
        except ConflictError:
            click.echo(f"WARN  SKU {sku} already exists, skipping...")
            continue
        click.echo(f"PASS Created {product.name} ({product.sku}) stock={product.stock}")


@catalog_group.command('list')
@with_appcontext
def list_catalog():
    items = catalog_service.fetch_products(include_inactive=True)["items"]
    if not items:
        click.echo("No products.")
        return
    for p in items:
        click.echo(
            f"{p['id']:>4}  {p['sku']:<15} {p['name']:<28} "
            f"{_money(p['price_cents']):>12}  cost {_money(p['cost_cents']):>12}  stock {p['stock']}"
        )


# =============================================================================
# INVENTORY LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Inventory ledger maintenance."""


@ledger_group.command('reconcile')
@click.option('--repair', is_flag=True, help='Rewrite cached stock from the ledger')
@with_appcontext
def reconcile_ledger(repair):
    mismatches = reconcile_stock(repair=repair)
    if not mismatches:
        click.echo("PASS Cached stock matches the ledger for every product")
        return

    for m in mismatches:
        click.echo(
            f"FAIL {m['sku']}: cached={m['cached_stock']} ledger={m['ledger_stock']}"
        )
    if repair:
        click.echo(f"PASS Repaired {len(mismatches)} product(s)")
    else:
        click.echo("Run with --repair to rewrite the cache from the ledger.")


# =============================================================================
# POS TERMINAL
# =============================================================================

def _terminal(in_process: bool = False) -> PosTerminal:
    remote = InProcessRemoteStore(current_app._get_current_object()) if in_process else None
    return PosTerminal.from_config(current_app.config, remote=remote)


@click.group('pos')
def pos_group():
    """POS terminal queue operations."""


@pos_group.command('queue')
@with_appcontext
def show_queue():
    terminal = _terminal()
    try:
        sales = terminal.queue.get_queue_snapshot()
        if not sales:
            click.echo("Queue is empty.")
            return
        for sale in sales:
            click.echo(
                f"{sale['local_id']:>4}  {sale['sale_uid']}  {sale['queued_at']}  "
                f"{sale['payment_method']:<5} {_money(sale['total_cents']):>12}"
            )
    finally:
        terminal.shutdown()


@pos_group.command('sync')
@click.option('--in-process', is_flag=True, help='Write to this app\'s database instead of ORDER_STORE_URL')
@with_appcontext
def sync_queue(in_process):
    terminal = _terminal(in_process)
    try:
        pending = len(terminal.queue.get_queue_snapshot())
        status = terminal.queue.drain_and_sync(wait=True)
        click.echo(f"{status.upper()} {pending} queued sale(s), {len(terminal.queue.get_queue_snapshot())} left")
    finally:
        terminal.shutdown()


@pos_group.command('report')
@with_appcontext
def shift_report():
    terminal = _terminal()
    try:
        report = terminal.queue.build_shift_report()
    finally:
        terminal.shutdown()

    click.echo(f"Sales: {report['sales_count']}")
    click.echo(f"Total: {_money(report['total_cents'])}")
    for method, cents in report["by_payment_method"].items():
        click.echo(f"  {method:<5} {_money(cents):>12}")


@pos_group.command('clear')
@click.option('--yes', is_flag=True, help='Confirm the queue was reconciled by hand')
@click.option('--sale-id', 'sale_ids', type=int, multiple=True, help='Local sale id (repeatable)')
@with_appcontext
def clear_queue(yes, sale_ids):
    if not yes:
        click.echo("WARN  Refusing to clear queued sales without --yes")
        return
    terminal = _terminal()
    try:
        removed = terminal.queue.clear_after_manual_reconciliation(list(sale_ids) or None)
    finally:
        terminal.shutdown()
    click.echo(f"PASS Removed {removed} queued sale(s)")


def register_commands(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(pos_group)
