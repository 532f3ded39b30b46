# Overview: Flask CLI command groups for bootstrap, ledger verification, and cost repair.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Insert two stores, a supplier, a category, two products and an operator user.
#
# Inventory maintenance:
# - python -m flask inventory verify-ledger [--store-id 1]
#   Check every movement chain against the inventory records; exits 1 on breaks.
# - python -m flask inventory fix-average-cost --product-id 5
# - python -m flask inventory fix-average-cost --store-id 1
# - python -m flask inventory fix-average-cost --all
#   Recompute weighted-average costs from purchase history.
# - python -m flask inventory low-stock [--store-id 1]
#   Print records at or below their minimum stock.

import sys
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import InventoryError
from .extensions import db
from .models import Category, Product, Store, Supplier, User
from .services import alert_service, costing_service, inventory_service, ledger_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the movement ledger.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Insert demo master data. Idempotent: existing rows are left alone.

    Creates:
    - Stores: "Main Store" (MAIN), "Branch Store" (BR01)
    - Supplier: "Default Supplier"
    - Category: "General"
    - Products: DEMO-001, DEMO-002
    - User: operator
    """
    for name, code in (("Main Store", "MAIN"), ("Branch Store", "BR01")):
        if not db.session.query(Store).filter_by(code=code).first():
            db.session.add(Store(name=name, code=code))
            click.echo(f"PASS Created store: {name}")

    supplier = db.session.query(Supplier).filter_by(code="SUP-DEFAULT").first()
    if not supplier:
        supplier = Supplier(name="Default Supplier", code="SUP-DEFAULT")
        db.session.add(supplier)

    category = db.session.query(Category).filter_by(name="General").first()
    if not category:
        category = Category(name="General")
        db.session.add(category)
    db.session.flush()

    for sku, name, purchase, selling, minimum in (
        ("DEMO-001", "Demo Widget", Decimal("10.00"), Decimal("15.00"), 5),
        ("DEMO-002", "Demo Gadget", Decimal("25.50"), Decimal("40.00"), 2),
    ):
        if not db.session.query(Product).filter_by(sku=sku).first():
            db.session.add(Product(
                sku=sku,
                name=name,
                category_id=category.id,
                supplier_id=supplier.id,
                purchase_price=purchase,
                selling_price=selling,
                minimum_stock=minimum,
            ))
            click.echo(f"PASS Created product: {sku}")

    if not db.session.query(User).filter_by(username="operator").first():
        db.session.add(User(username="operator", name="Demo Operator"))
        click.echo("PASS Created user: operator")

    db.session.commit()
    click.echo("PASS Demo data ready")


@click.group('inventory')
def inventory_group():
    """Ledger verification and costing maintenance commands."""


@inventory_group.command('verify-ledger')
@click.option('--store-id', type=int, help='Limit to one store')
@with_appcontext
def verify_ledger(store_id):
    """Walk every (store, product) movement chain and compare with its record."""
    results = ledger_service.verify_all(store_id=store_id)
    broken = [r for r in results if not r["consistent"]]

    for result in broken:
        click.echo(
            f"FAIL store={result['store_id']} product={result['product_id']} "
            f"ledger={result['ledger_quantity']} record={result['record_quantity']} "
            f"breaks={len(result['breaks'])}"
        )
        for entry in result["breaks"]:
            click.echo(f"     movement {entry['movement_id']}: {entry['problem']}")

    click.echo(f"\nChecked {len(results)} keys, {len(broken)} inconsistent")
    if broken:
        sys.exit(1)
    click.echo("PASS Ledger consistent")


@inventory_group.command('fix-average-cost')
@click.option('--product-id', type=int, help='Recompute one product in every store')
@click.option('--store-id', type=int, help='Recompute every product in one store')
@click.option('--all', 'all_records', is_flag=True, help='Recompute every active product in every store')
@with_appcontext
def fix_average_cost(product_id, store_id, all_records):
    """Recompute average_cost from purchase movements."""
    chosen = [flag for flag in (product_id is not None, store_id is not None, all_records) if flag]
    if len(chosen) != 1:
        raise click.UsageError("Pass exactly one of --product-id, --store-id or --all")

    try:
        if product_id is not None:
            results = costing_service.recompute_average_cost_all_stores(product_id)
        elif store_id is not None:
            results = costing_service.recompute_average_cost_for_store(store_id)
        else:
            results = costing_service.recompute_all_average_costs()
    except InventoryError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)

    changed = [r for r in results if r["changed"]]
    for result in changed:
        click.echo(
            f"  store={result['store_id']} product={result['product_id']}: "
            f"{result['old_average_cost']} -> {result['new_average_cost']}"
        )
    click.echo(f"PASS Recomputed {len(results)} records, {len(changed)} changed")


@inventory_group.command('low-stock')
@click.option('--store-id', type=int, help='Limit to one store')
@with_appcontext
def low_stock(store_id):
    """List records at or below their minimum stock."""
    records = inventory_service.list_low_stock(store_id=store_id)
    if not records:
        click.echo("No low stock records")
        return

    click.echo(f"\n{'Store':<20} {'SKU':<16} {'Qty':>6} {'Min':>6}  Level")
    click.echo("-" * 60)
    for record in records:
        level = alert_service.alert_level_for(record.quantity, record.minimum_stock) or "-"
        click.echo(
            f"{record.store.name[:20]:<20} {record.product.sku[:16]:<16} "
            f"{record.quantity:>6} {record.minimum_stock:>6}  {level}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
