# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Demo branch, cashier, products with initial stock, a customer and promotions.
#
# Stock ledger:
# - python -m flask stock reconcile
#   List products whose cached stock disagrees with their movements.
#
# Returns:
# - python -m flask returns recompute --sale-id 42
#   Re-derive a sale's refunded total and status from its returns.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Category, Customer, Product, Promotion, User
from .models.promotions import PROMO_BUY_X_GET_Y, PROMO_PERCENTAGE, SCOPE_CATEGORY, SCOPE_PRODUCT
from .services import inventory_service, return_service
from .validation import PosError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a demo branch.

    Creates (only when no branch exists yet):
    - Branch MAIN and cashier "cashier"
    - Category "Beverages" with three products, stocked via initial_stock movements
    - Customer with an empty loyalty balance
    - Promotions: 10% off beverages, buy 2 get 1 free on cola
    """
    if db.session.query(Branch).first():
        click.echo("SKIP Data already present; seed-demo only runs on an empty database.")
        return

    branch = Branch(name="Main Street", code="MAIN")
    cashier = User(username="cashier", display_name="Demo Cashier")
    beverages = Category(name="Beverages")
    db.session.add_all([branch, cashier, beverages])
    db.session.flush()

    catalog = [
        ("BEV-COLA", "Cola 330ml", 150, 48),
        ("BEV-WATER", "Still Water 500ml", 100, 96),
        ("BEV-JUICE", "Orange Juice 1L", 399, 24),
    ]
    products = []
    for sku, name, price_cents, _ in catalog:
        product = Product(
            branch_id=branch.id,
            category_id=beverages.id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            stock=0,
        )
        db.session.add(product)
        products.append(product)

    db.session.add(Customer(name="Demo Customer", email="customer@tillpoint.local"))
    db.session.commit()

    for product, (_, _, _, initial) in zip(products, catalog):
        inventory_service.record_stock_movement(
            product.id, branch.id, initial, "initial_stock", note="Demo seed"
        )

    db.session.add_all([
        Promotion(
            name="Beverages 10% off",
            promo_type=PROMO_PERCENTAGE,
            scope=SCOPE_CATEGORY,
            discount_bps=1000,
            categories=[beverages],
        ),
        Promotion(
            name="Cola 3 for 2",
            promo_type=PROMO_BUY_X_GET_Y,
            scope=SCOPE_PRODUCT,
            priority=10,
            buy_qty=2,
            get_qty=1,
            products=[products[0]],
        ),
    ])
    db.session.commit()

    click.echo(f"PASS Seeded branch {branch.code} (ID: {branch.id}) with {len(products)} products.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('reconcile')
@with_appcontext
def reconcile_stock():
    """List products whose stock does not match the sum of their movements."""
    drifted = inventory_service.find_unreconciled_products()
    if not drifted:
        click.echo("PASS All products reconcile with their stock movements.")
        return

    click.echo(f"FAIL {len(drifted)} product(s) out of sync:")
    for row in drifted:
        click.echo(
            f"  - product {row['product_id']} ({row['sku']}): "
            f"stock={row['stock']} movements={row['movement_total']}"
        )
    raise SystemExit(1)


@click.group('returns')
def returns_group():
    """Refund bookkeeping."""


@returns_group.command('recompute')
@click.option('--sale-id', type=int, required=True, help='Sale to recompute')
@with_appcontext
def recompute_refunds(sale_id):
    """Re-derive refunded_cents and status of a sale from its returns."""
    try:
        sale = return_service.recompute_sale_refunds(sale_id)
    except PosError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Sale {sale.id}: refunded {sale.refunded_cents} cents, status {sale.status}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(returns_group)
