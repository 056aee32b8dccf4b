# Overview: Flask CLI command group for schema bootstrap, demo data and ledger inspection.

# backend/retail_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# Schema:
# - python -m flask ledger init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask ledger reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask ledger seed-demo
#   Supplier, customer and two products with sized variants, stocked by a purchase order.
#
# Inspection:
# - python -m flask ledger audit
#   Run the invariant checks; exits non-zero when any violation is found.
# - python -m flask ledger stock 1
#   Aggregate and per-variant stock for a product.
# - python -m flask ledger movements --variant-id 2 --limit 20
#   Most recent stock movements, optionally filtered.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, Supplier, Variant
from .services import audit_service, order_service, stock_ledger
from .services.errors import LedgerError
from .services.order_service import OrderLineRequest


@click.group("ledger")
def ledger_group():
    """Stock ledger bootstrap and inspection commands."""


@ledger_group.command("init-db")
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


@ledger_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Skip confirmation")
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

    click.echo("PASS Database reset complete. Run 'python -m flask ledger seed-demo' for sample data.")


_DEMO_PRODUCTS = [
    # sku, name, sale price, sizes
    ("TEE-BASIC", "Basic Tee", 1500, ["S", "M", "L"]),
    ("JEANS-SLIM", "Slim Jeans", 4200, ["30", "32", "34"]),
]


@ledger_group.command("seed-demo")
@click.option("--quantity", default=10, show_default=True, type=int, help="Units purchased per variant")
@with_appcontext
def seed_demo(quantity):
    """Idempotently create demo catalog data and stock it through a purchase order."""
    supplier = db.session.query(Supplier).filter_by(document_number="DEMO-SUP-1").first()
    if not supplier:
        supplier = Supplier(name="Demo Supplier", document_number="DEMO-SUP-1")
        db.session.add(supplier)

    customer = db.session.query(Customer).filter_by(document_number="DEMO-CUS-1").first()
    if not customer:
        customer = Customer(name="Demo Customer", document_number="DEMO-CUS-1")
        db.session.add(customer)

    created_variants = []
    for sku, name, price_cents, sizes in _DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product:
            click.echo(f"SKIP Product {sku} already exists (ID: {product.id})")
            continue
        product = Product(sku=sku, name=name, sale_price_cents=price_cents)
        db.session.add(product)
        for size in sizes:
            variant = Variant(product=product, label=size)
            db.session.add(variant)
            created_variants.append((product, variant, price_cents))

    db.session.commit()
    click.echo(f"PASS Supplier ID: {supplier.id}, Customer ID: {customer.id}")

    if not created_variants:
        click.echo("PASS Demo data already present.")
        return

    lines = [
        OrderLineRequest(
            product_id=product.id,
            variant_id=variant.id,
            quantity=quantity,
            unit_price_cents=price_cents // 2,
        )
        for product, variant, price_cents in created_variants
    ]
    try:
        order = order_service.create_purchase_order(supplier.id, lines, notes="Demo opening stock")
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Purchase order {order.id}: {len(lines)} variant(s) stocked with {quantity} unit(s) each")


@ledger_group.command("audit")
@with_appcontext
def audit():
    """Check ledger invariants against persisted state."""
    violations = audit_service.check_invariants()
    if not violations:
        click.echo("PASS No invariant violations found.")
        return

    for v in violations:
        click.echo(f"FAIL [{v['check']}] {v['entity']}#{v['id']}: {v['message']}")
    click.echo(f"FAIL {len(violations)} violation(s) found.")
    raise SystemExit(1)


@ledger_group.command("stock")
@click.argument("product_id", type=int)
@with_appcontext
def stock(product_id):
    """Show aggregate and per-variant stock for PRODUCT_ID."""
    try:
        position = stock_ledger.get_stock_position(product_id)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"{position['name']} (ID: {position['product_id']})")
    click.echo(f"  Aggregate stock:     {position['aggregate_stock_quantity']}")
    click.echo(f"  Variant stock total: {position['variant_stock_total']}")
    for v in position["variants"]:
        status = "" if v["is_active"] else " (inactive)"
        click.echo(f"  - {v['label']:<8} ID: {v['variant_id']:<5} stock: {v['stock_quantity']}{status}")


@ledger_group.command("movements")
@click.option("--variant-id", type=int, default=None, help="Filter by variant")
@click.option("--product-id", type=int, default=None, help="Filter by product")
@click.option("--limit", type=int, default=20, show_default=True, help="Max rows")
@with_appcontext
def movements(variant_id, product_id, limit):
    """List the most recent stock movements."""
    rows = stock_ledger.list_movements(variant_id=variant_id, product_id=product_id, limit=limit)
    if not rows:
        click.echo("No movements found.")
        return

    for m in rows:
        target = f"variant {m.variant_id}" if m.variant_id else f"product {m.product_id}"
        click.echo(
            f"#{m.id:<6} {m.reason:<20} {target:<14} delta {m.delta:+d} -> {m.balance_after}"
            f"  order={m.order_id or '-'} return={m.return_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
