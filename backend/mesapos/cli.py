# Overview: Flask CLI command groups for bootstrap, stock administration and sale inspection.

# backend/mesapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask seed demo
#   Idempotent: one branch with series B001/F001, tables M1..M6, a few products with stock,
#   two staff members and an open cash shift.
#
# Inventory:
# - python -m flask inventory set-stock --branch-id 1 --product-id 1 --stock 25
#   Administrative absolute write ("set stock to N").
# - python -m flask inventory low-stock [--branch-id 1] [--threshold 10]
#   Tracked products at or below the threshold, out of stock first.
#
# Sales:
# - python -m flask sales open --branch-id 1
#   Open sales with table and total.
# - python -m flask sales unresolved [--branch-id 1]
#   Emission attempts whose SUNAT outcome is unknown (resolve via POST /api/emissions/<id>/resolve).
#
# Shifts:
# - python -m flask shifts open --branch-id 1 --opening-cash 200
#   Open the branch cash shift (sales need one unless REQUIRE_OPEN_SHIFT=0).
# - python -m flask shifts close --shift-id 1 --actual-cash 350.50
#   Close against the counted drawer; prints expected cash and difference.
# - python -m flask shifts active --branch-id 1
#   Current shift with the running cash tally.

from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import EngineError
from .extensions import db
from .models import Branch, BranchTable, Product, Staff
from .services import emission_service, inventory_service, sales_service, shift_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' for sample data.")


@click.group('seed')
def seed_group():
    """Sample data for local development."""


DEMO_STAFF = [
    # name, role
    ("Rosa Quispe", "mozo"),
    ("Carlos Mendoza", "cajero"),
]

DEMO_PRODUCTS = [
    # name, price, igv, tracked, allow_negative, stock
    ("Lomo saltado", "32.00", 18, False, False, None),
    ("Ceviche clásico", "38.00", 18, False, False, None),
    ("Inca Kola 500ml", "5.00", 18, True, False, 48),
    ("Cerveza Cusqueña", "9.50", 18, True, False, 24),
    ("Pan con chicharrón", "12.00", 10, True, True, 10),
]


@seed_group.command('demo')
@with_appcontext
def seed_demo():
    branch = db.session.query(Branch).filter_by(name="Sucursal Principal").first()
    if branch is None:
        branch = Branch(name="Sucursal Principal", serie_boleta="B001", serie_factura="F001")
        db.session.add(branch)
        db.session.flush()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    for n in range(1, 7):
        label = f"M{n}"
        if db.session.query(BranchTable).filter_by(branch_id=branch.id, label=label).first() is None:
            db.session.add(BranchTable(branch_id=branch.id, label=label, capacity=4))
    db.session.commit()

    for name, price, igv, tracked, allow_negative, stock in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(name=name).first()
        if product is None:
            product = Product(
                name=name,
                price=Decimal(price),
                igv_percentage=igv,
                inventory_activated=tracked,
                allow_negative_sale=allow_negative,
            )
            db.session.add(product)
            db.session.commit()
            click.echo(f"PASS Created product: {name}")
        if stock is not None:
            inventory_service.set_stock(branch.id, product.id, stock)

    for name, role in DEMO_STAFF:
        if db.session.query(Staff).filter_by(branch_id=branch.id, name=name).first() is None:
            db.session.add(Staff(branch_id=branch.id, name=name, role=role))
            click.echo(f"PASS Created staff: {name}")
    db.session.commit()

    if shift_service.get_active_shift(branch.id) is None:
        shift = shift_service.open_shift(branch.id, "100.00")
        click.echo(f"PASS Opened shift {shift.id} with 100.00")

    click.echo("DONE Demo data ready.")


@click.group('inventory')
def inventory_group():
    """Branch stock administration."""


@inventory_group.command('set-stock')
@click.option('--branch-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--stock', type=int, required=True)
@with_appcontext
def set_stock_cli(branch_id, product_id, stock):
    try:
        row = inventory_service.set_stock(branch_id, product_id, stock)
    except EngineError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Branch {branch_id} product {product_id} stock = {row.stock}")


@inventory_group.command('low-stock')
@click.option('--branch-id', type=int, default=None)
@click.option('--threshold', type=int, default=None)
@with_appcontext
def low_stock_cli(branch_id, threshold):
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    alerts = inventory_service.low_stock_alerts(threshold=threshold, branch_id=branch_id)
    if not alerts:
        click.echo("No products at or below the threshold.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Branch':<20} {'Product':<35} {'Stock':>8}")
    click.echo("="*70)
    for a in alerts:
        flag = " OUT" if a["is_out_of_stock"] else ""
        click.echo(f"{a['branch_name'][:20]:<20} {a['product_name'][:35]:<35} {a['stock']:>8}{flag}")
    click.echo("="*70 + "\n")


@click.group('sales')
def sales_group():
    """Sale inspection."""


@sales_group.command('open')
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def open_sales_cli(branch_id):
    sales = sales_service.list_open_sales(branch_id)
    if not sales:
        click.echo("No open sales.")
        return
    for s in sales:
        click.echo(
            f"#{s['id']:<6} table={s['table_label'] or '-':<6} items={s['item_count']:<4} "
            f"total={s['total']:>10} opened={s['opened_at']}"
        )


@sales_group.command('unresolved')
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def unresolved_cli(branch_id):
    attempts = emission_service.list_unresolved_attempts(branch_id)
    if not attempts:
        click.echo("No unresolved emissions.")
        return
    for a in attempts:
        click.echo(
            f"attempt={a.id:<6} sale={a.sale_id:<6} {a.document_type:<8} "
            f"{a.serie}-{a.correlativo or '?'} status={a.status} key={a.attempt_key}"
        )


@click.group('shifts')
def shifts_group():
    """Branch cash shifts."""


@shifts_group.command('open')
@click.option('--branch-id', type=int, required=True)
@click.option('--opening-cash', type=str, required=True)
@click.option('--staff-id', type=int, default=None)
@with_appcontext
def open_shift_cli(branch_id, opening_cash, staff_id):
    try:
        shift = shift_service.open_shift(branch_id, opening_cash, staff_id=staff_id)
    except EngineError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Shift {shift.id} open on branch {branch_id} with {shift.opening_cash}")


@shifts_group.command('close')
@click.option('--shift-id', type=int, required=True)
@click.option('--actual-cash', type=str, required=True)
@click.option('--notes', type=str, default=None)
@with_appcontext
def close_shift_cli(shift_id, actual_cash, notes):
    try:
        summary = shift_service.close_shift(shift_id, actual_cash, notes=notes)
    except EngineError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    shift = summary["shift"]
    click.echo(f"PASS Shift {shift_id} closed")
    click.echo(f"  cash sales: {summary['cash_sales_total']:>10}")
    click.echo(f"  expected:   {shift['closing_expected_cash']:>10}")
    click.echo(f"  counted:    {shift['closing_actual_cash']:>10}")
    click.echo(f"  difference: {shift['closing_difference']:>10}")


@shifts_group.command('active')
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def active_shift_cli(branch_id):
    active = shift_service.get_active_shift(branch_id)
    if active is None:
        click.echo("No open shift.")
        return
    shift = active["shift"]
    click.echo(
        f"Shift {shift['id']} opened={shift['opened_at']} opening={shift['opening_cash']} "
        f"cash_sales={active['cash_sales_total']} expected={active['expected_cash']}"
    )

def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(sales_group)
    app.cli.add_command(shifts_group)
