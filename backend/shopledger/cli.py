# Overview: Flask CLI command groups for bootstrap, catalog setup and stock inspection.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (dev only; use "flask db upgrade" for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog bootstrap:
# - python -m flask catalog add-business --name "Acme Retail" --email owner@acme.test
# - python -m flask catalog add-store --business-id 1 --name "High Street" --code HS01
# - python -m flask catalog add-variant --store-id 1 --product "Tee" --sku TEE-M --name "Tee M" --price-cents 1500
#
# Stock:
# - python -m flask inventory restock --store-id 1 --variant-id 1 --quantity 24 --key po-4411
#   Restock one variant through the ledger (idempotent on --key).
# - python -m flask inventory alerts --store-id 1 [--status open]
#   List low-stock alerts for a store.

import click
from flask.cli import with_appcontext

from .enums import AlertStatus
from .extensions import db
from .models import Business, Product, ProductVariant, Store
from .services import alert_service, inventory_service
from .services.inventory_service import InsufficientStockError
from .validation import ConflictError, NotFoundError, ValidationError, enforce_rules_price


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# CATALOG COMMANDS
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Business, store and variant bootstrap commands."""


@catalog_group.command('add-business')
@click.option('--name', required=True, help='Business name')
@click.option('--email', help='Contact email (stock alerts fall back to it)')
@with_appcontext
def add_business_cli(name, email):
    """Create a business (tenant)."""
    business = Business(name=name, contact_email=email)
    db.session.add(business)
    db.session.commit()

    click.echo(f"PASS Created business: {business.name} (ID: {business.id})")


@catalog_group.command('add-store')
@click.option('--business-id', type=int, required=True, help='Business ID')
@click.option('--name', required=True, help='Store name')
@click.option('--code', help='Store code (unique within business)')
@click.option('--email', help='Store contact email for stock alerts')
@with_appcontext
def add_store_cli(business_id, name, code, email):
    """Add a store to a business."""
    business = db.session.get(Business, business_id)
    if not business:
        click.echo(f"FAIL Business ID {business_id} not found")
        return

    if code:
        existing = db.session.query(Store).filter_by(business_id=business_id, code=code).first()
        if existing:
            click.echo(f"FAIL Store code '{code}' already exists in this business")
            return

    store = Store(business_id=business_id, name=name, code=code, contact_email=email)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}) in business '{business.name}'")


@catalog_group.command('add-variant')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--product', 'product_name', required=True, help='Product name (created if missing)')
@click.option('--sku', required=True, help='SKU (unique within store)')
@click.option('--name', required=True, help='Variant name')
@click.option('--price-cents', type=int, required=True, help='Selling price in cents')
@with_appcontext
def add_variant_cli(store_id, product_name, sku, name, price_cents):
    """Add a product variant with an empty inventory record."""
    store = db.session.get(Store, store_id)
    if not store:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    try:
        enforce_rules_price(price_cents, "price_cents")
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return

    if db.session.query(ProductVariant).filter_by(store_id=store_id, sku=sku).first():
        click.echo(f"FAIL SKU '{sku}' already exists in this store")
        return

    product = db.session.query(Product).filter_by(store_id=store_id, name=product_name).first()
    if not product:
        product = Product(store_id=store_id, name=product_name)
        db.session.add(product)
        db.session.flush()

    variant = ProductVariant(
        product_id=product.id,
        store_id=store_id,
        sku=sku,
        name=name,
        price_cents=price_cents,
    )
    db.session.add(variant)
    db.session.flush()
    inventory = inventory_service.ensure_inventory(db.session, store, variant)
    db.session.commit()

    click.echo(f"PASS Created variant: {variant.sku} - {variant.name} (ID: {variant.id})")
    click.echo(f"   Inventory ID: {inventory.id}")


# =============================================================================
# INVENTORY COMMANDS
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('restock')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--variant-id', type=int, required=True, help='Variant ID')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--key', 'idempotency_key', required=True, help='Idempotency key (repeat-safe)')
@click.option('--reference', help='Purchase order or delivery reference')
@with_appcontext
def restock_cli(store_id, variant_id, quantity, idempotency_key, reference):
    """Restock one variant through the ledger."""
    try:
        results, warnings = inventory_service.restock_variants(
            store_id=store_id,
            items=[{"variant_id": variant_id, "quantity": quantity}],
            idempotency_key=idempotency_key,
            reference=reference,
        )
    except (ValidationError, NotFoundError, ConflictError, InsufficientStockError) as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    result = results[0]
    label = "REPLAY" if result.replayed else "PASS"
    click.echo(f"{label} Variant {variant_id} now at {result.new_quantity}")
    for warning in warnings:
        click.echo(f"WARN {warning}")


@inventory_group.command('alerts')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--status', type=click.Choice([s.value for s in AlertStatus]), help='Filter by status')
@with_appcontext
def alerts_cli(store_id, status):
    """List low-stock alerts for a store."""
    alerts = alert_service.list_alerts(store_id, status=AlertStatus(status) if status else None)

    if not alerts:
        click.echo("No stock alerts found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'SKU':<20} {'Qty':<6} {'Threshold':<10} {'Status':<14} {'Triggered'}")
    click.echo("="*80)

    for alert in alerts:
        variant = alert.inventory.variant
        click.echo(
            f"{alert.id:<6} {variant.sku:<20} {alert.quantity_at_trigger:<6} "
            f"{alert.threshold:<10} {str(alert.status):<14} {alert.triggered_at}"
        )

    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(inventory_group)
