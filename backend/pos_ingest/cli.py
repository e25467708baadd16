# Overview: Flask CLI command groups for bootstrap, configuration and master data.

# backend/pos_ingest/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent) and seed default POS settings.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# POS settings:
# - python -m flask config show
# - python -m flask config set pos_price_tolerance 5
#
# Master data:
# - python -m flask catalog add-product --sku A-100 --name "Widget" --unit-cost 10.00
# - python -m flask catalog receive-batch --sku A-100 --batch B-001 --quantity 50 --unit-cost 9.50
# - python -m flask catalog set-stock --sku A-100 --on-hand 50
# - python -m flask customers add --code CUST001 --name "Acme Ltd" --credit-limit 5000
# - python -m flask bank add-account --name "Operating" --number 001-222 --currency USD

from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import cents_to_amount, to_cents
from .quantities import quantity_to_number, to_quantity
from .services import settings_service
from .services.banking_service import create_bank_account
from .services.customer_service import create_customer
from .services.inventory_service import (
    InventoryError,
    create_product,
    get_product_by_sku,
    receive_batch,
    set_stock_level,
)


def _amount_to_cents(value):
    if value is None:
        return None
    try:
        return to_cents(Decimal(str(value)))
    except InvalidOperation:
        raise click.BadParameter(f"not a valid amount: {value}")


def _quantity(value):
    try:
        quantity = to_quantity(str(value).strip())
    except InvalidOperation:
        raise click.BadParameter(f"not a valid quantity: {value}")
    if not quantity.is_finite():
        raise click.BadParameter(f"not a valid quantity: {value}")
    return quantity


def _product_or_fail(sku):
    product = get_product_by_sku(sku)
    if product is None:
        raise click.ClickException(f"Product not found: {sku}")
    return product


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and seed POS settings that are not set yet."""
    db.create_all()

    existing = settings_service.get_config_values(settings_service.POS_KEYS)
    defaults = {
        settings_service.KEY_PRICE_TOLERANCE: ("10", "Max % deviation of POS price from catalog cost"),
        settings_service.KEY_REQUIRE_STOCK: ("true", "Reject POS sales exceeding available stock"),
        settings_service.KEY_WALK_IN_CUSTOMER_CODE: ("WALK-IN", "Customer used when a sale has no known customer"),
        settings_service.KEY_VALIDATE_CREDIT_LIMIT: ("false", "Enforce customer credit limits on POS sales"),
        settings_service.KEY_DEFAULT_CURRENCY: ("USD", "Currency of POS invoices"),
    }
    seeded = 0
    for key, (value, description) in defaults.items():
        if key not in existing:
            settings_service.set_config(key, value, description)
            seeded += 1

    click.echo(f"PASS Database ready ({seeded} setting(s) seeded).")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed settings.")


# =============================================================================
# CONFIG
# =============================================================================

@click.group('config')
def config_group():
    """POS business settings (system_config)."""


@config_group.command('show')
@with_appcontext
def show_config():
    rows = settings_service.list_config()
    if not rows:
        click.echo("No settings stored; built-in defaults apply.")
    for row in rows:
        click.echo(f"{row.key:<28} {row.value!s:<12} {row.description or ''}")

    effective = settings_service.get_pos_settings()
    click.echo("\nEffective POS settings:")
    click.echo(f"  price tolerance : {effective.price_tolerance_percent}%")
    click.echo(f"  require stock   : {effective.require_stock}")
    click.echo(f"  walk-in code    : {effective.walk_in_customer_code}")
    click.echo(f"  credit limits   : {effective.validate_credit_limit}")
    click.echo(f"  currency        : {effective.default_currency}")


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.option('--description', help='Optional description')
@with_appcontext
def set_config_cli(key, value, description):
    try:
        settings_service.set_config(key, value, description)
    except settings_service.SettingsError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {key} = {value}")


# =============================================================================
# CATALOG
# =============================================================================

@click.group('catalog')
def catalog_group():
    """Products, inventory batches and stock levels."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--unit-cost', help='Catalog unit cost (e.g. 10.00)')
@click.option('--inactive', is_flag=True, help='Create the product inactive')
@click.option('--batch-tracked', is_flag=True)
@with_appcontext
def add_product(sku, name, unit_cost, inactive, batch_tracked):
    try:
        product = create_product(
            sku=sku,
            name=name,
            unit_cost_cents=_amount_to_cents(unit_cost),
            is_active=not inactive,
            batch_tracked=batch_tracked,
        )
    except InventoryError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Product {product.sku} created (id={product.id})")


@catalog_group.command('receive-batch')
@click.option('--sku', required=True)
@click.option('--batch', 'batch_number', required=True)
@click.option('--quantity', required=True, help='Units received (fractional allowed, e.g. 12.5)')
@click.option('--unit-cost', help='Batch unit cost; catalog cost is used when omitted')
@click.option('--location', default='MAIN', show_default=True)
@with_appcontext
def receive_batch_cli(sku, batch_number, quantity, unit_cost, location):
    product = _product_or_fail(sku)
    try:
        batch = receive_batch(
            product_id=product.id,
            batch_number=batch_number,
            quantity=_quantity(quantity),
            unit_cost_cents=_amount_to_cents(unit_cost),
            location_code=location,
        )
    except InventoryError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Batch {batch.batch_number} received: {quantity_to_number(batch.quantity_received)} x {sku}")


@catalog_group.command('set-stock')
@click.option('--sku', required=True)
@click.option('--on-hand', required=True)
@click.option('--reserved', default='0', show_default=True)
@click.option('--location', default='MAIN', show_default=True)
@with_appcontext
def set_stock(sku, on_hand, reserved, location):
    product = _product_or_fail(sku)
    try:
        level = set_stock_level(
            product_id=product.id,
            quantity_on_hand=_quantity(on_hand),
            quantity_reserved=_quantity(reserved),
            location_code=location,
        )
    except InventoryError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS {sku}@{location}: on hand {quantity_to_number(level.quantity_on_hand)}, "
        f"reserved {quantity_to_number(level.quantity_reserved)}"
    )


# =============================================================================
# CUSTOMERS / BANK
# =============================================================================

@click.group('customers')
def customers_group():
    """Customer master data."""


@customers_group.command('add')
@click.option('--code', required=True)
@click.option('--name', required=True)
@click.option('--credit-limit', default='0', show_default=True)
@click.option('--payment-terms', type=int)
@click.option('--email')
@click.option('--phone')
@with_appcontext
def add_customer(code, name, credit_limit, payment_terms, email, phone):
    try:
        customer = create_customer(
            customer_code=code,
            company_name=name,
            credit_limit_cents=_amount_to_cents(credit_limit),
            payment_terms=payment_terms,
            email=email,
            phone=phone,
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"PASS Customer {customer.customer_code} created "
        f"(credit limit {cents_to_amount(customer.credit_limit_cents)})"
    )


@click.group('bank')
def bank_group():
    """Bank accounts receiving POS deposits."""


@bank_group.command('add-account')
@click.option('--name', required=True)
@click.option('--number', required=True)
@click.option('--currency', default='USD', show_default=True)
@click.option('--opening-balance', default='0', show_default=True)
@with_appcontext
def add_bank_account(name, number, currency, opening_balance):
    account = create_bank_account(
        account_name=name,
        account_number=number,
        currency=currency,
        opening_balance_cents=_amount_to_cents(opening_balance),
    )
    click.echo(f"PASS Bank account {account.account_name} created (id={account.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(config_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(bank_group)
