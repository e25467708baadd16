"""
Pytest fixtures for POS ingestion backend tests.

Provides an in-memory application, a per-test table wipe, master-data
factories and the Flask test client.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from pos_ingest import create_app
from pos_ingest.extensions import db
from pos_ingest.money import to_cents
from pos_ingest.services import settings_service
from pos_ingest.services.banking_service import create_bank_account
from pos_ingest.services.customer_service import create_customer
from pos_ingest.services.inventory_service import create_product, receive_batch, set_stock_level


def _cents(amount):
    if amount is None:
        return None
    return to_cents(Decimal(str(amount)))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_API_KEY': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh tables and rate limiters for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions['pos_rate_limiter'].reset()
        app.extensions['pos_customers_rate_limiter'].reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("A1", cost=10.00, active=True)."""
    def _make(sku, cost=None, active=True, name=None):
        return create_product(
            sku=sku,
            name=name or f"Product {sku}",
            unit_cost_cents=_cents(cost),
            is_active=active,
        )
    return _make


@pytest.fixture(scope='function')
def make_batch(db_session):
    """Factory: make_batch(product, "B1", 5, cost=9.00, received_at=...). Adds to on-hand."""
    def _make(product, batch_number, quantity, cost=None, received_at=None):
        return receive_batch(
            product_id=product.id,
            batch_number=batch_number,
            quantity=quantity,
            unit_cost_cents=_cents(cost),
            received_at=received_at,
        )
    return _make


@pytest.fixture(scope='function')
def set_stock(db_session):
    def _set(product, on_hand, reserved=0, location="MAIN"):
        return set_stock_level(
            product_id=product.id,
            quantity_on_hand=on_hand,
            quantity_reserved=reserved,
            location_code=location,
        )
    return _set


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(code, credit_limit=0, name=None, status="active"):
        return create_customer(
            customer_code=code,
            company_name=name or f"Customer {code}",
            credit_limit_cents=_cents(credit_limit),
            status=status,
        )
    return _make


@pytest.fixture(scope='function')
def make_bank_account(db_session):
    def _make(name="Operating", number="001-0001", opening_balance=0):
        return create_bank_account(
            account_name=name,
            account_number=number,
            opening_balance_cents=_cents(opening_balance),
        )
    return _make


@pytest.fixture(scope='function')
def configure(db_session):
    """Set a system_config value: configure("pos_validate_credit_limit", "true")."""
    def _configure(key, value):
        settings_service.set_config(key, value)
    return _configure


@pytest.fixture(scope='function')
def stocked_product(make_product, make_batch):
    """Product A1 at catalog cost 10.00 with one batch of 100 at 10.00."""
    product = make_product("A1", cost=10.00)
    make_batch(product, "A1-B1", 100, cost=10.00, received_at=datetime(2026, 1, 1))
    return product


def sale_payload(transaction_id="TX-1", items=None, **overrides):
    """Helper to build a terminal sale payload."""
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": transaction_id,
        "transaction_datetime": "2026-10-18T09:30:00Z",
        "items": items if items is not None else [
            {"sku": "A1", "quantity": 2, "unit_price": 10.00, "discount": 0, "tax_rate": 10},
        ],
    }
    payload.update(overrides)
    return payload
