from datetime import date

import pytest

from pos_ingest.extensions import db
from pos_ingest.models import Customer, CustomerInvoice
from pos_ingest.services.customer_service import (
    create_customer,
    get_outstanding_balance,
    list_customers_with_balance,
    resolve_customer,
)


def _invoice(customer, number, total, paid=0, cancelled=False):
    invoice = CustomerInvoice(
        invoice_number=number,
        customer_id=customer.id,
        invoice_date=date(2026, 10, 1),
        due_date=date(2026, 10, 31),
        subtotal_cents=total,
        tax_cents=0,
        total_cents=total,
        amount_paid_cents=paid,
        is_cancelled=cancelled,
    )
    db.session.add(invoice)
    db.session.commit()
    return invoice


def test_outstanding_balance_skips_paid_and_cancelled(db_session, make_customer):
    acme = make_customer("ACME", credit_limit=100)
    _invoice(acme, "INV-1", 5000, paid=2000)
    _invoice(acme, "INV-2", 1000, paid=1000)
    _invoice(acme, "INV-3", 9000, cancelled=True)

    assert get_outstanding_balance(acme.id) == 3000


def test_directory_reports_available_credit(db_session, make_customer):
    acme = make_customer("ACME", credit_limit=100, name="Acme Corp")
    over = make_customer("OVER", credit_limit=10, name="Overdrawn Ltd")
    make_customer("IDLE", name="Idle Inc", status="inactive")
    _invoice(acme, "INV-1", 4000)
    _invoice(over, "INV-2", 5000)

    rows = list_customers_with_balance()

    assert [r["customer_code"] for r in rows] == ["ACME", "OVER"]
    assert rows[0]["credit_limit"] == 100.0
    assert rows[0]["outstanding_balance"] == 40.0
    assert rows[0]["available_credit"] == 60.0
    assert rows[1]["available_credit"] == 0.0


def test_directory_filters(db_session, make_customer):
    make_customer("ACME", name="Acme Corp")
    make_customer("BETA", name="Beta Stores")
    make_customer("IDLE", name="Idle Acme", status="inactive")

    assert [r["customer_code"] for r in list_customers_with_balance(search="acme")] == ["ACME"]
    assert [r["customer_code"] for r in list_customers_with_balance(search="acme", active_only=False)] == [
        "ACME",
        "IDLE",
    ]
    assert [r["customer_code"] for r in list_customers_with_balance(code="BETA")] == ["BETA"]


def test_unknown_code_resolves_to_walk_in(db_session):
    resolved = resolve_customer("NOPE", "WALK-IN")

    assert resolved.is_walk_in is True
    assert resolved.customer_code == "WALK-IN"
    assert resolved.customer.company_name == "Walk-In Customer"
    assert resolved.credit_limit_cents == 0

    again = resolve_customer(None, "WALK-IN")
    assert again.customer.id == resolved.customer.id
    assert db_session.query(Customer).filter_by(customer_code="WALK-IN").count() == 1


def test_known_code_resolves_to_customer(db_session, make_customer):
    acme = make_customer("ACME", credit_limit=50)

    resolved = resolve_customer("ACME", "WALK-IN")

    assert resolved.is_walk_in is False
    assert resolved.customer.id == acme.id
    assert resolved.credit_limit_cents == 5000


def test_negative_credit_limit_rejected(db_session):
    with pytest.raises(ValueError):
        create_customer(customer_code="BAD", company_name="Bad", credit_limit_cents=-1)


def test_walk_in_savepoint_rolls_back_with_outer_transaction(db_session):
    resolve_customer(None, "WALK-IN")
    db_session.rollback()

    assert db_session.query(Customer).filter_by(customer_code="WALK-IN").count() == 0
