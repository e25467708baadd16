from decimal import Decimal

import pytest
from sqlalchemy import func

from conftest import sale_payload
from pos_ingest.extensions import db
from pos_ingest.errors import (
    InvalidPayloadError,
    InvoiceNotCreatedError,
    InvoiceNotFoundError,
    SaleValidationError,
)
from pos_ingest.models import (
    BankTransaction,
    CreditNote,
    CreditNoteApplication,
    CustomerInvoice,
    InventoryBatch,
    LedgerEntry,
    SalesReturn,
    SalesReturnLine,
    StockLevel,
)
from pos_ingest.services import pos_return_service
from pos_ingest.services.pos_return_service import process_return
from pos_ingest.services.pos_sale_service import process_sale


@pytest.fixture
def sold_invoice(db_session, stocked_product, make_customer):
    """Unpaid 22.00 invoice POS-2026-0001 (2 x A1 at 10.00 + 10% tax) for ACME."""
    make_customer("ACME", credit_limit=500)
    result = process_sale(sale_payload(transaction_id="SALE-1", customer_code="ACME"))
    return db_session.get(CustomerInvoice, result.invoice_id)


def return_payload(transaction_id="RET-1", items=None, **overrides):
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": transaction_id,
        "original_invoice_number": "POS-2026-0001",
        "return_reason": "wrong size",
        "refund_method": "cash",
        "refund_amount": 11.00,
        "items": items if items is not None else [{"sku": "A1", "quantity": 1}],
    }
    payload.update(overrides)
    return payload


def _ledger_by_account(journal_ref):
    rows = db.session.query(LedgerEntry).filter_by(journal_ref=journal_ref).all()
    return {row.account_code: (row.debit_cents, row.credit_cents) for row in rows}


def _assert_ledger_balanced():
    debit, credit = db.session.query(
        func.coalesce(func.sum(LedgerEntry.debit_cents), 0),
        func.coalesce(func.sum(LedgerEntry.credit_cents), 0),
    ).one()
    assert debit == credit


# =============================================================================
# REFUND METHODS
# =============================================================================

def test_cash_refund_restocks_and_posts(db_session, sold_invoice):
    body = process_return(return_payload()).to_dict()

    assert body["success"] is True
    assert body["return_number"].startswith("RET-")
    assert body["credit_note_number"].startswith("CN-")
    assert body["original_invoice_number"] == "POS-2026-0001"
    assert body["refund_amount"] == 11.0
    assert body["refund_method"] == "cash"
    assert body["items_restocked"] is True
    assert body["restock_cost"] == 10.0
    assert body["gl_posted"] is True
    assert "message" not in body

    assert _ledger_by_account(body["return_number"]) == {
        "4150": (1100, 0),
        "1100": (0, 1100),
    }
    assert _ledger_by_account(f"{body['return_number']}/COGS") == {
        "1300": (1000, 0),
        "5100": (0, 1000),
    }
    _assert_ledger_balanced()

    assert db_session.query(InventoryBatch).one().quantity_remaining == 99
    assert db_session.query(StockLevel).one().quantity_on_hand == 99

    note = db_session.query(CreditNote).one()
    assert note.status == "refunded"
    assert note.amount_cents == 1100
    assert note.amount_applied_cents == 0
    assert note.reason == "return"

    # a cash refund leaves the invoice untouched
    db_session.refresh(sold_invoice)
    assert sold_invoice.balance_cents == 2200

    line = db_session.query(SalesReturnLine).one()
    assert (line.unit_price_cents, line.line_total_cents, line.disposition) == (1000, 1000, "restock")


def test_store_credit_is_applied_to_the_invoice(db_session, sold_invoice):
    body = process_return(return_payload(refund_method="store_credit")).to_dict()

    assert _ledger_by_account(body["return_number"]) == {
        "4150": (1100, 0),
        "1200": (0, 1100),
    }
    db_session.refresh(sold_invoice)
    assert sold_invoice.amount_paid_cents == 1100
    assert sold_invoice.status == "partial"

    note = db_session.query(CreditNote).one()
    assert (note.status, note.amount_applied_cents) == ("applied", 1100)
    application = db_session.query(CreditNoteApplication).one()
    assert (application.invoice_id, application.amount_cents) == (sold_invoice.id, 1100)
    _assert_ledger_balanced()


def test_credit_beyond_invoice_balance_stays_on_the_note(db_session, stocked_product, make_customer):
    make_customer("ACME", credit_limit=500)
    process_sale(sale_payload(transaction_id="SALE-1", customer_code="ACME", amount_paid=15))

    process_return(return_payload(refund_method="original_payment"))

    note = db_session.query(CreditNote).one()
    assert note.amount_applied_cents == 700
    assert note.unapplied_cents == 400
    assert note.status == "partially_applied"
    assert db_session.query(CustomerInvoice).one().status == "paid"


def test_cash_refund_to_bank_account_is_a_withdrawal(db_session, sold_invoice, make_bank_account):
    account = make_bank_account(opening_balance=100)

    result = process_return(return_payload(bank_account_id=account.id))

    db_session.refresh(account)
    assert account.current_balance_cents == 10000 - 1100
    withdrawal = db_session.query(BankTransaction).filter_by(bank_account_id=account.id).one()
    assert withdrawal.transaction_type == "withdrawal"
    assert withdrawal.amount_cents == -1100
    assert withdrawal.source_type == "sales_return"
    assert withdrawal.source_id == result.return_id
    assert withdrawal.payee_payer == "Customer ACME"


# =============================================================================
# DISPOSITION
# =============================================================================

@pytest.mark.parametrize("overrides", [
    {"items": [{"sku": "A1", "quantity": 1, "condition": "damaged"}]},
    {"restock": False},
])
def test_unsellable_goods_are_scrapped(db_session, sold_invoice, overrides):
    body = process_return(return_payload(**overrides)).to_dict()

    assert body["items_restocked"] is False
    assert body["restock_cost"] == 0.0
    assert db_session.query(SalesReturnLine).one().disposition == "scrap"
    assert db_session.query(InventoryBatch).one().quantity_remaining == 98
    assert _ledger_by_account(f"{body['return_number']}/COGS") == {}


def test_fractional_return_with_payload_price(db_session, sold_invoice):
    result = process_return(return_payload(
        items=[{"sku": "A1", "quantity": 0.5, "unit_price": 9.99}],
        refund_amount=5,
    ))

    line = db_session.query(SalesReturnLine).one()
    assert line.quantity == Decimal("0.5")
    assert (line.unit_price_cents, line.line_total_cents) == (999, 500)
    assert db_session.query(InventoryBatch).one().quantity_remaining == Decimal("98.5")
    assert _ledger_by_account(f"{result.return_number}/COGS")["1300"] == (500, 0)


# =============================================================================
# ORIGINAL INVOICE
# =============================================================================

def test_original_found_by_sale_transaction_id(db_session, sold_invoice):
    body = process_return(return_payload(original_invoice_number="SALE-1")).to_dict()

    assert body["original_invoice_number"] == "POS-2026-0001"
    assert db_session.query(SalesReturn).one().invoice_id == sold_invoice.id


def test_unknown_original_invoice(db_session, sold_invoice):
    with pytest.raises(InvoiceNotFoundError) as exc:
        process_return(return_payload(original_invoice_number="POS-2026-0404"))

    assert exc.value.to_dict()["error"] == "INVOICE_NOT_FOUND"
    assert db_session.query(SalesReturn).count() == 0


def test_cancelled_invoice_is_not_found(db_session, sold_invoice):
    sold_invoice.is_cancelled = True
    db_session.commit()

    with pytest.raises(InvoiceNotFoundError):
        process_return(return_payload())


def test_rejected_sale_was_never_invoiced(db_session, make_product):
    make_product("A1", cost=10.00)
    with pytest.raises(SaleValidationError):
        process_sale(sale_payload(transaction_id="SALE-BAD"))

    with pytest.raises(InvoiceNotCreatedError) as exc:
        process_return(return_payload(original_invoice_number="SALE-BAD"))

    assert exc.value.to_dict()["error"] == "INVOICE_NOT_CREATED"
    assert exc.value.http_status == 400


# =============================================================================
# VALIDATION
# =============================================================================

def test_every_problem_is_listed_and_nothing_written(db_session, sold_invoice, make_product):
    make_product("B2", cost=1.00)

    with pytest.raises(SaleValidationError) as exc:
        process_return(return_payload(
            items=[
                {"sku": "A1", "quantity": 2},
                {"sku": "A1", "quantity": 1},
                {"sku": "B2", "quantity": 1},
            ],
            refund_amount=23,
            bank_account_id=99,
        ))

    assert exc.value.to_dict()["error"] == "VALIDATION_FAILED"
    assert exc.value.details == [
        {"sku": "B2", "error": "Item not found in original invoice"},
        {"sku": "A1", "error": "Return quantity (3) exceeds original quantity (2)"},
        {"sku": None, "error": "Refund amount (23.0) exceeds refundable amount (22.0)"},
        {"sku": None, "error": "Bank account not found: 99"},
    ]
    assert db_session.query(SalesReturn).count() == 0
    assert db_session.query(CreditNote).count() == 0
    assert db_session.query(InventoryBatch).one().quantity_remaining == 98


def test_earlier_returns_count_against_the_invoice(db_session, sold_invoice):
    process_return(return_payload(transaction_id="RET-1", refund_amount=11))

    with pytest.raises(SaleValidationError) as exc:
        process_return(return_payload(
            transaction_id="RET-2",
            items=[{"sku": "A1", "quantity": 2}],
            refund_amount=11.01,
        ))

    assert exc.value.details == [
        {"sku": "A1", "error": "Return quantity (2) exceeds original quantity (2); 1 already returned"},
        {"sku": None, "error": "Refund amount (11.01) exceeds refundable amount (11.0)"},
    ]

    process_return(return_payload(transaction_id="RET-3", refund_amount=11))
    assert db_session.query(SalesReturn).count() == 2


def test_malformed_return(db_session):
    with pytest.raises(InvalidPayloadError) as exc:
        process_return(return_payload(refund_method="cheque"))

    assert "refund_method must be one of" in exc.value.to_dict()["details"]


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def test_duplicate_return_replays(db_session, sold_invoice):
    first = process_return(return_payload()).to_dict()
    second = process_return(return_payload(refund_amount=1)).to_dict()

    assert second["message"] == "Return already processed"
    second.pop("message")
    assert second == first
    assert db_session.query(SalesReturn).count() == 1
    assert db_session.query(InventoryBatch).one().quantity_remaining == 99


def test_concurrent_duplicate_return_loses_to_unique_constraint(db_session, sold_invoice, monkeypatch):
    first = process_return(return_payload())

    real_lookup = pos_return_service.find_existing_return
    calls = {"n": 0}

    def racing_lookup(transaction_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_lookup(transaction_id)

    monkeypatch.setattr(pos_return_service, "find_existing_return", racing_lookup)
    replayed = process_return(return_payload())

    assert replayed.duplicate is True
    assert replayed.return_number == first.return_number
    assert db_session.query(SalesReturn).count() == 1
    assert db_session.query(CreditNote).count() == 1
