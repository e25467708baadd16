from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func

from conftest import sale_payload
from pos_ingest.extensions import db
from pos_ingest.errors import CreditLimitExceededError, InvalidPayloadError, SaleValidationError
from pos_ingest.models import (
    BankAccount,
    BankTransaction,
    Customer,
    CustomerInvoice,
    CustomerReceipt,
    InventoryBatch,
    InventoryTransaction,
    LedgerEntry,
    PosSale,
    ReceiptAllocation,
    StockLevel,
)
from pos_ingest.services import pos_sale_service
from pos_ingest.services.pos_sale_service import process_sale


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
# HAPPY PATHS
# =============================================================================

def test_fully_paid_sale(db_session, stocked_product):
    result = process_sale(sale_payload(amount_paid=22))
    body = result.to_dict()

    assert body["success"] is True
    assert body["erp_invoice_number"] == "POS-2026-0001"
    assert body["subtotal"] == 20.0
    assert body["tax_amount"] == 2.0
    assert body["total_amount"] == 22.0
    assert body["change_due"] == 0.0
    assert body["balance_due"] == 0.0
    assert body["invoice_status"] == "paid"
    assert body["inventory_updated"] is True
    assert body["gl_posted"] is True
    assert body["cogs_amount"] == 20.0
    assert body["receipt_number"] == "RCP-2026-0001"
    assert "message" not in body

    invoice = db_session.get(CustomerInvoice, result.invoice_id)
    assert invoice.status == "paid"
    assert invoice.due_date == invoice.invoice_date
    assert str(invoice.invoice_date) == "2026-10-18"
    assert invoice.notes == "POS Sale - Terminal: T1"
    assert len(invoice.lines) == 1
    assert invoice.lines[0].line_total_cents == 2200

    assert _ledger_by_account("POS-2026-0001") == {
        "4100": (0, 2000),
        "2300": (0, 200),
        "1100": (2200, 0),
    }
    assert _ledger_by_account("POS-2026-0001/COGS") == {
        "5100": (2000, 0),
        "1300": (0, 2000),
    }
    _assert_ledger_balanced()

    log = db_session.query(PosSale).filter_by(pos_transaction_id="TX-1").one()
    assert log.status == "completed"
    assert log.invoice_id == invoice.id
    assert log.receipt_id == result.receipt_id
    assert log.raw_payload["transaction_id"] == "TX-1"
    assert log.items[0].cost_at_sale_cents == 1000


def test_partial_payment_debits_receivables(db_session, stocked_product):
    result = process_sale(sale_payload(amount_paid=10))
    body = result.to_dict()

    assert body["balance_due"] == 12.0
    assert body["change_due"] == 0.0
    assert body["invoice_status"] == "partial"

    ledger = _ledger_by_account(body["erp_invoice_number"])
    assert ledger["1200"] == (1200, 0)
    assert ledger["1100"] == (1000, 0)
    _assert_ledger_balanced()

    receipt = db_session.get(CustomerReceipt, result.receipt_id)
    assert receipt.amount_cents == 1000
    allocation = db_session.query(ReceiptAllocation).filter_by(receipt_id=receipt.id).one()
    assert allocation.invoice_id == result.invoice_id


def test_overpayment_gives_change_and_caps_receipt(db_session, stocked_product):
    result = process_sale(sale_payload(amount_paid=30))

    assert result.change_cents == 800
    assert result.balance_due_cents == 0
    assert db_session.get(CustomerReceipt, result.receipt_id).amount_cents == 2200
    assert db_session.get(CustomerInvoice, result.invoice_id).amount_paid_cents == 2200
    assert _ledger_by_account(result.invoice_number)["1100"] == (2200, 0)


def test_unpaid_sale_has_no_receipt(db_session, stocked_product):
    result = process_sale(sale_payload())
    body = result.to_dict()

    assert body["receipt_number"] is None
    assert body["receipt_id"] is None
    assert body["invoice_status"] == "sent"
    assert db_session.query(CustomerReceipt).count() == 0
    assert _ledger_by_account(result.invoice_number)["1200"] == (2200, 0)
    _assert_ledger_balanced()


def test_discount_and_per_line_tax(db_session, make_product, make_batch):
    a = make_product("A1", cost=10.00)
    b = make_product("B2", cost=3.00)
    make_batch(a, "A-1", 10, cost=10.00)
    make_batch(b, "B-1", 10, cost=3.00)

    result = process_sale(sale_payload(items=[
        {"sku": "A1", "quantity": 3, "unit_price": 10.00, "discount": 1.50, "tax_rate": 7.5},
        {"sku": "B2", "quantity": 1, "unit_price": 3.00, "tax_rate": 0},
    ]))

    # (30.00 - 1.50) = 28.50, tax 7.5% = 2.1375 -> 2.14
    assert result.subtotal_cents == 2850 + 300
    assert result.tax_cents == 214
    assert result.total_cents == 3364


# =============================================================================
# IDEMPOTENCY
# =============================================================================

def test_duplicate_transaction_replays_first_result(db_session, stocked_product):
    first = process_sale(sale_payload(amount_paid=22)).to_dict()
    second = process_sale(sale_payload(amount_paid=22)).to_dict()

    assert second["message"] == "Transaction already processed"
    second.pop("message")
    assert second == first

    assert db_session.query(CustomerInvoice).count() == 1
    assert db_session.query(CustomerReceipt).count() == 1
    assert db_session.query(PosSale).count() == 1
    assert db_session.query(InventoryBatch).one().quantity_remaining == 98


def test_duplicate_with_different_body_still_replays(db_session, stocked_product):
    first = process_sale(sale_payload(amount_paid=22))
    again = process_sale(sale_payload(amount_paid=5, items=[
        {"sku": "A1", "quantity": 9, "unit_price": 10.00, "tax_rate": 0},
    ]))

    assert again.duplicate is True
    assert again.invoice_number == first.invoice_number
    assert again.total_cents == 2200
    assert db_session.query(InventoryTransaction).filter_by(transaction_type="issue").count() == 1


def test_concurrent_duplicate_loses_to_unique_constraint(db_session, stocked_product, monkeypatch):
    process_sale(sale_payload(amount_paid=22))

    real_lookup = pos_sale_service.find_existing_sale
    calls = {"n": 0}

    def racing_lookup(transaction_id):
        # First lookup misses, as if the winning request had not committed yet
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_lookup(transaction_id)

    monkeypatch.setattr(pos_sale_service, "find_existing_sale", racing_lookup)
    replayed = process_sale(sale_payload(amount_paid=22))

    assert replayed.duplicate is True
    assert replayed.invoice_number == "POS-2026-0001"
    assert db_session.query(CustomerInvoice).count() == 1
    assert db_session.query(LedgerEntry).count() == 5
    assert db_session.query(InventoryBatch).one().quantity_remaining == 98


# =============================================================================
# VALIDATION
# =============================================================================

def test_zero_quantity_rejected_before_any_write(db_session, stocked_product):
    payload = sale_payload(items=[{"sku": "A1", "quantity": 0, "unit_price": 10.00}])

    with pytest.raises(InvalidPayloadError) as exc:
        process_sale(payload)

    assert exc.value.to_dict() == {
        "success": False,
        "error": "INVALID_PAYLOAD",
        "details": "Invalid quantity for SKU A1",
    }
    assert db_session.query(PosSale).count() == 0
    assert db_session.query(CustomerInvoice).count() == 0


def test_insufficient_stock_lists_each_sku_once(db_session, make_product, make_batch):
    a = make_product("A1", cost=10.00)
    make_product("B2", cost=5.00)
    make_batch(a, "A-1", 100, cost=10.00)

    with pytest.raises(SaleValidationError) as exc:
        process_sale(sale_payload(items=[
            {"sku": "A1", "quantity": 60, "unit_price": 10.00},
            {"sku": "A1", "quantity": 50, "unit_price": 10.00},
            {"sku": "B2", "quantity": 1, "unit_price": 5.00},
        ]))

    details = exc.value.details
    assert details == [
        {"sku": "A1", "error": "Insufficient stock (available: 100, requested: 110)"},
        {"sku": "B2", "error": "Insufficient stock (available: 0, requested: 1)"},
    ]

    log = db_session.query(PosSale).filter_by(pos_transaction_id="TX-1").one()
    assert log.status == "failed"
    assert log.error_details == details
    assert log.invoice_id is None
    assert db_session.query(CustomerInvoice).count() == 0
    assert db_session.query(LedgerEntry).count() == 0
    assert db_session.query(InventoryBatch).one().quantity_remaining == 100


def test_failed_transaction_replays_its_errors(db_session, make_product):
    make_product("A1", cost=10.00)

    with pytest.raises(SaleValidationError) as first:
        process_sale(sale_payload())
    with pytest.raises(SaleValidationError) as second:
        process_sale(sale_payload())

    assert second.value.to_dict() == first.value.to_dict()
    assert db_session.query(PosSale).count() == 1


def test_catalog_errors_are_collected(db_session, make_product, make_batch):
    inactive = make_product("OLD", cost=1.00, active=False)
    make_batch(inactive, "O-1", 5)

    with pytest.raises(SaleValidationError) as exc:
        process_sale(sale_payload(items=[
            {"sku": "NOPE", "quantity": 1, "unit_price": 1.00},
            {"sku": "OLD", "quantity": 1, "unit_price": 1.00},
        ]))

    assert exc.value.details == [
        {"sku": "NOPE", "error": "Product not found"},
        {"sku": "OLD", "error": "Product is inactive"},
    ]


@pytest.mark.parametrize("price, accepted", [
    (11.00, True),
    (11.01, False),
    (9.00, True),
    (8.99, False),
])
def test_price_tolerance_boundary(db_session, stocked_product, price, accepted):
    payload = sale_payload(items=[{"sku": "A1", "quantity": 1, "unit_price": price}])

    if accepted:
        assert process_sale(payload).total_cents == round(price * 100)
    else:
        with pytest.raises(SaleValidationError) as exc:
            process_sale(payload)
        assert exc.value.details[0]["sku"] == "A1"
        assert exc.value.details[0]["error"].startswith("Price mismatch: expected 10.0, received")


def test_price_tolerance_is_configurable(db_session, stocked_product, configure):
    configure("pos_price_tolerance", '"2"')

    with pytest.raises(SaleValidationError):
        process_sale(sale_payload(items=[{"sku": "A1", "quantity": 1, "unit_price": 10.50}]))


def test_product_without_cost_skips_price_check(db_session, make_product, configure):
    make_product("FREE")
    configure("pos_require_stock", "false")

    result = process_sale(sale_payload(items=[{"sku": "FREE", "quantity": 1, "unit_price": 99.00}]))

    assert result.total_cents == 9900
    assert result.cogs_cents == 0
    assert db_session.query(LedgerEntry).filter_by(journal_ref=f"{result.invoice_number}/COGS").count() == 0


def test_unknown_bank_account_is_a_validation_error(db_session, stocked_product):
    with pytest.raises(SaleValidationError) as exc:
        process_sale(sale_payload(amount_paid=22, bank_account_id=999))

    assert exc.value.details == [{"sku": None, "error": "Bank account not found: 999"}]


# =============================================================================
# INVENTORY
# =============================================================================

def test_fifo_consumes_oldest_batch_first(db_session, make_product, make_batch):
    product = make_product("A1", cost=10.00)
    newer = make_batch(product, "NEW", 10, cost=8.00, received_at=datetime(2026, 3, 1))
    older = make_batch(product, "OLD", 3, cost=5.00, received_at=datetime(2026, 1, 1))

    result = process_sale(sale_payload(items=[{"sku": "A1", "quantity": 5, "unit_price": 10.00}]))

    assert result.cogs_cents == 3 * 500 + 2 * 800
    assert db_session.get(InventoryBatch, older.id).quantity_remaining == 0
    assert db_session.get(InventoryBatch, older.id).status == "consumed"
    assert db_session.get(InventoryBatch, newer.id).quantity_remaining == 8
    assert db_session.get(InventoryBatch, newer.id).status == "active"

    item = db_session.query(PosSale).one().items[0]
    assert [b["batch_number"] for b in item.batches_used] == ["OLD", "NEW"]
    assert [b["quantity"] for b in item.batches_used] == [3, 2]


def test_quantity_is_conserved_across_lines(db_session, make_product, make_batch):
    product = make_product("A1", cost=10.00)
    make_batch(product, "B1", 4, cost=10.00, received_at=datetime(2026, 1, 1))
    make_batch(product, "B2", 20, cost=10.00, received_at=datetime(2026, 2, 1))

    process_sale(sale_payload(items=[
        {"sku": "A1", "quantity": 3, "unit_price": 10.00},
        {"sku": "A1", "quantity": 4, "unit_price": 10.00},
    ]))

    remaining = sum(b.quantity_remaining for b in db_session.query(InventoryBatch).all())
    issued = db_session.query(func.sum(InventoryTransaction.quantity)).filter_by(transaction_type="issue").scalar()
    assert remaining == 24 - 7
    assert issued == -7
    assert all(b.quantity_remaining >= 0 for b in db_session.query(InventoryBatch).all())
    assert db_session.query(StockLevel).one().quantity_on_hand == 17


def test_fractional_quantity_sale(db_session, stocked_product):
    result = process_sale(sale_payload(items=[
        {"sku": "A1", "quantity": 1.5, "unit_price": 10.00, "tax_rate": 10},
        {"sku": "A1", "quantity": "0.25", "unit_price": 10.00},
    ], amount_paid=19))
    body = result.to_dict()

    assert body["subtotal"] == 17.5
    assert body["tax_amount"] == 1.5
    assert body["total_amount"] == 19.0
    assert body["invoice_status"] == "paid"
    assert result.cogs_cents == 1750

    assert db_session.query(InventoryBatch).one().quantity_remaining == Decimal("98.25")
    assert db_session.query(StockLevel).one().quantity_on_hand == Decimal("98.25")

    items = db_session.query(PosSale).one().items
    assert [item.quantity for item in items] == [Decimal("1.5"), Decimal("0.25")]
    assert items[0].batches_used[0]["quantity"] == 1.5
    assert items[0].to_dict()["quantity"] == 1.5
    _assert_ledger_balanced()


def test_whole_float_quantity_is_accepted(db_session, stocked_product):
    result = process_sale(sale_payload(items=[{"sku": "A1", "quantity": 2.0, "unit_price": 10.00}]))

    assert result.to_dict()["subtotal"] == 20.0
    assert db_session.query(PosSale).one().items[0].to_dict()["quantity"] == 2


def test_sale_beyond_batches_uses_catalog_cost_when_stock_not_required(
    db_session, make_product, make_batch, configure
):
    configure("pos_require_stock", "false")
    product = make_product("A1", cost=10.00)
    make_batch(product, "B1", 2, cost=6.00)

    result = process_sale(sale_payload(items=[{"sku": "A1", "quantity": 5, "unit_price": 10.00}]))

    assert result.cogs_cents == 2 * 600 + 3 * 1000
    assert db_session.query(StockLevel).one().quantity_on_hand == 0
    unbatched = db_session.query(InventoryTransaction).filter_by(transaction_type="issue", batch_id=None).one()
    assert unbatched.quantity == -3


# =============================================================================
# CUSTOMERS, CREDIT, BANKING
# =============================================================================

def test_missing_or_unknown_customer_falls_back_to_walk_in(db_session, stocked_product):
    first = process_sale(sale_payload("TX-1"))
    second = process_sale(sale_payload("TX-2", customer_code="GHOST"))

    walk_in = db_session.query(Customer).filter_by(customer_code="WALK-IN").one()
    assert walk_in.company_name == "Walk-In Customer"
    assert db_session.get(CustomerInvoice, first.invoice_id).customer_id == walk_in.id
    assert db_session.get(CustomerInvoice, second.invoice_id).customer_id == walk_in.id
    assert second.invoice_number == "POS-2026-0002"


def test_credit_limit_boundary(db_session, stocked_product, make_customer, configure):
    configure("pos_validate_credit_limit", "true")
    make_customer("EXACT", credit_limit=22.00)
    make_customer("SHORT", credit_limit=21.99)

    assert process_sale(sale_payload("TX-1", customer_code="EXACT")).balance_due_cents == 2200

    with pytest.raises(CreditLimitExceededError) as exc:
        process_sale(sale_payload("TX-2", customer_code="SHORT"))

    assert exc.value.to_dict()["error"] == "CREDIT_LIMIT_EXCEEDED"
    assert exc.value.details == {
        "customer_code": "SHORT",
        "credit_limit": 21.99,
        "outstanding_balance": 0.0,
        "sale_total": 22.0,
        "amount_paid": 0.0,
        "available_credit": 21.99,
    }
    assert db_session.query(PosSale).filter_by(pos_transaction_id="TX-2").count() == 0


def test_credit_check_counts_outstanding_invoices(db_session, stocked_product, make_customer, configure):
    configure("pos_validate_credit_limit", "true")
    make_customer("CUST", credit_limit=30.00)

    process_sale(sale_payload("TX-1", customer_code="CUST"))

    with pytest.raises(CreditLimitExceededError) as exc:
        process_sale(sale_payload("TX-2", customer_code="CUST", amount_paid=13.99))
    assert exc.value.details["outstanding_balance"] == 22.0
    assert exc.value.details["available_credit"] == 8.0

    # Paying enough leaves the uncovered part within the remaining credit
    assert process_sale(sale_payload("TX-3", customer_code="CUST", amount_paid=14)).balance_due_cents == 800


def test_credit_check_disabled_by_default(db_session, stocked_product, make_customer):
    make_customer("CUST", credit_limit=1.00)

    assert process_sale(sale_payload(customer_code="CUST")).balance_due_cents == 2200


def test_bank_deposit_increments_balance(db_session, stocked_product, make_bank_account):
    account = make_bank_account(opening_balance=100)

    result = process_sale(sale_payload(amount_paid=30, bank_account_id=account.id))

    assert db_session.get(BankAccount, account.id).current_balance_cents == 10000 + 2200
    tx = db_session.query(BankTransaction).one()
    assert tx.transaction_number == "BTX-2026-0001"
    assert tx.amount_cents == 2200
    assert tx.reference_number == result.receipt_number
    assert db_session.get(CustomerReceipt, result.receipt_id).bank_account_id == account.id


# =============================================================================
# SALE LOG QUERIES
# =============================================================================

def test_sale_log_queries(db_session, stocked_product, make_product):
    make_product("EMPTY", cost=1.00)
    process_sale(sale_payload("TX-1", amount_paid=22))
    with pytest.raises(SaleValidationError):
        process_sale(sale_payload("TX-2", items=[{"sku": "EMPTY", "quantity": 1, "unit_price": 1.00}]))

    assert [s.pos_transaction_id for s in pos_sale_service.list_sales()] == ["TX-2", "TX-1"]
    assert [s.pos_transaction_id for s in pos_sale_service.list_sales(status="failed")] == ["TX-2"]
    assert pos_sale_service.get_sale_by_transaction_id("TX-1").to_dict()["invoice_number"] == "POS-2026-0001"

    stats = pos_sale_service.get_sales_stats()
    assert stats["sales_today"] == 1
    assert stats["failed_today"] == 1
    assert stats["revenue_today"] == 22.0
    assert stats["average_sale_value"] == 22.0
