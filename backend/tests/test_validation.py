from datetime import datetime
from decimal import Decimal

import pytest

from pos_ingest.validation import (
    ValidationError,
    parse_credit_note_payload,
    parse_payment_payload,
    parse_return_payload,
    parse_sale_payload,
)


def _payload(**overrides):
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": "TX-1",
        "items": [{"sku": "A1", "quantity": 2, "unit_price": 10.0}],
    }
    payload.update(overrides)
    return payload


def _item(**overrides):
    item = {"sku": "A1", "quantity": 1, "unit_price": 10.0}
    item.update(overrides)
    return _payload(items=[item])


def test_minimal_payload_gets_defaults():
    sale = parse_sale_payload(_payload())

    assert sale.pos_terminal_id == "T1"
    assert sale.payment_method == "cash"
    assert sale.amount_paid_cents == 0
    assert sale.customer_code is None
    assert sale.transaction_datetime is None
    assert sale.items[0].unit_price_cents == 1000
    assert sale.items[0].discount_cents == 0
    assert sale.items[0].tax_rate_bps == 0


def test_amounts_become_cents_and_rates_basis_points():
    sale = parse_sale_payload(_payload(
        amount_paid="22.005",
        items=[{"sku": " A1 ", "quantity": "3", "unit_price": "9.99", "discount": 0.5, "tax_rate": 7.25}],
    ))

    item = sale.items[0]
    assert item.sku == "A1"
    assert item.quantity == 3
    assert item.unit_price_cents == 999
    assert item.discount_cents == 50
    assert item.tax_rate_bps == 725
    assert item.subtotal_cents == 2947
    assert sale.amount_paid_cents == 2201


def test_transaction_datetime_is_normalized_to_utc():
    sale = parse_sale_payload(_payload(transaction_datetime="2026-10-18T11:30:00+02:00"))
    assert sale.transaction_datetime == datetime(2026, 10, 18, 9, 30)


@pytest.mark.parametrize("payload", [
    None,
    [],
    "text",
])
def test_non_object_payload(payload):
    with pytest.raises(ValidationError, match="Invalid JSON payload"):
        parse_sale_payload(payload)


@pytest.mark.parametrize("missing", ["pos_terminal_id", "transaction_id", "items"])
def test_missing_required_fields(missing):
    payload = _payload()
    payload.pop(missing)
    with pytest.raises(ValidationError, match="Missing required fields"):
        parse_sale_payload(payload)


def test_empty_items_rejected():
    with pytest.raises(ValidationError, match="Missing required fields"):
        parse_sale_payload(_payload(items=[]))


def test_field_lengths():
    with pytest.raises(ValidationError, match="pos_terminal_id exceeds max length 50"):
        parse_sale_payload(_payload(pos_terminal_id="T" * 51))
    with pytest.raises(ValidationError, match="transaction_id exceeds max length 100"):
        parse_sale_payload(_payload(transaction_id="X" * 101))

    assert parse_sale_payload(_payload(transaction_id="X" * 100)).transaction_id == "X" * 100


def test_item_count_limit():
    items = [{"sku": f"S{i}", "quantity": 1, "unit_price": 1} for i in range(101)]
    with pytest.raises(ValidationError, match="Maximum 100 items per transaction"):
        parse_sale_payload(_payload(items=items))

    assert len(parse_sale_payload(_payload(items=items[:100])).items) == 100


@pytest.mark.parametrize("sku", ["", "   ", None, 123, "S" * 51])
def test_invalid_sku(sku):
    with pytest.raises(ValidationError, match="Invalid SKU format"):
        parse_sale_payload(_item(sku=sku))


@pytest.mark.parametrize("quantity", [0, -1, 10001, 10000.001, 0.0004, "1e30", True, None, "abc"])
def test_invalid_quantity(quantity):
    with pytest.raises(ValidationError, match="Invalid quantity for SKU A1"):
        parse_sale_payload(_item(quantity=quantity))


def test_quantity_upper_bound_is_inclusive():
    assert parse_sale_payload(_item(quantity=10000)).items[0].quantity == 10000


@pytest.mark.parametrize("quantity, expected", [
    (2.0, Decimal("2.000")),
    (1.5, Decimal("1.500")),
    ("2.5", Decimal("2.500")),
    (0.0005, Decimal("0.001")),
    ("0.1234", Decimal("0.123")),
])
def test_fractional_quantities_are_kept_to_three_places(quantity, expected):
    assert parse_sale_payload(_item(quantity=quantity)).items[0].quantity == expected


def test_fractional_quantity_extends_price_half_up():
    item = parse_sale_payload(_item(quantity="0.333", unit_price=10.0)).items[0]

    assert item.gross_cents == 333
    assert parse_sale_payload(_item(quantity=1.5, unit_price=0.99)).items[0].gross_cents == 149


@pytest.mark.parametrize("price", [-0.01, 1000000000, "NaN", "free", None, False])
def test_invalid_price(price):
    with pytest.raises(ValidationError, match="Invalid price for SKU A1"):
        parse_sale_payload(_item(unit_price=price))


def test_price_bounds_are_inclusive():
    assert parse_sale_payload(_item(unit_price=0)).items[0].unit_price_cents == 0
    assert parse_sale_payload(_item(unit_price=999999999)).items[0].unit_price_cents == 99999999900


def test_discount_cannot_exceed_line_gross():
    with pytest.raises(ValidationError, match="Invalid discount for SKU A1"):
        parse_sale_payload(_item(discount=10.01))
    with pytest.raises(ValidationError, match="Invalid discount for SKU A1"):
        parse_sale_payload(_item(discount=-1))

    assert parse_sale_payload(_item(discount=10)).items[0].subtotal_cents == 0


@pytest.mark.parametrize("rate", [-1, 100.01, "x"])
def test_invalid_tax_rate(rate):
    with pytest.raises(ValidationError, match="Invalid tax rate for SKU A1"):
        parse_sale_payload(_item(tax_rate=rate))


def test_negative_amount_paid_rejected():
    with pytest.raises(ValidationError, match="amount_paid must be >= 0"):
        parse_sale_payload(_payload(amount_paid=-5))


def test_bank_account_id_must_be_positive_integer():
    with pytest.raises(ValidationError):
        parse_sale_payload(_payload(bank_account_id=0))
    assert parse_sale_payload(_payload(bank_account_id="7")).bank_account_id == 7


# =============================================================================
# PAYMENTS
# =============================================================================

def _payment(**overrides):
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": "PAY-1",
        "invoice_number": "POS-2026-0001",
        "amount": 12.5,
        "payment_method": "card",
    }
    payload.update(overrides)
    return payload


def test_payment_payload():
    payment = parse_payment_payload(_payment(reference="AUTH-9"))

    assert payment.amount_cents == 1250
    assert payment.invoice_id is None
    assert payment.invoice_number == "POS-2026-0001"
    assert payment.reference == "AUTH-9"


def test_payment_needs_invoice_reference():
    with pytest.raises(ValidationError, match="Must provide either invoice_id or invoice_number"):
        parse_payment_payload(_payment(invoice_number=None))


@pytest.mark.parametrize("amount", [0, -1, None])
def test_payment_amount_must_be_positive(amount):
    with pytest.raises(ValidationError, match="Amount must be greater than 0"):
        parse_payment_payload(_payment(amount=amount))


def test_payment_method_required():
    with pytest.raises(ValidationError, match="Payment method is required"):
        parse_payment_payload(_payment(payment_method=""))


# =============================================================================
# RETURNS AND CREDIT NOTES
# =============================================================================

def _return(**overrides):
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": "RET-1",
        "original_invoice_number": "POS-2026-0001",
        "return_reason": "wrong size",
        "refund_method": "Cash",
        "refund_amount": 11,
        "items": [{"sku": "A1", "quantity": 1}],
    }
    payload.update(overrides)
    return payload


def test_return_payload_defaults():
    ret = parse_return_payload(_return())

    assert ret.refund_method == "cash"
    assert ret.refund_cents == 1100
    assert ret.restock is True
    assert ret.items[0].condition == "good"
    assert ret.items[0].unit_price_cents is None


@pytest.mark.parametrize("overrides, message", [
    ({"transaction_id": None}, "Missing required fields: pos_terminal_id, transaction_id"),
    ({"original_invoice_number": ""}, "original_invoice_number is required"),
    ({"items": []}, "At least one item is required"),
    ({"return_reason": "  "}, "return_reason is required"),
    ({"refund_method": None}, "refund_method is required"),
    ({"refund_method": "cheque"}, "refund_method must be one of: cash, original_payment, store_credit"),
    ({"refund_amount": 0}, "refund_amount must be greater than 0"),
    ({"restock": "yes"}, "restock must be true or false"),
    ({"items": [{"sku": "A1", "quantity": 1, "condition": "lost"}]}, "Invalid condition for SKU A1"),
    ({"items": [{"sku": "A1", "quantity": 0}]}, "Invalid quantity for SKU A1"),
])
def test_return_payload_rejections(overrides, message):
    with pytest.raises(ValidationError, match=message):
        parse_return_payload(_return(**overrides))


def _credit_note(**overrides):
    payload = {
        "pos_terminal_id": "T1",
        "transaction_id": "CN-1",
        "customer_code": "ACME",
        "amount": "15.5",
        "reason": "goodwill",
    }
    payload.update(overrides)
    return payload


def test_credit_note_payload():
    note = parse_credit_note_payload(_credit_note())

    assert note.amount_cents == 1550
    assert note.invoice_number is None
    assert note.apply_immediately is True


@pytest.mark.parametrize("missing", ["customer_code", "amount", "reason"])
def test_credit_note_required_fields(missing):
    with pytest.raises(ValidationError, match="Missing required fields"):
        parse_credit_note_payload(_credit_note(**{missing: None}))


@pytest.mark.parametrize("amount", [-1, "abc", 1000000000, 0.001])
def test_credit_note_invalid_amount(amount):
    with pytest.raises(ValidationError, match="Invalid amount"):
        parse_credit_note_payload(_credit_note(amount=amount))
