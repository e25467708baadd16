"""
Inbound payload validation.

Shape and bounds checks only: nothing here touches the database, so a
payload rejected here leaves no trace (not even an audit row). Catalog,
stock and credit rules live in the services.

Amounts arrive as decimal currency units and leave as integer cents; tax
rates arrive as percentages and leave as basis points. Quantities may be
fractional and are kept to three places.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pos_ingest.money import extend_cents, to_bps, to_cents
from pos_ingest.quantities import to_quantity
from pos_ingest.time_utils import parse_iso_datetime


MAX_TERMINAL_ID_LENGTH = 50
MAX_TRANSACTION_ID_LENGTH = 100
MAX_SKU_LENGTH = 50
MAX_CUSTOMER_CODE_LENGTH = 50
MAX_PAYMENT_METHOD_LENGTH = 50
MAX_NOTES_LENGTH = 1000
MAX_ITEMS = 100
MAX_QUANTITY = 10_000
# Maximum unit price in currency units
MAX_UNIT_PRICE = Decimal("999999999")
MAX_TAX_RATE = Decimal("100")
# Anything larger is rejected before it reaches cent arithmetic
MAX_NUMBER = Decimal("1e15")

DEFAULT_PAYMENT_METHOD = "cash"


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class SaleItemInput:
    sku: str
    quantity: Decimal
    unit_price_cents: int
    discount_cents: int
    tax_rate_bps: int

    @property
    def gross_cents(self) -> int:
        return extend_cents(self.unit_price_cents, self.quantity)

    @property
    def subtotal_cents(self) -> int:
        return self.gross_cents - self.discount_cents


@dataclass(frozen=True)
class SalePayload:
    pos_terminal_id: str
    transaction_id: str
    transaction_datetime: datetime | None
    customer_code: str | None
    payment_method: str
    amount_paid_cents: int
    bank_account_id: int | None
    notes: str | None
    items: tuple[SaleItemInput, ...] = field(default_factory=tuple)
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PaymentPayload:
    pos_terminal_id: str
    transaction_id: str
    invoice_id: int | None
    invoice_number: str | None
    customer_code: str | None
    amount_cents: int
    payment_method: str
    bank_account_id: int | None
    reference: str | None
    notes: str | None
    raw: dict = field(default_factory=dict, compare=False)


def _coerce_decimal(name: str, value: Any) -> Decimal:
    number = _parse_decimal(name, value)
    if abs(number) >= MAX_NUMBER:
        raise ValidationError(f"{name} is out of range")
    return number


def _parse_decimal(name: str, value: Any) -> Decimal:
    # bool is an int subclass; a terminal sending true/false is a bug
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"{name} must be a finite number")
        return Decimal(str(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be a number")
        try:
            number = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{name} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{name} must be a finite number")
        return number
    raise ValidationError(f"{name} must be a number")


def _coerce_int(name: str, value: Any) -> int:
    """Strict integer: rejects floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _required_text(payload: dict, key: str, max_length: int) -> str:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field: {key}")
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{key} must be a string")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def _optional_text(payload: dict, key: str, max_length: int) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{key} must be a string")
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def _optional_id(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    number = _coerce_int(key, value)
    if number <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    return number


def _parse_sku(raw: dict) -> str:
    sku = raw.get("sku")
    if not isinstance(sku, str) or not sku.strip() or len(sku.strip()) > MAX_SKU_LENGTH:
        raise ValidationError("Invalid SKU format")
    return sku.strip()


def _parse_quantity(value: Any, sku: str) -> Decimal:
    """Quantity in (0, MAX_QUANTITY], kept to three places; anything rounding to 0 is rejected."""
    if value is None:
        raise ValidationError(f"Invalid quantity for SKU {sku}")
    try:
        quantity = _coerce_decimal("quantity", value)
    except ValidationError:
        raise ValidationError(f"Invalid quantity for SKU {sku}")
    if quantity <= 0 or quantity > MAX_QUANTITY:
        raise ValidationError(f"Invalid quantity for SKU {sku}")
    quantity = to_quantity(quantity)
    if quantity <= 0:
        raise ValidationError(f"Invalid quantity for SKU {sku}")
    return quantity


def _parse_item(raw: Any, index: int) -> SaleItemInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    sku = _parse_sku(raw)
    quantity = _parse_quantity(raw.get("quantity"), sku)

    if raw.get("unit_price") is None:
        raise ValidationError(f"Invalid price for SKU {sku}")
    try:
        unit_price = _coerce_decimal("unit_price", raw.get("unit_price"))
    except ValidationError:
        raise ValidationError(f"Invalid price for SKU {sku}")
    if unit_price < 0 or unit_price > MAX_UNIT_PRICE:
        raise ValidationError(f"Invalid price for SKU {sku}")

    discount = Decimal(0)
    if raw.get("discount") is not None:
        try:
            discount = _coerce_decimal("discount", raw.get("discount"))
        except ValidationError:
            raise ValidationError(f"Invalid discount for SKU {sku}")
    unit_price_cents = to_cents(unit_price)
    discount_cents = to_cents(discount)
    if discount_cents < 0 or discount_cents > extend_cents(unit_price_cents, quantity):
        raise ValidationError(f"Invalid discount for SKU {sku}")

    tax_rate = Decimal(0)
    if raw.get("tax_rate") is not None:
        try:
            tax_rate = _coerce_decimal("tax_rate", raw.get("tax_rate"))
        except ValidationError:
            raise ValidationError(f"Invalid tax rate for SKU {sku}")
    if tax_rate < 0 or tax_rate > MAX_TAX_RATE:
        raise ValidationError(f"Invalid tax rate for SKU {sku}")

    return SaleItemInput(
        sku=sku,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        discount_cents=discount_cents,
        tax_rate_bps=to_bps(tax_rate),
    )


def parse_sale_payload(payload: Any) -> SalePayload:
    """
    Validate + normalize a POS sale payload.

    Raises ValidationError with the first shape/bounds problem found.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if (
        not payload.get("pos_terminal_id")
        or not payload.get("transaction_id")
        or not isinstance(items, list)
        or not items
    ):
        raise ValidationError("Missing required fields: pos_terminal_id, transaction_id, or items")

    terminal_id = _required_text(payload, "pos_terminal_id", MAX_TERMINAL_ID_LENGTH)
    transaction_id = _required_text(payload, "transaction_id", MAX_TRANSACTION_ID_LENGTH)

    if len(items) > MAX_ITEMS:
        raise ValidationError(f"Maximum {MAX_ITEMS} items per transaction")

    parsed_items = tuple(_parse_item(raw, i) for i, raw in enumerate(items))

    transaction_dt = None
    raw_dt = payload.get("transaction_datetime")
    if raw_dt not in (None, ""):
        if not isinstance(raw_dt, str):
            raise ValidationError("transaction_datetime must be an ISO-8601 datetime")
        try:
            transaction_dt = parse_iso_datetime(raw_dt)
        except ValueError:
            raise ValidationError("transaction_datetime must be an ISO-8601 datetime")

    amount_paid_cents = 0
    if payload.get("amount_paid") is not None:
        amount_paid = _coerce_decimal("amount_paid", payload.get("amount_paid"))
        if amount_paid < 0:
            raise ValidationError("amount_paid must be >= 0")
        amount_paid_cents = to_cents(amount_paid)

    payment_method = _optional_text(payload, "payment_method", MAX_PAYMENT_METHOD_LENGTH)

    return SalePayload(
        pos_terminal_id=terminal_id,
        transaction_id=transaction_id,
        transaction_datetime=transaction_dt,
        customer_code=_optional_text(payload, "customer_code", MAX_CUSTOMER_CODE_LENGTH),
        payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
        amount_paid_cents=amount_paid_cents,
        bank_account_id=_optional_id(payload, "bank_account_id"),
        notes=_optional_text(payload, "notes", MAX_NOTES_LENGTH),
        items=parsed_items,
        raw=payload,
    )


def parse_payment_payload(payload: Any) -> PaymentPayload:
    """Validate + normalize a POS payment (collection against an invoice)."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not payload.get("pos_terminal_id") or not payload.get("transaction_id"):
        raise ValidationError("Missing required fields: pos_terminal_id, transaction_id")

    terminal_id = _required_text(payload, "pos_terminal_id", MAX_TERMINAL_ID_LENGTH)
    transaction_id = _required_text(payload, "transaction_id", MAX_TRANSACTION_ID_LENGTH)

    invoice_id = _optional_id(payload, "invoice_id")
    invoice_number = _optional_text(payload, "invoice_number", 32)
    if invoice_id is None and invoice_number is None:
        raise ValidationError("Must provide either invoice_id or invoice_number")

    if payload.get("amount") is None:
        raise ValidationError("Amount must be greater than 0")
    amount_cents = to_cents(_coerce_decimal("amount", payload.get("amount")))
    if amount_cents <= 0:
        raise ValidationError("Amount must be greater than 0")

    payment_method = _optional_text(payload, "payment_method", MAX_PAYMENT_METHOD_LENGTH)
    if not payment_method:
        raise ValidationError("Payment method is required")

    return PaymentPayload(
        pos_terminal_id=terminal_id,
        transaction_id=transaction_id,
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        customer_code=_optional_text(payload, "customer_code", MAX_CUSTOMER_CODE_LENGTH),
        amount_cents=amount_cents,
        payment_method=payment_method,
        bank_account_id=_optional_id(payload, "bank_account_id"),
        reference=_optional_text(payload, "reference", 100),
        notes=_optional_text(payload, "notes", MAX_NOTES_LENGTH),
        raw=payload,
    )


# =============================================================================
# RETURNS AND CREDIT NOTES
# =============================================================================

REFUND_METHODS = ("cash", "original_payment", "store_credit")
ITEM_CONDITIONS = ("good", "damaged", "defective")
MAX_REASON_LENGTH = 255
MAX_DOCUMENT_REFERENCE_LENGTH = 100
MAX_CREDIT_AMOUNT = Decimal("999999999")


@dataclass(frozen=True)
class ReturnItemInput:
    sku: str
    quantity: Decimal
    unit_price_cents: int | None
    condition: str


@dataclass(frozen=True)
class ReturnPayload:
    pos_terminal_id: str
    transaction_id: str
    original_reference: str
    return_reason: str
    refund_method: str
    refund_cents: int
    restock: bool
    bank_account_id: int | None
    notes: str | None
    items: tuple[ReturnItemInput, ...] = field(default_factory=tuple)
    raw: dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CreditNotePayload:
    pos_terminal_id: str
    transaction_id: str
    customer_code: str
    invoice_number: str | None
    amount_cents: int
    reason: str
    apply_immediately: bool
    notes: str | None
    raw: dict = field(default_factory=dict, compare=False)


def _optional_flag(payload: dict, key: str, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false")
    return value


def _parse_return_item(raw: Any, index: int) -> ReturnItemInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    sku = _parse_sku(raw)
    quantity = _parse_quantity(raw.get("quantity"), sku)

    unit_price_cents = None
    if raw.get("unit_price") is not None:
        try:
            unit_price = _coerce_decimal("unit_price", raw.get("unit_price"))
        except ValidationError:
            raise ValidationError(f"Invalid price for SKU {sku}")
        if unit_price < 0 or unit_price > MAX_UNIT_PRICE:
            raise ValidationError(f"Invalid price for SKU {sku}")
        unit_price_cents = to_cents(unit_price)

    condition = (_optional_text(raw, "condition", 16) or "good").lower()
    if condition not in ITEM_CONDITIONS:
        raise ValidationError(f"Invalid condition for SKU {sku} (expected one of: {', '.join(ITEM_CONDITIONS)})")

    return ReturnItemInput(sku=sku, quantity=quantity, unit_price_cents=unit_price_cents, condition=condition)


def parse_return_payload(payload: Any) -> ReturnPayload:
    """Validate + normalize a POS return of goods against an earlier sale."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not payload.get("pos_terminal_id") or not payload.get("transaction_id"):
        raise ValidationError("Missing required fields: pos_terminal_id, transaction_id")
    terminal_id = _required_text(payload, "pos_terminal_id", MAX_TERMINAL_ID_LENGTH)
    transaction_id = _required_text(payload, "transaction_id", MAX_TRANSACTION_ID_LENGTH)

    if not payload.get("original_invoice_number"):
        raise ValidationError("original_invoice_number is required")
    original_reference = _required_text(payload, "original_invoice_number", MAX_DOCUMENT_REFERENCE_LENGTH)

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")
    if len(items) > MAX_ITEMS:
        raise ValidationError(f"Maximum {MAX_ITEMS} items per transaction")

    return_reason = _optional_text(payload, "return_reason", MAX_REASON_LENGTH)
    if not return_reason:
        raise ValidationError("return_reason is required")

    refund_method = _optional_text(payload, "refund_method", MAX_PAYMENT_METHOD_LENGTH)
    if not refund_method:
        raise ValidationError("refund_method is required")
    refund_method = refund_method.lower()
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of: {', '.join(REFUND_METHODS)}")

    if payload.get("refund_amount") is None:
        raise ValidationError("refund_amount must be greater than 0")
    refund_cents = to_cents(_coerce_decimal("refund_amount", payload.get("refund_amount")))
    if refund_cents <= 0:
        raise ValidationError("refund_amount must be greater than 0")

    return ReturnPayload(
        pos_terminal_id=terminal_id,
        transaction_id=transaction_id,
        original_reference=original_reference,
        return_reason=return_reason,
        refund_method=refund_method,
        refund_cents=refund_cents,
        restock=_optional_flag(payload, "restock", True),
        bank_account_id=_optional_id(payload, "bank_account_id"),
        notes=_optional_text(payload, "notes", MAX_NOTES_LENGTH),
        items=tuple(_parse_return_item(raw, i) for i, raw in enumerate(items)),
        raw=payload,
    )


def parse_credit_note_payload(payload: Any) -> CreditNotePayload:
    """Validate + normalize a standalone POS credit note."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = ("pos_terminal_id", "transaction_id", "customer_code", "amount", "reason")
    if any(payload.get(key) in (None, "") for key in required):
        raise ValidationError("Missing required fields: " + ", ".join(required))

    terminal_id = _required_text(payload, "pos_terminal_id", MAX_TERMINAL_ID_LENGTH)
    transaction_id = _required_text(payload, "transaction_id", MAX_TRANSACTION_ID_LENGTH)
    customer_code = _required_text(payload, "customer_code", MAX_CUSTOMER_CODE_LENGTH)
    reason = _required_text(payload, "reason", MAX_REASON_LENGTH)

    try:
        amount = _coerce_decimal("amount", payload.get("amount"))
    except ValidationError:
        raise ValidationError("Invalid amount")
    if amount <= 0 or amount > MAX_CREDIT_AMOUNT:
        raise ValidationError("Invalid amount")
    amount_cents = to_cents(amount)
    if amount_cents <= 0:
        raise ValidationError("Invalid amount")

    return CreditNotePayload(
        pos_terminal_id=terminal_id,
        transaction_id=transaction_id,
        customer_code=customer_code,
        invoice_number=_optional_text(payload, "invoice_number", MAX_DOCUMENT_REFERENCE_LENGTH),
        amount_cents=amount_cents,
        reason=reason,
        apply_immediately=_optional_flag(payload, "apply_immediately", True),
        notes=_optional_text(payload, "notes", MAX_NOTES_LENGTH),
        raw=payload,
    )
