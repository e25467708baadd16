# Overview: Goods returned at a terminal: sales return, credit note, restock, refund and ledger.

"""
POS Return Service

Turns one terminal return into a sales return with its lines, a credit
note for the refund, restocked inventory and balanced GL postings, or
rejects it with every problem listed at once.

ORDER OF WORK (each step may reject):
1. Shape/bounds validation            -> InvalidPayloadError, nothing written
2. Idempotency lookup                 -> replay of the recorded return
3. Original invoice: by invoice number, else by the sale's terminal
   transaction id                     -> InvoiceNotFoundError / InvoiceNotCreatedError
4. Lines against the invoice, refund cap, bank account -> SaleValidationError
5. Return, lines, credit note, restock, GL, bank refund: one commit

REFUND ACCOUNTING:
- cash: Dr Sales Returns & Allowances, Cr Cash. The credit note is marked
  refunded; with a bank account the refund is a withdrawal.
- original_payment / store_credit: Dr Sales Returns & Allowances, Cr AR.
  The credit is applied to the invoice's open balance; the rest stays on
  the credit note for later use.
- Restocked goods: Dr Inventory, Cr COGS at the cost of the batch they
  went back into.

A line is restocked only when the return asks for it (restock, default
true) and the item came back in good condition; anything else is scrapped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidPayloadError, InvoiceNotCreatedError, InvoiceNotFoundError, SaleValidationError
from ..models import (
    CreditNote,
    Customer,
    CustomerInvoice,
    CustomerInvoiceLine,
    PosSale,
    Product,
    SalesReturn,
    SalesReturnLine,
)
from ..models.returns import CREDIT_NOTE_REFUNDED, DISPOSITION_RESTOCK, DISPOSITION_SCRAP
from ..money import cents_to_amount, extend_cents
from ..quantities import ZERO, quantity_to_number, to_quantity
from ..validation import ReturnPayload, ValidationError, parse_return_payload
from pos_ingest.time_utils import to_utc_z, utcnow
from .banking_service import get_bank_account, record_withdrawal
from .concurrency import lock_for_update, run_with_retry
from .credit_note_service import apply_credit, new_credit_note
from .document_service import DOC_RETURN, next_document_number
from .inventory_service import restock
from .ledger_service import (
    ACCOUNT_AR,
    ACCOUNT_CASH,
    ACCOUNT_COGS,
    ACCOUNT_INVENTORY,
    ACCOUNT_SALES_RETURNS,
    credit,
    debit,
    post_journal,
)
from .settings_service import get_pos_settings


DUPLICATE_RETURN_MESSAGE = "Return already processed"
RETURN_VALIDATION_FAILED_MESSAGE = "Return validation failed"
REFUND_CASH = "cash"


@dataclass
class ReturnResult:
    return_id: int
    return_number: str
    credit_note_id: int | None
    credit_note_number: str | None
    original_invoice_number: str
    refund_cents: int
    refund_method: str
    items_restocked: bool
    restock_cost_cents: int
    processed_at: datetime
    duplicate: bool = False

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "return_number": self.return_number,
            "return_id": self.return_id,
            "credit_note_number": self.credit_note_number,
            "credit_note_id": self.credit_note_id,
            "original_invoice_number": self.original_invoice_number,
            "refund_amount": cents_to_amount(self.refund_cents),
            "refund_method": self.refund_method,
            "items_restocked": self.items_restocked,
            "restock_cost": cents_to_amount(self.restock_cost_cents),
            "gl_posted": True,
            "timestamp": to_utc_z(self.processed_at),
        }
        if self.duplicate:
            body["message"] = DUPLICATE_RETURN_MESSAGE
        return body


@dataclass(frozen=True)
class InvoicedItem:
    product: Product
    quantity: Decimal
    unit_price_cents: int


# =============================================================================
# LOOKUPS
# =============================================================================

def find_existing_return(transaction_id: str) -> SalesReturn | None:
    return db.session.query(SalesReturn).filter_by(pos_transaction_id=transaction_id).first()


def find_original_invoice(reference: str) -> CustomerInvoice:
    """
    The invoice a return refers to: an invoice number, or the terminal
    transaction id of the sale that produced it.
    """
    invoice = lock_for_update(
        db.session.query(CustomerInvoice).filter_by(invoice_number=reference)
    ).first()

    if invoice is None:
        sale = db.session.query(PosSale).filter_by(pos_transaction_id=reference).first()
        if sale is not None:
            if sale.invoice_id is None:
                raise InvoiceNotCreatedError(
                    "The original sale does not have a linked invoice. The sale may have failed to complete.",
                    details={"pos_transaction_id": reference},
                )
            invoice = lock_for_update(
                db.session.query(CustomerInvoice).filter_by(id=sale.invoice_id)
            ).first()

    if invoice is None or invoice.is_cancelled:
        raise InvoiceNotFoundError(f"Invoice not found: {reference}")
    return invoice


def _invoiced_items(invoice: CustomerInvoice) -> dict[str, InvoicedItem]:
    """Invoice lines per SKU; repeated SKUs are summed and keep the first line's price."""
    rows = (
        db.session.query(CustomerInvoiceLine, Product)
        .join(Product, Product.id == CustomerInvoiceLine.product_id)
        .filter(CustomerInvoiceLine.invoice_id == invoice.id)
        .order_by(CustomerInvoiceLine.line_number.asc())
        .all()
    )
    items: dict[str, InvoicedItem] = {}
    for line, product in rows:
        seen = items.get(product.sku)
        if seen is None:
            items[product.sku] = InvoicedItem(product, to_quantity(line.quantity), line.unit_price_cents)
        else:
            items[product.sku] = InvoicedItem(product, seen.quantity + to_quantity(line.quantity), seen.unit_price_cents)
    return items


def _returned_quantities(invoice_id: int) -> dict[int, Decimal]:
    rows = (
        db.session.query(SalesReturnLine.product_id, func.sum(SalesReturnLine.quantity))
        .join(SalesReturn, SalesReturn.id == SalesReturnLine.return_id)
        .filter(SalesReturn.invoice_id == invoice_id)
        .group_by(SalesReturnLine.product_id)
        .all()
    )
    return {product_id: to_quantity(total or 0) for product_id, total in rows}


def _refunded_cents(invoice_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(SalesReturn.refund_cents), 0))
        .filter(SalesReturn.invoice_id == invoice_id)
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# VALIDATION AGAINST THE ORIGINAL INVOICE
# =============================================================================

def collect_return_errors(
    ret: ReturnPayload,
    invoice: CustomerInvoice,
    invoiced: dict[str, InvoicedItem],
) -> list[dict]:
    """
    Every problem with the return: SKUs not on the invoice, quantities
    beyond what is left to return, a refund beyond what is left to refund
    and an unknown bank account.
    """
    errors: list[dict] = []

    requested: dict[str, Decimal] = {}
    for item in ret.items:
        if item.sku not in invoiced:
            errors.append({"sku": item.sku, "error": "Item not found in original invoice"})
            continue
        requested[item.sku] = requested.get(item.sku, ZERO) + item.quantity

    already = _returned_quantities(invoice.id)
    for sku, quantity in requested.items():
        original = invoiced[sku]
        returned_before = already.get(original.product.id, ZERO)
        if quantity + returned_before > original.quantity:
            message = (
                f"Return quantity ({quantity_to_number(quantity)}) exceeds original quantity "
                f"({quantity_to_number(original.quantity)})"
            )
            if returned_before:
                message += f"; {quantity_to_number(returned_before)} already returned"
            errors.append({"sku": sku, "error": message})

    refundable = invoice.total_cents - _refunded_cents(invoice.id)
    if ret.refund_cents > refundable:
        errors.append({
            "sku": None,
            "error": (
                f"Refund amount ({cents_to_amount(ret.refund_cents)}) exceeds refundable amount "
                f"({cents_to_amount(max(0, refundable))})"
            ),
        })

    if ret.bank_account_id is not None:
        account = get_bank_account(ret.bank_account_id)
        if account is None or not account.is_active:
            errors.append({"sku": None, "error": f"Bank account not found: {ret.bank_account_id}"})

    return errors


# =============================================================================
# REPLAY
# =============================================================================

def replay(existing: SalesReturn) -> ReturnResult:
    note = db.session.query(CreditNote).filter_by(sales_return_id=existing.id).first()
    return ReturnResult(
        return_id=existing.id,
        return_number=existing.return_number,
        credit_note_id=note.id if note else None,
        credit_note_number=note.credit_note_number if note else None,
        original_invoice_number=existing.invoice.invoice_number,
        refund_cents=existing.refund_cents,
        refund_method=existing.refund_method,
        items_restocked=existing.items_restocked,
        restock_cost_cents=existing.restock_cost_cents,
        processed_at=existing.created_at or utcnow(),
        duplicate=True,
    )


def _replay_after_conflict(transaction_id: str, exc: IntegrityError) -> ReturnResult:
    db.session.rollback()
    existing = find_existing_return(transaction_id)
    if existing is None:
        raise exc
    current_app.logger.info("Concurrent duplicate return resolved by replay: %s", transaction_id)
    return replay(existing)


# =============================================================================
# WRITE PATH
# =============================================================================

def _write_return(
    ret: ReturnPayload,
    invoice: CustomerInvoice,
    invoiced: dict[str, InvoicedItem],
) -> ReturnResult:
    settings = get_pos_settings()
    processed_at = utcnow()
    today = processed_at.date()
    number = next_document_number(document_type=DOC_RETURN, period=today.year)

    sales_return = SalesReturn(
        return_number=number,
        pos_terminal_id=ret.pos_terminal_id,
        pos_transaction_id=ret.transaction_id,
        invoice_id=invoice.id,
        customer_id=invoice.customer_id,
        return_date=today,
        return_reason=ret.return_reason,
        refund_method=ret.refund_method,
        refund_cents=ret.refund_cents,
        restock_cost_cents=0,
        bank_account_id=ret.bank_account_id,
        status="completed",
        notes=ret.notes,
        created_at=processed_at,
    )
    db.session.add(sales_return)
    db.session.flush()

    restock_cost = 0
    restocked_any = False
    for line_number, item in enumerate(ret.items, start=1):
        original = invoiced[item.sku]
        unit_price = item.unit_price_cents if item.unit_price_cents is not None else original.unit_price_cents
        disposition = DISPOSITION_RESTOCK if ret.restock and item.condition == "good" else DISPOSITION_SCRAP

        db.session.add(SalesReturnLine(
            return_id=sales_return.id,
            line_number=line_number,
            product_id=original.product.id,
            sku=item.sku,
            quantity=item.quantity,
            unit_price_cents=unit_price,
            line_total_cents=extend_cents(unit_price, item.quantity),
            condition=item.condition,
            disposition=disposition,
        ))

        if disposition == DISPOSITION_RESTOCK:
            restocked = restock(
                product=original.product,
                quantity=item.quantity,
                reference_type="sales_return",
                reference_id=sales_return.id,
                note=f"POS Return {number}",
            )
            restock_cost += restocked.cost_cents
            restocked_any = True

    sales_return.restock_cost_cents = restock_cost

    note = new_credit_note(
        customer_id=invoice.customer_id,
        credit_date=today,
        amount_cents=ret.refund_cents,
        reason="return",
        currency=settings.default_currency,
        notes=f"POS Return - {number} - Terminal: {ret.pos_terminal_id}",
        invoice_id=invoice.id,
        sales_return_id=sales_return.id,
        created_at=processed_at,
    )

    if ret.refund_method == REFUND_CASH:
        note.status = CREDIT_NOTE_REFUNDED
        refund_account = ACCOUNT_CASH
    else:
        refund_account = ACCOUNT_AR
        applied = min(ret.refund_cents, invoice.balance_cents)
        if applied > 0:
            apply_credit(note, invoice, applied, notes=f"Auto-applied from POS return {number}")

    post_journal(
        journal_ref=number,
        entry_date=today,
        reference_type="sales_return",
        reference_id=sales_return.id,
        lines=[
            debit(ACCOUNT_SALES_RETURNS, ret.refund_cents, f"Sales Return - {number}"),
            credit(refund_account, ret.refund_cents, f"Sales Return - {number}"),
        ],
    )
    if restock_cost > 0:
        post_journal(
            journal_ref=f"{number}/COGS",
            entry_date=today,
            reference_type="sales_return",
            reference_id=sales_return.id,
            lines=[
                debit(ACCOUNT_INVENTORY, restock_cost, f"Inventory restocked - {number}"),
                credit(ACCOUNT_COGS, restock_cost, f"COGS reversal - {number}"),
            ],
        )

    if ret.refund_method == REFUND_CASH and ret.bank_account_id is not None:
        customer = db.session.get(Customer, invoice.customer_id)
        record_withdrawal(
            bank_account_id=ret.bank_account_id,
            amount_cents=ret.refund_cents,
            transaction_date=today,
            payee_payer=customer.company_name if customer else None,
            description=f"Refund - {number}",
            reference_number=number,
            source_type="sales_return",
            source_id=sales_return.id,
        )

    db.session.commit()

    return ReturnResult(
        return_id=sales_return.id,
        return_number=number,
        credit_note_id=note.id,
        credit_note_number=note.credit_note_number,
        original_invoice_number=invoice.invoice_number,
        refund_cents=ret.refund_cents,
        refund_method=ret.refund_method,
        items_restocked=restocked_any,
        restock_cost_cents=restock_cost,
        processed_at=processed_at,
    )


# =============================================================================
# ENTRY POINT
# =============================================================================

def process_return(payload) -> ReturnResult:
    """
    Process one POS return payload end to end.

    Returns a ReturnResult (duplicate=True for a replay).

    Raises:
        InvalidPayloadError: malformed shape or out-of-bounds field
        InvoiceNotFoundError: the original invoice does not exist
        InvoiceNotCreatedError: the original sale was rejected
        SaleValidationError: line, refund or bank problems (details lists all of them)
    """
    try:
        ret = parse_return_payload(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(str(exc))

    current_app.logger.debug("POS return payload %s: %s", ret.transaction_id, ret.raw)

    def _op() -> ReturnResult:
        existing = find_existing_return(ret.transaction_id)
        if existing is not None:
            current_app.logger.info("Duplicate return transaction detected: %s", ret.transaction_id)
            return replay(existing)

        invoice = find_original_invoice(ret.original_reference)
        invoiced = _invoiced_items(invoice)

        errors = collect_return_errors(ret, invoice, invoiced)
        if errors:
            current_app.logger.info(
                "POS return %s from terminal %s rejected: %d validation error(s)",
                ret.transaction_id,
                ret.pos_terminal_id,
                len(errors),
            )
            raise SaleValidationError(RETURN_VALIDATION_FAILED_MESSAGE, details=errors)

        try:
            result = _write_return(ret, invoice, invoiced)
        except IntegrityError as exc:
            return _replay_after_conflict(ret.transaction_id, exc)

        current_app.logger.info(
            "POS return %s completed: %s against %s refund %s (%s)",
            ret.transaction_id,
            result.return_number,
            result.original_invoice_number,
            cents_to_amount(result.refund_cents),
            result.refund_method,
        )
        return result

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
