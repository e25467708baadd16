# Overview: Customer credit notes: standalone terminal credits and applying credit to invoices.

"""
POS Credit Note Service

A terminal grants a customer credit (goodwill, price adjustment, ...)
without goods coming back. When an invoice is named and the credit is to
be applied immediately, as much of it as the invoice's open balance
allows is set against that invoice; the rest stays on the credit note.

IDEMPOTENCY: the terminal transaction id is stored on the credit note
(unique). A repeated id returns the credit note already recorded.

LEDGER: only the applied part is posted (Dr Sales Returns & Allowances,
Cr Accounts Receivable). An unapplied credit is a pending document.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import CustomerMismatchError, CustomerNotFoundError, InvalidPayloadError, InvoiceNotFoundError
from ..models import CreditNote, CreditNoteApplication, Customer, CustomerInvoice
from ..models.returns import CREDIT_NOTE_APPLIED, CREDIT_NOTE_PARTIAL, CREDIT_NOTE_PENDING
from ..money import cents_to_amount
from ..validation import CreditNotePayload, ValidationError, parse_credit_note_payload
from pos_ingest.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOC_CREDIT_NOTE, next_document_number
from .ledger_service import ACCOUNT_AR, ACCOUNT_SALES_RETURNS, credit, debit, post_journal
from .pos_payment_service import raise_invoice_paid
from .settings_service import get_pos_settings


DUPLICATE_CREDIT_NOTE_MESSAGE = "Credit note already processed"


@dataclass
class CreditNoteResult:
    credit_note_id: int
    credit_note_number: str
    amount_cents: int
    amount_applied_cents: int
    applied_to_invoice: str | None
    invoice_new_balance_cents: int | None
    status: str
    processed_at: datetime
    duplicate: bool = False

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "credit_note_number": self.credit_note_number,
            "credit_note_id": self.credit_note_id,
            "amount": cents_to_amount(self.amount_cents),
            "amount_applied": cents_to_amount(self.amount_applied_cents),
            "applied_to_invoice": self.applied_to_invoice,
            "invoice_new_balance": cents_to_amount(self.invoice_new_balance_cents),
            "status": self.status,
            "timestamp": to_utc_z(self.processed_at),
        }
        if self.duplicate:
            body["message"] = DUPLICATE_CREDIT_NOTE_MESSAGE
        return body


def new_credit_note(
    *,
    customer_id: int,
    credit_date: date,
    amount_cents: int,
    reason: str,
    currency: str,
    notes: str | None,
    invoice_id: int | None = None,
    sales_return_id: int | None = None,
    pos_terminal_id: str | None = None,
    pos_transaction_id: str | None = None,
    created_at: datetime | None = None,
) -> CreditNote:
    note = CreditNote(
        credit_note_number=next_document_number(document_type=DOC_CREDIT_NOTE, period=credit_date.year),
        pos_terminal_id=pos_terminal_id,
        pos_transaction_id=pos_transaction_id,
        customer_id=customer_id,
        invoice_id=invoice_id,
        sales_return_id=sales_return_id,
        credit_date=credit_date,
        amount_cents=amount_cents,
        amount_applied_cents=0,
        reason=reason,
        status=CREDIT_NOTE_PENDING,
        currency=currency,
        notes=notes,
        created_at=created_at or utcnow(),
    )
    db.session.add(note)
    db.session.flush()
    return note


def apply_credit(note: CreditNote, invoice: CustomerInvoice, amount_cents: int, notes: str | None = None) -> None:
    """
    Set amount_cents of the credit note against the invoice.

    The caller caps amount_cents at both the invoice balance and the
    note's unapplied amount. Flushes, never commits.
    """
    db.session.add(CreditNoteApplication(
        credit_note_id=note.id,
        invoice_id=invoice.id,
        amount_cents=amount_cents,
        notes=notes,
    ))
    raise_invoice_paid(invoice, amount_cents)
    note.amount_applied_cents = (note.amount_applied_cents or 0) + amount_cents
    note.status = CREDIT_NOTE_APPLIED if note.unapplied_cents == 0 else CREDIT_NOTE_PARTIAL
    db.session.flush()


def _find_existing(transaction_id: str) -> CreditNote | None:
    return db.session.query(CreditNote).filter_by(pos_transaction_id=transaction_id).first()


def _replay(note: CreditNote) -> CreditNoteResult:
    invoice = note.invoice
    return CreditNoteResult(
        credit_note_id=note.id,
        credit_note_number=note.credit_note_number,
        amount_cents=note.amount_cents,
        amount_applied_cents=note.amount_applied_cents,
        applied_to_invoice=invoice.invoice_number if invoice is not None and note.amount_applied_cents else None,
        invoice_new_balance_cents=invoice.balance_cents if invoice is not None and note.amount_applied_cents else None,
        status=note.status,
        processed_at=note.created_at or utcnow(),
        duplicate=True,
    )


def _find_customer(code: str) -> Customer:
    customer = db.session.query(Customer).filter_by(customer_code=code, status="active").first()
    if customer is None:
        raise CustomerNotFoundError(f"Customer not found: {code}")
    return customer


def _find_invoice(invoice_number: str, customer: Customer) -> CustomerInvoice:
    invoice = lock_for_update(
        db.session.query(CustomerInvoice).filter_by(invoice_number=invoice_number)
    ).first()
    if invoice is None or invoice.is_cancelled:
        raise InvoiceNotFoundError(f"Invoice not found: {invoice_number}")
    if invoice.customer_id != customer.id:
        raise CustomerMismatchError("Invoice does not belong to this customer")
    return invoice


def _write_credit_note(request: CreditNotePayload) -> CreditNoteResult:
    settings = get_pos_settings()
    customer = _find_customer(request.customer_code)
    invoice = _find_invoice(request.invoice_number, customer) if request.invoice_number else None

    processed_at = utcnow()
    today = processed_at.date()
    notes = f"POS Credit Note - Terminal: {request.pos_terminal_id}"
    if request.notes:
        notes = f"{notes} | {request.notes}"

    note = new_credit_note(
        customer_id=customer.id,
        credit_date=today,
        amount_cents=request.amount_cents,
        reason=request.reason,
        currency=settings.default_currency,
        notes=notes,
        invoice_id=invoice.id if invoice is not None else None,
        pos_terminal_id=request.pos_terminal_id,
        pos_transaction_id=request.transaction_id,
        created_at=processed_at,
    )

    applied = 0
    if invoice is not None and request.apply_immediately:
        applied = min(request.amount_cents, invoice.balance_cents)

    new_balance = None
    if applied > 0:
        previous_paid = invoice.amount_paid_cents
        apply_credit(note, invoice, applied, notes=f"Applied from POS credit note {note.credit_note_number}")
        post_journal(
            journal_ref=note.credit_note_number,
            entry_date=today,
            reference_type="credit_note",
            reference_id=note.id,
            lines=[
                debit(ACCOUNT_SALES_RETURNS, applied, f"POS Credit Note {note.credit_note_number}"),
                credit(ACCOUNT_AR, applied, f"POS Credit Note {note.credit_note_number}"),
            ],
        )
        new_balance = invoice.total_cents - (previous_paid + applied)

    db.session.commit()

    current_app.logger.info(
        "POS credit note %s issued to %s: %s (applied %s)",
        note.credit_note_number,
        customer.customer_code,
        cents_to_amount(request.amount_cents),
        cents_to_amount(applied),
    )
    return CreditNoteResult(
        credit_note_id=note.id,
        credit_note_number=note.credit_note_number,
        amount_cents=request.amount_cents,
        amount_applied_cents=applied,
        applied_to_invoice=invoice.invoice_number if applied > 0 else None,
        invoice_new_balance_cents=new_balance,
        status=note.status,
        processed_at=processed_at,
    )


def issue_credit_note(payload) -> CreditNoteResult:
    """
    Record a standalone credit note from a terminal.

    Raises:
        InvalidPayloadError: malformed shape or amount
        CustomerNotFoundError: unknown or inactive customer
        InvoiceNotFoundError: invoice_number given and unknown or cancelled
        CustomerMismatchError: invoice belongs to another customer
    """
    try:
        request = parse_credit_note_payload(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(str(exc))

    def _op() -> CreditNoteResult:
        existing = _find_existing(request.transaction_id)
        if existing is not None:
            current_app.logger.info("Duplicate credit note transaction detected: %s", request.transaction_id)
            return _replay(existing)

        try:
            return _write_credit_note(request)
        except IntegrityError as exc:
            db.session.rollback()
            existing = _find_existing(request.transaction_id)
            if existing is None:
                raise exc
            return _replay(existing)

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
