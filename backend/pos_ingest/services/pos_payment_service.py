# Overview: Collection of a terminal payment against an existing AR invoice.

"""
POS Payment Service

A terminal takes money against an open invoice (typically a credit sale
made earlier). The payment is applied up to the invoice balance; anything
beyond that is reported as overpayment and not recorded.

IDEMPOTENCY: the terminal transaction id is stored as the receipt's
reference_number. A repeated transaction id returns the receipt already
recorded for it.

CONCURRENCY: the invoice's paid amount is raised by a conditional UPDATE
(paid + applied <= total). Losing a race to another payment raises a
stale-data conflict and the whole unit of work is retried against the
fresh balance.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import (
    CustomerMismatchError,
    InvalidPayloadError,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    SaleValidationError,
)
from ..models import Customer, CustomerInvoice, CustomerReceipt, ReceiptAllocation
from ..models.invoices import derive_invoice_status
from ..money import cents_to_amount
from ..validation import PaymentPayload, ValidationError, parse_payment_payload
from pos_ingest.time_utils import utcnow
from .banking_service import get_bank_account, record_deposit
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOC_RECEIPT, next_document_number
from .ledger_service import ACCOUNT_AR, ACCOUNT_CASH, credit, debit, post_journal


DUPLICATE_PAYMENT_MESSAGE = "Payment already processed"


@dataclass
class PaymentResult:
    receipt_id: int
    receipt_number: str
    invoice_id: int
    invoice_number: str
    amount_applied_cents: int
    overpayment_cents: int
    new_balance_cents: int
    invoice_status: str
    previous_amount_paid_cents: int
    new_amount_paid_cents: int
    duplicate: bool = False

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "receipt_number": self.receipt_number,
            "receipt_id": self.receipt_id,
            "invoice_number": self.invoice_number,
            "invoice_id": self.invoice_id,
            "amount_applied": cents_to_amount(self.amount_applied_cents),
            "overpayment": cents_to_amount(self.overpayment_cents),
            "new_invoice_balance": cents_to_amount(self.new_balance_cents),
            "invoice_status": self.invoice_status,
            "previous_amount_paid": cents_to_amount(self.previous_amount_paid_cents),
            "new_amount_paid": cents_to_amount(self.new_amount_paid_cents),
            "gl_posted": True,
        }
        if self.duplicate:
            body["message"] = DUPLICATE_PAYMENT_MESSAGE
        return body


def _find_invoice(payment: PaymentPayload) -> CustomerInvoice:
    query = db.session.query(CustomerInvoice)
    if payment.invoice_id is not None:
        query = query.filter(CustomerInvoice.id == payment.invoice_id)
    else:
        query = query.filter(CustomerInvoice.invoice_number == payment.invoice_number)

    invoice = lock_for_update(query).first()
    if invoice is None or invoice.is_cancelled:
        ident = payment.invoice_id if payment.invoice_id is not None else payment.invoice_number
        raise InvoiceNotFoundError(f"Invoice not found: {ident}")
    return invoice


def _find_existing_receipt(transaction_id: str) -> CustomerReceipt | None:
    return (
        db.session.query(CustomerReceipt)
        .filter(CustomerReceipt.reference_number == transaction_id)
        .order_by(CustomerReceipt.id.asc())
        .first()
    )


def _replay(receipt: CustomerReceipt) -> PaymentResult:
    allocation = db.session.query(ReceiptAllocation).filter_by(receipt_id=receipt.id).first()
    invoice = db.session.get(CustomerInvoice, allocation.invoice_id) if allocation else None
    if invoice is None:
        raise InvoiceNotFoundError(f"Receipt {receipt.receipt_number} has no invoice allocation")

    return PaymentResult(
        receipt_id=receipt.id,
        receipt_number=receipt.receipt_number,
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        amount_applied_cents=allocation.amount_cents,
        overpayment_cents=0,
        new_balance_cents=invoice.balance_cents,
        invoice_status=invoice.status,
        previous_amount_paid_cents=invoice.amount_paid_cents - allocation.amount_cents,
        new_amount_paid_cents=invoice.amount_paid_cents,
        duplicate=True,
    )


def raise_invoice_paid(invoice: CustomerInvoice, applied_cents: int) -> None:
    """paid += applied in one conditional UPDATE that keeps paid <= total."""
    result = db.session.execute(
        update(CustomerInvoice)
        .where(
            CustomerInvoice.id == invoice.id,
            CustomerInvoice.amount_paid_cents + applied_cents <= CustomerInvoice.total_cents,
        )
        .values(amount_paid_cents=CustomerInvoice.amount_paid_cents + applied_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(f"invoice {invoice.id} balance changed while applying {applied_cents} cents")
    db.session.expire(invoice, ["amount_paid_cents"])


def apply_payment(payload) -> PaymentResult:
    """
    Apply a terminal payment to an invoice.

    Raises:
        InvalidPayloadError: malformed shape or amount
        InvoiceNotFoundError: unknown or cancelled invoice
        CustomerMismatchError: customer_code given and not the invoice's customer
        InvoiceAlreadyPaidError: nothing left to pay
        SaleValidationError: unknown bank account
    """
    try:
        payment = parse_payment_payload(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(str(exc))

    def _op() -> PaymentResult:
        existing = _find_existing_receipt(payment.transaction_id)
        if existing is not None:
            current_app.logger.info("Duplicate payment transaction detected: %s", payment.transaction_id)
            return _replay(existing)

        invoice = _find_invoice(payment)
        customer = db.session.get(Customer, invoice.customer_id)

        if payment.customer_code and customer.customer_code != payment.customer_code:
            raise CustomerMismatchError(
                f"Invoice {invoice.invoice_number} does not belong to customer {payment.customer_code}"
            )

        balance = invoice.balance_cents
        if balance <= 0:
            raise InvoiceAlreadyPaidError(f"Invoice {invoice.invoice_number} is already fully paid")

        if payment.bank_account_id is not None:
            account = get_bank_account(payment.bank_account_id)
            if account is None or not account.is_active:
                raise SaleValidationError(
                    "Payment validation failed",
                    details=[{"sku": None, "error": f"Bank account not found: {payment.bank_account_id}"}],
                )

        applied = min(payment.amount_cents, balance)
        overpayment = payment.amount_cents - applied
        previous_paid = invoice.amount_paid_cents
        today = utcnow().date()
        notes = payment.notes or f"POS Payment - Terminal: {payment.pos_terminal_id}"
        if payment.reference:
            notes = f"{notes} - Ref: {payment.reference}"

        receipt = CustomerReceipt(
            receipt_number=next_document_number(document_type=DOC_RECEIPT, period=today.year),
            customer_id=customer.id,
            receipt_date=today,
            amount_cents=applied,
            payment_method=payment.payment_method,
            bank_account_id=payment.bank_account_id,
            reference_number=payment.transaction_id,
            status="allocated",
            notes=notes,
        )
        db.session.add(receipt)
        db.session.flush()

        db.session.add(ReceiptAllocation(receipt_id=receipt.id, invoice_id=invoice.id, amount_cents=applied))
        raise_invoice_paid(invoice, applied)

        post_journal(
            journal_ref=receipt.receipt_number,
            entry_date=today,
            reference_type="customer_receipt",
            reference_id=receipt.id,
            lines=[
                debit(ACCOUNT_CASH, applied, f"Payment received - {invoice.invoice_number}"),
                credit(ACCOUNT_AR, applied, f"Payment applied - {invoice.invoice_number}"),
            ],
        )

        if payment.bank_account_id is not None:
            record_deposit(
                bank_account_id=payment.bank_account_id,
                amount_cents=applied,
                transaction_date=today,
                payee_payer=customer.company_name,
                description=f"POS Payment {receipt.receipt_number} for {invoice.invoice_number}",
                reference_number=payment.reference or receipt.receipt_number,
                source_type="customer_receipt",
                source_id=receipt.id,
            )

        db.session.commit()

        new_paid = previous_paid + applied
        if overpayment:
            current_app.logger.warning(
                "Overpayment of %s on %s not recorded (transaction %s)",
                cents_to_amount(overpayment),
                invoice.invoice_number,
                payment.transaction_id,
            )
        current_app.logger.info(
            "POS payment %s applied %s to %s",
            payment.transaction_id,
            cents_to_amount(applied),
            invoice.invoice_number,
        )

        return PaymentResult(
            receipt_id=receipt.id,
            receipt_number=receipt.receipt_number,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            amount_applied_cents=applied,
            overpayment_cents=overpayment,
            new_balance_cents=invoice.total_cents - new_paid,
            invoice_status=derive_invoice_status(new_paid, invoice.total_cents),
            previous_amount_paid_cents=previous_paid,
            new_amount_paid_cents=new_paid,
        )

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
