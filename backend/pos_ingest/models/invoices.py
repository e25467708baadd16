from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..quantities import quantity_to_number
from pos_ingest.time_utils import to_utc_z, to_iso_date


INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_PARTIAL = "partial"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_CANCELLED = "cancelled"


def derive_invoice_status(amount_paid_cents: int, total_cents: int, *, is_cancelled: bool = False) -> str:
    """
    Invoice status is a projection of (paid, total), never stored.

    paid >= total -> paid; 0 < paid < total -> partial; otherwise sent.
    """
    if is_cancelled:
        return INVOICE_STATUS_CANCELLED
    if amount_paid_cents >= total_cents:
        return INVOICE_STATUS_PAID
    if amount_paid_cents > 0:
        return INVOICE_STATUS_PARTIAL
    return INVOICE_STATUS_SENT


class CustomerInvoice(db.Model):
    """
    Accounts-receivable invoice.

    amount_paid_cents is capped at total_cents. The outstanding balance of
    a customer is SUM(total - paid) over non-cancelled invoices with
    paid < total.
    """
    __tablename__ = "customer_invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_customer_invoices_number"),
        db.CheckConstraint("amount_paid_cents <= total_cents", name="ck_customer_invoices_paid_le_total"),
        db.Index("ix_customer_invoices_customer_open", "customer_id", "is_cancelled"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    currency = db.Column(db.String(3), nullable=False, default="USD")
    payment_terms = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "CustomerInvoiceLine",
        backref="invoice",
        lazy=True,
        order_by="CustomerInvoiceLine.line_number",
    )

    @property
    def status(self) -> str:
        return derive_invoice_status(
            self.amount_paid_cents or 0,
            self.total_cents or 0,
            is_cancelled=bool(self.is_cancelled),
        )

    @property
    def balance_cents(self) -> int:
        return max(0, (self.total_cents or 0) - (self.amount_paid_cents or 0))

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax_amount": cents_to_amount(self.tax_cents),
            "total_amount": cents_to_amount(self.total_cents),
            "amount_paid": cents_to_amount(self.amount_paid_cents),
            "balance": cents_to_amount(self.balance_cents),
            "status": self.status,
            "currency": self.currency,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class CustomerInvoiceLine(db.Model):
    __tablename__ = "customer_invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": quantity_to_number(self.quantity),
            "unit_price": cents_to_amount(self.unit_price_cents),
            "discount": cents_to_amount(self.discount_cents),
            "tax_rate": self.tax_rate_bps / 100,
            "line_total": cents_to_amount(self.line_total_cents),
        }


class CustomerReceipt(db.Model):
    """
    Payment received from a customer.

    reference_number carries the terminal transaction id; payment
    ingestion uses it as its idempotency key.
    """
    __tablename__ = "customer_receipts"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_customer_receipts_number"),
        db.Index("ix_customer_receipts_reference", "reference_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    receipt_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(50), nullable=False, default="cash")
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    reference_number = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="allocated")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("receipts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "customer_id": self.customer_id,
            "receipt_date": to_iso_date(self.receipt_date),
            "amount": cents_to_amount(self.amount_cents),
            "payment_method": self.payment_method,
            "bank_account_id": self.bank_account_id,
            "reference_number": self.reference_number,
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class ReceiptAllocation(db.Model):
    __tablename__ = "receipt_allocations"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("customer_receipts.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "invoice_id": self.invoice_id,
            "amount": cents_to_amount(self.amount_cents),
        }
