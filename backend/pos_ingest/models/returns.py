from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..quantities import quantity_to_number
from pos_ingest.time_utils import to_utc_z, to_iso_date


DISPOSITION_RESTOCK = "restock"
DISPOSITION_SCRAP = "scrap"

CREDIT_NOTE_PENDING = "pending"
CREDIT_NOTE_PARTIAL = "partially_applied"
CREDIT_NOTE_APPLIED = "applied"
CREDIT_NOTE_REFUNDED = "refunded"


class SalesReturn(db.Model):
    """
    Goods brought back against an earlier invoice.

    pos_transaction_id is the terminal's id for the return and the
    idempotency key of return ingestion.
    """
    __tablename__ = "sales_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_sales_returns_number"),
        db.UniqueConstraint("pos_transaction_id", name="uq_sales_returns_transaction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)
    pos_terminal_id = db.Column(db.String(50), nullable=False)
    pos_transaction_id = db.Column(db.String(100), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    return_date = db.Column(db.Date, nullable=False)
    return_reason = db.Column(db.String(255), nullable=False)
    refund_method = db.Column(db.String(32), nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)
    restock_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("CustomerInvoice", lazy=True)
    lines = db.relationship(
        "SalesReturnLine",
        backref="sales_return",
        lazy=True,
        order_by="SalesReturnLine.line_number",
    )

    @property
    def items_restocked(self) -> bool:
        return any(line.disposition == DISPOSITION_RESTOCK for line in self.lines)

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "pos_terminal_id": self.pos_terminal_id,
            "pos_transaction_id": self.pos_transaction_id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "return_date": to_iso_date(self.return_date),
            "return_reason": self.return_reason,
            "refund_method": self.refund_method,
            "refund_amount": cents_to_amount(self.refund_cents),
            "restock_cost": cents_to_amount(self.restock_cost_cents),
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SalesReturnLine(db.Model):
    __tablename__ = "sales_return_lines"
    __table_args__ = (
        db.UniqueConstraint("return_id", "line_number", name="uq_sales_return_lines_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(50), nullable=False)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False, default="good")  # good, damaged, defective
    disposition = db.Column(db.String(16), nullable=False)  # restock, scrap

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "sku": self.sku,
            "quantity": quantity_to_number(self.quantity),
            "unit_price": cents_to_amount(self.unit_price_cents),
            "line_total": cents_to_amount(self.line_total_cents),
            "condition": self.condition,
            "disposition": self.disposition,
        }


class CreditNote(db.Model):
    """
    Credit owed to a customer.

    Raised by a return (sales_return_id set) or on its own from a terminal
    (pos_transaction_id set, the idempotency key). amount_applied_cents is
    the part already set against invoices through CreditNoteApplication.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("credit_note_number", name="uq_credit_notes_number"),
        db.UniqueConstraint("pos_transaction_id", name="uq_credit_notes_transaction"),
        db.CheckConstraint("amount_applied_cents <= amount_cents", name="ck_credit_notes_applied_le_amount"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_number = db.Column(db.String(32), nullable=False)
    pos_terminal_id = db.Column(db.String(50), nullable=True)
    pos_transaction_id = db.Column(db.String(100), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=True, index=True)
    sales_return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id"), nullable=True, index=True)

    credit_date = db.Column(db.Date, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    amount_applied_cents = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=CREDIT_NOTE_PENDING)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("credit_notes", lazy=True))
    invoice = db.relationship("CustomerInvoice", lazy=True)

    @property
    def unapplied_cents(self) -> int:
        return max(0, (self.amount_cents or 0) - (self.amount_applied_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_number": self.credit_note_number,
            "customer_id": self.customer_id,
            "invoice_id": self.invoice_id,
            "sales_return_id": self.sales_return_id,
            "credit_date": to_iso_date(self.credit_date),
            "amount": cents_to_amount(self.amount_cents),
            "amount_applied": cents_to_amount(self.amount_applied_cents),
            "unapplied": cents_to_amount(self.unapplied_cents),
            "reason": self.reason,
            "status": self.status,
            "currency": self.currency,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class CreditNoteApplication(db.Model):
    __tablename__ = "credit_note_applications"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "invoice_id": self.invoice_id,
            "amount": cents_to_amount(self.amount_cents),
            "notes": self.notes,
        }
