from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..quantities import quantity_to_number
from pos_ingest.time_utils import to_utc_z


POS_SALE_COMPLETED = "completed"
POS_SALE_FAILED = "failed"


class PosSale(db.Model):
    """
    Audit row for one terminal transaction.

    IDEMPOTENCY: pos_transaction_id is unique. Whichever attempt commits
    first (completed or failed) owns the id; every later attempt replays it.

    The computed figures (totals, change, balance, cogs) are kept so a
    replay can return exactly what the first attempt returned.
    """
    __tablename__ = "pos_sales"
    __table_args__ = (
        db.UniqueConstraint("pos_transaction_id", name="uq_pos_sales_transaction_id"),
        db.Index("ix_pos_sales_terminal_datetime", "pos_terminal_id", "transaction_datetime"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pos_terminal_id = db.Column(db.String(50), nullable=False)
    pos_transaction_id = db.Column(db.String(100), nullable=False)
    transaction_datetime = db.Column(db.DateTime(timezone=True), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("customer_invoices.id"), nullable=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("customer_receipts.id"), nullable=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_given_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)
    cogs_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(16), nullable=False, index=True)  # completed, failed
    error_message = db.Column(db.Text, nullable=True)
    error_details = db.Column(db.JSON, nullable=True)
    raw_payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer")
    invoice = db.relationship("CustomerInvoice")
    receipt = db.relationship("CustomerReceipt")
    bank_account = db.relationship("BankAccount")
    items = db.relationship("PosSaleItem", backref="pos_sale", lazy=True, order_by="PosSaleItem.id")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "pos_terminal_id": self.pos_terminal_id,
            "pos_transaction_id": self.pos_transaction_id,
            "transaction_datetime": to_utc_z(self.transaction_datetime),
            "customer_id": self.customer_id,
            "customer_code": self.customer.customer_code if self.customer else None,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice.invoice_number if self.invoice else None,
            "receipt_id": self.receipt_id,
            "receipt_number": self.receipt.receipt_number if self.receipt else None,
            "bank_account_id": self.bank_account_id,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax_amount": cents_to_amount(self.tax_cents),
            "total_amount": cents_to_amount(self.total_cents),
            "amount_paid": cents_to_amount(self.amount_paid_cents),
            "change_given": cents_to_amount(self.change_given_cents),
            "balance_due": cents_to_amount(self.balance_due_cents),
            "cogs_amount": cents_to_amount(self.cogs_cents),
            "payment_method": self.payment_method,
            "status": self.status,
            "error_message": self.error_message,
            "error_details": self.error_details,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["raw_payload"] = self.raw_payload
        return data


class PosSaleItem(db.Model):
    __tablename__ = "pos_sale_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pos_sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    sku = db.Column(db.String(50), nullable=False)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)
    cost_at_sale_cents = db.Column(db.Integer, nullable=False, default=0)

    # [{"batch_id", "batch_number", "quantity", "unit_cost_cents"}]
    batches_used = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pos_sale_id": self.pos_sale_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "quantity": quantity_to_number(self.quantity),
            "unit_price": cents_to_amount(self.unit_price_cents),
            "discount": cents_to_amount(self.discount_cents),
            "tax_rate": self.tax_rate_bps / 100,
            "line_total": cents_to_amount(self.line_total_cents),
            "cost_at_sale": cents_to_amount(self.cost_at_sale_cents),
            "batches_used": self.batches_used or [],
        }
