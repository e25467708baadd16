from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from pos_ingest.time_utils import to_utc_z


class Customer(db.Model):
    """
    Buyer master data.

    customer_code is what terminals send. credit_limit_cents of 0 means
    "no credit line", which also disables the credit check.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("customer_code", name="uq_customers_code"),
        db.Index("ix_customers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(50), nullable=False)
    company_name = db.Column(db.String(255), nullable=False)

    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_terms = db.Column(db.Integer, nullable=True)  # days

    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} code={self.customer_code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_code": self.customer_code,
            "company_name": self.company_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
            "tax_id": self.tax_id,
            "credit_limit": cents_to_amount(self.credit_limit_cents),
            "payment_terms": self.payment_terms,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
