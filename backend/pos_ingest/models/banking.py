from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from pos_ingest.time_utils import to_utc_z, to_iso_date


class BankAccount(db.Model):
    """
    Bank account with a running balance.

    current_balance_cents is only ever changed by a single SQL increment
    (see banking_service.record_deposit), never read-modify-write.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = (
        db.UniqueConstraint("account_number", name="uq_bank_accounts_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_name = db.Column(db.String(128), nullable=False)
    account_number = db.Column(db.String(64), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_name": self.account_name,
            "account_number": self.account_number,
            "currency": self.currency,
            "current_balance": cents_to_amount(self.current_balance_cents),
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class BankTransaction(db.Model):
    __tablename__ = "bank_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_bank_transactions_number"),
        db.Index("ix_bank_transactions_source", "source_type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=False, index=True)

    transaction_date = db.Column(db.Date, nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False)  # deposit, withdrawal
    amount_cents = db.Column(db.Integer, nullable=False)

    payee_payer = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    reference_number = db.Column(db.String(100), nullable=True)

    source_type = db.Column(db.String(32), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bank_account = db.relationship("BankAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "bank_account_id": self.bank_account_id,
            "transaction_date": to_iso_date(self.transaction_date),
            "transaction_type": self.transaction_type,
            "amount": cents_to_amount(self.amount_cents),
            "payee_payer": self.payee_payer,
            "description": self.description,
            "reference_number": self.reference_number,
            "source_type": self.source_type,
            "source_id": self.source_id,
        }
