from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from pos_ingest.time_utils import to_utc_z, to_iso_date


class LedgerEntry(db.Model):
    """
    One general-ledger row.

    Rows are written in balanced groups (same journal_ref): the debits of a
    group always equal its credits. Exactly one of debit/credit is nonzero.
    """
    __tablename__ = "general_ledger"
    __table_args__ = (
        db.CheckConstraint("debit_cents >= 0 AND credit_cents >= 0", name="ck_general_ledger_nonneg"),
        db.Index("ix_general_ledger_reference", "reference_type", "reference_id"),
        db.Index("ix_general_ledger_account_date", "account_code", "entry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    journal_ref = db.Column(db.String(64), nullable=False, index=True)

    entry_date = db.Column(db.Date, nullable=False)
    account_code = db.Column(db.String(16), nullable=False)
    account_name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "journal_ref": self.journal_ref,
            "entry_date": to_iso_date(self.entry_date),
            "account_code": self.account_code,
            "account_name": self.account_name,
            "description": self.description,
            "debit": cents_to_amount(self.debit_cents),
            "credit": cents_to_amount(self.credit_cents),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }
