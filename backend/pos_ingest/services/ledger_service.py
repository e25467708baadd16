# Overview: Double-entry posting to the general ledger.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from ..extensions import db
from ..models import LedgerEntry
"""
General Ledger Invariants (authoritative)

- Entries are posted in journals: a group of rows sharing journal_ref.
- Every journal balances: SUM(debit) == SUM(credit), checked before any row
  is added to the session.
- Each row carries exactly one nonzero side; zero-amount legs are dropped.
- Rows are never updated or deleted; corrections are new journals.
"""


ACCOUNT_CASH = ("1100", "Cash/Bank")
ACCOUNT_AR = ("1200", "Accounts Receivable")
ACCOUNT_INVENTORY = ("1300", "Inventory")
ACCOUNT_SALES_TAX_PAYABLE = ("2300", "Sales Tax Payable")
ACCOUNT_SALES_REVENUE = ("4100", "Sales Revenue")
ACCOUNT_SALES_RETURNS = ("4150", "Sales Returns & Allowances")
ACCOUNT_COGS = ("5100", "Cost of Goods Sold")


class LedgerImbalanceError(Exception):
    """Raised when a journal's debits and credits differ."""
    def __init__(self, message: str, debit_cents: int, credit_cents: int):
        super().__init__(message)
        self.debit_cents = debit_cents
        self.credit_cents = credit_cents


@dataclass(frozen=True)
class JournalLine:
    account: tuple[str, str]
    description: str
    debit_cents: int = 0
    credit_cents: int = 0


def debit(account: tuple[str, str], amount_cents: int, description: str) -> JournalLine:
    return JournalLine(account=account, description=description, debit_cents=amount_cents)


def credit(account: tuple[str, str], amount_cents: int, description: str) -> JournalLine:
    return JournalLine(account=account, description=description, credit_cents=amount_cents)


def post_journal(
    *,
    journal_ref: str,
    entry_date: date,
    lines: list[JournalLine],
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> list[LedgerEntry]:
    """
    Validate and add one balanced journal to the session (flush, no commit).

    Returns the LedgerEntry rows actually written (zero legs omitted).
    """
    for line in lines:
        if line.debit_cents < 0 or line.credit_cents < 0:
            raise ValueError("ledger amounts must be non-negative")
        if line.debit_cents and line.credit_cents:
            raise ValueError("a ledger line cannot both debit and credit")

    total_debit = sum(line.debit_cents for line in lines)
    total_credit = sum(line.credit_cents for line in lines)
    if total_debit != total_credit:
        raise LedgerImbalanceError(
            f"Journal {journal_ref} does not balance: debit {total_debit} != credit {total_credit}",
            debit_cents=total_debit,
            credit_cents=total_credit,
        )

    entries = []
    for line in lines:
        if not line.debit_cents and not line.credit_cents:
            continue
        code, name = line.account
        entry = LedgerEntry(
            journal_ref=journal_ref,
            entry_date=entry_date,
            account_code=code,
            account_name=name,
            description=line.description,
            debit_cents=line.debit_cents,
            credit_cents=line.credit_cents,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.add(entry)
        entries.append(entry)

    db.session.flush()
    return entries


def get_journal(journal_ref: str) -> list[LedgerEntry]:
    return (
        db.session.query(LedgerEntry)
        .filter_by(journal_ref=journal_ref)
        .order_by(LedgerEntry.id.asc())
        .all()
    )
