from datetime import date

import pytest

from pos_ingest.models import LedgerEntry
from pos_ingest.services.ledger_service import (
    ACCOUNT_AR,
    ACCOUNT_CASH,
    ACCOUNT_SALES_REVENUE,
    ACCOUNT_SALES_TAX_PAYABLE,
    LedgerImbalanceError,
    credit,
    debit,
    get_journal,
    post_journal,
)


def test_balanced_journal_is_posted_without_zero_legs(db_session):
    entries = post_journal(
        journal_ref="J-1",
        entry_date=date(2026, 10, 18),
        reference_type="customer_invoice",
        reference_id=7,
        lines=[
            credit(ACCOUNT_SALES_REVENUE, 2000, "revenue"),
            credit(ACCOUNT_SALES_TAX_PAYABLE, 0, "no tax"),
            debit(ACCOUNT_CASH, 1500, "cash"),
            debit(ACCOUNT_AR, 500, "on account"),
        ],
    )
    db_session.commit()

    assert len(entries) == 3
    journal = get_journal("J-1")
    assert [e.account_code for e in journal] == ["4100", "1100", "1200"]
    assert all(e.reference_id == 7 for e in journal)
    assert sum(e.debit_cents for e in journal) == sum(e.credit_cents for e in journal)


def test_unbalanced_journal_writes_nothing(db_session):
    with pytest.raises(LedgerImbalanceError) as exc:
        post_journal(
            journal_ref="J-2",
            entry_date=date(2026, 10, 18),
            lines=[
                credit(ACCOUNT_SALES_REVENUE, 2000, "revenue"),
                debit(ACCOUNT_CASH, 1999, "cash"),
            ],
        )

    assert exc.value.debit_cents == 1999
    assert exc.value.credit_cents == 2000
    assert db_session.query(LedgerEntry).count() == 0


def test_negative_amount_rejected(db_session):
    with pytest.raises(ValueError):
        post_journal(
            journal_ref="J-3",
            entry_date=date(2026, 10, 18),
            lines=[debit(ACCOUNT_CASH, -5, "bad"), credit(ACCOUNT_AR, -5, "bad")],
        )
