# Overview: Bank deposits and withdrawals with in-SQL balance adjustments.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import BankAccount, BankTransaction
from .document_service import next_document_number, DOC_BANK_TRANSACTION


class BankingError(Exception):
    """Raised for bank account operation errors."""
    pass


def get_bank_account(bank_account_id: int) -> BankAccount | None:
    return db.session.query(BankAccount).filter_by(id=bank_account_id).first()


def create_bank_account(
    *,
    account_name: str,
    account_number: str,
    currency: str = "USD",
    opening_balance_cents: int = 0,
) -> BankAccount:
    account = BankAccount(
        account_name=account_name,
        account_number=account_number,
        currency=currency.upper(),
        current_balance_cents=opening_balance_cents,
        is_active=True,
    )
    db.session.add(account)
    db.session.commit()
    return account


def _record_transaction(
    *,
    transaction_type: str,
    bank_account_id: int,
    signed_amount_cents: int,
    transaction_date: date,
    payee_payer: str | None,
    description: str,
    reference_number: str | None,
    source_type: str,
    source_id: int | None,
) -> BankTransaction:
    tx = BankTransaction(
        transaction_number=next_document_number(
            document_type=DOC_BANK_TRANSACTION,
            period=transaction_date.year,
        ),
        bank_account_id=bank_account_id,
        transaction_date=transaction_date,
        transaction_type=transaction_type,
        amount_cents=signed_amount_cents,
        payee_payer=payee_payer,
        description=description,
        reference_number=reference_number,
        source_type=source_type,
        source_id=source_id,
    )
    db.session.add(tx)

    result = db.session.execute(
        update(BankAccount)
        .where(BankAccount.id == bank_account_id)
        .values(current_balance_cents=BankAccount.current_balance_cents + signed_amount_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(f"bank account {bank_account_id} disappeared during {transaction_type}")

    account = db.session.get(BankAccount, bank_account_id)
    if account is not None:
        db.session.expire(account, ["current_balance_cents"])

    db.session.flush()
    return tx


def record_deposit(*, bank_account_id: int, amount_cents: int, **details) -> BankTransaction:
    """
    Log a deposit and raise the account balance in one UPDATE statement
    (balance = balance + amount), so concurrent deposits cannot lose an
    increment. Flushes, never commits.
    """
    if amount_cents <= 0:
        raise BankingError("deposit amount must be positive")
    return _record_transaction(
        transaction_type="deposit",
        bank_account_id=bank_account_id,
        signed_amount_cents=amount_cents,
        **details,
    )


def record_withdrawal(*, bank_account_id: int, amount_cents: int, **details) -> BankTransaction:
    """Log a withdrawal (stored as a negative amount) and lower the balance."""
    if amount_cents <= 0:
        raise BankingError("withdrawal amount must be positive")
    return _record_transaction(
        transaction_type="withdrawal",
        bank_account_id=bank_account_id,
        signed_amount_cents=-amount_cents,
        **details,
    )
