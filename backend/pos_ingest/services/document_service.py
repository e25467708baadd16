# Overview: Gap-free document numbering for invoices, receipts, returns, credit notes and bank transactions.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_INVOICE = "POS"
DOC_RECEIPT = "RCP"
DOC_BANK_TRANSACTION = "BTX"
DOC_RETURN = "RET"
DOC_CREDIT_NOTE = "CN"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_next_number(document_type: str, period: int) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    period: int,
    pad: int = 4,
) -> str:
    """
    Allocate the next number for (document_type, period), e.g. POS-2026-0007.

    The counter is bumped with a single UPDATE, so two concurrent callers
    never receive the same number. Runs inside the caller's transaction: a
    rolled-back sale gives its numbers back.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_next_number(document_type, period) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_next_number(document_type, period) - 1

    return f"{document_type}-{period}-{next_num:0{pad}d}"
