import pytest

from pos_ingest.services.document_service import (
    DOC_INVOICE,
    DOC_RECEIPT,
    DocumentSequenceError,
    next_document_number,
)


def test_numbers_are_sequential_per_type_and_year(db_session):
    assert next_document_number(document_type=DOC_INVOICE, period=2026) == "POS-2026-0001"
    assert next_document_number(document_type=DOC_INVOICE, period=2026) == "POS-2026-0002"
    assert next_document_number(document_type=DOC_RECEIPT, period=2026) == "RCP-2026-0001"
    assert next_document_number(document_type=DOC_INVOICE, period=2027) == "POS-2027-0001"
    db_session.commit()

    assert next_document_number(document_type=DOC_INVOICE, period=2026) == "POS-2026-0003"


def test_rolled_back_numbers_are_reused(db_session):
    next_document_number(document_type=DOC_INVOICE, period=2026)
    db_session.commit()

    assert next_document_number(document_type=DOC_INVOICE, period=2026) == "POS-2026-0002"
    db_session.rollback()

    assert next_document_number(document_type=DOC_INVOICE, period=2026) == "POS-2026-0002"


def test_padding_grows_past_width(db_session):
    for _ in range(3):
        last = next_document_number(document_type="TST", period=2026, pad=1)
    assert last == "TST-2026-3"
    assert next_document_number(document_type="TST", period=2026) == "TST-2026-0004"


def test_requires_type_and_period(db_session):
    with pytest.raises(DocumentSequenceError):
        next_document_number(document_type="", period=2026)
    with pytest.raises(DocumentSequenceError):
        next_document_number(document_type=DOC_INVOICE, period=0)
