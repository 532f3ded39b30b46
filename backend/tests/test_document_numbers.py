from datetime import date

import pytest

from stockledger.errors import ValidationError
from stockledger.models import DocumentSequence
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.document_service import (
    DOCUMENT_PURCHASE_ORDER,
    DOCUMENT_STOCK_TRANSFER,
    next_document_number,
)


def _next(document_type, prefix, pad=3, on_date=date(2024, 1, 15)):
    return run_in_transaction(
        lambda: next_document_number(document_type=document_type, prefix=prefix, pad=pad, on_date=on_date)
    )


class TestNextDocumentNumber:

    def test_first_number_of_the_day(self, db_session):
        assert _next(DOCUMENT_PURCHASE_ORDER, "PO") == "PO20240115001"

    def test_sequence_increments(self, db_session):
        numbers = [_next(DOCUMENT_PURCHASE_ORDER, "PO") for _ in range(3)]
        assert numbers == ["PO20240115001", "PO20240115002", "PO20240115003"]

    def test_sequence_restarts_each_day(self, db_session):
        _next(DOCUMENT_PURCHASE_ORDER, "PO")
        _next(DOCUMENT_PURCHASE_ORDER, "PO")

        assert _next(DOCUMENT_PURCHASE_ORDER, "PO", on_date=date(2024, 1, 16)) == "PO20240116001"

    def test_document_types_count_independently(self, db_session):
        _next(DOCUMENT_PURCHASE_ORDER, "PO")

        assert _next(DOCUMENT_STOCK_TRANSFER, "TRF", pad=4) == "TRF202401150001"

    def test_counter_survives_past_padding(self, db_session):
        db_session.add(DocumentSequence(document_type=DOCUMENT_PURCHASE_ORDER, period_key="20240115", next_number=1000))
        db_session.commit()

        assert _next(DOCUMENT_PURCHASE_ORDER, "PO") == "PO202401151000"

    def test_rolled_back_number_is_reused(self, db_session):
        def _op():
            next_document_number(document_type=DOCUMENT_PURCHASE_ORDER, prefix="PO", on_date=date(2024, 1, 15))
            raise ValidationError("abort")

        with pytest.raises(ValidationError):
            run_in_transaction(_op)

        assert _next(DOCUMENT_PURCHASE_ORDER, "PO") == "PO20240115001"

    def test_document_type_required(self, db_session):
        with pytest.raises(ValidationError):
            _next("", "PO")
