# Overview: Day-scoped document numbers for purchase orders, adjustments and transfers.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import today

DOCUMENT_PURCHASE_ORDER = "purchase_order"
DOCUMENT_STOCK_ADJUSTMENT = "stock_adjustment"
DOCUMENT_STOCK_TRANSFER = "stock_transfer"


def _bump(document_type: str, period_key: str) -> int | None:
    """Increment the counter in place; returns the number handed out, or None if the row is missing."""
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period_key == period_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period_key=period_key)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 3,
    on_date: date | None = None,
) -> str:
    """
    Allocate the next number for (document_type, day): prefix + YYYYMMDD + zero-padded sequence.

    Runs inside the caller's unit of work. The UPDATE takes a row lock, so two
    creators on the same day never receive the same number. If two creators
    race to insert the first row of the day, the loser re-runs the UPDATE
    inside a savepoint.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    period_key = (on_date or today()).strftime("%Y%m%d")

    number = _bump(document_type, period_key)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=document_type, period_key=period_key, next_number=2)
                )
            number = 1
        except IntegrityError:
            number = _bump(document_type, period_key)
            if number is None:
                raise

    return f"{prefix}{period_key}{str(number).zfill(pad)}"
