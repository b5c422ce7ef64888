# Overview: Per-day document numbering (invoices, orders) backed by DocumentSequence rows.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import business_date


def _bump(document_type: str, sequence_date: date) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.sequence_date == sequence_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, sequence_date=sequence_date)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    on_date: date | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next number for (document_type, business day).

    Runs inside the caller's DB transaction and does NOT commit: if the caller
    rolls back, the increment rolls back with it and the number is never seen
    by anyone else. Concurrent callers serialize on the sequence row.

    Format: {prefix}-{YYYYMMDD}-{NNNN}, e.g. PUR-20261019-0007.
    """
    if not document_type:
        raise ValidationError("document_type is required", field="document_type")
    if not prefix:
        raise ValidationError("prefix is required", field="prefix")

    sequence_date = on_date or business_date()

    next_num = _bump(document_type, sequence_date)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(
                        document_type=document_type,
                        sequence_date=sequence_date,
                        next_number=2,
                    )
                )
            next_num = 1
        except IntegrityError:
            # Another transaction created today's row first; take the next slot from it
            next_num = _bump(document_type, sequence_date)
            if next_num is None:
                raise

    return f"{prefix}-{sequence_date:%Y%m%d}-{next_num:0{pad}d}"
