# Overview: Service-layer operations for document numbering; allocates sequential sale numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


SALE_DOCUMENT_TYPE = "SALE"
SALE_PREFIX = "VEN"


def _reserve_number(document_type: str, period: str) -> int | None:
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
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period: str,
    pad: int = 5,
) -> str:
    """
    Allocate the next number for (document_type, period) inside the caller's
    transaction.

    The UPDATE takes a row lock on the sequence, so concurrent callers
    serialize on it. The first number of a period is created under a
    savepoint; losing that insert race falls back to the UPDATE path without
    disturbing the outer transaction.
    """
    next_num = _reserve_number(document_type, period)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _reserve_number(document_type, period)
            if next_num is None:
                raise

    return f"{prefix}-{period}-{next_num:0{pad}d}"


def next_sale_number(now: datetime | None = None) -> str:
    """Sale numbers restart every calendar year: VEN-2025-00001."""
    year = str((now or utcnow()).year)
    return next_document_number(document_type=SALE_DOCUMENT_TYPE, prefix=SALE_PREFIX, period=year)
