# Overview: Day-scoped document number allocation (sale numbers).

from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..models import DocumentSequence, Sale
from .concurrency import RetryableConflict

SALE_DOCUMENT_TYPE = "SALE"
SALE_NUMBER_PREFIX = "SALE"
SALE_NUMBER_PAD = 4


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def period_key_for(day: date) -> str:
    return day.strftime("%Y%m%d")


def format_document_number(prefix: str, period_key: str, number: int, pad: int = SALE_NUMBER_PAD) -> str:
    return f"{prefix}-{period_key}-{number:0{pad}d}"


def parse_sequence(document_number: str) -> int:
    """SALE-20241021-0007 -> 7"""
    parts = document_number.split("-")
    if len(parts) != 3 or not parts[2].isdigit():
        raise DocumentSequenceError(f"Malformed document number: {document_number!r}")
    return int(parts[2])


def next_document_number(
    session,
    *,
    document_type: str,
    prefix: str,
    period_key: str,
    pad: int = SALE_NUMBER_PAD,
    highest_existing: Optional[Callable[[], int]] = None,
) -> str:
    """
    Allocate the next number for (document_type, period_key).

    Must run inside the caller's atomic unit: the UPDATE takes the row lock and
    holds it until that unit commits, so concurrent allocations serialize.

    The first allocation of a period inserts the counter row, starting after
    highest_existing() when given (documents created before the counter existed).
    If a concurrent unit inserted the same row first, the unique constraint fires
    and RetryableConflict asks the atomic unit to start over.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period_key:
        raise DocumentSequenceError("period_key is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period_key == period_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = session.execute(stmt)
    if result.rowcount:
        current = (
            session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period_key=period_key)
            .scalar()
        )
        next_num = current - 1
    else:
        next_num = (highest_existing() if highest_existing else 0) + 1
        seq = DocumentSequence(
            document_type=document_type,
            period_key=period_key,
            next_number=next_num + 1,
        )
        session.add(seq)
        try:
            session.flush()
        except IntegrityError as exc:
            raise RetryableConflict(f"{document_type} sequence for {period_key} created concurrently") from exc

    return format_document_number(prefix, period_key, next_num, pad)


def _highest_sale_sequence(session, period_key: str) -> int:
    prefix = f"{SALE_NUMBER_PREFIX}-{period_key}-"
    last = (
        session.query(Sale.sale_number)
        .filter(Sale.sale_number.like(f"{prefix}%"))
        .order_by(Sale.sale_number.desc())
        .first()
    )
    return parse_sequence(last[0]) if last else 0


def next_sale_number(session, day: date) -> str:
    """Allocate SALE-YYYYMMDD-NNNN for the given calendar day."""
    period_key = period_key_for(day)
    return next_document_number(
        session,
        document_type=SALE_DOCUMENT_TYPE,
        prefix=SALE_NUMBER_PREFIX,
        period_key=period_key,
        highest_existing=lambda: _highest_sale_sequence(session, period_key),
    )
