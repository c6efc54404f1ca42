# Overview: Official receipt number allocation (strictly monotonic, once per fully paid order).

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ReceiptCounter
from ..time_utils import business_date_key, utcnow

COUNTER_ID = 1


def format_receipt_no(seq: int, at: datetime, digits: int = 6) -> str:
    return f"{business_date_key(at)}-{seq:0{digits}d}"


def _increment() -> int | None:
    stmt = (
        update(ReceiptCounter)
        .where(ReceiptCounter.id == COUNTER_ID)
        .values(last_seq=ReceiptCounter.last_seq + 1)
        .returning(ReceiptCounter.last_seq)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def allocate_receipt_no(at: datetime | None = None) -> str:
    """
    Take the next receipt number.

    Must run inside the transaction that marks the order PAID: the counter
    row stays write-locked until that commit, so a rollback returns the
    number and a retry cannot skip or duplicate one.
    """
    at = at or utcnow()
    seq = _increment()
    if seq is None:
        # First receipt ever: seed the singleton, losing a race is fine
        try:
            with db.session.begin_nested():
                db.session.add(ReceiptCounter(id=COUNTER_ID, last_seq=0))
        except IntegrityError:
            pass
        seq = _increment()

    digits = int(current_app.config.get("RECEIPT_NUMBER_DIGITS", 6))
    return format_receipt_no(seq, at, digits)


def peek_next_seq() -> int:
    counter = db.session.get(ReceiptCounter, COUNTER_ID)
    return (counter.last_seq if counter else 0) + 1
