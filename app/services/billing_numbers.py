from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.billing import NumberSeries

INVOICE_PREFIX = "INV"
PAYMENT_PREFIX = "PAY"


def _period_key(dt: datetime) -> str:
    return dt.strftime("%Y")


def next_number(
    db: Session,
    *,
    key: str,
    padding: int = 6,
    now: Optional[datetime] = None,
) -> str:
    """
    Allocate the next number of a yearly series, e.g. INV-2026-000001.
    The series row is locked FOR UPDATE until the caller's transaction ends.
    """
    now = now or datetime.utcnow()
    pk = _period_key(now)

    row = (db.query(NumberSeries).filter(
        NumberSeries.key == key,
        NumberSeries.period == pk,
    ).with_for_update().first())

    if not row:
        row = NumberSeries(key=key, period=pk, next_seq=1)
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError:
            # another transaction created the series first
            row = (db.query(NumberSeries).filter(
                NumberSeries.key == key,
                NumberSeries.period == pk,
            ).with_for_update().one())

    n = int(row.next_seq or 1)
    row.next_seq = n + 1
    db.flush()

    return f"{key}-{pk}-{str(n).zfill(padding)}"


def next_invoice_number(db: Session) -> str:
    return next_number(db, key=INVOICE_PREFIX)


def next_payment_number(db: Session) -> str:
    return next_number(db, key=PAYMENT_PREFIX)
