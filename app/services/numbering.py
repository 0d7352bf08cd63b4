"""
Human-readable numbers for vouchers and cash advances.

Voucher numbers run per booking day: YYYY-MM-DD_NNNN.
Cash advance order numbers run per year: BV-YYYY-NNNN.
"""

import re
from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.cash_advance import CashAdvance
from app.models.voucher import Voucher

ORDER_NUMBER_PREFIX = "BV"


def next_voucher_sequence(db: Session, voucher_date: date) -> int:
    current = db.query(func.max(Voucher.seq_no)).filter(Voucher.date == voucher_date).scalar()
    return (current or 0) + 1


def make_voucher_no(voucher_date: date, seq: int) -> str:
    return f"{voucher_date.isoformat()}_{seq:04d}"


def next_order_number(db: Session, year: int) -> str:
    prefix = f"{ORDER_NUMBER_PREFIX}-{year}-"
    row = (
        db.query(CashAdvance.order_number)
        .filter(CashAdvance.order_number.like(f"{prefix}%"))
        .order_by(CashAdvance.id.desc())
        .first()
    )
    next_seq = 1
    if row:
        match = re.search(r"-(\d+)$", row[0])
        if match:
            next_seq = int(match.group(1)) + 1
    return f"{prefix}{next_seq:04d}"
