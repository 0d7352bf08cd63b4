from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.common.exceptions import NotFoundError, ReferencedElsewhere, ValidationError
from app.logger_config import logger
from app.models.earmark import Earmark
from app.models.voucher import VoucherEarmark
from app.services.usage_service import UsageCache


def get_earmark(db: Session, earmark_id: int) -> Earmark:
    earmark = db.query(Earmark).filter(Earmark.id == earmark_id).first()
    if not earmark:
        raise NotFoundError("Earmark", earmark_id)
    return earmark


def get_earmark_by_code(db: Session, code: str) -> Optional[Earmark]:
    return db.query(Earmark).filter(Earmark.code == code).first()


def list_earmarks(
    db: Session,
    active_only: bool = False,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Earmark], int]:
    query = db.query(Earmark)
    if active_only:
        query = query.filter(Earmark.is_active.is_(True))
    if search:
        term = f"%{search}%"
        query = query.filter(or_(Earmark.code.ilike(term), Earmark.name.ilike(term)))

    total = query.count()
    earmarks = query.order_by(Earmark.code).offset(skip).limit(limit).all()
    return earmarks, total


def _validate(db: Session, code: str, start_date, end_date, earmark_id: Optional[int] = None):
    existing = get_earmark_by_code(db, code)
    if existing and existing.id != earmark_id:
        raise ValidationError(f"Earmark code '{code}' is already in use", {"code": code})
    if start_date and end_date and end_date < start_date:
        raise ValidationError(
            "end_date must not be before start_date",
            {"start_date": str(start_date), "end_date": str(end_date)},
        )


def create_earmark(db: Session, **fields) -> Earmark:
    fields["code"] = fields["code"].strip()
    _validate(db, fields["code"], fields.get("start_date"), fields.get("end_date"))

    earmark = Earmark(**fields)
    db.add(earmark)
    db.commit()
    db.refresh(earmark)
    logger.info(f"Earmark {earmark.code} created (budget {earmark.budget})")
    return earmark


def update_earmark(db: Session, earmark_id: int, usage_cache: Optional[UsageCache] = None, **changes) -> Earmark:
    earmark = get_earmark(db, earmark_id)
    if changes.get("code"):
        changes["code"] = changes["code"].strip()

    _validate(
        db,
        changes.get("code") or earmark.code,
        changes.get("start_date", earmark.start_date),
        changes.get("end_date", earmark.end_date),
        earmark_id=earmark_id,
    )
    for name, value in changes.items():
        setattr(earmark, name, value)

    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error updating earmark {earmark_id}")
        raise
    db.refresh(earmark)

    if usage_cache is not None:
        usage_cache.invalidate(earmark_ids=[earmark_id])
    return earmark


def delete_earmark(db: Session, earmark_id: int, usage_cache: Optional[UsageCache] = None) -> None:
    earmark = get_earmark(db, earmark_id)

    used_by = db.query(VoucherEarmark).filter(VoucherEarmark.earmark_id == earmark_id).count()
    if used_by:
        raise ReferencedElsewhere(
            f"Earmark {earmark.code} is used by {used_by} voucher(s); deactivate it instead",
            {"earmark_id": earmark_id, "vouchers": used_by},
        )

    db.delete(earmark)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error deleting earmark {earmark_id}")
        raise

    if usage_cache is not None:
        usage_cache.invalidate(earmark_ids=[earmark_id])
    logger.info(f"Earmark {earmark_id} deleted")
