from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.common.exceptions import NotFoundError, ReferencedElsewhere, ValidationError
from app.logger_config import logger
from app.models.budget import Budget
from app.models.voucher import VoucherBudget
from app.services.usage_service import UsageCache


def _check_range(start_date, end_date):
    if start_date and end_date and end_date < start_date:
        raise ValidationError(
            "end_date must not be before start_date",
            {"start_date": str(start_date), "end_date": str(end_date)},
        )


def get_budget(db: Session, budget_id: int) -> Budget:
    budget = db.query(Budget).filter(Budget.id == budget_id).first()
    if not budget:
        raise NotFoundError("Budget", budget_id)
    return budget


def list_budgets(
    db: Session,
    year: Optional[int] = None,
    include_archived: bool = False,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Budget], int]:
    query = db.query(Budget)

    if year is not None:
        query = query.filter(Budget.year == year)
    if not include_archived:
        query = query.filter(Budget.is_archived.is_(False))
    if search:
        term = f"%{search}%"
        query = query.filter(
            or_(
                Budget.name.ilike(term),
                Budget.category_name.ilike(term),
                Budget.project_name.ilike(term),
            )
        )

    total = query.count()
    budgets = query.order_by(Budget.year.desc(), Budget.id).offset(skip).limit(limit).all()
    return budgets, total


def create_budget(db: Session, **fields) -> Budget:
    _check_range(fields.get("start_date"), fields.get("end_date"))
    budget = Budget(**fields)
    db.add(budget)
    db.commit()
    db.refresh(budget)
    logger.info(f"Budget {budget.label} created (planned {budget.amount_planned})")
    return budget


def update_budget(db: Session, budget_id: int, usage_cache: Optional[UsageCache] = None, **changes) -> Budget:
    """Apply the given field changes; planned amount changes drop cached usage."""
    budget = get_budget(db, budget_id)

    _check_range(
        changes.get("start_date", budget.start_date),
        changes.get("end_date", budget.end_date),
    )
    for name, value in changes.items():
        setattr(budget, name, value)

    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error updating budget {budget_id}")
        raise
    db.refresh(budget)

    if usage_cache is not None:
        usage_cache.invalidate(budget_ids=[budget_id])
    return budget


def delete_budget(db: Session, budget_id: int, usage_cache: Optional[UsageCache] = None) -> None:
    budget = get_budget(db, budget_id)

    used_by = db.query(VoucherBudget).filter(VoucherBudget.budget_id == budget_id).count()
    if used_by:
        raise ReferencedElsewhere(
            f"Budget {budget.label} is allocated by {used_by} voucher(s); archive it instead",
            {"budget_id": budget_id, "vouchers": used_by},
        )

    db.delete(budget)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error deleting budget {budget_id}")
        raise

    if usage_cache is not None:
        usage_cache.invalidate(budget_ids=[budget_id])
    logger.info(f"Budget {budget_id} deleted")
