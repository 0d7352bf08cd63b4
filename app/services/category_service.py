from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, List
from app.common.exceptions import NotFoundError, ReferencedElsewhere, ValidationError
from app.models.category import CustomCategory
from app.models.voucher import Voucher
from app.logger_config import logger


def get_category_by_id(db: Session, category_id: int) -> Optional[CustomCategory]:
    """Get category by ID."""
    return db.query(CustomCategory).filter(CustomCategory.id == category_id).first()


def get_category_by_name(db: Session, name: str) -> Optional[CustomCategory]:
    """Get category by name."""
    return db.query(CustomCategory).filter(CustomCategory.name == name).first()


def get_all_categories(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    search: Optional[str] = None
) -> tuple[List[CustomCategory], int]:
    """Get all categories with optional name search."""
    query = db.query(CustomCategory)

    if search:
        query = query.filter(CustomCategory.name.ilike(f"%{search}%"))

    total = query.count()
    categories = query.order_by(CustomCategory.name).offset(skip).limit(limit).all()

    return categories, total


def create_category(
    db: Session,
    name: str,
    color: Optional[str] = None
) -> CustomCategory:
    """Create a new category."""
    name = name.strip()
    if get_category_by_name(db, name):
        raise ValidationError("Category with this name already exists", {"name": name})

    category = CustomCategory(name=name, color=color)
    db.add(category)

    try:
        db.commit()
        db.refresh(category)
        logger.info(f"Category '{category.name}' created")
        return category
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Error creating category: {str(e)}")
        raise ValidationError("Failed to create category. Category name may already exist.")


def update_category(
    db: Session,
    category_id: int,
    name: Optional[str] = None,
    color: Optional[str] = None
) -> CustomCategory:
    """Update category information."""
    category = get_category_by_id(db, category_id)
    if not category:
        raise NotFoundError("Category", category_id)

    if name is not None:
        name = name.strip()
        existing_category = get_category_by_name(db, name)
        if existing_category and existing_category.id != category_id:
            raise ValidationError("Category name is already taken by another category", {"name": name})
        category.name = name

    if color is not None:
        category.color = color

    try:
        db.commit()
        db.refresh(category)
        return category
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Error updating category: {str(e)}")
        raise ValidationError("Failed to update category.")


def delete_category(db: Session, category_id: int) -> None:
    """Delete a category that no voucher uses."""
    category = get_category_by_id(db, category_id)
    if not category:
        raise NotFoundError("Category", category_id)

    used_by = db.query(Voucher).filter(Voucher.category_id == category_id).count()
    if used_by:
        raise ReferencedElsewhere(
            f"Cannot delete category '{category.name}': {used_by} voucher(s) still use it",
            {"category_id": category_id, "vouchers": used_by},
        )

    db.delete(category)
    try:
        db.commit()
        logger.info(f"Category {category_id} deleted")
    except Exception:
        db.rollback()
        logger.exception(f"Error deleting category {category_id}")
        raise
