from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from app.common.exceptions import LedgerError, to_http_exception
from app.core.dependencies import get_db
from app.services.category_service import (
    get_category_by_id,
    get_all_categories,
    create_category,
    update_category,
    delete_category
)
from app.schemas.category import (
    CategoryCreate,
    CategoryUpdate,
    CategoryResponse,
    CategoryListResponse,
    CategoryDeleteResponse
)
from app.logger_config import logger

router = APIRouter()


@router.get("", response_model=CategoryListResponse)
def get_categories(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Get all custom categories with optional search filtering.
    """
    try:
        categories, total = get_all_categories(db, skip=skip, limit=limit, search=search)

        return CategoryListResponse(
            total=total,
            categories=[CategoryResponse.model_validate(category) for category in categories]
        )
    except Exception as e:
        logger.error(f"Error fetching categories: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch categories"
        )


@router.get("/{category_id}", response_model=CategoryResponse)
def get_category(category_id: int, db: Session = Depends(get_db)):
    """
    Get category by ID.
    """
    category = get_category_by_id(db, category_id)
    if not category:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found"
        )

    return CategoryResponse.model_validate(category)


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category_route(category_data: CategoryCreate, db: Session = Depends(get_db)):
    """
    Create a new category.
    """
    try:
        category = create_category(db=db, name=category_data.name, color=category_data.color)
        return CategoryResponse.model_validate(category)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating category: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create category"
        )


@router.put("/{category_id}", response_model=CategoryResponse)
def update_category_route(
    category_id: int,
    category_data: CategoryUpdate,
    db: Session = Depends(get_db)
):
    """
    Update category information.
    """
    try:
        category = update_category(
            db=db,
            category_id=category_id,
            name=category_data.name,
            color=category_data.color
        )

        logger.info(f"Category {category_id} updated")

        return CategoryResponse.model_validate(category)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating category: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update category"
        )


@router.delete("/{category_id}", response_model=CategoryDeleteResponse)
def delete_category_route(category_id: int, db: Session = Depends(get_db)):
    """
    Delete a category. Categories still used by vouchers cannot be deleted.
    """
    try:
        delete_category(db, category_id)
        return CategoryDeleteResponse(
            message="Category deleted successfully"
        )
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error deleting category: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete category"
        )
