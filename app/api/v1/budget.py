from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from app.common.exceptions import LedgerError, to_http_exception
from app.core.dependencies import get_db, get_usage_cache, get_usage_service
from app.services.budget_service import (
    get_budget,
    list_budgets,
    create_budget,
    update_budget,
    delete_budget,
)
from app.services.usage_service import UsageCache, UsageService
from app.schemas.budget import (
    BudgetCreate,
    BudgetUpdate,
    BudgetResponse,
    BudgetListResponse,
    BudgetUsageResponse,
    BudgetDeleteResponse,
    DateType,
)
from app.logger_config import logger

router = APIRouter()


@router.get("", response_model=BudgetListResponse)
def get_budgets(
    year: Optional[int] = Query(None),
    include_archived: bool = Query(False),
    search: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """
    Get budgets, optionally for one year. Archived budgets are hidden unless asked for.
    """
    try:
        budgets, total = list_budgets(
            db, year=year, include_archived=include_archived, search=search, skip=skip, limit=limit
        )
        return BudgetListResponse(
            total=total,
            budgets=[BudgetResponse.model_validate(b) for b in budgets]
        )
    except Exception:
        logger.exception("Error fetching budgets")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch budgets"
        )


@router.get("/{budget_id}", response_model=BudgetResponse)
def get_budget_route(budget_id: int, db: Session = Depends(get_db)):
    try:
        return BudgetResponse.model_validate(get_budget(db, budget_id))
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{budget_id}/usage", response_model=BudgetUsageResponse)
def get_budget_usage(
    budget_id: int,
    date_from: Optional[DateType] = Query(None, alias="from"),
    date_to: Optional[DateType] = Query(None, alias="to"),
    usage_service: UsageService = Depends(get_usage_service)
):
    """
    Planned vs. spent for a budget. Percent is capped at 200, remaining is not.
    """
    try:
        usage = usage_service.budget_usage(budget_id, date_from=date_from, date_to=date_to)
        return BudgetUsageResponse(
            budget_id=budget_id,
            planned=usage.planned,
            spent=usage.spent,
            inflow=usage.inflow,
            remaining=usage.remaining,
            percent=usage.percent,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error computing usage for budget {budget_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute budget usage"
        )


@router.post("", response_model=BudgetResponse, status_code=status.HTTP_201_CREATED)
def create_budget_route(data: BudgetCreate, db: Session = Depends(get_db)):
    try:
        budget = create_budget(db, **data.model_dump())
        return BudgetResponse.model_validate(budget)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Error creating budget")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create budget"
        )


@router.put("/{budget_id}", response_model=BudgetResponse)
def update_budget_route(
    budget_id: int,
    data: BudgetUpdate,
    db: Session = Depends(get_db),
    cache: UsageCache = Depends(get_usage_cache)
):
    try:
        budget = update_budget(db, budget_id, usage_cache=cache, **data.model_dump(exclude_unset=True))
        logger.info(f"Budget {budget_id} updated")
        return BudgetResponse.model_validate(budget)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error updating budget {budget_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update budget"
        )


@router.delete("/{budget_id}", response_model=BudgetDeleteResponse)
def delete_budget_route(
    budget_id: int,
    db: Session = Depends(get_db),
    cache: UsageCache = Depends(get_usage_cache)
):
    try:
        delete_budget(db, budget_id, usage_cache=cache)
        return BudgetDeleteResponse(message="Budget deleted successfully")
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error deleting budget {budget_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete budget"
        )
