"""
Earmark (binding) API. Earmarks are exposed as /bindings.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional
from app.common.exceptions import LedgerError, to_http_exception
from app.core.dependencies import get_db, get_usage_cache, get_usage_service
from app.services.earmark_service import (
    get_earmark,
    list_earmarks,
    create_earmark,
    update_earmark,
    delete_earmark,
)
from app.services.usage_service import UsageCache, UsageService
from app.schemas.earmark import (
    DateType,
    EarmarkCreate,
    EarmarkUpdate,
    EarmarkResponse,
    EarmarkListResponse,
    EarmarkUsageResponse,
    EarmarkDeleteResponse,
)
from app.logger_config import logger

router = APIRouter()


@router.get("", response_model=EarmarkListResponse)
def get_earmarks(
    active_only: bool = Query(False),
    search: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    try:
        earmarks, total = list_earmarks(db, active_only=active_only, search=search, skip=skip, limit=limit)
        return EarmarkListResponse(
            total=total,
            bindings=[EarmarkResponse.model_validate(e) for e in earmarks]
        )
    except Exception:
        logger.exception("Error fetching earmarks")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch earmarks"
        )


@router.get("/{earmark_id}", response_model=EarmarkResponse)
def get_earmark_route(earmark_id: int, db: Session = Depends(get_db)):
    try:
        return EarmarkResponse.model_validate(get_earmark(db, earmark_id))
    except LedgerError as e:
        raise to_http_exception(e)


@router.get("/{earmark_id}/usage", response_model=EarmarkUsageResponse)
def get_earmark_usage(
    earmark_id: int,
    date_from: Optional[DateType] = Query(None, alias="from"),
    date_to: Optional[DateType] = Query(None, alias="to"),
    usage_service: UsageService = Depends(get_usage_service)
):
    """
    Allocated (OUT) vs. released (IN) amounts for an earmark.
    """
    try:
        usage = usage_service.earmark_usage(earmark_id, date_from=date_from, date_to=date_to)
        return EarmarkUsageResponse(
            earmark_id=earmark_id,
            budget=usage.budget,
            allocated=usage.allocated,
            released=usage.released,
            balance=usage.balance,
            remaining=usage.remaining,
            percent=usage.percent,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error computing usage for earmark {earmark_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute earmark usage"
        )


@router.post("", response_model=EarmarkResponse, status_code=status.HTTP_201_CREATED)
def create_earmark_route(data: EarmarkCreate, db: Session = Depends(get_db)):
    try:
        return EarmarkResponse.model_validate(create_earmark(db, **data.model_dump()))
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Error creating earmark")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create earmark"
        )


@router.put("/{earmark_id}", response_model=EarmarkResponse)
def update_earmark_route(
    earmark_id: int,
    data: EarmarkUpdate,
    db: Session = Depends(get_db),
    cache: UsageCache = Depends(get_usage_cache)
):
    try:
        earmark = update_earmark(db, earmark_id, usage_cache=cache, **data.model_dump(exclude_unset=True))
        logger.info(f"Earmark {earmark.code} updated")
        return EarmarkResponse.model_validate(earmark)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error updating earmark {earmark_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update earmark"
        )


@router.delete("/{earmark_id}", response_model=EarmarkDeleteResponse)
def delete_earmark_route(
    earmark_id: int,
    db: Session = Depends(get_db),
    cache: UsageCache = Depends(get_usage_cache)
):
    try:
        delete_earmark(db, earmark_id, usage_cache=cache)
        return EarmarkDeleteResponse(message="Earmark deleted successfully")
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error deleting earmark {earmark_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete earmark"
        )
