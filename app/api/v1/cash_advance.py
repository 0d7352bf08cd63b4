"""
Cash advance API: issue advances, hand out and settle partials, resolve.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.common.exceptions import LedgerError, to_http_exception
from app.core.dependencies import get_cash_advance_service
from app.logger_config import logger
from app.models.cash_advance import CashAdvanceStatus
from app.schemas.cash_advance import (
    CashAdvanceCreate,
    CashAdvanceDeleteResponse,
    CashAdvanceListResponse,
    CashAdvanceResponse,
    CashAdvanceStatsResponse,
    CashAdvanceUpdate,
    NextOrderNumberResponse,
    PartialCreate,
    PartialCreateResponse,
    PartialResponse,
    PartialSettle,
    ResolveRequest,
    ResolveResponse,
)
from app.services.cash_advance_service import CashAdvanceService

router = APIRouter()


def _build_advance_response(advance, service: CashAdvanceService) -> CashAdvanceResponse:
    figures = service.figures(advance)
    return CashAdvanceResponse(
        id=advance.id,
        order_number=advance.order_number,
        holder_name=advance.holder_name,
        purpose=advance.purpose,
        total_amount=advance.total_amount,
        status=figures.status,
        due_date=advance.due_date,
        notes=advance.notes,
        counter_voucher_id=advance.counter_voucher_id,
        created_at=advance.created_at,
        resolved_at=advance.resolved_at,
        total_planned=figures.total_planned,
        total_settled=figures.total_settled,
        planned_remaining=figures.planned_remaining,
        actual_remaining=figures.actual_remaining,
        coverage=figures.coverage,
        partials=[PartialResponse.model_validate(p) for p in advance.partials],
    )


def _internal_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


@router.get("/stats", response_model=CashAdvanceStatsResponse)
def cash_advance_stats_route(service: CashAdvanceService = Depends(get_cash_advance_service)):
    """Counts and amounts of open, overdue and resolved advances."""
    try:
        return CashAdvanceStatsResponse(**service.stats())
    except Exception:
        logger.exception("Error computing cash advance stats")
        raise _internal_error("Failed to compute cash advance stats")


@router.get("/next-number", response_model=NextOrderNumberResponse)
def next_order_number_route(
    year: Optional[int] = Query(None, ge=1900, le=2999),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    return NextOrderNumberResponse(order_number=service.next_order_number(year))


@router.post("/partials/{partial_id}/settle", response_model=PartialResponse)
def settle_partial_route(
    data: PartialSettle,
    partial_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        partial = service.settle_partial(partial_id, data.settled_amount, data.settled_at)
        return PartialResponse.model_validate(partial)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error settling partial {partial_id}")
        raise _internal_error("Failed to settle partial")


@router.delete("/partials/{partial_id}", response_model=CashAdvanceDeleteResponse)
def delete_partial_route(
    partial_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        service.delete_partial(partial_id)
        return CashAdvanceDeleteResponse(message="Partial deleted successfully")
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error deleting partial {partial_id}")
        raise _internal_error("Failed to delete partial")


@router.post("", response_model=CashAdvanceResponse, status_code=status.HTTP_201_CREATED)
def create_cash_advance_route(
    data: CashAdvanceCreate,
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        advance = service.create(**data.model_dump())
        return _build_advance_response(advance, service)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Error creating cash advance")
        raise _internal_error("Failed to create cash advance")


@router.get("", response_model=CashAdvanceListResponse)
def list_cash_advances_route(
    status_filter: Optional[CashAdvanceStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    """
    List advances. Filtering by OVERDUE returns open advances past their due date;
    filtering by OPEN leaves those out.
    """
    try:
        rows, total = service.list_advances(status=status_filter, search=search, skip=skip, limit=limit)
        return CashAdvanceListResponse(
            total=total,
            cash_advances=[_build_advance_response(a, service) for a in rows],
        )
    except Exception:
        logger.exception("Error listing cash advances")
        raise _internal_error("Failed to fetch cash advances")


@router.get("/{advance_id}", response_model=CashAdvanceResponse)
def get_cash_advance_route(
    advance_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        return _build_advance_response(service.get(advance_id), service)
    except LedgerError as e:
        raise to_http_exception(e)


@router.put("/{advance_id}", response_model=CashAdvanceResponse)
def update_cash_advance_route(
    data: CashAdvanceUpdate,
    advance_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        advance = service.update(advance_id, **data.model_dump(exclude_unset=True))
        return _build_advance_response(advance, service)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error updating cash advance {advance_id}")
        raise _internal_error("Failed to update cash advance")


@router.delete("/{advance_id}", response_model=CashAdvanceDeleteResponse)
def delete_cash_advance_route(
    advance_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        service.delete(advance_id)
        return CashAdvanceDeleteResponse(message="Cash advance deleted successfully")
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error deleting cash advance {advance_id}")
        raise _internal_error("Failed to delete cash advance")


@router.post("/{advance_id}/partials", response_model=PartialCreateResponse, status_code=status.HTTP_201_CREATED)
def add_partial_route(
    data: PartialCreate,
    advance_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    try:
        partial, warnings = service.add_partial(
            advance_id,
            recipient_name=data.recipient_name,
            amount=data.amount,
            issued_at=data.issued_at,
            description=data.description,
        )
        return PartialCreateResponse(partial=PartialResponse.model_validate(partial), warnings=warnings)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error adding partial to cash advance {advance_id}")
        raise _internal_error("Failed to add partial")


@router.post("/{advance_id}/resolve", response_model=ResolveResponse)
def resolve_cash_advance_route(
    data: Optional[ResolveRequest] = None,
    advance_id: int = Path(..., ge=1),
    service: CashAdvanceService = Depends(get_cash_advance_service),
):
    """
    Resolve an advance for good. All partials must be settled first. By default the
    difference between advance and settled total is booked as a counter voucher.
    """
    create_counter_voucher = data.create_counter_voucher if data else True
    try:
        advance, warnings = service.resolve(advance_id, create_counter_voucher=create_counter_voucher)
        return ResolveResponse(cash_advance=_build_advance_response(advance, service), warnings=warnings)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error resolving cash advance {advance_id}")
        raise _internal_error("Failed to resolve cash advance")
