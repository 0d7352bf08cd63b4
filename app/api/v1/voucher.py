"""
Voucher API: book, correct, remove and search vouchers.
"""

from typing import Annotated, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from app.common.exceptions import LedgerError, to_http_exception
from app.core.dependencies import get_voucher_service
from app.logger_config import logger
from app.models.voucher import PaymentMethod, Sphere, VoucherType
from app.schemas.voucher import (
    BudgetAllocationOut,
    DateType,
    EarmarkAllocationOut,
    ExpenseDraft,
    IncomeDraft,
    SortDirection,
    TaxonomyTermIn,
    TransferDraft,
    VoucherCreateResponse,
    VoucherDeleteResponse,
    VoucherFilter,
    VoucherListResponse,
    VoucherPatch,
    VoucherResponse,
    VoucherSortBy,
    VoucherTotals,
    VoucherUpdateResponse,
)
from app.services.voucher_service import VoucherService

router = APIRouter()


def _build_voucher_response(voucher) -> VoucherResponse:
    return VoucherResponse(
        id=voucher.id,
        voucher_no=voucher.voucher_no,
        date=voucher.date,
        type=voucher.type,
        sphere=voucher.sphere,
        category_id=voucher.category_id,
        payment_method=voucher.payment_method,
        transfer_from=voucher.transfer_from,
        transfer_to=voucher.transfer_to,
        tax_mode=voucher.tax_mode,
        net_amount=voucher.net_amount,
        vat_rate=voucher.vat_rate,
        vat_amount=voucher.vat_amount,
        gross_amount=voucher.gross_amount,
        description=voucher.description,
        counterparty=voucher.counterparty,
        budgets=[
            BudgetAllocationOut(
                budget_id=a.budget_id,
                amount=a.amount,
                label=a.budget.label if a.budget else None,
            )
            for a in voucher.budget_allocations
        ],
        earmarks=[
            EarmarkAllocationOut(
                earmark_id=a.earmark_id,
                amount=a.amount,
                code=a.earmark.code if a.earmark else None,
            )
            for a in voucher.earmark_allocations
        ],
        tags=voucher.tag_names,
        taxonomy_terms=[
            TaxonomyTermIn(taxonomy_id=t.taxonomy_id, term_id=t.term_id) for t in voucher.taxonomy_terms
        ],
        version=voucher.version,
        created_at=voucher.created_at,
    )


@router.post("", response_model=VoucherCreateResponse, status_code=status.HTTP_201_CREATED)
def create_voucher_route(
    draft: Annotated[Union[IncomeDraft, ExpenseDraft, TransferDraft], Body(discriminator="type")],
    service: VoucherService = Depends(get_voucher_service),
):
    """
    Book a new voucher. The body is an IN, OUT or TRANSFER draft, picked by `type`.
    Non-blocking findings come back as `warnings`.
    """
    try:
        voucher, warnings = service.create(draft)
        return VoucherCreateResponse(id=voucher.id, voucher_no=voucher.voucher_no, warnings=warnings)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Error creating voucher")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create voucher",
        )


@router.get("", response_model=VoucherListResponse)
def list_vouchers_route(
    date_from: Optional[DateType] = Query(None, alias="from"),
    date_to: Optional[DateType] = Query(None, alias="to"),
    type: Optional[VoucherType] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    sphere: Optional[Sphere] = Query(None),
    category_id: Optional[int] = Query(None),
    earmark_id: Optional[int] = Query(None),
    budget_id: Optional[int] = Query(None),
    tag: Optional[str] = Query(None),
    taxonomy_id: Optional[int] = Query(None),
    term_id: Optional[int] = Query(None),
    q: Optional[str] = Query(None, description="Search voucher number, description and counterparty"),
    sort_by: VoucherSortBy = Query(VoucherSortBy.date),
    direction: SortDirection = Query(SortDirection.DESC),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=500),
    service: VoucherService = Depends(get_voucher_service),
):
    """
    Search the journal. `totals` sums net, VAT and gross over every matching
    voucher, not only the returned page.
    """
    filters = VoucherFilter(
        date_from=date_from,
        date_to=date_to,
        type=type,
        payment_method=payment_method,
        sphere=sphere,
        category_id=category_id,
        earmark_id=earmark_id,
        budget_id=budget_id,
        tag=tag,
        taxonomy_id=taxonomy_id,
        term_id=term_id,
        q=q,
    )
    try:
        rows, total, totals = service.list_vouchers(
            filters, sort_by=sort_by, direction=direction, skip=skip, limit=limit
        )
        return VoucherListResponse(
            rows=[_build_voucher_response(v) for v in rows],
            total=total,
            totals=VoucherTotals(**totals),
        )
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception("Error listing vouchers")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch vouchers",
        )


@router.get("/{voucher_id}", response_model=VoucherResponse)
def get_voucher_route(
    voucher_id: int = Path(..., ge=1),
    service: VoucherService = Depends(get_voucher_service),
):
    try:
        return _build_voucher_response(service.get_voucher(voucher_id))
    except LedgerError as e:
        raise to_http_exception(e)


@router.patch("/{voucher_id}", response_model=VoucherUpdateResponse)
def update_voucher_route(
    patch: VoucherPatch,
    voucher_id: int = Path(..., ge=1),
    service: VoucherService = Depends(get_voucher_service),
):
    """
    Change a voucher. Only the fields sent are applied; an explicit null clears a field.
    Moving the voucher to another date gives it a new number.
    """
    try:
        voucher, warnings = service.update(voucher_id, patch)
        return VoucherUpdateResponse(id=voucher.id, warnings=warnings)
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error updating voucher {voucher_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update voucher",
        )


@router.delete("/{voucher_id}", response_model=VoucherDeleteResponse)
def delete_voucher_route(
    voucher_id: int = Path(..., ge=1),
    service: VoucherService = Depends(get_voucher_service),
):
    try:
        service.delete(voucher_id)
        return VoucherDeleteResponse(message="Voucher deleted successfully")
    except LedgerError as e:
        raise to_http_exception(e)
    except Exception:
        logger.exception(f"Error deleting voucher {voucher_id}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete voucher",
        )
