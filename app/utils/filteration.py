from sqlalchemy import String, and_, cast, func, or_, select

from app.core.policy import SPHERE_MODE
from app.models.budget import Budget
from app.models.category import CustomCategory
from app.models.earmark import Earmark
from app.models.voucher import (
    Voucher, VoucherBudget, VoucherEarmark, VoucherTag, VoucherTaxonomyTerm, VoucherType,
)
from app.schemas.voucher import SortDirection, VoucherFilter, VoucherSortBy


def apply_voucher_filters(query, filters: VoucherFilter):
    """Narrow a Voucher query down to what the journal filter asks for."""
    if filters.date_from:
        query = query.filter(Voucher.date >= filters.date_from)

    if filters.date_to:
        query = query.filter(Voucher.date <= filters.date_to)

    if filters.type:
        query = query.filter(Voucher.type == filters.type)

    if filters.payment_method:
        pm = filters.payment_method
        # a transfer touches both of its sides
        query = query.filter(
            or_(
                Voucher.payment_method == pm,
                and_(
                    Voucher.type == VoucherType.TRANSFER,
                    or_(Voucher.transfer_from == pm, Voucher.transfer_to == pm),
                ),
            )
        )

    if filters.sphere:
        query = query.filter(Voucher.sphere == filters.sphere)

    if filters.category_id is not None:
        query = query.filter(Voucher.category_id == filters.category_id)

    if filters.earmark_id is not None:
        query = query.filter(Voucher.earmark_allocations.any(VoucherEarmark.earmark_id == filters.earmark_id))

    if filters.budget_id is not None:
        query = query.filter(Voucher.budget_allocations.any(VoucherBudget.budget_id == filters.budget_id))

    if filters.tag:
        query = query.filter(Voucher.tags.any(VoucherTag.name == filters.tag.strip()))

    if filters.taxonomy_id is not None or filters.term_id is not None:
        conditions = []
        if filters.taxonomy_id is not None:
            conditions.append(VoucherTaxonomyTerm.taxonomy_id == filters.taxonomy_id)
        if filters.term_id is not None:
            conditions.append(VoucherTaxonomyTerm.term_id == filters.term_id)
        query = query.filter(Voucher.taxonomy_terms.any(and_(*conditions)))

    if filters.q and filters.q.strip():
        term = f"%{filters.q.strip()}%"
        query = query.filter(
            or_(
                Voucher.voucher_no.ilike(term),
                Voucher.description.ilike(term),
                Voucher.counterparty.ilike(term),
            )
        )

    return query


def budget_label_expression():
    """SQL counterpart of Budget.label."""
    suffix = func.coalesce(
        func.nullif(Budget.category_name, ""),
        func.nullif(Budget.project_name, ""),
        cast(Budget.id, String),
    )
    return func.coalesce(func.nullif(Budget.name, ""), cast(Budget.year, String) + "-" + suffix)


def _first_budget_label():
    return (
        select(budget_label_expression())
        .select_from(VoucherBudget)
        .join(Budget, Budget.id == VoucherBudget.budget_id)
        .where(VoucherBudget.voucher_id == Voucher.id)
        .order_by(VoucherBudget.position)
        .limit(1)
        .correlate(Voucher)
        .scalar_subquery()
    )


def _first_earmark_code():
    return (
        select(Earmark.code)
        .select_from(VoucherEarmark)
        .join(Earmark, Earmark.id == VoucherEarmark.earmark_id)
        .where(VoucherEarmark.voucher_id == Voucher.id)
        .order_by(VoucherEarmark.position)
        .limit(1)
        .correlate(Voucher)
        .scalar_subquery()
    )


def _category_name():
    return (
        select(CustomCategory.name)
        .where(CustomCategory.id == Voucher.category_id)
        .correlate(Voucher)
        .scalar_subquery()
    )


def voucher_sort_expression(sort_by: VoucherSortBy, classification_mode: str = SPHERE_MODE):
    if sort_by == VoucherSortBy.net:
        return Voucher.net_amount
    if sort_by == VoucherSortBy.gross:
        return Voucher.gross_amount
    if sort_by == VoucherSortBy.budget:
        return _first_budget_label()
    if sort_by == VoucherSortBy.earmark:
        return _first_earmark_code()
    if sort_by == VoucherSortBy.payment:
        return func.coalesce(Voucher.payment_method, Voucher.transfer_from)
    if sort_by == VoucherSortBy.category:
        return Voucher.sphere if classification_mode == SPHERE_MODE else _category_name()
    return Voucher.date


def apply_voucher_sort(query, sort_by: VoucherSortBy, direction: SortDirection, classification_mode: str = SPHERE_MODE):
    expression = voucher_sort_expression(sort_by, classification_mode)
    if direction == SortDirection.ASC:
        return query.order_by(expression.asc(), Voucher.id.asc())
    return query.order_by(expression.desc(), Voucher.id.desc())
