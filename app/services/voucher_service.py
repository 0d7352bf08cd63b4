"""
Voucher ledger: create, update, delete and list vouchers.

Every write runs the same pipeline before anything touches the session:
classification, amount derivation, allocation checks for budgets and
earmarks, time-range checks and the period lock. Only when all of them pass
is the voucher persisted; usage figures of every budget and earmark the
write touched are dropped from the usage cache afterwards.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional, Set, Tuple

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.common.exceptions import (
    ConcurrentModification, InactiveEarmark, InvalidTransfer, LedgerError, NotFoundError,
    OutsideTimeRange, PeriodLocked, ReferencedElsewhere, ValidationError,
)
from app.core.policy import LedgerPolicy
from app.logger_config import logger
from app.models.budget import Budget
from app.models.cash_advance import CashAdvance
from app.models.category import CustomCategory
from app.models.earmark import Earmark
from app.models.voucher import (
    PaymentMethod, Voucher, VoucherBudget, VoucherEarmark, VoucherTag, VoucherTaxonomyTerm,
    VoucherType,
)
from app.schemas.voucher import (
    SortDirection, TransferDraft, VoucherFilter, VoucherPatch, VoucherSortBy,
)
from app.services.allocation_validator import Allocation, validate_allocations
from app.services.amount_calculator import (
    D, Amounts, compute_amounts, compute_transfer_amounts, rederive_amounts, round2,
)
from app.services.classification import (
    CategoryClassification, Classification, apply_classification, classify,
)
from app.services.numbering import make_voucher_no, next_voucher_sequence
from app.services.usage_service import UsageCache
from app.utils.filteration import apply_voucher_filters, apply_voucher_sort

MAX_NUMBER_ATTEMPTS = 5
MAX_UPDATE_ATTEMPTS = 3


@dataclass
class VoucherState:
    """A voucher as it would be persisted, before validation."""

    date: date
    type: VoucherType
    classification: Classification
    amounts: Amounts
    payment_method: Optional[PaymentMethod] = None
    transfer_from: Optional[PaymentMethod] = None
    transfer_to: Optional[PaymentMethod] = None
    description: Optional[str] = None
    counterparty: Optional[str] = None
    budgets: List[Allocation] = field(default_factory=list)
    earmarks: List[Allocation] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    taxonomy_terms: List[Tuple[int, int]] = field(default_factory=list)


def _sync_children(collection, key_attr: str, wanted, factory):
    """
    Make `collection` hold exactly the `wanted` (key, values) pairs, in order.

    Rows whose key survives are updated in place so unique (voucher, key)
    constraints never see a delete and an insert of the same key in one flush.
    """
    existing = {getattr(child, key_attr): child for child in collection}
    keep = []
    for key, values in wanted:
        child = existing.pop(key, None)
        if child is None:
            child = factory(key)
        for name, value in values.items():
            setattr(child, name, value)
        keep.append(child)
    collection[:] = keep


def is_voucher_no_collision(error: IntegrityError) -> bool:
    """True when the unique voucher number, and no other constraint, was violated."""
    return "voucher_no" in str(error.orig)


class VoucherService:
    def __init__(self, db: Session, policy: Optional[LedgerPolicy] = None, usage_cache: Optional[UsageCache] = None):
        self.db = db
        self.policy = policy or LedgerPolicy()
        self.usage_cache = usage_cache

    # ==================== QUERY OPERATIONS ====================

    def get_voucher(self, voucher_id: int) -> Voucher:
        voucher = (
            self.db.query(Voucher)
            .options(
                selectinload(Voucher.budget_allocations).joinedload(VoucherBudget.budget),
                selectinload(Voucher.earmark_allocations).joinedload(VoucherEarmark.earmark),
                selectinload(Voucher.tags),
                selectinload(Voucher.taxonomy_terms),
            )
            .filter(Voucher.id == voucher_id)
            .first()
        )
        if voucher is None:
            raise NotFoundError("Voucher", voucher_id)
        return voucher

    def list_vouchers(
        self,
        filters: Optional[VoucherFilter] = None,
        sort_by: VoucherSortBy = VoucherSortBy.date,
        direction: SortDirection = SortDirection.DESC,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Voucher], int, dict]:
        """Filtered, sorted page of vouchers. Returns (rows, total_count, totals of the filtered set)."""
        query = apply_voucher_filters(self.db.query(Voucher), filters or VoucherFilter())

        total_count = query.count()
        totals_row = query.with_entities(
            func.coalesce(func.sum(Voucher.net_amount), 0),
            func.coalesce(func.sum(Voucher.vat_amount), 0),
            func.coalesce(func.sum(Voucher.gross_amount), 0),
        ).one()
        totals = {
            "net": round2(D(str(totals_row[0]))),
            "vat": round2(D(str(totals_row[1]))),
            "gross": round2(D(str(totals_row[2]))),
        }

        rows = (
            apply_voucher_sort(query, sort_by, direction, self.policy.classification_mode)
            .options(
                selectinload(Voucher.budget_allocations).joinedload(VoucherBudget.budget),
                selectinload(Voucher.earmark_allocations).joinedload(VoucherEarmark.earmark),
                selectinload(Voucher.tags),
                selectinload(Voucher.taxonomy_terms),
            )
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total_count, totals

    # ==================== CREATE ====================

    def create(self, draft) -> Tuple[Voucher, List[str]]:
        """Validate and book a new voucher. Returns (voucher, warnings)."""
        try:
            voucher, warnings = self.create_pending(draft)
            touched = self._allocation_targets(voucher)
            self.db.commit()
        except LedgerError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception("Error creating voucher")
            raise
        self.db.refresh(voucher)
        self.invalidate_usage(*touched)
        logger.info(f"Voucher {voucher.voucher_no} created ({voucher.type.value} {voucher.gross_amount})")
        return voucher, warnings

    def create_pending(self, draft) -> Tuple[Voucher, List[str]]:
        """
        Validate and flush a new voucher without committing.

        For callers that book a voucher as part of a larger unit of work; they
        commit and call invalidate_usage() themselves.
        """
        state = self._state_from_draft(draft)
        state, warnings = self._validate(state)
        voucher = self._insert_numbered(state)
        return voucher, warnings

    # ==================== UPDATE ====================

    def update(self, voucher_id: int, patch: VoucherPatch) -> Tuple[Voucher, List[str]]:
        """Apply a patch with the full validation pipeline. Returns (voucher, warnings)."""
        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            try:
                voucher, warnings, touched = self._update_once(voucher_id, patch)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.warning(f"Voucher {voucher_id} changed concurrently, retrying update (attempt {attempt})")
                continue
            except LedgerError:
                self.db.rollback()
                raise
            except Exception:
                self.db.rollback()
                logger.exception(f"Error updating voucher {voucher_id}")
                raise
            self.db.refresh(voucher)
            self.invalidate_usage(*touched)
            logger.info(f"Voucher {voucher.voucher_no} updated (version {voucher.version})")
            return voucher, warnings

        raise ConcurrentModification(
            f"Voucher {voucher_id} kept changing while it was being updated; please retry",
            {"voucher_id": voucher_id},
        )

    def _update_once(self, voucher_id: int, patch: VoucherPatch):
        voucher = (
            self.db.query(Voucher)
            .filter(Voucher.id == voucher_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if voucher is None:
            raise NotFoundError("Voucher", voucher_id)

        if patch.expected_version is not None and patch.expected_version != voucher.version:
            raise ConcurrentModification(
                f"Voucher {voucher_id} was changed by someone else (version {voucher.version})",
                {"voucher_id": voucher_id, "version": voucher.version, "expected_version": patch.expected_version},
            )

        # an already closed voucher cannot be touched at all
        self._ensure_period_open(voucher.date)

        before_budgets, before_earmarks = self._allocation_targets(voucher)
        state = self._merge(voucher, patch)
        state, warnings = self._validate(state, voucher_id=voucher.id)

        if state.date != voucher.date:
            old_no = voucher.voucher_no
            self._renumber(voucher, state)
            warnings.append(f"Voucher number reassigned: {old_no} -> {voucher.voucher_no}")
        else:
            self._apply_state(voucher, state)
            # bump the row version even when only child rows changed
            voucher.updated_at = func.now()
            self.db.flush()

        after_budgets, after_earmarks = self._allocation_targets(voucher)
        touched = (before_budgets | after_budgets, before_earmarks | after_earmarks)
        return voucher, warnings, touched

    # ==================== DELETE ====================

    def delete(self, voucher_id: int) -> None:
        voucher = self.db.get(Voucher, voucher_id)
        if voucher is None:
            raise NotFoundError("Voucher", voucher_id)

        self._ensure_period_open(voucher.date)

        advance = (
            self.db.query(CashAdvance)
            .filter(CashAdvance.counter_voucher_id == voucher_id)
            .first()
        )
        if advance is not None:
            raise ReferencedElsewhere(
                f"Voucher {voucher.voucher_no} settles cash advance {advance.order_number} and cannot be deleted",
                {"voucher_id": voucher_id, "cash_advance_id": advance.id},
            )

        touched = self._allocation_targets(voucher)
        voucher_no = voucher.voucher_no
        self.db.delete(voucher)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Error deleting voucher {voucher_id}")
            raise
        self.invalidate_usage(*touched)
        logger.info(f"Voucher {voucher_no} deleted")

    # ==================== CACHE ====================

    def invalidate_usage(self, budget_ids=(), earmark_ids=()) -> None:
        if self.usage_cache is not None:
            self.usage_cache.invalidate(budget_ids, earmark_ids)

    # ==================== PIPELINE ====================

    def _state_from_draft(self, draft) -> VoucherState:
        classification = classify(self.policy.classification_mode, draft.sphere, draft.category_id)
        common = dict(
            date=draft.date,
            type=VoucherType(draft.type),
            classification=classification,
            description=draft.description,
            counterparty=draft.counterparty,
            budgets=[Allocation(b.budget_id, b.amount) for b in draft.budgets],
            earmarks=[Allocation(e.earmark_id, e.amount) for e in draft.earmarks],
            tags=list(draft.tags),
            taxonomy_terms=[(t.taxonomy_id, t.term_id) for t in draft.taxonomy_terms],
        )
        if isinstance(draft, TransferDraft):
            return VoucherState(
                amounts=compute_transfer_amounts(draft.gross_amount),
                transfer_from=draft.transfer_from,
                transfer_to=draft.transfer_to,
                **common,
            )
        return VoucherState(
            amounts=compute_amounts(draft.tax_mode, draft.net_amount, draft.gross_amount, draft.vat_rate),
            payment_method=draft.payment_method,
            **common,
        )

    def _merge(self, voucher: Voucher, patch: VoucherPatch) -> VoucherState:
        sent = patch.model_fields_set

        def pick(name, current):
            return getattr(patch, name) if name in sent else current

        new_type = patch.type or voucher.type
        classification = classify(
            self.policy.classification_mode,
            pick("sphere", voucher.sphere),
            pick("category_id", voucher.category_id),
        )

        current_amounts = Amounts(
            voucher.tax_mode, voucher.net_amount, voucher.vat_rate, voucher.vat_amount, voucher.gross_amount
        )
        if new_type == VoucherType.TRANSFER:
            amounts = compute_transfer_amounts(
                patch.gross_amount if patch.gross_amount is not None else voucher.gross_amount
            )
        else:
            amounts = rederive_amounts(
                current_amounts,
                tax_mode=patch.tax_mode,
                net_amount=patch.net_amount,
                gross_amount=patch.gross_amount,
                vat_rate=patch.vat_rate,
            )

        if "budgets" in sent:
            budgets = [Allocation(b.budget_id, b.amount) for b in patch.budgets or []]
        else:
            budgets = [Allocation(a.budget_id, a.amount) for a in voucher.budget_allocations]
        if "earmarks" in sent:
            earmarks = [Allocation(e.earmark_id, e.amount) for e in patch.earmarks or []]
        else:
            earmarks = [Allocation(a.earmark_id, a.amount) for a in voucher.earmark_allocations]
        if "taxonomy_terms" in sent:
            terms = [(t.taxonomy_id, t.term_id) for t in patch.taxonomy_terms or []]
        else:
            terms = [(t.taxonomy_id, t.term_id) for t in voucher.taxonomy_terms]

        return VoucherState(
            date=patch.date or voucher.date,
            type=new_type,
            classification=classification,
            amounts=amounts,
            payment_method=pick("payment_method", voucher.payment_method),
            transfer_from=pick("transfer_from", voucher.transfer_from),
            transfer_to=pick("transfer_to", voucher.transfer_to),
            description=pick("description", voucher.description),
            counterparty=pick("counterparty", voucher.counterparty),
            budgets=budgets,
            earmarks=earmarks,
            tags=(patch.tags or []) if "tags" in sent else voucher.tag_names,
            taxonomy_terms=terms,
        )

    def _validate(self, state: VoucherState, voucher_id: Optional[int] = None) -> Tuple[VoucherState, List[str]]:
        self._ensure_period_open(state.date)
        self._check_classification(state.classification)
        state = self._check_payment(state)

        gross = state.amounts.gross_amount
        budgets = validate_allocations(state.budgets, gross, "budget")
        earmarks = validate_allocations(state.earmarks, gross, "earmark")

        self._check_budgets(budgets, state.date)
        earmark_rows = self._check_earmarks(earmarks, state.date)

        warnings = self._earmark_warnings(state, earmarks, earmark_rows, voucher_id)
        return replace(state, budgets=budgets, earmarks=earmarks), warnings

    def _ensure_period_open(self, voucher_date: date) -> None:
        locked_until = self.policy.locked_until
        if locked_until is not None and voucher_date <= locked_until:
            raise PeriodLocked(locked_until, voucher_date)

    def _check_classification(self, classification: Classification) -> None:
        if isinstance(classification, CategoryClassification) and classification.category_id is not None:
            if self.db.get(CustomCategory, classification.category_id) is None:
                raise NotFoundError("Category", classification.category_id)

    def _check_payment(self, state: VoucherState) -> VoucherState:
        if state.type == VoucherType.TRANSFER:
            if state.transfer_from is None or state.transfer_to is None:
                raise InvalidTransfer("A transfer needs both transfer_from and transfer_to")
            if state.transfer_from == state.transfer_to:
                raise InvalidTransfer(
                    "transfer_from and transfer_to must differ",
                    {"transfer_from": state.transfer_from.value, "transfer_to": state.transfer_to.value},
                )
            return replace(state, payment_method=None)

        if state.payment_method is None:
            raise ValidationError("payment_method is required for income and expense vouchers")
        return replace(state, transfer_from=None, transfer_to=None)

    def _check_budgets(self, allocations: List[Allocation], voucher_date: date) -> None:
        for allocation in allocations:
            budget = self.db.get(Budget, allocation.target_id)
            if budget is None:
                raise NotFoundError("Budget", allocation.target_id)
            if budget.enforce_time_range:
                self._check_time_range("budget", budget.label, budget.start_date, budget.end_date, voucher_date)

    def _check_earmarks(self, allocations: List[Allocation], voucher_date: date) -> dict:
        rows = {}
        for allocation in allocations:
            earmark = self.db.get(Earmark, allocation.target_id)
            if earmark is None:
                raise NotFoundError("Earmark", allocation.target_id)
            if not earmark.is_active:
                raise InactiveEarmark(
                    f"Earmark {earmark.code} is inactive and cannot be used",
                    {"earmark_id": earmark.id},
                )
            if earmark.enforce_time_range:
                self._check_time_range("earmark", earmark.code, earmark.start_date, earmark.end_date, voucher_date)
            rows[earmark.id] = earmark
        return rows

    @staticmethod
    def _check_time_range(kind: str, label: str, start: Optional[date], end: Optional[date], voucher_date: date):
        if start is not None and voucher_date < start:
            raise OutsideTimeRange(
                f"Voucher date {voucher_date} is before the start of {kind} {label} ({start})",
                {"kind": kind, "start_date": str(start), "date": str(voucher_date)},
            )
        if end is not None and voucher_date > end:
            raise OutsideTimeRange(
                f"Voucher date {voucher_date} is after the end of {kind} {label} ({end})",
                {"kind": kind, "end_date": str(end), "date": str(voucher_date)},
            )

    def _earmark_warnings(self, state, earmarks, earmark_rows, voucher_id) -> List[str]:
        if self.policy.earmark_allow_negative or state.type != VoucherType.OUT:
            return []
        warnings = []
        for allocation in earmarks:
            earmark = earmark_rows[allocation.target_id]
            query = (
                self.db.query(
                    func.coalesce(func.sum(case((Voucher.type == VoucherType.OUT, VoucherEarmark.amount), else_=0)), 0),
                    func.coalesce(func.sum(case((Voucher.type == VoucherType.IN, VoucherEarmark.amount), else_=0)), 0),
                )
                .select_from(VoucherEarmark)
                .join(Voucher, Voucher.id == VoucherEarmark.voucher_id)
                .filter(VoucherEarmark.earmark_id == earmark.id, Voucher.date <= state.date)
            )
            if voucher_id is not None:
                query = query.filter(Voucher.id != voucher_id)
            allocated, released = query.one()
            remaining = Decimal(str(earmark.budget or 0)) - Decimal(str(allocated)) + Decimal(str(released))
            if remaining - allocation.amount < 0:
                warnings.append(f"Earmark {earmark.code} would fall below its available amount")
        return warnings

    # ==================== PERSISTENCE ====================

    def _apply_state(self, voucher: Voucher, state: VoucherState) -> None:
        voucher.date = state.date
        voucher.type = state.type
        apply_classification(voucher, state.classification)
        voucher.payment_method = state.payment_method
        voucher.transfer_from = state.transfer_from
        voucher.transfer_to = state.transfer_to

        amounts = state.amounts
        voucher.tax_mode = amounts.tax_mode
        voucher.net_amount = amounts.net_amount
        voucher.vat_rate = amounts.vat_rate
        voucher.vat_amount = amounts.vat_amount
        voucher.gross_amount = amounts.gross_amount

        voucher.description = state.description
        voucher.counterparty = state.counterparty

        _sync_children(
            voucher.budget_allocations,
            "budget_id",
            [(a.target_id, {"amount": a.amount, "position": i}) for i, a in enumerate(state.budgets)],
            lambda key: VoucherBudget(budget_id=key),
        )
        _sync_children(
            voucher.earmark_allocations,
            "earmark_id",
            [(a.target_id, {"amount": a.amount, "position": i}) for i, a in enumerate(state.earmarks)],
            lambda key: VoucherEarmark(earmark_id=key),
        )
        _sync_children(
            voucher.tags,
            "name",
            [(name, {}) for name in state.tags],
            lambda key: VoucherTag(name=key),
        )
        _sync_children(
            voucher.taxonomy_terms,
            "taxonomy_id",
            [(taxonomy_id, {"term_id": term_id}) for taxonomy_id, term_id in state.taxonomy_terms],
            lambda key: VoucherTaxonomyTerm(taxonomy_id=key),
        )

    def _insert_numbered(self, state: VoucherState) -> Voucher:
        """Insert with the next free per-day number, retrying on number collisions."""
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            voucher = Voucher()
            self._apply_state(voucher, state)
            self._assign_number(voucher, state.date)
            if self._flush_numbered(voucher, attempt):
                return voucher
        raise ConcurrentModification("Could not assign a voucher number, please retry")

    def _renumber(self, voucher: Voucher, state: VoucherState) -> None:
        """Move an existing voucher to a new day, with that day's next free number."""
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            # a rolled back savepoint expires the voucher, so the state goes on again each time
            self._apply_state(voucher, state)
            self._assign_number(voucher, state.date)
            voucher.updated_at = func.now()
            if self._flush_numbered(voucher, attempt):
                return
        raise ConcurrentModification(
            f"Could not assign a new voucher number to voucher {voucher.id}, please retry",
            {"voucher_id": voucher.id},
        )

    def _assign_number(self, voucher: Voucher, voucher_date: date) -> None:
        seq = next_voucher_sequence(self.db, voucher_date)
        voucher.year = voucher_date.year
        voucher.seq_no = seq
        voucher.voucher_no = make_voucher_no(voucher_date, seq)

    def _flush_numbered(self, voucher: Voucher, attempt: int) -> bool:
        """Flush in a savepoint. False when the number was taken; other constraint errors propagate."""
        voucher_no = voucher.voucher_no
        try:
            with self.db.begin_nested():
                self.db.add(voucher)
                self.db.flush()
            return True
        except IntegrityError as e:
            if not is_voucher_no_collision(e):
                raise
            logger.warning(f"Voucher number {voucher_no} taken, retrying (attempt {attempt})")
            return False

    @staticmethod
    def _allocation_targets(voucher: Voucher) -> Tuple[Set[int], Set[int]]:
        return (
            {a.budget_id for a in voucher.budget_allocations},
            {a.earmark_id for a in voucher.earmark_allocations},
        )
