"""
Cash advance service: issue, partial disbursement, settlement and resolution.

An advance moves OPEN -> RESOLVED exactly once. OVERDUE is never stored; it is
reported for OPEN advances whose due date has passed. Resolving books the
difference between the advance and what was actually settled as one counter
voucher through the voucher ledger, in the same transaction as the status
change.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, exists, or_
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql import func

from app.common.exceptions import (
    AlreadyResolved, InvalidAmount, LedgerError, NotFoundError, StateError, UnsettledPartialsRemain,
    ValidationError,
)
from app.core.policy import SPHERE_MODE, LedgerPolicy
from app.logger_config import logger
from app.models.cash_advance import CashAdvance, CashAdvanceStatus, PartialCashAdvance
from app.models.voucher import PaymentMethod, TaxMode
from app.schemas.voucher import ExpenseDraft, IncomeDraft
from app.services.amount_calculator import D, round2
from app.services.numbering import next_order_number
from app.services.voucher_service import VoucherService

ZERO = Decimal("0.00")
Q4 = Decimal("0.0001")


@dataclass(frozen=True)
class CashAdvanceFigures:
    status: CashAdvanceStatus
    total_planned: Decimal
    total_settled: Decimal
    planned_remaining: Decimal
    actual_remaining: Decimal
    coverage: Decimal


def reported_status(advance: CashAdvance, today: date) -> CashAdvanceStatus:
    if advance.status == CashAdvanceStatus.OPEN and advance.due_date and advance.due_date < today:
        return CashAdvanceStatus.OVERDUE
    return advance.status


def compute_figures(advance: CashAdvance, today: date) -> CashAdvanceFigures:
    total = round2(D(advance.total_amount))
    total_planned = sum((D(p.amount) for p in advance.partials), ZERO)
    total_settled = sum((D(p.settled_amount or 0) for p in advance.partials if p.is_settled), ZERO)
    coverage = (total_settled / total).quantize(Q4) if total > 0 else Decimal("0.0000")
    return CashAdvanceFigures(
        status=reported_status(advance, today),
        total_planned=round2(total_planned),
        total_settled=round2(total_settled),
        planned_remaining=round2(total - total_planned),
        actual_remaining=round2(total - total_settled),
        coverage=coverage,
    )


class CashAdvanceService:
    def __init__(self, db: Session, policy: Optional[LedgerPolicy] = None, voucher_service: Optional[VoucherService] = None):
        self.db = db
        self.policy = policy or LedgerPolicy()
        self.voucher_service = voucher_service or VoucherService(db, self.policy)

    def today(self) -> date:
        return self.policy.today()

    def figures(self, advance: CashAdvance) -> CashAdvanceFigures:
        return compute_figures(advance, self.today())

    # ==================== QUERY OPERATIONS ====================

    def get(self, advance_id: int, for_update: bool = False) -> CashAdvance:
        query = (
            self.db.query(CashAdvance)
            .options(selectinload(CashAdvance.partials))
            .filter(CashAdvance.id == advance_id)
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        advance = query.first()
        if advance is None:
            raise NotFoundError("Cash advance", advance_id)
        return advance

    def list_advances(
        self,
        status: Optional[CashAdvanceStatus] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[CashAdvance], int]:
        query = self.db.query(CashAdvance)
        today = self.today()
        is_overdue = and_(CashAdvance.due_date.isnot(None), CashAdvance.due_date < today)

        if status == CashAdvanceStatus.OVERDUE:
            query = query.filter(CashAdvance.status == CashAdvanceStatus.OPEN, is_overdue)
        elif status == CashAdvanceStatus.OPEN:
            query = query.filter(CashAdvance.status == CashAdvanceStatus.OPEN, ~is_overdue)
        elif status == CashAdvanceStatus.RESOLVED:
            query = query.filter(CashAdvance.status == CashAdvanceStatus.RESOLVED)

        if search and search.strip():
            term = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    CashAdvance.order_number.ilike(term),
                    CashAdvance.holder_name.ilike(term),
                    CashAdvance.purpose.ilike(term),
                )
            )

        total = query.count()
        rows = (
            query.options(selectinload(CashAdvance.partials))
            .order_by(CashAdvance.created_at.desc(), CashAdvance.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def next_order_number(self, year: Optional[int] = None) -> str:
        return next_order_number(self.db, year or self.today().year)

    def stats(self) -> Dict[str, object]:
        """Counts and amounts per reported status."""
        stats = {
            "total_open": 0,
            "total_resolved": 0,
            "total_overdue": 0,
            "open_amount": ZERO,
            "overdue_amount": ZERO,
        }
        today = self.today()
        for advance in self.db.query(CashAdvance).all():
            status = reported_status(advance, today)
            if status == CashAdvanceStatus.RESOLVED:
                stats["total_resolved"] += 1
            elif status == CashAdvanceStatus.OVERDUE:
                stats["total_overdue"] += 1
                stats["overdue_amount"] += D(advance.total_amount)
            else:
                stats["total_open"] += 1
                stats["open_amount"] += D(advance.total_amount)
        return stats

    # ==================== ADVANCE LIFECYCLE ====================

    def create(
        self,
        holder_name: str,
        total_amount,
        order_number: Optional[str] = None,
        purpose: Optional[str] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> CashAdvance:
        holder_name = (holder_name or "").strip()
        if not holder_name:
            raise ValidationError("holder_name must not be empty")
        total = self._positive(total_amount, "total_amount")

        order_number = (order_number or "").strip() or self.next_order_number()
        self._ensure_unique_order_number(order_number)

        advance = CashAdvance(
            order_number=order_number,
            holder_name=holder_name,
            purpose=purpose,
            total_amount=total,
            status=CashAdvanceStatus.OPEN,
            due_date=due_date,
            notes=notes,
        )
        self.db.add(advance)
        self._commit(f"creating cash advance {order_number}")
        self.db.refresh(advance)
        logger.info(f"Cash advance {advance.order_number} issued to {advance.holder_name} ({advance.total_amount})")
        return advance

    def update(self, advance_id: int, **changes) -> CashAdvance:
        """Patch an OPEN advance. Status is moved by resolve() only."""
        advance = self.get(advance_id, for_update=True)
        self._ensure_open(advance)
        changes.pop("status", None)

        if "holder_name" in changes:
            holder_name = (changes["holder_name"] or "").strip()
            if not holder_name:
                raise ValidationError("holder_name must not be empty")
            changes["holder_name"] = holder_name
        if "total_amount" in changes:
            changes["total_amount"] = self._positive(changes["total_amount"], "total_amount")
        if changes.get("order_number") and changes["order_number"] != advance.order_number:
            self._ensure_unique_order_number(changes["order_number"])

        for name, value in changes.items():
            setattr(advance, name, value)

        self._commit(f"updating cash advance {advance_id}")
        self.db.refresh(advance)
        return advance

    def delete(self, advance_id: int) -> None:
        advance = self.get(advance_id, for_update=True)
        if advance.status == CashAdvanceStatus.RESOLVED:
            raise StateError(
                f"Cash advance {advance.order_number} is resolved and cannot be deleted",
                {"cash_advance_id": advance_id},
            )
        order_number = advance.order_number
        self.db.delete(advance)
        self._commit(f"deleting cash advance {advance_id}")
        logger.info(f"Cash advance {order_number} deleted")

    # ==================== PARTIALS ====================

    def add_partial(
        self,
        advance_id: int,
        recipient_name: str,
        amount,
        issued_at: Optional[date] = None,
        description: Optional[str] = None,
    ) -> Tuple[PartialCashAdvance, List[str]]:
        advance = self.get(advance_id, for_update=True)
        self._ensure_open(advance)

        recipient_name = (recipient_name or "").strip()
        if not recipient_name:
            raise ValidationError("recipient_name must not be empty")
        amount = self._positive(amount, "amount")

        warnings = []
        planned_remaining = self.figures(advance).planned_remaining
        if amount > planned_remaining:
            if self.policy.enforce_planned_limit:
                raise ValidationError(
                    f"Partial of {amount} exceeds what is left of the advance ({planned_remaining})",
                    {"amount": str(amount), "planned_remaining": str(planned_remaining)},
                )
            warnings.append(
                f"Partials now exceed the advance {advance.order_number} by {amount - planned_remaining}"
            )

        partial = PartialCashAdvance(
            recipient_name=recipient_name,
            amount=amount,
            issued_at=issued_at or self.today(),
            description=description,
            is_settled=False,
        )
        advance.partials.append(partial)
        self._commit(f"adding partial to cash advance {advance_id}")
        self.db.refresh(partial)
        logger.info(f"Partial of {amount} to {recipient_name} added to {advance.order_number}")
        return partial, warnings

    def settle_partial(self, partial_id: int, settled_amount, settled_at: Optional[date] = None) -> PartialCashAdvance:
        partial = self._get_partial(partial_id)
        self._ensure_open(self.get(partial.cash_advance_id, for_update=True))

        settled = round2(D(settled_amount))
        if settled < 0:
            raise InvalidAmount("settled_amount must not be negative", {"settled_amount": str(settled)})

        partial.settled_amount = settled
        partial.settled_at = settled_at or self.today()
        partial.is_settled = True
        self._commit(f"settling partial {partial_id}")
        self.db.refresh(partial)
        logger.info(f"Partial {partial_id} settled with {settled}")
        return partial

    def delete_partial(self, partial_id: int) -> None:
        partial = self._get_partial(partial_id)
        self._ensure_open(self.get(partial.cash_advance_id, for_update=True))

        if partial.is_settled and not self.policy.allow_delete_settled_partials:
            raise StateError(
                f"Partial {partial_id} is already settled and cannot be deleted",
                {"partial_id": partial_id},
            )

        self.db.delete(partial)
        self._commit(f"deleting partial {partial_id}")
        logger.info(f"Partial {partial_id} deleted")

    # ==================== RESOLUTION ====================

    def resolve(self, advance_id: int, create_counter_voucher: bool = True) -> Tuple[CashAdvance, List[str]]:
        """
        Close an advance for good.

        Every partial must be settled. When asked to and the settled total
        differs from the advance, the difference is booked as a BAR voucher
        dated today: IN when money comes back, OUT when more was spent.
        """
        advance = self.get(advance_id, for_update=True)
        order_number = advance.order_number
        if advance.status == CashAdvanceStatus.RESOLVED:
            raise AlreadyResolved(
                f"Cash advance {order_number} is already resolved",
                {"cash_advance_id": advance_id},
            )

        unsettled = [p.id for p in advance.partials if not p.is_settled]
        if unsettled:
            raise UnsettledPartialsRemain(
                f"{len(unsettled)} partial(s) of {order_number} are not settled yet",
                {"cash_advance_id": advance_id, "partial_ids": unsettled},
            )

        diff = round2(D(advance.total_amount)) - self.figures(advance).total_settled
        warnings: List[str] = []
        counter_voucher = None
        try:
            if create_counter_voucher and diff != 0:
                counter_voucher, warnings = self.voucher_service.create_pending(
                    self._counter_voucher_draft(advance, diff)
                )

            # the partial check is repeated in the UPDATE so it holds without row locks
            unsettled_exists = exists().where(
                PartialCashAdvance.cash_advance_id == advance_id,
                PartialCashAdvance.is_settled.is_(False),
            )
            updated = (
                self.db.query(CashAdvance)
                .filter(
                    CashAdvance.id == advance_id,
                    CashAdvance.status == CashAdvanceStatus.OPEN,
                    ~unsettled_exists,
                )
                .update(
                    {
                        CashAdvance.status: CashAdvanceStatus.RESOLVED,
                        CashAdvance.resolved_at: func.now(),
                        CashAdvance.counter_voucher_id: counter_voucher.id if counter_voucher else None,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                self._raise_unresolvable(advance_id, order_number)
            self.db.commit()
        except LedgerError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error resolving cash advance {advance_id}")
            raise

        self.db.refresh(advance)
        if counter_voucher is not None:
            self.voucher_service.invalidate_usage(
                {a.budget_id for a in counter_voucher.budget_allocations},
                {a.earmark_id for a in counter_voucher.earmark_allocations},
            )
            logger.info(f"Cash advance {advance.order_number} resolved, counter voucher {counter_voucher.voucher_no}")
        else:
            logger.info(f"Cash advance {advance.order_number} resolved without counter voucher")
        return advance, warnings

    def _counter_voucher_draft(self, advance: CashAdvance, diff: Decimal):
        draft_class = IncomeDraft if diff > 0 else ExpenseDraft
        in_sphere_mode = self.policy.classification_mode == SPHERE_MODE
        return draft_class(
            date=self.today(),
            sphere=self.policy.counter_voucher_sphere if in_sphere_mode else None,
            payment_method=PaymentMethod.BAR,
            tax_mode=TaxMode.GROSS,
            gross_amount=abs(diff),
            vat_rate=0,
            description=f"Cash advance {advance.order_number} settlement difference",
            counterparty=advance.holder_name,
        )

    # ==================== HELPERS ====================

    def _raise_unresolvable(self, advance_id: int, order_number: str) -> None:
        """Explain why the guarded RESOLVED transition matched no row."""
        status = self.db.query(CashAdvance.status).filter(CashAdvance.id == advance_id).scalar()
        if status is None:
            raise NotFoundError("Cash advance", advance_id)
        if status == CashAdvanceStatus.OPEN:
            unsettled = [
                partial_id
                for (partial_id,) in self.db.query(PartialCashAdvance.id).filter(
                    PartialCashAdvance.cash_advance_id == advance_id,
                    PartialCashAdvance.is_settled.is_(False),
                )
            ]
            raise UnsettledPartialsRemain(
                f"{len(unsettled)} partial(s) of {order_number} were added while resolving",
                {"cash_advance_id": advance_id, "partial_ids": unsettled},
            )
        raise AlreadyResolved(
            f"Cash advance {order_number} was resolved concurrently",
            {"cash_advance_id": advance_id},
        )

    def _get_partial(self, partial_id: int) -> PartialCashAdvance:
        partial = self.db.get(PartialCashAdvance, partial_id)
        if partial is None:
            raise NotFoundError("Partial cash advance", partial_id)
        return partial

    @staticmethod
    def _ensure_open(advance: CashAdvance) -> None:
        if advance.status != CashAdvanceStatus.OPEN:
            raise StateError(
                f"Cash advance {advance.order_number} is {advance.status.value} and can no longer be changed",
                {"cash_advance_id": advance.id, "status": advance.status.value},
            )

    @staticmethod
    def _positive(value, field: str) -> Decimal:
        amount = round2(D(value))
        if amount <= 0:
            raise InvalidAmount(f"{field} must be greater than 0", {field: str(amount)})
        return amount

    def _ensure_unique_order_number(self, order_number: str) -> None:
        exists = self.db.query(CashAdvance.id).filter(CashAdvance.order_number == order_number).first()
        if exists:
            raise ValidationError(f"Order number {order_number} is already in use", {"order_number": order_number})

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Error {action}")
            raise
