"""
Usage figures for budgets and earmarks.

Both are read projections over the voucher allocation tables: one aggregate
query per call, split by voucher type. Whole-range results are cached per
target until the ledger invalidates them after a write; date-ranged figures
are always computed.
"""

import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.common.exceptions import NotFoundError
from app.logger_config import logger
from app.models.budget import Budget
from app.models.earmark import Earmark
from app.models.voucher import Voucher, VoucherBudget, VoucherEarmark, VoucherType
from app.services.amount_calculator import D, round2

PERCENT_CAP = Decimal("200")

CacheKey = Tuple[str, int]


@dataclass(frozen=True)
class BudgetUsage:
    planned: Decimal
    spent: Decimal
    inflow: Decimal
    remaining: Decimal
    percent: Decimal


@dataclass(frozen=True)
class EarmarkUsage:
    budget: Decimal
    allocated: Decimal
    released: Decimal
    balance: Decimal
    remaining: Decimal
    percent: Decimal


def usage_percent(consumed: Decimal, planned: Decimal) -> Decimal:
    """Share of `planned` consumed, kept within 0..200; 0 when nothing is planned."""
    if planned <= 0:
        return Decimal("0.00")
    return round2(max(Decimal("0"), min(PERCENT_CAP, consumed / planned * 100)))


def compute_budget_usage(planned, spent, inflow) -> BudgetUsage:
    planned, spent, inflow = round2(D(planned)), round2(D(spent)), round2(D(inflow))
    net_spent = spent - inflow
    return BudgetUsage(
        planned=planned,
        spent=spent,
        inflow=inflow,
        remaining=planned - net_spent,
        percent=usage_percent(net_spent, planned),
    )


def compute_earmark_usage(budget, allocated, released) -> EarmarkUsage:
    budget, allocated, released = round2(D(budget)), round2(D(allocated)), round2(D(released))
    return EarmarkUsage(
        budget=budget,
        allocated=allocated,
        released=released,
        balance=released - allocated,
        remaining=budget - allocated + released,
        percent=usage_percent(allocated - released, budget),
    )


class UsageCache:
    """
    Process-wide memo of whole-range usage figures; the ledger drops entries it touches.

    Every target carries a generation that invalidate() bumps. A reader takes
    the generation before it computes and hands it to put(); a figure computed
    before an invalidation is never stored.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, object] = {}
        self._generations: Dict[CacheKey, int] = {}

    def get(self, key: CacheKey):
        with self._lock:
            return self._entries.get(key)

    def generation(self, key: CacheKey) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def put(self, key: CacheKey, value, generation: int) -> bool:
        with self._lock:
            if self._generations.get(key, 0) != generation:
                return False
            self._entries[key] = value
            return True

    def invalidate(self, budget_ids: Iterable[int] = (), earmark_ids: Iterable[int] = ()) -> None:
        targets = {("budget", i) for i in budget_ids} | {("earmark", i) for i in earmark_ids}
        if not targets:
            return
        with self._lock:
            for key in targets:
                self._entries.pop(key, None)
                self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug(f"Usage cache invalidated for {sorted(targets)}")

    def __len__(self):
        with self._lock:
            return len(self._entries)


class UsageService:
    def __init__(self, db: Session, cache: Optional[UsageCache] = None):
        self.db = db
        self.cache = cache

    def _sums_by_type(self, link_model, target_column, target_id, date_from, date_to):
        query = (
            self.db.query(
                func.coalesce(func.sum(case((Voucher.type == VoucherType.OUT, link_model.amount), else_=0)), 0),
                func.coalesce(func.sum(case((Voucher.type == VoucherType.IN, link_model.amount), else_=0)), 0),
            )
            .select_from(link_model)
            .join(Voucher, Voucher.id == link_model.voucher_id)
            .filter(target_column == target_id)
        )
        if date_from is not None:
            query = query.filter(Voucher.date >= date_from)
        if date_to is not None:
            query = query.filter(Voucher.date <= date_to)
        out_sum, in_sum = query.one()
        return D(str(out_sum)), D(str(in_sum))

    def _cached(self, key: CacheKey, compute, date_from, date_to):
        # date-ranged figures are computed on every call
        if self.cache is None or date_from is not None or date_to is not None:
            return compute()
        hit = self.cache.get(key)
        if hit is not None:
            return hit
        generation = self.cache.generation(key)
        value = compute()
        if not self.cache.put(key, value, generation):
            logger.debug(f"Usage of {key} changed while computing; not cached")
        return value

    # ================= BUDGET USAGE ===================

    def budget_usage(
        self,
        budget_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> BudgetUsage:
        def compute():
            budget = self.db.get(Budget, budget_id)
            if budget is None:
                raise NotFoundError("Budget", budget_id)
            spent, inflow = self._sums_by_type(
                VoucherBudget, VoucherBudget.budget_id, budget_id, date_from, date_to
            )
            return compute_budget_usage(budget.amount_planned or 0, spent, inflow)

        return self._cached(("budget", budget_id), compute, date_from, date_to)

    # ================= EARMARK USAGE ===================

    def earmark_usage(
        self,
        earmark_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> EarmarkUsage:
        def compute():
            earmark = self.db.get(Earmark, earmark_id)
            if earmark is None:
                raise NotFoundError("Earmark", earmark_id)
            allocated, released = self._sums_by_type(
                VoucherEarmark, VoucherEarmark.earmark_id, earmark_id, date_from, date_to
            )
            return compute_earmark_usage(earmark.budget or 0, allocated, released)

        return self._cached(("earmark", earmark_id), compute, date_from, date_to)
