from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from app.common.exceptions import DuplicateTarget, SumExceedsTotal
from app.services.amount_calculator import D, round2

# Allowed overshoot of the allocation sum over the voucher total (0.1 %)
SUM_TOLERANCE = Decimal("1.001")


@dataclass(frozen=True)
class Allocation:
    target_id: int
    amount: Decimal


def validate_allocations(
    allocations: Iterable[Allocation],
    total,
    target_kind: str = "budget",
) -> List[Allocation]:
    """
    Check one allocation list of a voucher and return the entries that count.

    Rules, in order:
      1. a target may appear only once (DuplicateTarget)
      2. entries with amount <= 0 are placeholders and are dropped
      3. the remaining sum may not exceed total * 1.001 (SumExceedsTotal)
    """
    entries = list(allocations)

    seen = set()
    for entry in entries:
        if entry.target_id in seen:
            raise DuplicateTarget(entry.target_id, target_kind)
        seen.add(entry.target_id)

    valid = [
        Allocation(entry.target_id, round2(D(entry.amount)))
        for entry in entries
        if D(entry.amount) > 0
    ]

    total = D(total)
    allocated = sum((entry.amount for entry in valid), Decimal("0.00"))
    if allocated > total * SUM_TOLERANCE:
        raise SumExceedsTotal(allocated, total, target_kind)

    return valid
