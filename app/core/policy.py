from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from app.core.config import Settings
from app.models.voucher import Sphere

SPHERE_MODE = "SPHERE"
CATEGORY_MODE = "CATEGORY"


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Rules the ledger services apply, handed in by the caller.

    `locked_until` closes every booking date up to and including that day.
    `today` is the clock used for new counter vouchers and OVERDUE checks.
    """

    classification_mode: str = SPHERE_MODE
    locked_until: Optional[date] = None
    earmark_allow_negative: bool = False
    enforce_planned_limit: bool = False
    allow_delete_settled_partials: bool = True
    counter_voucher_sphere: Sphere = Sphere.IDEELL
    today: Callable[[], date] = field(default=date.today)


def policy_from_settings(settings: Settings) -> LedgerPolicy:
    return LedgerPolicy(
        classification_mode=settings.CLASSIFICATION_MODE,
        locked_until=settings.PERIOD_LOCKED_UNTIL,
        earmark_allow_negative=settings.EARMARK_ALLOW_NEGATIVE,
        enforce_planned_limit=settings.CASH_ADVANCE_ENFORCE_PLANNED_LIMIT,
        allow_delete_settled_partials=settings.CASH_ADVANCE_ALLOW_DELETE_SETTLED,
        counter_voucher_sphere=Sphere(settings.COUNTER_VOUCHER_SPHERE),
    )
