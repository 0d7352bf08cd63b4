"""
Domain errors of the ledger.

Every error derives from ValueError so callers that only know the
"ValueError means bad request" convention keep working. Routers use
to_http_exception() to pick the right status code.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class LedgerError(ValueError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ==================== VALIDATION ====================

class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"


class DuplicateTarget(ValidationError):
    code = "DUPLICATE_TARGET"

    def __init__(self, target_id: int, target_kind: str = "budget"):
        super().__init__(
            f"{target_kind.capitalize()} {target_id} is allocated more than once",
            {"target_id": target_id, "target_kind": target_kind},
        )
        self.target_id = target_id
        self.target_kind = target_kind


class SumExceedsTotal(ValidationError):
    code = "SUM_EXCEEDS_TOTAL"

    def __init__(self, allocated: Decimal, total: Decimal, target_kind: str = "budget"):
        super().__init__(
            f"Sum of {target_kind} allocations ({allocated}) exceeds voucher total ({total})",
            {"sum": str(allocated), "total": str(total), "target_kind": target_kind},
        )
        self.sum = allocated
        self.total = total
        self.target_kind = target_kind


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"


class InvalidTransfer(ValidationError):
    code = "INVALID_TRANSFER"


class InvalidClassification(ValidationError):
    code = "INVALID_CLASSIFICATION"


class OutsideTimeRange(ValidationError):
    code = "OUTSIDE_TIME_RANGE"


# ==================== STATE ====================

class StateError(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    code = "STATE_ERROR"


class PeriodLocked(StateError):
    code = "PERIOD_LOCKED"

    def __init__(self, locked_until, voucher_date):
        super().__init__(
            f"Period up to {locked_until} is closed; {voucher_date} cannot be booked or changed",
            {"locked_until": str(locked_until), "date": str(voucher_date)},
        )


class ReferencedElsewhere(StateError):
    code = "REFERENCED_ELSEWHERE"


class UnsettledPartialsRemain(StateError):
    code = "UNSETTLED_PARTIALS_REMAIN"


class AlreadyResolved(StateError):
    code = "ALREADY_RESOLVED"


class ConcurrentModification(StateError):
    code = "CONCURRENT_MODIFICATION"


class InactiveEarmark(StateError):
    code = "INACTIVE_EARMARK"


# ==================== NOT FOUND ====================

class NotFoundError(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


def to_http_exception(error: LedgerError) -> HTTPException:
    return HTTPException(
        status_code=error.status_code,
        detail={"code": error.code, "message": error.message, "details": error.details},
    )
