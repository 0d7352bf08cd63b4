from fastapi import Depends
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.policy import LedgerPolicy, policy_from_settings
from app.services.cash_advance_service import CashAdvanceService
from app.services.usage_service import UsageCache, UsageService
from app.services.voucher_service import VoucherService


# One cache per process, shared by every request
usage_cache = UsageCache()


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_policy() -> LedgerPolicy:
    """Ledger rules built from settings; override in tests to change them."""
    return policy_from_settings(settings)


def get_usage_cache() -> UsageCache:
    return usage_cache


def get_voucher_service(
    db: Session = Depends(get_db),
    policy: LedgerPolicy = Depends(get_policy),
    cache: UsageCache = Depends(get_usage_cache),
) -> VoucherService:
    return VoucherService(db, policy, cache)


def get_usage_service(
    db: Session = Depends(get_db),
    cache: UsageCache = Depends(get_usage_cache),
) -> UsageService:
    return UsageService(db, cache)


def get_cash_advance_service(
    db: Session = Depends(get_db),
    policy: LedgerPolicy = Depends(get_policy),
    voucher_service: VoucherService = Depends(get_voucher_service),
) -> CashAdvanceService:
    return CashAdvanceService(db, policy, voucher_service)
