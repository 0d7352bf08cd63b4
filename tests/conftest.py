import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.database import Base, build_engine
from app.core.dependencies import get_db, get_policy, get_usage_cache
from app.core.policy import LedgerPolicy
from app.main import app as fastapi_app
from app.models import Budget, CustomCategory, Earmark
from app.services.cash_advance_service import CashAdvanceService
from app.services.usage_service import UsageCache, UsageService
from app.services.voucher_service import VoucherService

TODAY = date(2025, 6, 15)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def policy():
    return LedgerPolicy(today=lambda: TODAY)


@pytest.fixture
def cache():
    return UsageCache()


@pytest.fixture
def voucher_service(db, policy, cache):
    return VoucherService(db, policy, cache)


@pytest.fixture
def usage_service(db, cache):
    return UsageService(db, cache)


@pytest.fixture
def cash_advance_service(db, policy, voucher_service):
    return CashAdvanceService(db, policy, voucher_service)


@pytest.fixture
def client(session_factory, policy, cache):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_policy] = lambda: policy
    fastapi_app.dependency_overrides[get_usage_cache] = lambda: cache
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_budget(db):
    def _make(**fields):
        fields.setdefault("year", 2025)
        fields.setdefault("amount_planned", Decimal("1000.00"))
        budget = Budget(**fields)
        db.add(budget)
        db.commit()
        db.refresh(budget)
        return budget

    return _make


@pytest.fixture
def make_earmark(db):
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        fields.setdefault("code", f"Z{counter['n']:02d}")
        fields.setdefault("name", f"Earmark {counter['n']}")
        fields.setdefault("budget", Decimal("500.00"))
        earmark = Earmark(**fields)
        db.add(earmark)
        db.commit()
        db.refresh(earmark)
        return earmark

    return _make


@pytest.fixture
def make_category(db):
    def _make(name="Material"):
        category = CustomCategory(name=name)
        db.add(category)
        db.commit()
        db.refresh(category)
        return category

    return _make
