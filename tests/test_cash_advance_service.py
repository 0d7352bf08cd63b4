from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from app.common.exceptions import (
    AlreadyResolved, InvalidAmount, ReferencedElsewhere, StateError, UnsettledPartialsRemain, ValidationError,
)
from app.core.policy import CATEGORY_MODE
from app.models import CashAdvanceStatus, PaymentMethod, Sphere, TaxMode, Voucher, VoucherType
from app.services.cash_advance_service import CashAdvanceService
from app.services.voucher_service import VoucherService


@pytest.fixture
def advance(cash_advance_service):
    return cash_advance_service.create(holder_name="Kim Weber", total_amount=Decimal("1000"), purpose="Summer camp")


class TestLifecycle:
    def test_create_generates_order_number(self, cash_advance_service):
        first = cash_advance_service.create(holder_name="A", total_amount=Decimal("10"))
        second = cash_advance_service.create(holder_name="B", total_amount=Decimal("10"))

        assert first.order_number == "BV-2025-0001"
        assert second.order_number == "BV-2025-0002"
        assert cash_advance_service.next_order_number() == "BV-2025-0003"
        assert first.status == CashAdvanceStatus.OPEN

    def test_order_number_must_be_unique(self, cash_advance_service):
        cash_advance_service.create(holder_name="A", total_amount=Decimal("10"), order_number="BV-X")

        with pytest.raises(ValidationError):
            cash_advance_service.create(holder_name="B", total_amount=Decimal("10"), order_number="BV-X")

    def test_total_must_be_positive(self, cash_advance_service):
        with pytest.raises(InvalidAmount):
            cash_advance_service.create(holder_name="A", total_amount=Decimal("0"))

    def test_update_ignores_status(self, cash_advance_service, advance):
        updated = cash_advance_service.update(advance.id, notes="bring receipts", status=CashAdvanceStatus.RESOLVED)

        assert updated.notes == "bring receipts"
        assert updated.status == CashAdvanceStatus.OPEN

    def test_overdue_is_derived(self, cash_advance_service):
        late = cash_advance_service.create(holder_name="A", total_amount=Decimal("10"), due_date=date(2025, 6, 1))
        on_time = cash_advance_service.create(holder_name="B", total_amount=Decimal("10"), due_date=cash_advance_service.today())

        assert cash_advance_service.figures(late).status == CashAdvanceStatus.OVERDUE
        assert late.status == CashAdvanceStatus.OPEN
        assert cash_advance_service.figures(on_time).status == CashAdvanceStatus.OPEN

        overdue, total = cash_advance_service.list_advances(status=CashAdvanceStatus.OVERDUE)
        assert total == 1 and overdue[0].id == late.id
        open_rows, _ = cash_advance_service.list_advances(status=CashAdvanceStatus.OPEN)
        assert [a.id for a in open_rows] == [on_time.id]

    def test_stats(self, cash_advance_service):
        cash_advance_service.create(holder_name="A", total_amount=Decimal("10"), due_date=date(2025, 6, 1))
        cash_advance_service.create(holder_name="B", total_amount=Decimal("25"))

        stats = cash_advance_service.stats()

        assert stats["total_open"] == 1
        assert stats["total_overdue"] == 1
        assert stats["open_amount"] == Decimal("25.00")
        assert stats["overdue_amount"] == Decimal("10.00")

    def test_delete_open_advance(self, cash_advance_service, advance, db):
        cash_advance_service.add_partial(advance.id, "Lea", Decimal("50"))

        cash_advance_service.delete(advance.id)

        assert cash_advance_service.list_advances()[1] == 0


class TestPartials:
    def test_figures(self, cash_advance_service, advance):
        p1, _ = cash_advance_service.add_partial(advance.id, "Lea", Decimal("400"))
        cash_advance_service.add_partial(advance.id, "Tom", Decimal("300"))
        cash_advance_service.settle_partial(p1.id, Decimal("350"))

        figures = cash_advance_service.figures(cash_advance_service.get(advance.id))

        assert figures.total_planned == Decimal("700.00")
        assert figures.total_settled == Decimal("350.00")
        assert figures.planned_remaining == Decimal("300.00")
        assert figures.actual_remaining == Decimal("650.00")
        assert figures.coverage == Decimal("0.3500")

    def test_overrun_warns_by_default(self, cash_advance_service, advance):
        _, warnings = cash_advance_service.add_partial(advance.id, "Lea", Decimal("1200"))

        assert len(warnings) == 1

    def test_overrun_rejected_when_enforced(self, db, policy, advance):
        service = CashAdvanceService(db, replace(policy, enforce_planned_limit=True))

        with pytest.raises(ValidationError):
            service.add_partial(advance.id, "Lea", Decimal("1200"))

    def test_recipient_required(self, cash_advance_service, advance):
        with pytest.raises(ValidationError):
            cash_advance_service.add_partial(advance.id, "  ", Decimal("10"))

    def test_negative_settlement_rejected(self, cash_advance_service, advance):
        partial, _ = cash_advance_service.add_partial(advance.id, "Lea", Decimal("10"))

        with pytest.raises(InvalidAmount):
            cash_advance_service.settle_partial(partial.id, Decimal("-1"))

    def test_delete_settled_partial_policy(self, db, policy, cash_advance_service, advance):
        partial, _ = cash_advance_service.add_partial(advance.id, "Lea", Decimal("10"))
        cash_advance_service.settle_partial(partial.id, Decimal("10"))
        strict = CashAdvanceService(db, replace(policy, allow_delete_settled_partials=False))

        with pytest.raises(StateError):
            strict.delete_partial(partial.id)

        cash_advance_service.delete_partial(partial.id)
        assert cash_advance_service.get(advance.id).partials == []


class TestResolve:
    def test_difference_booked_as_income(self, cash_advance_service, advance, db):
        p1, _ = cash_advance_service.add_partial(advance.id, "P1", Decimal("400"))
        p2, _ = cash_advance_service.add_partial(advance.id, "P2", Decimal("300"))
        cash_advance_service.settle_partial(p1.id, Decimal("500"))
        cash_advance_service.settle_partial(p2.id, Decimal("300"))

        resolved, _ = cash_advance_service.resolve(advance.id, create_counter_voucher=True)

        assert resolved.status == CashAdvanceStatus.RESOLVED
        assert resolved.resolved_at is not None
        voucher = db.get(Voucher, resolved.counter_voucher_id)
        assert voucher.type == VoucherType.IN
        assert voucher.gross_amount == Decimal("200.00")
        assert voucher.payment_method == PaymentMethod.BAR
        assert voucher.tax_mode == TaxMode.GROSS
        assert voucher.vat_rate == 0
        assert voucher.date == cash_advance_service.today()
        assert voucher.sphere == Sphere.IDEELL

    def test_overspent_advance_books_expense(self, cash_advance_service, advance, db):
        partial, _ = cash_advance_service.add_partial(advance.id, "P1", Decimal("1000"))
        cash_advance_service.settle_partial(partial.id, Decimal("1100"))

        resolved, _ = cash_advance_service.resolve(advance.id)

        voucher = db.get(Voucher, resolved.counter_voucher_id)
        assert voucher.type == VoucherType.OUT
        assert voucher.gross_amount == Decimal("100.00")

    def test_no_counter_voucher_when_even(self, cash_advance_service, advance, db):
        partial, _ = cash_advance_service.add_partial(advance.id, "P1", Decimal("1000"))
        cash_advance_service.settle_partial(partial.id, Decimal("1000"))

        resolved, _ = cash_advance_service.resolve(advance.id)

        assert resolved.counter_voucher_id is None
        assert db.query(Voucher).count() == 0

    def test_counter_voucher_can_be_skipped(self, cash_advance_service, advance, db):
        cash_advance_service.resolve(advance.id, create_counter_voucher=False)

        assert db.query(Voucher).count() == 0

    def test_unsettled_partials_block(self, cash_advance_service, advance, db):
        cash_advance_service.add_partial(advance.id, "P1", Decimal("400"))

        with pytest.raises(UnsettledPartialsRemain):
            cash_advance_service.resolve(advance.id)

        assert cash_advance_service.get(advance.id).status == CashAdvanceStatus.OPEN
        assert db.query(Voucher).count() == 0

    def test_resolve_only_once(self, cash_advance_service, advance):
        cash_advance_service.resolve(advance.id, create_counter_voucher=False)

        with pytest.raises(AlreadyResolved):
            cash_advance_service.resolve(advance.id)

    def test_resolved_advance_is_frozen(self, cash_advance_service, advance):
        partial, _ = cash_advance_service.add_partial(advance.id, "P1", Decimal("100"))
        cash_advance_service.settle_partial(partial.id, Decimal("100"))
        cash_advance_service.resolve(advance.id)

        with pytest.raises(StateError):
            cash_advance_service.add_partial(advance.id, "P2", Decimal("10"))
        with pytest.raises(StateError):
            cash_advance_service.update(advance.id, notes="late")
        with pytest.raises(StateError):
            cash_advance_service.delete(advance.id)
        with pytest.raises(StateError):
            cash_advance_service.delete_partial(partial.id)

    def test_counter_voucher_protected(self, cash_advance_service, voucher_service, advance):
        resolved, _ = cash_advance_service.resolve(advance.id)

        with pytest.raises(ReferencedElsewhere):
            voucher_service.delete(resolved.counter_voucher_id)

    def test_category_mode_counter_voucher(self, db, policy):
        category_policy = replace(policy, classification_mode=CATEGORY_MODE)
        service = CashAdvanceService(db, category_policy, VoucherService(db, category_policy))
        advance = service.create(holder_name="A", total_amount=Decimal("50"))

        resolved, _ = service.resolve(advance.id)

        voucher = db.get(Voucher, resolved.counter_voucher_id)
        assert voucher.sphere is None
        assert voucher.category_id is None
        assert voucher.gross_amount == Decimal("50.00")


class TestResolveRaces:
    def test_partial_added_while_resolving_blocks_resolution(self, db, policy, cash_advance_service, advance, monkeypatch):
        other_cashier = CashAdvanceService(db, policy)
        figures = cash_advance_service.figures

        def figures_after_late_partial(current):
            other_cashier.add_partial(advance.id, "Late", Decimal("40"))
            return figures(current)

        monkeypatch.setattr(cash_advance_service, "figures", figures_after_late_partial)
        with pytest.raises(UnsettledPartialsRemain):
            cash_advance_service.resolve(advance.id, create_counter_voucher=False)
        monkeypatch.undo()

        stored = cash_advance_service.get(advance.id)
        assert stored.status == CashAdvanceStatus.OPEN
        assert stored.resolved_at is None
        assert [p.recipient_name for p in stored.partials if not p.is_settled] == ["Late"]

    def test_concurrent_resolution_discards_counter_voucher(self, db, policy, cash_advance_service, advance, monkeypatch):
        other_cashier = CashAdvanceService(db, policy)
        figures = cash_advance_service.figures

        def figures_after_other_resolve(current):
            other_cashier.resolve(advance.id, create_counter_voucher=False)
            return figures(current)

        monkeypatch.setattr(cash_advance_service, "figures", figures_after_other_resolve)
        with pytest.raises(AlreadyResolved):
            cash_advance_service.resolve(advance.id, create_counter_voucher=True)
        monkeypatch.undo()

        stored = cash_advance_service.get(advance.id)
        assert stored.status == CashAdvanceStatus.RESOLVED
        assert stored.counter_voucher_id is None
        assert db.query(Voucher).count() == 0
