from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app.common.exceptions import (
    ConcurrentModification, DuplicateTarget, InactiveEarmark, InvalidClassification, NotFoundError,
    OutsideTimeRange, PeriodLocked, ReferencedElsewhere, SumExceedsTotal,
)
from app.core.policy import CATEGORY_MODE
from app.models import CashAdvance, PaymentMethod, Sphere, TaxMode, Voucher, VoucherBudget, VoucherType
from app.schemas.voucher import (
    BudgetAllocationIn, EarmarkAllocationIn, ExpenseDraft, IncomeDraft, SortDirection, TaxonomyTermIn,
    TransferDraft, VoucherFilter, VoucherPatch, VoucherSortBy,
)
from app.services.numbering import next_voucher_sequence
from app.services.voucher_service import VoucherService, is_voucher_no_collision


def expense(**overrides):
    fields = dict(
        date=date(2025, 2, 10),
        sphere=Sphere.IDEELL,
        payment_method=PaymentMethod.BANK,
        net_amount=Decimal("100"),
        vat_rate=19,
    )
    fields.update(overrides)
    return ExpenseDraft(**fields)


def income(**overrides):
    fields = dict(
        date=date(2025, 2, 10),
        sphere=Sphere.IDEELL,
        payment_method=PaymentMethod.BAR,
        net_amount=Decimal("100"),
        vat_rate=0,
    )
    fields.update(overrides)
    return IncomeDraft(**fields)


class TestCreate:
    def test_net_voucher_amounts_and_number(self, voucher_service):
        voucher, warnings = voucher_service.create(expense())

        assert voucher.gross_amount == Decimal("119.00")
        assert voucher.vat_amount == Decimal("19.00")
        assert voucher.voucher_no == "2025-02-10_0001"
        assert voucher.version == 1
        assert warnings == []

    def test_numbers_run_per_day(self, voucher_service):
        first, _ = voucher_service.create(expense())
        second, _ = voucher_service.create(expense())
        other_day, _ = voucher_service.create(expense(date=date(2025, 2, 11)))

        assert first.voucher_no == "2025-02-10_0001"
        assert second.voucher_no == "2025-02-10_0002"
        assert other_day.voucher_no == "2025-02-11_0001"

    def test_duplicate_budget_rejected_without_write(self, voucher_service, make_budget, db):
        budget = make_budget()
        draft = expense(
            net_amount=Decimal("100"),
            vat_rate=0,
            budgets=[BudgetAllocationIn(budget_id=budget.id, amount=60), BudgetAllocationIn(budget_id=budget.id, amount=40)],
        )

        with pytest.raises(DuplicateTarget) as exc:
            voucher_service.create(draft)

        assert exc.value.target_id == budget.id
        assert db.query(Voucher).count() == 0

    def test_allocation_sum_bound(self, voucher_service, make_budget):
        b1, b2 = make_budget(), make_budget()
        draft = expense(
            vat_rate=0,
            budgets=[BudgetAllocationIn(budget_id=b1.id, amount=70), BudgetAllocationIn(budget_id=b2.id, amount=40)],
        )

        with pytest.raises(SumExceedsTotal) as exc:
            voucher_service.create(draft)

        assert exc.value.sum == Decimal("110.00")
        assert exc.value.total == Decimal("100.00")

    def test_budget_time_range_enforced(self, voucher_service, make_budget):
        budget = make_budget(enforce_time_range=True, start_date=date(2025, 1, 1), end_date=date(2025, 3, 31))
        draft = expense(date=date(2025, 4, 1), budgets=[BudgetAllocationIn(budget_id=budget.id, amount=50)])

        with pytest.raises(OutsideTimeRange):
            voucher_service.create(draft)

    def test_budget_time_range_not_enforced_when_flag_off(self, voucher_service, make_budget):
        budget = make_budget(start_date=date(2025, 1, 1), end_date=date(2025, 3, 31))
        draft = expense(date=date(2025, 4, 1), budgets=[BudgetAllocationIn(budget_id=budget.id, amount=50)])

        voucher, _ = voucher_service.create(draft)

        assert voucher.budget_allocations[0].budget_id == budget.id

    def test_earmark_time_range_enforced(self, voucher_service, make_earmark, db):
        earmark = make_earmark(enforce_time_range=True, start_date=date(2025, 3, 1), end_date=date(2025, 12, 31))
        draft = expense(date=date(2025, 2, 28), earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=50)])

        with pytest.raises(OutsideTimeRange) as exc:
            voucher_service.create(draft)

        assert exc.value.details["kind"] == "earmark"
        assert db.query(Voucher).count() == 0

    def test_earmark_time_range_inclusive(self, voucher_service, make_earmark):
        earmark = make_earmark(enforce_time_range=True, start_date=date(2025, 3, 1), end_date=date(2025, 3, 31))

        voucher, _ = voucher_service.create(
            expense(date=date(2025, 3, 31), earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=50)])
        )

        assert voucher.earmark_allocations[0].earmark_id == earmark.id

    def test_taken_number_is_skipped(self, voucher_service, monkeypatch):
        voucher_service.create(expense())
        sequences = iter([1])

        def stale_sequence(db, voucher_date):
            return next(sequences, None) or next_voucher_sequence(db, voucher_date)

        monkeypatch.setattr("app.services.voucher_service.next_voucher_sequence", stale_sequence)
        voucher, _ = voucher_service.create(expense())

        assert voucher.voucher_no == "2025-02-10_0002"

    def test_unknown_budget(self, voucher_service):
        with pytest.raises(NotFoundError):
            voucher_service.create(expense(budgets=[BudgetAllocationIn(budget_id=999, amount=10)]))

    def test_inactive_earmark(self, voucher_service, make_earmark):
        earmark = make_earmark(is_active=False)

        with pytest.raises(InactiveEarmark):
            voucher_service.create(expense(earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=10)]))

    def test_placeholder_allocations_dropped(self, voucher_service, make_budget):
        b1, b2 = make_budget(), make_budget()
        voucher, _ = voucher_service.create(expense(budgets=[
            BudgetAllocationIn(budget_id=b1.id, amount=0),
            BudgetAllocationIn(budget_id=b2.id, amount=25),
        ]))

        assert [(a.budget_id, a.amount) for a in voucher.budget_allocations] == [(b2.id, Decimal("25.00"))]

    def test_earmark_overdraw_warns(self, voucher_service, make_earmark):
        earmark = make_earmark(budget=Decimal("50"))

        voucher, warnings = voucher_service.create(
            expense(earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=80)])
        )

        assert voucher.id is not None
        assert len(warnings) == 1
        assert earmark.code in warnings[0]

    def test_earmark_overdraw_allowed_by_policy(self, db, policy, make_earmark):
        service = VoucherService(db, replace(policy, earmark_allow_negative=True))
        earmark = make_earmark(budget=Decimal("50"))

        _, warnings = service.create(expense(earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=80)]))

        assert warnings == []

    def test_transfer(self, voucher_service):
        voucher, _ = voucher_service.create(TransferDraft(
            date=date(2025, 2, 10),
            sphere=Sphere.VERMOEGEN,
            transfer_from=PaymentMethod.BANK,
            transfer_to=PaymentMethod.BAR,
            gross_amount=Decimal("300"),
        ))

        assert voucher.type == VoucherType.TRANSFER
        assert voucher.payment_method is None
        assert voucher.net_amount == voucher.gross_amount == Decimal("300.00")
        assert voucher.vat_rate == 0

    def test_tags_and_terms(self, voucher_service):
        voucher, _ = voucher_service.create(expense(
            tags=[" Fahrt ", "Büro", "Fahrt"],
            taxonomy_terms=[TaxonomyTermIn(taxonomy_id=1, term_id=3)],
        ))

        assert voucher.tag_names == ["Büro", "Fahrt"]
        assert [(t.taxonomy_id, t.term_id) for t in voucher.taxonomy_terms] == [(1, 3)]

    def test_period_lock(self, db, policy):
        service = VoucherService(db, replace(policy, locked_until=date(2025, 3, 31)))

        with pytest.raises(PeriodLocked):
            service.create(expense(date=date(2025, 3, 31)))
        assert db.query(Voucher).count() == 0

    def test_sphere_mode_rejects_category(self, voucher_service, make_category):
        category = make_category()

        with pytest.raises(InvalidClassification):
            voucher_service.create(expense(category_id=category.id))

    def test_category_mode(self, db, policy, make_category):
        service = VoucherService(db, replace(policy, classification_mode=CATEGORY_MODE))
        category = make_category()

        with pytest.raises(InvalidClassification):
            service.create(expense())

        voucher, _ = service.create(expense(sphere=None, category_id=category.id))
        assert voucher.sphere is None
        assert voucher.category_id == category.id

    def test_category_mode_unknown_category(self, db, policy):
        service = VoucherService(db, replace(policy, classification_mode=CATEGORY_MODE))

        with pytest.raises(NotFoundError):
            service.create(expense(sphere=None, category_id=42))


class TestUpdate:
    def test_patch_amount_keeps_rest(self, voucher_service):
        voucher, _ = voucher_service.create(expense(description="Paper"))

        updated, warnings = voucher_service.update(voucher.id, VoucherPatch(net_amount=Decimal("200")))

        assert updated.gross_amount == Decimal("238.00")
        assert updated.description == "Paper"
        assert updated.version == 2
        assert warnings == []

    def test_explicit_null_clears_field(self, voucher_service):
        voucher, _ = voucher_service.create(expense(description="Paper"))

        updated, _ = voucher_service.update(voucher.id, VoucherPatch(description=None))

        assert updated.description is None

    def test_mode_switch_carries_value(self, voucher_service):
        voucher, _ = voucher_service.create(expense())

        updated, _ = voucher_service.update(voucher.id, VoucherPatch(tax_mode=TaxMode.GROSS))

        assert updated.tax_mode == TaxMode.GROSS
        assert updated.gross_amount == Decimal("119.00")
        assert updated.vat_rate == 0

    def test_date_change_renumbers_with_warning(self, voucher_service):
        voucher, _ = voucher_service.create(expense())
        voucher_service.create(expense(date=date(2025, 5, 1)))

        updated, warnings = voucher_service.update(voucher.id, VoucherPatch(date=date(2025, 5, 1)))

        assert updated.voucher_no == "2025-05-01_0002"
        assert any("2025-02-10_0001" in w for w in warnings)

    def test_reallocation_updates_rows_in_place(self, voucher_service, make_budget, db):
        b1, b2 = make_budget(), make_budget()
        voucher, _ = voucher_service.create(expense(budgets=[BudgetAllocationIn(budget_id=b1.id, amount=50)]))

        updated, _ = voucher_service.update(voucher.id, VoucherPatch(budgets=[
            BudgetAllocationIn(budget_id=b2.id, amount=30),
            BudgetAllocationIn(budget_id=b1.id, amount=60),
        ]))

        assert [(a.budget_id, a.amount) for a in updated.budget_allocations] == [
            (b2.id, Decimal("30.00")),
            (b1.id, Decimal("60.00")),
        ]
        assert db.query(VoucherBudget).count() == 2

    def test_invalid_patch_changes_nothing(self, voucher_service, make_budget, db):
        budget = make_budget()
        voucher, _ = voucher_service.create(expense(budgets=[BudgetAllocationIn(budget_id=budget.id, amount=50)]))

        with pytest.raises(SumExceedsTotal):
            voucher_service.update(voucher.id, VoucherPatch(net_amount=Decimal("10")))

        db.expire_all()
        stored = db.get(Voucher, voucher.id)
        assert stored.gross_amount == Decimal("119.00")
        assert stored.version == 1

    def test_stale_expected_version(self, voucher_service):
        voucher, _ = voucher_service.create(expense())
        voucher_service.update(voucher.id, VoucherPatch(description="first", expected_version=1))

        with pytest.raises(ConcurrentModification):
            voucher_service.update(voucher.id, VoucherPatch(description="second", expected_version=1))

    def test_locked_old_date_blocks_update(self, db, policy):
        voucher, _ = VoucherService(db, policy).create(expense(date=date(2025, 1, 15)))
        locked = VoucherService(db, replace(policy, locked_until=date(2025, 1, 31)))

        with pytest.raises(PeriodLocked):
            locked.update(voucher.id, VoucherPatch(date=date(2025, 2, 15)))

    def test_locked_new_date_blocks_update(self, db, policy):
        voucher, _ = VoucherService(db, policy).create(expense(date=date(2025, 2, 15)))
        locked = VoucherService(db, replace(policy, locked_until=date(2025, 1, 31)))

        with pytest.raises(PeriodLocked):
            locked.update(voucher.id, VoucherPatch(date=date(2025, 1, 15)))

    def test_renumber_skips_taken_number(self, voucher_service, monkeypatch):
        voucher, _ = voucher_service.create(expense())
        voucher_service.create(expense(date=date(2025, 5, 1)))
        sequences = iter([1])

        def stale_sequence(db, voucher_date):
            return next(sequences, None) or next_voucher_sequence(db, voucher_date)

        monkeypatch.setattr("app.services.voucher_service.next_voucher_sequence", stale_sequence)
        updated, warnings = voucher_service.update(voucher.id, VoucherPatch(date=date(2025, 5, 1), description="moved"))

        assert updated.voucher_no == "2025-05-01_0002"
        assert updated.date == date(2025, 5, 1)
        assert updated.description == "moved"
        assert updated.version == 2
        assert any("2025-05-01_0002" in w for w in warnings)

    def test_switch_to_transfer(self, voucher_service):
        voucher, _ = voucher_service.create(expense())

        updated, _ = voucher_service.update(voucher.id, VoucherPatch(
            type=VoucherType.TRANSFER,
            transfer_from=PaymentMethod.BAR,
            transfer_to=PaymentMethod.BANK,
        ))

        assert updated.payment_method is None
        assert updated.vat_rate == 0
        assert updated.net_amount == updated.gross_amount == Decimal("119.00")

    def test_unknown_voucher(self, voucher_service):
        with pytest.raises(NotFoundError):
            voucher_service.update(12345, VoucherPatch(description="x"))


class TestDelete:
    def test_delete_removes_children(self, voucher_service, make_budget, db):
        budget = make_budget()
        voucher, _ = voucher_service.create(expense(
            budgets=[BudgetAllocationIn(budget_id=budget.id, amount=10)],
            tags=["x"],
        ))

        voucher_service.delete(voucher.id)

        assert db.query(Voucher).count() == 0
        assert db.query(VoucherBudget).count() == 0

    def test_counter_voucher_cannot_be_deleted(self, voucher_service, db):
        voucher, _ = voucher_service.create(income())
        db.add(CashAdvance(order_number="BV-2025-0001", holder_name="Kim", total_amount=Decimal("10"), counter_voucher_id=voucher.id))
        db.commit()

        with pytest.raises(ReferencedElsewhere):
            voucher_service.delete(voucher.id)

    def test_locked_voucher_cannot_be_deleted(self, db, policy):
        voucher, _ = VoucherService(db, policy).create(expense(date=date(2025, 1, 15)))

        with pytest.raises(PeriodLocked):
            VoucherService(db, replace(policy, locked_until=date(2025, 1, 31))).delete(voucher.id)


class TestList:
    @pytest.fixture
    def journal(self, voucher_service, make_budget, make_earmark):
        budget = make_budget(name="Office")
        earmark = make_earmark(code="Z-ART")
        voucher_service.create(expense(date=date(2025, 1, 5), net_amount=Decimal("10"), vat_rate=0, description="Stamps"))
        voucher_service.create(expense(
            date=date(2025, 1, 6), net_amount=Decimal("50"), vat_rate=0, counterparty="Paper Ltd",
            budgets=[BudgetAllocationIn(budget_id=budget.id, amount=50)], tags=["Büro"],
        ))
        voucher_service.create(income(
            date=date(2025, 2, 1), net_amount=Decimal("200"),
            earmarks=[EarmarkAllocationIn(earmark_id=earmark.id, amount=200)],
        ))
        voucher_service.create(TransferDraft(
            date=date(2025, 2, 2), sphere=Sphere.IDEELL,
            transfer_from=PaymentMethod.BANK, transfer_to=PaymentMethod.BAR, gross_amount=Decimal("40"),
        ))
        return budget, earmark

    def test_totals_cover_all_matches(self, voucher_service, journal):
        rows, total, totals = voucher_service.list_vouchers(VoucherFilter(), limit=2)

        assert len(rows) == 2
        assert total == 4
        assert totals["gross"] == Decimal("300.00")

    def test_default_sort_is_newest_first(self, voucher_service, journal):
        rows, _, _ = voucher_service.list_vouchers()

        assert [v.date for v in rows] == sorted((v.date for v in rows), reverse=True)

    def test_payment_filter_matches_transfer_sides(self, voucher_service, journal):
        rows, total, _ = voucher_service.list_vouchers(VoucherFilter(payment_method=PaymentMethod.BAR))

        assert total == 2
        assert {v.type for v in rows} == {VoucherType.IN, VoucherType.TRANSFER}

    def test_budget_earmark_and_tag_filters(self, voucher_service, journal):
        budget, earmark = journal

        assert voucher_service.list_vouchers(VoucherFilter(budget_id=budget.id))[1] == 1
        assert voucher_service.list_vouchers(VoucherFilter(earmark_id=earmark.id))[1] == 1
        assert voucher_service.list_vouchers(VoucherFilter(tag="Büro"))[1] == 1

    def test_free_text(self, voucher_service, journal):
        rows, total, _ = voucher_service.list_vouchers(VoucherFilter(q="paper"))

        assert total == 1
        assert rows[0].counterparty == "Paper Ltd"

    def test_sort_by_gross_ascending(self, voucher_service, journal):
        rows, _, _ = voucher_service.list_vouchers(sort_by=VoucherSortBy.gross, direction=SortDirection.ASC)

        assert [v.gross_amount for v in rows] == [Decimal("10.00"), Decimal("40.00"), Decimal("50.00"), Decimal("200.00")]

    def test_sort_by_budget_label(self, voucher_service, journal):
        rows, _, _ = voucher_service.list_vouchers(sort_by=VoucherSortBy.budget, direction=SortDirection.DESC)

        assert rows[0].budget_allocations[0].budget.label == "Office"

    def test_date_range(self, voucher_service, journal):
        _, total, totals = voucher_service.list_vouchers(
            VoucherFilter(date_from=date(2025, 2, 1), date_to=date(2025, 2, 28))
        )

        assert total == 2
        assert totals["gross"] == Decimal("240.00")

    def test_offset_pagination(self, voucher_service, journal):
        first_page, total, _ = voucher_service.list_vouchers(skip=0, limit=2)
        second_page, _, _ = voucher_service.list_vouchers(skip=2, limit=2)
        past_end, _, _ = voucher_service.list_vouchers(skip=4, limit=2)

        assert total == 4
        assert [v.date for v in first_page] == [date(2025, 2, 2), date(2025, 2, 1)]
        assert [v.date for v in second_page] == [date(2025, 1, 6), date(2025, 1, 5)]
        assert past_end == []

    def test_sort_by_earmark_code(self, voucher_service, journal):
        rows, _, _ = voucher_service.list_vouchers(sort_by=VoucherSortBy.earmark, direction=SortDirection.DESC)

        assert rows[0].earmark_allocations[0].earmark.code == "Z-ART"
        assert all(not v.earmark_allocations for v in rows[1:])

    def test_sort_by_payment_method_uses_transfer_source(self, voucher_service, journal):
        rows, _, _ = voucher_service.list_vouchers(sort_by=VoucherSortBy.payment, direction=SortDirection.ASC)

        assert [v.payment_method or v.transfer_from for v in rows] == [
            PaymentMethod.BANK, PaymentMethod.BANK, PaymentMethod.BANK, PaymentMethod.BAR,
        ]
        assert rows[-1].type == VoucherType.IN

    def test_sort_by_sphere(self, voucher_service):
        voucher_service.create(expense(sphere=Sphere.ZWECK))
        voucher_service.create(expense(sphere=Sphere.IDEELL))

        rows, _, _ = voucher_service.list_vouchers(sort_by=VoucherSortBy.category, direction=SortDirection.ASC)

        assert [v.sphere for v in rows] == [Sphere.IDEELL, Sphere.ZWECK]

    def test_sort_by_category_name(self, db, policy, make_category):
        service = VoucherService(db, replace(policy, classification_mode=CATEGORY_MODE))
        travel, books = make_category("Travel"), make_category("Books")
        service.create(expense(sphere=None, category_id=travel.id))
        service.create(expense(sphere=None, category_id=books.id))

        rows, _, _ = service.list_vouchers(sort_by=VoucherSortBy.category, direction=SortDirection.ASC)

        assert [v.category_id for v in rows] == [books.id, travel.id]


class TestNumberCollision:
    def test_voucher_no_violation(self):
        error = IntegrityError("UPDATE vouchers", {}, Exception("UNIQUE constraint failed: vouchers.voucher_no"))

        assert is_voucher_no_collision(error)

    def test_other_violation(self):
        error = IntegrityError("INSERT INTO voucher_tags", {}, Exception("FOREIGN KEY constraint failed"))

        assert not is_voucher_no_collision(error)

    def test_other_violation_is_not_retried(self, voucher_service, db, monkeypatch):
        attempts = []

        def counted_sequence(session, voucher_date):
            attempts.append(voucher_date)
            return next_voucher_sequence(session, voucher_date)

        monkeypatch.setattr("app.services.voucher_service.next_voucher_sequence", counted_sequence)
        # skips validation, so the same tag reaches the unique (voucher, tag) constraint twice
        draft = ExpenseDraft.model_construct(
            date=date(2025, 2, 10),
            sphere=Sphere.IDEELL,
            payment_method=PaymentMethod.BANK,
            net_amount=Decimal("100"),
            vat_rate=0,
            tags=["Fahrt", "Fahrt"],
        )

        with pytest.raises(IntegrityError):
            voucher_service.create(draft)

        assert len(attempts) == 1
        assert db.query(Voucher).count() == 0
