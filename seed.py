from app.core.config import settings
from app.core.database import Base, SessionLocal, engine
from app.core.policy import SPHERE_MODE, policy_from_settings
from app.models import (
    Budget, CashAdvance, CustomCategory, Earmark, PaymentMethod, Sphere, TaxMode, Voucher,
)
from app.schemas.voucher import (
    BudgetAllocationIn, EarmarkAllocationIn, ExpenseDraft, IncomeDraft, TransferDraft,
)
from app.services.cash_advance_service import CashAdvanceService
from app.services.voucher_service import VoucherService

from faker import Faker
from datetime import date, timedelta
from decimal import Decimal
import random

fake = Faker("de_DE")
Base.metadata.create_all(bind=engine)

db = SessionLocal()
policy = policy_from_settings(settings)
voucher_service = VoucherService(db, policy)
cash_advance_service = CashAdvanceService(db, policy, voucher_service)
year = date.today().year


def _money(low, high) -> Decimal:
    return Decimal(str(round(random.uniform(low, high), 2)))


def _classification():
    if policy.classification_mode == SPHERE_MODE:
        return {"sphere": random.choice(list(Sphere)), "category_id": None}
    return {"sphere": None, "category_id": random.choice(categories).id}


try:
    print("🔄 Clearing existing data...")
    db.query(CashAdvance).delete()
    for voucher in db.query(Voucher).all():
        db.delete(voucher)
    db.query(Budget).delete()
    db.query(Earmark).delete()
    db.query(CustomCategory).delete()
    db.commit()
    print("✅ Data cleared.")

    print("🔄 Creating categories, budgets and earmarks...")
    categories = [CustomCategory(name=name, color=fake.hex_color()) for name in ("Verwaltung", "Jugend", "Veranstaltungen", "Material")]
    budgets = [
        Budget(
            year=year,
            amount_planned=_money(1000, 8000),
            category_name=fake.unique.word().capitalize(),
            color=fake.hex_color(),
        )
        for _ in range(6)
    ]
    earmarks = [
        Earmark(
            code=f"Z{i:02d}",
            name=f"Zuschuss {fake.city()}",
            budget=_money(500, 5000),
            color=fake.hex_color(),
        )
        for i in range(1, 5)
    ]
    db.add_all(categories + budgets + earmarks)
    db.commit()
    print(f"✅ Seeded {len(categories)} categories, {len(budgets)} budgets, {len(earmarks)} earmarks")

    print("🔄 Booking vouchers...")
    booked = 0
    for _ in range(60):
        voucher_date = date(year, 1, 1) + timedelta(days=random.randint(0, 300))
        draft_class = random.choice([IncomeDraft, ExpenseDraft, ExpenseDraft])
        net = _money(5, 800)
        allocations = []
        if random.random() < 0.6:
            allocations = [BudgetAllocationIn(budget_id=random.choice(budgets).id, amount=net)]
        earmark_allocations = []
        if random.random() < 0.3:
            earmark_allocations = [EarmarkAllocationIn(earmark_id=random.choice(earmarks).id, amount=net)]

        draft = draft_class(
            date=voucher_date,
            payment_method=random.choice(list(PaymentMethod)),
            tax_mode=TaxMode.NET,
            net_amount=net,
            vat_rate=random.choice([0, 7, 19]),
            description=fake.sentence(nb_words=4),
            counterparty=fake.company(),
            budgets=allocations,
            earmarks=earmark_allocations,
            tags=random.sample(["Spende", "Beitrag", "Fahrtkosten", "Büro"], k=random.randint(0, 2)),
            **_classification(),
        )
        voucher_service.create(draft)
        booked += 1

    for _ in range(4):
        voucher_service.create(TransferDraft(
            date=date(year, 1, 1) + timedelta(days=random.randint(0, 300)),
            transfer_from=PaymentMethod.BANK,
            transfer_to=PaymentMethod.BAR,
            gross_amount=_money(50, 300),
            description="Bargeldabhebung",
            **_classification(),
        ))
        booked += 1
    print(f"✅ Seeded {booked} vouchers")

    print("🔄 Creating cash advances...")
    for _ in range(5):
        advance = cash_advance_service.create(
            holder_name=fake.name(),
            total_amount=_money(100, 600),
            purpose=fake.sentence(nb_words=3),
            due_date=date.today() + timedelta(days=random.randint(-20, 40)),
        )
        for _ in range(random.randint(1, 3)):
            partial, _warnings = cash_advance_service.add_partial(
                advance.id,
                recipient_name=fake.first_name(),
                amount=_money(20, 150),
            )
            if random.random() < 0.5:
                cash_advance_service.settle_partial(partial.id, partial.amount - _money(0, 10))
    print("✅ Seeded 5 cash advances")

    print("🎉 Seeding complete!")
except Exception as e:
    db.rollback()
    print(f"❌ Seeding failed: {e}")
    raise
finally:
    db.close()
