import enum

from sqlalchemy import (
    Column, Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class VoucherType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"


class PaymentMethod(str, enum.Enum):
    BAR = "BAR"
    BANK = "BANK"


class Sphere(str, enum.Enum):
    IDEELL = "IDEELL"
    ZWECK = "ZWECK"
    VERMOEGEN = "VERMOEGEN"
    WGB = "WGB"


class TaxMode(str, enum.Enum):
    NET = "NET"
    GROSS = "GROSS"


class Voucher(Base):
    """One booked transaction: income, expense or an internal BAR/BANK transfer."""
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(Integer, nullable=False)
    seq_no = Column(Integer, nullable=False)
    voucher_no = Column(String(20), unique=True, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    type = Column(Enum(VoucherType), nullable=False)
    sphere = Column(Enum(Sphere), nullable=True)
    category_id = Column(Integer, ForeignKey("custom_categories.id"), nullable=True)

    payment_method = Column(Enum(PaymentMethod), nullable=True)
    transfer_from = Column(Enum(PaymentMethod), nullable=True)
    transfer_to = Column(Enum(PaymentMethod), nullable=True)

    tax_mode = Column(Enum(TaxMode), nullable=False, default=TaxMode.NET)
    net_amount = Column(Numeric(15, 2), nullable=False, default=0)
    vat_rate = Column(Integer, nullable=False, default=0)
    vat_amount = Column(Numeric(15, 2), nullable=False, default=0)
    gross_amount = Column(Numeric(15, 2), nullable=False, default=0)

    description = Column(Text, nullable=True)
    counterparty = Column(String(200), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    category = relationship("CustomCategory", back_populates="vouchers")
    budget_allocations = relationship(
        "VoucherBudget",
        back_populates="voucher",
        order_by="VoucherBudget.position",
        cascade="all, delete-orphan",
    )
    earmark_allocations = relationship(
        "VoucherEarmark",
        back_populates="voucher",
        order_by="VoucherEarmark.position",
        cascade="all, delete-orphan",
    )
    tags = relationship("VoucherTag", back_populates="voucher", cascade="all, delete-orphan")
    taxonomy_terms = relationship("VoucherTaxonomyTerm", back_populates="voucher", cascade="all, delete-orphan")

    @property
    def tag_names(self):
        return sorted(t.name for t in self.tags)

    def __repr__(self):
        return f"<Voucher(voucher_no='{self.voucher_no}', type='{self.type}', gross={self.gross_amount})>"


class VoucherBudget(Base):
    __tablename__ = "voucher_budgets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("voucher_id", "budget_id", name="uq_voucher_budget"),)

    voucher = relationship("Voucher", back_populates="budget_allocations")
    budget = relationship("Budget", back_populates="allocations")


class VoucherEarmark(Base):
    __tablename__ = "voucher_earmarks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    earmark_id = Column(Integer, ForeignKey("earmarks.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("voucher_id", "earmark_id", name="uq_voucher_earmark"),)

    voucher = relationship("Voucher", back_populates="earmark_allocations")
    earmark = relationship("Earmark", back_populates="allocations")


class VoucherTag(Base):
    __tablename__ = "voucher_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)

    __table_args__ = (UniqueConstraint("voucher_id", "name", name="uq_voucher_tag"),)

    voucher = relationship("Voucher", back_populates="tags")


class VoucherTaxonomyTerm(Base):
    """Taxonomies and their terms live elsewhere; only the ids are kept here."""
    __tablename__ = "voucher_taxonomy_terms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    taxonomy_id = Column(Integer, nullable=False)
    term_id = Column(Integer, nullable=False)

    # at most one term per taxonomy
    __table_args__ = (UniqueConstraint("voucher_id", "taxonomy_id", name="uq_voucher_taxonomy"),)

    voucher = relationship("Voucher", back_populates="taxonomy_terms")


Index("ix_vouchers_date_seq", Voucher.date, Voucher.seq_no)
