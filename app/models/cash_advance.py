import enum

from sqlalchemy import Boolean, Column, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class CashAdvanceStatus(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    # never stored; reported for OPEN advances past their due date
    OVERDUE = "OVERDUE"


class CashAdvance(Base):
    """Lump sum drawn by a cashier and handed out to recipients as partials."""
    __tablename__ = "cash_advances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(30), unique=True, nullable=False)
    holder_name = Column(String(200), nullable=False)
    purpose = Column(Text, nullable=True)
    total_amount = Column(Numeric(15, 2), nullable=False)
    status = Column(Enum(CashAdvanceStatus), nullable=False, default=CashAdvanceStatus.OPEN)
    due_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    counter_voucher_id = Column(Integer, ForeignKey("vouchers.id", ondelete="RESTRICT"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    partials = relationship(
        "PartialCashAdvance",
        back_populates="cash_advance",
        order_by="PartialCashAdvance.issued_at",
        cascade="all, delete-orphan",
    )
    counter_voucher = relationship("Voucher")

    def __repr__(self):
        return f"<CashAdvance(order_number='{self.order_number}', status='{self.status}')>"


class PartialCashAdvance(Base):
    __tablename__ = "cash_advance_partials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cash_advance_id = Column(Integer, ForeignKey("cash_advances.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_name = Column(String(200), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    issued_at = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    is_settled = Column(Boolean, nullable=False, default=False)
    settled_amount = Column(Numeric(15, 2), nullable=True)
    settled_at = Column(Date, nullable=True)

    cash_advance = relationship("CashAdvance", back_populates="partials")
