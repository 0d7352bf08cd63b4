from sqlalchemy import Boolean, Column, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Budget(Base):
    """Planned spending envelope, optionally time-boxed."""
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    year = Column(Integer, nullable=False, index=True)
    amount_planned = Column(Numeric(15, 2), nullable=False, default=0)
    name = Column(String(200), nullable=True)
    category_name = Column(String(200), nullable=True)
    project_name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    enforce_time_range = Column(Boolean, nullable=False, default=False)
    color = Column(String(20), nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    allocations = relationship("VoucherBudget", back_populates="budget")

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        suffix = self.category_name or self.project_name or str(self.id)
        return f"{self.year:04d}-{suffix}"

    def __repr__(self):
        return f"<Budget(id={self.id}, label='{self.label}')>"
