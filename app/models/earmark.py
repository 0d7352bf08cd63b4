from sqlalchemy import Boolean, Column, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Earmark(Base):
    """Restricted-purpose fund (Zweckbindung)."""
    __tablename__ = "earmarks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    budget = Column(Numeric(15, 2), nullable=False, default=0)
    color = Column(String(20), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    enforce_time_range = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    allocations = relationship("VoucherEarmark", back_populates="earmark")

    def __repr__(self):
        return f"<Earmark(code='{self.code}', name='{self.name}')>"
