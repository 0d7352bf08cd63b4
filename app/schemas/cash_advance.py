"""
Pydantic schemas for cash advances (Barvorschüsse) and their partials.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.cash_advance import CashAdvanceStatus

DateType = date


class CashAdvanceCreate(BaseModel):
    order_number: Optional[str] = Field(None, max_length=30, description="Generated as BV-YYYY-NNNN when omitted")
    holder_name: str = Field(..., min_length=1, max_length=200)
    purpose: Optional[str] = None
    total_amount: Decimal = Field(..., gt=0)
    due_date: Optional[DateType] = None
    notes: Optional[str] = None


class CashAdvanceUpdate(BaseModel):
    order_number: Optional[str] = Field(None, min_length=1, max_length=30)
    holder_name: Optional[str] = Field(None, min_length=1, max_length=200)
    purpose: Optional[str] = None
    total_amount: Optional[Decimal] = Field(None, gt=0)
    due_date: Optional[DateType] = None
    notes: Optional[str] = None


class PartialCreate(BaseModel):
    recipient_name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    issued_at: Optional[DateType] = None
    description: Optional[str] = None


class PartialSettle(BaseModel):
    settled_amount: Decimal = Field(..., ge=0)
    settled_at: Optional[DateType] = None


class ResolveRequest(BaseModel):
    create_counter_voucher: bool = True


class PartialResponse(BaseModel):
    id: int
    recipient_name: str
    amount: Decimal
    issued_at: DateType
    description: Optional[str] = None
    is_settled: bool
    settled_amount: Optional[Decimal] = None
    settled_at: Optional[DateType] = None

    class Config:
        from_attributes = True


class PartialCreateResponse(BaseModel):
    partial: PartialResponse
    warnings: List[str] = []


class CashAdvanceResponse(BaseModel):
    id: int
    order_number: str
    holder_name: str
    purpose: Optional[str] = None
    total_amount: Decimal
    status: CashAdvanceStatus
    due_date: Optional[DateType] = None
    notes: Optional[str] = None
    counter_voucher_id: Optional[int] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    total_planned: Decimal
    total_settled: Decimal
    planned_remaining: Decimal
    actual_remaining: Decimal
    coverage: Decimal
    partials: List[PartialResponse] = []


class CashAdvanceListResponse(BaseModel):
    total: int
    cash_advances: List[CashAdvanceResponse]


class ResolveResponse(BaseModel):
    cash_advance: CashAdvanceResponse
    warnings: List[str] = []


class CashAdvanceStatsResponse(BaseModel):
    total_open: int
    total_resolved: int
    total_overdue: int
    open_amount: Decimal
    overdue_amount: Decimal


class NextOrderNumberResponse(BaseModel):
    order_number: str


class CashAdvanceDeleteResponse(BaseModel):
    message: str
