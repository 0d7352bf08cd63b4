from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

DateType = date


class EarmarkBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    budget: Decimal = Field(Decimal("0"), ge=0)
    color: Optional[str] = Field(None, max_length=20)
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    enforce_time_range: bool = False
    is_active: bool = True


class EarmarkCreate(EarmarkBase):
    pass


class EarmarkUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    color: Optional[str] = Field(None, max_length=20)
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    enforce_time_range: Optional[bool] = None
    is_active: Optional[bool] = None


class EarmarkResponse(EarmarkBase):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EarmarkListResponse(BaseModel):
    total: int
    bindings: List[EarmarkResponse]


class EarmarkUsageResponse(BaseModel):
    earmark_id: int
    budget: Decimal
    allocated: Decimal
    released: Decimal
    balance: Decimal
    remaining: Decimal
    percent: Decimal


class EarmarkDeleteResponse(BaseModel):
    message: str
