from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

# Alias to avoid field name 'date' shadowing type 'date' in annotations (Pydantic v2)
DateType = date


class BudgetBase(BaseModel):
    year: int = Field(..., ge=1900, le=2999)
    amount_planned: Decimal = Field(Decimal("0"), ge=0)
    name: Optional[str] = Field(None, max_length=200)
    category_name: Optional[str] = Field(None, max_length=200)
    project_name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    enforce_time_range: bool = False
    color: Optional[str] = Field(None, max_length=20)


class BudgetCreate(BudgetBase):
    pass


class BudgetUpdate(BaseModel):
    year: Optional[int] = Field(None, ge=1900, le=2999)
    amount_planned: Optional[Decimal] = Field(None, ge=0)
    name: Optional[str] = Field(None, max_length=200)
    category_name: Optional[str] = Field(None, max_length=200)
    project_name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None
    enforce_time_range: Optional[bool] = None
    color: Optional[str] = Field(None, max_length=20)
    is_archived: Optional[bool] = None


class BudgetResponse(BudgetBase):
    id: int
    label: str
    is_archived: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BudgetListResponse(BaseModel):
    total: int
    budgets: List[BudgetResponse]


class BudgetUsageResponse(BaseModel):
    budget_id: int
    planned: Decimal
    spent: Decimal
    inflow: Decimal
    remaining: Decimal
    percent: Decimal


class BudgetDeleteResponse(BaseModel):
    message: str
