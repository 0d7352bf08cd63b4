"""
Pydantic schemas for the voucher ledger.

A new voucher is one of three drafts, picked by its `type`:
IncomeDraft (IN), ExpenseDraft (OUT) and TransferDraft (TRANSFER). Each only
carries the fields that make sense for its case and is checked when built.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.voucher import PaymentMethod, Sphere, TaxMode, VoucherType

# Alias to avoid field name 'date' shadowing type 'date' in annotations (Pydantic v2)
DateType = date

VatRate = Literal[0, 7, 19]


class BudgetAllocationIn(BaseModel):
    budget_id: int
    # amounts <= 0 are accepted here and dropped by the allocation validator
    amount: Decimal


class EarmarkAllocationIn(BaseModel):
    earmark_id: int
    amount: Decimal


class TaxonomyTermIn(BaseModel):
    taxonomy_id: int
    term_id: int


def _normalize_tags(tags: List[str]) -> List[str]:
    seen = []
    for tag in tags:
        name = tag.strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def _check_one_term_per_taxonomy(terms: Optional[List[TaxonomyTermIn]]):
    if not terms:
        return
    taxonomy_ids = [t.taxonomy_id for t in terms]
    if len(taxonomy_ids) != len(set(taxonomy_ids)):
        raise ValueError("Only one term per taxonomy can be assigned to a voucher")


# ============================================================================
# Drafts
# ============================================================================


class _VoucherDraftBase(BaseModel):
    date: DateType
    sphere: Optional[Sphere] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    counterparty: Optional[str] = Field(None, max_length=200)
    budgets: List[BudgetAllocationIn] = Field(default_factory=list)
    earmarks: List[EarmarkAllocationIn] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    taxonomy_terms: List[TaxonomyTermIn] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: List[str]) -> List[str]:
        return _normalize_tags(v)

    @model_validator(mode="after")
    def one_term_per_taxonomy(self):
        _check_one_term_per_taxonomy(self.taxonomy_terms)
        return self


class _BookingDraft(_VoucherDraftBase):
    payment_method: PaymentMethod
    tax_mode: TaxMode = TaxMode.NET
    net_amount: Optional[Decimal] = Field(None, ge=0)
    gross_amount: Optional[Decimal] = Field(None, ge=0)
    vat_rate: VatRate = 0

    @model_validator(mode="after")
    def authoritative_amount_present(self):
        if self.tax_mode == TaxMode.NET and self.net_amount is None:
            raise ValueError("net_amount is required in NET mode")
        if self.tax_mode == TaxMode.GROSS and self.gross_amount is None:
            raise ValueError("gross_amount is required in GROSS mode")
        return self


class IncomeDraft(_BookingDraft):
    type: Literal["IN"] = "IN"


class ExpenseDraft(_BookingDraft):
    type: Literal["OUT"] = "OUT"


class TransferDraft(_VoucherDraftBase):
    """Move money between BAR and BANK; single amount, never VAT."""

    type: Literal["TRANSFER"] = "TRANSFER"
    transfer_from: PaymentMethod
    transfer_to: PaymentMethod
    gross_amount: Decimal = Field(..., ge=0)

    @model_validator(mode="after")
    def directions_differ(self):
        if self.transfer_from == self.transfer_to:
            raise ValueError("transfer_from and transfer_to must differ")
        return self


VoucherDraft = Annotated[Union[IncomeDraft, ExpenseDraft, TransferDraft], Field(discriminator="type")]


class VoucherPatch(BaseModel):
    """Partial update; only fields that were sent are applied (explicit null clears)."""

    date: Optional[DateType] = None
    type: Optional[VoucherType] = None
    sphere: Optional[Sphere] = None
    category_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    transfer_from: Optional[PaymentMethod] = None
    transfer_to: Optional[PaymentMethod] = None
    tax_mode: Optional[TaxMode] = None
    net_amount: Optional[Decimal] = Field(None, ge=0)
    gross_amount: Optional[Decimal] = Field(None, ge=0)
    vat_rate: Optional[VatRate] = None
    description: Optional[str] = None
    counterparty: Optional[str] = Field(None, max_length=200)
    budgets: Optional[List[BudgetAllocationIn]] = None
    earmarks: Optional[List[EarmarkAllocationIn]] = None
    tags: Optional[List[str]] = None
    taxonomy_terms: Optional[List[TaxonomyTermIn]] = None
    expected_version: Optional[int] = Field(None, description="Reject the update if the voucher changed since this version")

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _normalize_tags(v)

    @model_validator(mode="after")
    def one_term_per_taxonomy(self):
        _check_one_term_per_taxonomy(self.taxonomy_terms)
        return self


# ============================================================================
# Listing
# ============================================================================


class VoucherSortBy(str, Enum):
    date = "date"
    net = "net"
    gross = "gross"
    budget = "budget"
    earmark = "earmark"
    payment = "payment"
    category = "category"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class VoucherFilter(BaseModel):
    date_from: Optional[DateType] = None
    date_to: Optional[DateType] = None
    type: Optional[VoucherType] = None
    payment_method: Optional[PaymentMethod] = None
    sphere: Optional[Sphere] = None
    category_id: Optional[int] = None
    earmark_id: Optional[int] = None
    budget_id: Optional[int] = None
    tag: Optional[str] = None
    taxonomy_id: Optional[int] = None
    term_id: Optional[int] = None
    q: Optional[str] = None


# ============================================================================
# Responses
# ============================================================================


class BudgetAllocationOut(BaseModel):
    budget_id: int
    amount: Decimal
    label: Optional[str] = None

    class Config:
        from_attributes = True


class EarmarkAllocationOut(BaseModel):
    earmark_id: int
    amount: Decimal
    code: Optional[str] = None

    class Config:
        from_attributes = True


class VoucherResponse(BaseModel):
    id: int
    voucher_no: str
    date: DateType
    type: VoucherType
    sphere: Optional[Sphere] = None
    category_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    transfer_from: Optional[PaymentMethod] = None
    transfer_to: Optional[PaymentMethod] = None
    tax_mode: TaxMode
    net_amount: Decimal
    vat_rate: int
    vat_amount: Decimal
    gross_amount: Decimal
    description: Optional[str] = None
    counterparty: Optional[str] = None
    budgets: List[BudgetAllocationOut] = []
    earmarks: List[EarmarkAllocationOut] = []
    tags: List[str] = []
    taxonomy_terms: List[TaxonomyTermIn] = []
    version: int
    created_at: Optional[datetime] = None


class VoucherCreateResponse(BaseModel):
    id: int
    voucher_no: str
    warnings: List[str] = []


class VoucherUpdateResponse(BaseModel):
    id: int
    warnings: List[str] = []


class VoucherDeleteResponse(BaseModel):
    message: str


class VoucherTotals(BaseModel):
    net: Decimal
    vat: Decimal
    gross: Decimal


class VoucherListResponse(BaseModel):
    rows: List[VoucherResponse]
    total: int
    totals: VoucherTotals
