# app/models/__init__.py
from .category import CustomCategory
from .budget import Budget
from .earmark import Earmark
from .voucher import (
    PaymentMethod, Sphere, TaxMode, Voucher, VoucherBudget, VoucherEarmark, VoucherTag,
    VoucherTaxonomyTerm, VoucherType,
)
from .cash_advance import CashAdvance, CashAdvanceStatus, PartialCashAdvance
