"""BudgetO ledger: vouchers, budgets, earmarks and cash advances."""
