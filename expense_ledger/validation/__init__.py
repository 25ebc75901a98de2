"""Pre-mutation validation of expenses and allocations."""

from expense_ledger.validation.validator import ExpenseValidator

__all__ = ["ExpenseValidator"]
