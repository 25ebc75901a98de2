"""Expense persistence and lookups."""

from expense_ledger.queries.expenses import ExpenseRepository

__all__ = ["ExpenseRepository"]
