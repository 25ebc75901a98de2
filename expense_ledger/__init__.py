"""
Expense Ledger - Source Package

Debt allocation and settlement engine for a household expense tracker:
who owes whom for each shared purchase, repayment bookkeeping, and
running balances per person and per payment method.

DESIGN PRINCIPLES:
1. Money is never rounded before it is displayed
2. Fail early, fail visibly
3. Settled debts freeze the allocation they came from
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
