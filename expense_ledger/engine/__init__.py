"""Debt engine: discounts, allocation, settlement, balances and bulk assignment."""

from expense_ledger.engine.allocation import AllocationEngine, allocate
from expense_ledger.engine.balance import BalanceAggregator, dense_series
from expense_ledger.engine.bulk import BulkAllocator
from expense_ledger.engine.cache import ResultCache
from expense_ledger.engine.discount import distribute, expense_net_total
from expense_ledger.errors import (
    ConfirmationRequiredError,
    ConflictError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from expense_ledger.engine.settlement import SettlementLedger

__all__ = [
    "AllocationEngine",
    "BalanceAggregator",
    "BulkAllocator",
    "ConfirmationRequiredError",
    "ConflictError",
    "LedgerError",
    "NotFoundError",
    "ResultCache",
    "SettlementLedger",
    "ValidationError",
    "allocate",
    "dense_series",
    "distribute",
    "expense_net_total",
]
