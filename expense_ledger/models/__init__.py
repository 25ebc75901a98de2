"""
Data Models Package

This package contains all Pydantic models used by the Expense Ledger.
All data flowing through the debt engine must conform to these schemas.
"""

from expense_ledger.models.expense import (
    DebtDirection,
    Expense,
    ExpenseStatus,
    LedgerCredit,
    LineItem,
    Party,
    PaymentMethod,
    SettlementFilter,
    SettlementRecord,
    SplitMode,
    SplitRecord,
)
from expense_ledger.models.results import (
    AllocationResult,
    BalancePoint,
    BalanceStats,
    BulkResult,
    BulkSkip,
    DebtTransaction,
    DiscountDistribution,
    ExpenseDebtSummary,
    OwnShareSummary,
    PartyDebtSummary,
    PaymentMethodBalance,
    SplitModeChangePlan,
    ValidationIssue,
    ValidationResult,
)
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entity models
    "DebtDirection",
    "Expense",
    "ExpenseStatus",
    "LedgerCredit",
    "LineItem",
    "Party",
    "PaymentMethod",
    "SettlementFilter",
    "SettlementRecord",
    "SplitMode",
    "SplitRecord",
    # Result models
    "AllocationResult",
    "BalancePoint",
    "BalanceStats",
    "BulkResult",
    "BulkSkip",
    "DebtTransaction",
    "DiscountDistribution",
    "ExpenseDebtSummary",
    "OwnShareSummary",
    "PartyDebtSummary",
    "PaymentMethodBalance",
    "SplitModeChangePlan",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
