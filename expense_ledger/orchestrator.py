"""
Main Orchestrator for Expense Ledger

This module ties together all the components and defines the
end-to-end flows a UI layer calls:
1. Expense lifecycle (validate -> save, delete with cascade)
2. Allocation (split modes, share / item assignment, bulk assignment)
3. Settlement and balances

DESIGN DECISION: The orchestrator owns wiring, not rules:
- Components share one database, one result cache and one audit logger
- Business rules stay in the engines
- Every expense write is audited

This is the "glue" a screen, a report generator or a test starts from.
"""

from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.config import Settings, get_settings
from expense_ledger.engine import (
    AllocationEngine,
    BalanceAggregator,
    BulkAllocator,
    ResultCache,
    SettlementLedger,
    expense_net_total,
)
from expense_ledger.models.expense import Expense
from expense_ledger.queries import ExpenseRepository
from expense_ledger.services.storage import (
    DatabaseInterface,
    SQLiteAuditStorage,
    SQLiteDatabase,
    StorageError,
)
from expense_ledger.validation import ExpenseValidator


class ExpenseFlow:
    """
    Orchestrates saving and deleting expenses.

    Flow (save):
    1. Validate -> ValidationError before anything is written
    2. Insert expense, items and splits in one transaction
    3. Invalidate cached balances of every party / method involved
    4. Audit
    """

    def __init__(
        self,
        repository: ExpenseRepository,
        cache: ResultCache,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._cache = cache
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger(__name__)

    async def save_expense(
        self,
        expense: Expense,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Validate and persist a new expense.

        Returns:
            The stored expense with generated ids
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            saved = await self._repository.create_expense(expense)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="storage",
                    error_message=str(e),
                    details={"operation": "save_expense"},
                    correlation_id=correlation_id,
                )
            raise

        self._cache.invalidate(
            expense_id=saved.id,
            party_ids=saved.assigned_party_ids | {saved.owed_to_party_id},
            payment_method_ids=[saved.payment_method_id],
        )

        if self._audit_logger:
            await self._audit_logger.log_expense_saved(
                expense_id=saved.id,
                split_mode=saved.split_mode.value,
                net_total=expense_net_total(saved),
                correlation_id=correlation_id,
            )

        return saved

    async def delete_expense(
        self,
        expense_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete an expense with its items, splits and settlements.

        Returns:
            Number of settlements removed with it
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            removed = await self._repository.delete_expense(expense_id)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="storage",
                    error_message=str(e),
                    details={"operation": "delete_expense", "expense_id": expense_id},
                    correlation_id=correlation_id,
                )
            raise

        # Removed settlement credits may sit on any payment method
        self._cache.clear()

        if self._audit_logger:
            await self._audit_logger.log_expense_deleted(
                expense_id=expense_id,
                removed_settlements=removed,
                correlation_id=correlation_id,
            )

        return removed


class LedgerComponents:
    """Everything a UI layer needs, sharing one store, cache and audit log."""

    def __init__(
        self,
        database: DatabaseInterface,
        repository: ExpenseRepository,
        expenses: ExpenseFlow,
        ledger: SettlementLedger,
        allocation: AllocationEngine,
        balances: BalanceAggregator,
        bulk: BulkAllocator,
        cache: ResultCache,
        audit_logger: AuditLogger,
    ):
        self.database = database
        self.repository = repository
        self.expenses = expenses
        self.ledger = ledger
        self.allocation = allocation
        self.balances = balances
        self.bulk = bulk
        self.cache = cache
        self.audit_logger = audit_logger

    async def close(self) -> None:
        await self.database.close()


async def create_ledger_components(
    settings: Optional[Settings] = None,
    database: Optional[DatabaseInterface] = None,
) -> LedgerComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (the cached global settings if None)
        database: An already open store. When None, a SQLite store is
                  opened from the storage settings and its schema created.

    Returns:
        LedgerComponents wired around one database
    """
    settings = settings or get_settings()
    app_settings = settings.app

    if database is None:
        database = SQLiteDatabase(settings.storage)
        await database.initialize_schema()

    if app_settings.audit_persist:
        audit_logger = AuditLogger(SQLiteAuditStorage(database))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    cache = ResultCache()
    validator = ExpenseValidator()
    repository = ExpenseRepository(database, validator)

    ledger = SettlementLedger(
        database,
        repository,
        cache=cache,
        audit_logger=audit_logger,
        modules=settings.modules,
    )
    allocation = AllocationEngine(
        database,
        repository,
        ledger,
        cache=cache,
        audit_logger=audit_logger,
        validator=validator,
    )
    balances = BalanceAggregator(
        repository,
        allocation,
        ledger,
        cache=cache,
        app_settings=app_settings,
    )
    bulk = BulkAllocator(repository, allocation, audit_logger=audit_logger)

    return LedgerComponents(
        database=database,
        repository=repository,
        expenses=ExpenseFlow(repository, cache, audit_logger),
        ledger=ledger,
        allocation=allocation,
        balances=balances,
        bulk=bulk,
        cache=cache,
        audit_logger=audit_logger,
    )
