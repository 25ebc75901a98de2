"""
Audit Logger

DESIGN DECISION: Every mutation of debt state is logged.
This provides:
1. Complete traceability of who-owes-whom changes
2. Debugging capability
3. A history the user can inspect when a balance looks wrong

The audit logger:
- Is async so engines can await it after their transaction commits
- Gracefully handles failures (never crashes an operation if logging fails)
- Supports correlation IDs to trace related events (e.g. one bulk run)
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_ledger.models.audit import AuditEvent, AuditEventBuilder
from expense_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_log table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_saved(
        self,
        expense_id: int,
        split_mode: str,
        net_total: float,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_saved(
            expense_id=expense_id,
            split_mode=split_mode,
            net_total=net_total,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        expense_id: int,
        removed_settlements: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            expense_id=expense_id,
            removed_settlements=removed_settlements,
            correlation_id=correlation_id,
        ))

    async def log_split_mode_changed(
        self,
        expense_id: int,
        old_mode: str,
        new_mode: str,
        cleared: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a split mode transition and what it cleared."""
        await self.log(AuditEventBuilder.split_mode_changed(
            expense_id=expense_id,
            old_mode=old_mode,
            new_mode=new_mode,
            cleared=cleared,
            correlation_id=correlation_id,
        ))

    async def log_allocation_assigned(
        self,
        expense_id: int,
        split_mode: str,
        party_ids: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocation_assigned(
            expense_id=expense_id,
            split_mode=split_mode,
            party_ids=party_ids,
            correlation_id=correlation_id,
        ))

    async def log_allocation_cleared(
        self,
        expense_id: int,
        party_ids: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.allocation_cleared(
            expense_id=expense_id,
            party_ids=party_ids,
            correlation_id=correlation_id,
        ))

    async def log_debt_settled(
        self,
        expense_id: int,
        party_id: int,
        amount: float,
        paid_date: date,
        credit_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a settlement and the credit it produced."""
        await self.log(AuditEventBuilder.debt_settled(
            expense_id=expense_id,
            party_id=party_id,
            amount=amount,
            paid_date=paid_date,
            credit_id=credit_id,
            correlation_id=correlation_id,
        ))

    async def log_debt_unsettled(
        self,
        expense_id: int,
        party_id: int,
        credit_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.debt_unsettled(
            expense_id=expense_id,
            party_id=party_id,
            credit_id=credit_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_marked_paid(
        self,
        expense_id: int,
        payment_method_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_marked_paid(
            expense_id=expense_id,
            payment_method_id=payment_method_id,
            correlation_id=correlation_id,
        ))

    async def log_expense_marked_unpaid(
        self,
        expense_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_marked_unpaid(
            expense_id=expense_id,
            correlation_id=correlation_id,
        ))

    async def log_settlement_conflict(
        self,
        expense_id: int,
        party_id: Optional[int],
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected settle / allocation change."""
        await self.log(AuditEventBuilder.settlement_conflict(
            expense_id=expense_id,
            party_id=party_id,
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_bulk_assign_completed(
        self,
        applied: int,
        skipped: int,
        split_mode: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bulk_assign_completed(
            applied=applied,
            skipped=skipped,
            split_mode=split_mode,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a bulk assignment).
    Pass it through all subsequent operations.
    """
    return uuid4()
