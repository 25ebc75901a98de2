"""
Audit Models for Expense Ledger

Every mutation of allocation or settlement state is logged for audit purposes.
This provides:
1. Complete traceability of who-owes-what changes
2. Debugging information when a balance looks wrong
3. Ability to reconstruct history after a settle / unsettle cycle

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every mutating engine operation has its own event type.
    """
    # Expense lifecycle
    EXPENSE_SAVED = "expense_saved"
    EXPENSE_DELETED = "expense_deleted"

    # Allocation
    SPLIT_MODE_CHANGED = "split_mode_changed"
    ALLOCATION_ASSIGNED = "allocation_assigned"
    ALLOCATION_CLEARED = "allocation_cleared"

    # Settlement
    DEBT_SETTLED = "debt_settled"
    DEBT_UNSETTLED = "debt_unsettled"
    EXPENSE_MARKED_PAID = "expense_marked_paid"
    EXPENSE_MARKED_UNPAID = "expense_marked_unpaid"
    SETTLEMENT_CONFLICT = "settlement_conflict"

    # Batch operations
    BULK_ASSIGN_COMPLETED = "bulk_assign_completed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'settlement')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Store identifier of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one bulk run)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> list:
        """
        Convert to parameters for the audit_log table, in AUDIT_COLUMNS order.
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_message,
            1 if self.is_user_action else 0,
        ]

    @classmethod
    def from_row(cls, row: dict) -> "AuditEvent":
        """Rebuild an event from an audit_log row."""
        return cls(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row.get("entity_type"),
            entity_id=row.get("entity_id"),
            correlation_id=UUID(row["correlation_id"]) if row.get("correlation_id") else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row.get("details_json") else {},
            error_message=row.get("error_message"),
            is_user_action=bool(row.get("is_user_action")),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.debt_settled(expense_id, party_id, amount, ...)
        event = AuditEventBuilder.split_mode_changed(expense_id, old, new)
    """

    @staticmethod
    def expense_saved(
        expense_id: int,
        split_mode: str,
        net_total: float,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_SAVED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense saved with split mode {split_mode}",
            details={
                "split_mode": split_mode,
                "net_total": net_total,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        expense_id: int,
        removed_settlements: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted with its items, splits and settlements",
            details={
                "removed_settlements": removed_settlements,
            },
            is_user_action=True,
        )

    @staticmethod
    def split_mode_changed(
        expense_id: int,
        old_mode: str,
        new_mode: str,
        cleared: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_MODE_CHANGED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Split mode changed: {old_mode} -> {new_mode}",
            details={
                "old_mode": old_mode,
                "new_mode": new_mode,
                "cleared": cleared,
            },
            is_user_action=True,
        )

    @staticmethod
    def allocation_assigned(
        expense_id: int,
        split_mode: str,
        party_ids: list[int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_ASSIGNED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Allocation assigned to {len(party_ids)} parties ({split_mode})",
            details={
                "split_mode": split_mode,
                "party_ids": party_ids,
            },
            is_user_action=True,
        )

    @staticmethod
    def allocation_cleared(
        expense_id: int,
        party_ids: list[int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ALLOCATION_CLEARED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Allocation cleared",
            details={
                "party_ids": party_ids,
            },
            is_user_action=True,
        )

    @staticmethod
    def debt_settled(
        expense_id: int,
        party_id: int,
        amount: float,
        paid_date: date,
        credit_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_SETTLED,
            entity_type="settlement",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Party {party_id} settled {amount:.2f}",
            details={
                "party_id": party_id,
                "amount": amount,
                "paid_date": paid_date.isoformat(),
                "credit_id": credit_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def debt_unsettled(
        expense_id: int,
        party_id: int,
        credit_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_UNSETTLED,
            entity_type="settlement",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Settlement for party {party_id} reversed",
            details={
                "party_id": party_id,
                "credit_id": credit_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_marked_paid(
        expense_id: int,
        payment_method_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_MARKED_PAID,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense owed to a party marked as paid",
            details={
                "payment_method_id": payment_method_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_marked_unpaid(
        expense_id: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_MARKED_UNPAID,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense owed to a party marked as unpaid",
            is_user_action=True,
        )

    @staticmethod
    def settlement_conflict(
        expense_id: int,
        party_id: Optional[int],
        operation: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="settlement",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: settlement state conflict",
            details={
                "party_id": party_id,
                "operation": operation,
            },
        )

    @staticmethod
    def bulk_assign_completed(
        applied: int,
        skipped: int,
        split_mode: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BULK_ASSIGN_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Bulk {split_mode} assignment: {applied} applied, {skipped} skipped",
            details={
                "applied": applied,
                "skipped": skipped,
                "split_mode": split_mode,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
