"""
Abstract Storage Interface

DESIGN DECISION: The engine talks to a relational store through three
parameterized calls (query / query_one / execute) plus a transaction scope.
This allows us to:
1. Use SQLite for the desktop app and for tests
2. Swap in another SQL backend without touching business logic
3. Keep the engine free of connection handling and schema migration

The interface is intentionally small - we're not building an ORM.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel

from expense_ledger.models.audit import AuditEvent


Params = Sequence[Any]


class ExecuteResult(BaseModel):
    """Outcome of a write statement."""

    last_insert_id: Optional[int] = None
    rowcount: int = 0


class DatabaseInterface(ABC):
    """
    Abstract interface for the relational store.

    Any storage implementation (SQLite, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def query(self, sql: str, params: Params = ()) -> list[dict]:
        """
        Run a SELECT and return every row.

        Args:
            sql: Statement with positional `?` placeholders
            params: Values bound to the placeholders

        Returns:
            Rows as column -> value dicts (empty list when nothing matches)

        Raises:
            StorageError: If the statement fails
        """
        pass

    @abstractmethod
    async def query_one(self, sql: str, params: Params = ()) -> Optional[dict]:
        """
        Run a SELECT and return the first row.

        Returns:
            The row, or None when nothing matches
        """
        pass

    @abstractmethod
    async def execute(self, sql: str, params: Params = ()) -> ExecuteResult:
        """
        Run an INSERT / UPDATE / DELETE.

        Returns:
            ExecuteResult with the generated row id and affected row count

        Raises:
            DuplicateError: If a uniqueness constraint is violated
            StorageError: If the statement fails
        """
        pass

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Scope in which every statement commits or rolls back together.

        Usage:
            async with db.transaction():
                await db.execute(...)
                await db.execute(...)

        Any exception raised inside the block rolls the whole block back
        and propagates. Nested scopes roll back only their own statements.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one bulk run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'expense', 'settlement')
            entity_id: The entity's store identifier

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class BusyError(StorageError):
    """The store is locked by another writer; the statement may be retried."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
