"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLite as the backend, but designed to be swappable.
"""

from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    BusyError,
    ConnectionError,
    DatabaseInterface,
    DuplicateError,
    ExecuteResult,
    StorageError,
)
from expense_ledger.services.storage.sqlite import (
    SCHEMA_STATEMENTS,
    SQLiteAuditStorage,
    SQLiteDatabase,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DatabaseInterface",
    "ExecuteResult",
    # Exceptions
    "BusyError",
    "ConnectionError",
    "DuplicateError",
    "StorageError",
    # SQLite implementation
    "SCHEMA_STATEMENTS",
    "SQLiteAuditStorage",
    "SQLiteDatabase",
]
