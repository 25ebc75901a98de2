"""Services package."""

from expense_ledger.services.storage import (
    AuditStorageInterface,
    BusyError,
    ConnectionError,
    DatabaseInterface,
    DuplicateError,
    ExecuteResult,
    SQLiteAuditStorage,
    SQLiteDatabase,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "BusyError",
    "ConnectionError",
    "DatabaseInterface",
    "DuplicateError",
    "ExecuteResult",
    "SQLiteAuditStorage",
    "SQLiteDatabase",
    "StorageError",
]
