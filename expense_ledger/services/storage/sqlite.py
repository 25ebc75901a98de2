"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the default backend because:
1. The ledger is a single-user desktop application
2. No database server to install or keep running
3. Real transactions, so settle / unsettle can be both-or-neither
4. A unique index gives us the one-settlement-per-pair guarantee for free

TRADEOFFS:
- One writer at a time (we retry briefly when the file is locked)
- The sqlite3 driver is synchronous; calls are short enough that we
  run them inline from the async interface

The implementation follows the abstract interface, so another SQL backend
can be dropped in without changing business logic.
"""

import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

import structlog
from tenacity import (
    Retrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from expense_ledger.config import StorageSettings, get_settings
from expense_ledger.models.audit import AUDIT_COLUMNS, AuditEvent
from expense_ledger.services.storage.interface import (
    AuditStorageInterface,
    BusyError,
    ConnectionError,
    DatabaseInterface,
    DuplicateError,
    ExecuteResult,
    Params,
    StorageError,
)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS parties (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_methods (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        initial_funds REAL NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TEXT NOT NULL,
        expense_date TEXT NOT NULL,
        description TEXT,
        is_total_only INTEGER NOT NULL DEFAULT 0,
        flat_total REAL,
        discount_percent REAL NOT NULL DEFAULT 0
            CHECK (discount_percent >= 0 AND discount_percent <= 100),
        split_mode TEXT NOT NULL DEFAULT 'none'
            CHECK (split_mode IN ('none', 'share_split', 'per_item')),
        own_shares INTEGER NOT NULL DEFAULT 0 CHECK (own_shares >= 0),
        status TEXT NOT NULL DEFAULT 'paid' CHECK (status IN ('paid', 'unpaid')),
        owed_to_party_id INTEGER REFERENCES parties(id),
        payment_method_id INTEGER REFERENCES payment_methods(id),
        is_tentative INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS line_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        description TEXT,
        quantity REAL NOT NULL CHECK (quantity > 0),
        unit_price REAL NOT NULL CHECK (unit_price >= 0),
        party_id INTEGER REFERENCES parties(id),
        excluded_from_discount INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS split_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        party_id INTEGER NOT NULL REFERENCES parties(id),
        shares INTEGER NOT NULL CHECK (shares >= 1)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_credits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_method_id INTEGER NOT NULL REFERENCES payment_methods(id),
        amount REAL NOT NULL,
        credit_date TEXT NOT NULL,
        note TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settlement_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        expense_id INTEGER NOT NULL REFERENCES expenses(id),
        party_id INTEGER NOT NULL REFERENCES parties(id),
        paid_date TEXT NOT NULL,
        credit_id INTEGER NOT NULL REFERENCES ledger_credits(id),
        UNIQUE (expense_id, party_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        event_id TEXT PRIMARY KEY,
        timestamp TEXT NOT NULL,
        event_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        entity_type TEXT,
        entity_id INTEGER,
        correlation_id TEXT,
        description TEXT NOT NULL,
        details_json TEXT,
        error_message TEXT,
        is_user_action INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_line_items_expense ON line_items(expense_id)",
    "CREATE INDEX IF NOT EXISTS idx_line_items_party ON line_items(party_id)",
    "CREATE INDEX IF NOT EXISTS idx_split_records_expense ON split_records(expense_id)",
    "CREATE INDEX IF NOT EXISTS idx_split_records_party ON split_records(party_id)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_owed_to ON expenses(owed_to_party_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_log(correlation_id)",
]


def _translate_error(error: sqlite3.Error, sql: str) -> StorageError:
    """Map driver errors onto the storage exception hierarchy."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError) and "UNIQUE" in message.upper():
        return DuplicateError(message)
    if isinstance(error, sqlite3.OperationalError) and (
        "locked" in message or "busy" in message
    ):
        return BusyError(message)
    return StorageError(f"Statement failed: {message} [{sql.split()[0]}]")


class SQLiteDatabase(DatabaseInterface):
    """
    SQLite implementation of the relational store.

    The connection runs in autocommit mode; `transaction()` opens an explicit
    BEGIN / COMMIT, and nested scopes become savepoints.
    """

    def __init__(self, settings: Optional[StorageSettings] = None):
        self._settings = settings or get_settings().storage
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._logger = structlog.get_logger(__name__)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def connect(self) -> sqlite3.Connection:
        """
        Open the database file (once) and enable foreign keys.
        """
        if self._conn is None:
            try:
                conn = sqlite3.connect(
                    self._settings.path,
                    timeout=self._settings.busy_timeout_seconds,
                    isolation_level=None,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
            except sqlite3.Error as e:
                raise ConnectionError(
                    f"Failed to open database {self._settings.path}: {e}"
                )
            self._conn = conn
        return self._conn

    async def initialize_schema(self, seed_cash_method: bool = True) -> None:
        """
        Create tables if missing.

        A fresh store gets a "Cash" payment method so that settlements
        have somewhere to land when payment methods are switched off.
        """
        conn = self.connect()
        for statement in SCHEMA_STATEMENTS:
            self._run_once(statement, ())
        if seed_cash_method:
            row = conn.execute("SELECT COUNT(*) AS n FROM payment_methods").fetchone()
            if row["n"] == 0:
                self._run_once(
                    "INSERT INTO payment_methods (name, initial_funds) VALUES (?, ?)",
                    ("Cash", 0.0),
                )

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _run_once(self, sql: str, params: Params) -> sqlite3.Cursor:
        conn = self.connect()
        try:
            return conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise _translate_error(e, sql) from e

    def _run(self, sql: str, params: Params) -> sqlite3.Cursor:
        # Inside a transaction a retry would replay half a unit of work
        if self.in_transaction:
            return self._run_once(sql, params)

        for attempt in Retrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception_type(BusyError),
            reraise=True,
        ):
            with attempt:
                return self._run_once(sql, params)

    async def query(self, sql: str, params: Params = ()) -> list[dict]:
        cursor = self._run(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    async def query_one(self, sql: str, params: Params = ()) -> Optional[dict]:
        cursor = self._run(sql, params)
        row = cursor.fetchone()
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Params = ()) -> ExecuteResult:
        cursor = self._run(sql, params)
        return ExecuteResult(
            last_insert_id=cursor.lastrowid,
            rowcount=max(cursor.rowcount, 0),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        savepoint = f"sp_{self._depth}"
        if self._depth == 0:
            self._run("BEGIN IMMEDIATE", ())
        else:
            self._run_once(f"SAVEPOINT {savepoint}", ())
        self._depth += 1

        try:
            yield
        except BaseException:
            self._depth -= 1
            try:
                if self._depth == 0:
                    self._run_once("ROLLBACK", ())
                else:
                    self._run_once(f"ROLLBACK TO SAVEPOINT {savepoint}", ())
                    self._run_once(f"RELEASE SAVEPOINT {savepoint}", ())
            except StorageError as rollback_error:
                # The error that aborted the unit of work is the one to surface
                self._logger.error(
                    "rollback_failed",
                    depth=self._depth,
                    error=str(rollback_error),
                )
            raise

        self._depth -= 1
        if self._depth == 0:
            self._run_once("COMMIT", ())
        else:
            self._run_once(f"RELEASE SAVEPOINT {savepoint}", ())

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class SQLiteAuditStorage(AuditStorageInterface):
    """
    Audit trail stored in the `audit_log` table.

    Works against any DatabaseInterface that has the ledger schema.
    """

    def __init__(self, database: DatabaseInterface):
        self._db = database

    async def append_event(self, event: AuditEvent) -> bool:
        placeholders = ", ".join("?" for _ in AUDIT_COLUMNS)
        try:
            await self._db.execute(
                f"INSERT INTO audit_log ({', '.join(AUDIT_COLUMNS)}) VALUES ({placeholders})",
                event.to_row(),
            )
            return True
        except StorageError as e:
            raise StorageError(f"Failed to append audit event: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = await self._db.query(
            "SELECT * FROM audit_log WHERE correlation_id = ? ORDER BY timestamp",
            [str(correlation_id)],
        )
        return [AuditEvent.from_row(row) for row in rows]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        rows = await self._db.query(
            "SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ? ORDER BY timestamp",
            [entity_type, entity_id],
        )
        return [AuditEvent.from_row(row) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        rows = await self._db.query(
            "SELECT * FROM audit_log ORDER BY timestamp DESC LIMIT ?",
            [limit],
        )
        return [AuditEvent.from_row(row) for row in rows]
