"""Tests for the SQLite storage layer and the expense repository."""

import sqlite3
from datetime import date
from uuid import uuid4

import pytest

from expense_ledger.config import StorageSettings
from expense_ledger.errors import NotFoundError, ValidationError
from expense_ledger.models.audit import AuditEventBuilder
from expense_ledger.models.expense import (
    Expense,
    ExpenseStatus,
    LineItem,
    SplitMode,
    SplitRecord,
)
from expense_ledger.services.storage import (
    BusyError,
    DuplicateError,
    SQLiteAuditStorage,
    SQLiteDatabase,
    StorageError,
)
from expense_ledger.services.storage.sqlite import _translate_error


ALICE, BOB = 1, 2


class TestSQLiteDatabase:
    """Tests for queries, writes and transactions."""

    def test_fresh_store_has_cash_method(self, run):
        db = SQLiteDatabase(StorageSettings(path=":memory:"))
        run(db.initialize_schema())
        rows = run(db.query("SELECT name FROM payment_methods"))
        assert rows == [{"name": "Cash"}]
        run(db.close())

    def test_execute_returns_insert_id(self, run, database):
        result = run(database.execute("INSERT INTO parties (name) VALUES (?)", ["Dave"]))
        assert result.last_insert_id == 4
        assert result.rowcount == 1

    def test_query_one_missing_row(self, run, database):
        assert run(database.query_one("SELECT * FROM parties WHERE id = ?", [99])) is None

    def test_transaction_rolls_back_on_error(self, run, database, count_rows):
        async def failing():
            async with database.transaction():
                await database.execute("INSERT INTO parties (name) VALUES (?)", ["Eve"])
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            run(failing())
        assert count_rows("parties") == 3
        assert database.in_transaction is False

    def test_nested_transaction_uses_savepoint(self, run, database, count_rows):
        async def nested():
            async with database.transaction():
                await database.execute("INSERT INTO parties (name) VALUES (?)", ["Outer"])
                with pytest.raises(RuntimeError):
                    async with database.transaction():
                        await database.execute("INSERT INTO parties (name) VALUES (?)", ["Inner"])
                        raise RuntimeError("inner failure")

        run(nested())
        names = [row["name"] for row in run(database.query("SELECT name FROM parties"))]
        assert "Outer" in names
        assert "Inner" not in names

    def test_failed_rollback_keeps_original_error(self, run, database, monkeypatch):
        """A ROLLBACK that fails itself does not mask the error that aborted the work."""
        run_once = database._run_once

        def failing_rollback(sql, params):
            if sql == "ROLLBACK":
                raise StorageError("cannot rollback")
            return run_once(sql, params)

        monkeypatch.setattr(database, "_run_once", failing_rollback)

        async def failing():
            async with database.transaction():
                await database.execute("INSERT INTO parties (name) VALUES (?)", ["Eve"])
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            run(failing())
        assert database.in_transaction is False

        monkeypatch.undo()
        run_once("ROLLBACK", ())

    def test_unique_violation_raises_duplicate(self, run, database):
        run(database.execute(
            "INSERT INTO expenses (created_at, expense_date) VALUES (?, ?)",
            ["2024-03-01T00:00:00", "2024-03-01"],
        ))
        run(database.execute(
            "INSERT INTO ledger_credits (payment_method_id, amount, credit_date) VALUES (1, 5, '2024-03-01')"
        ))
        insert = (
            "INSERT INTO settlement_records (expense_id, party_id, paid_date, credit_id) "
            "VALUES (1, 1, '2024-03-02', 1)"
        )
        run(database.execute(insert))
        with pytest.raises(DuplicateError):
            run(database.execute(insert))

    def test_bad_statement_raises_storage_error(self, run, database):
        with pytest.raises(StorageError):
            run(database.query("SELECT * FROM no_such_table"))

    def test_error_translation(self):
        busy = _translate_error(sqlite3.OperationalError("database is locked"), "INSERT INTO x")
        assert isinstance(busy, BusyError)
        other = _translate_error(sqlite3.OperationalError("syntax error"), "SELEC 1")
        assert type(other) is StorageError


class TestAuditStorage:
    """Tests for the audit_log table."""

    def test_append_and_read_back(self, run, database):
        storage = SQLiteAuditStorage(database)
        event = AuditEventBuilder.debt_settled(
            expense_id=7,
            party_id=ALICE,
            amount=12.5,
            paid_date=date(2024, 3, 2),
            credit_id=3,
        )
        assert run(storage.append_event(event)) is True

        events = run(storage.get_events_by_entity("settlement", 7))
        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details["paid_date"] == "2024-03-02"
        assert events[0].is_user_action is True

    def test_events_by_correlation_id(self, run, database):
        storage = SQLiteAuditStorage(database)
        cid = uuid4()
        run(storage.append_event(AuditEventBuilder.expense_marked_unpaid(1, correlation_id=cid)))
        run(storage.append_event(AuditEventBuilder.expense_marked_paid(1, 2, correlation_id=cid)))
        run(storage.append_event(AuditEventBuilder.expense_marked_unpaid(2)))

        events = run(storage.get_events_by_correlation_id(cid))
        assert [e.entity_id for e in events] == [1, 1]

    def test_append_failure_keeps_cause(self, run, database):
        storage = SQLiteAuditStorage(database)
        run(database.execute("DROP TABLE audit_log"))

        with pytest.raises(StorageError) as exc_info:
            run(storage.append_event(AuditEventBuilder.expense_marked_unpaid(1)))

        assert "Failed to append audit event" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, StorageError)


class TestExpenseRepository:
    """Tests for loading, saving and deleting expenses."""

    def test_create_and_load(self, run, components):
        saved = run(components.repository.create_expense(Expense(
            expense_date=date(2024, 3, 4),
            description="  Market  ",
            line_items=[
                LineItem(description="Bread", quantity=2, unit_price=1.5),
                LineItem(description="Wine", quantity=1, unit_price=9, excluded_from_discount=True),
            ],
            discount_percent=10,
        )))

        assert saved.id is not None
        assert saved.description == "Market"
        assert [item.description for item in saved.line_items] == ["Bread", "Wine"]
        assert all(item.expense_id == saved.id for item in saved.line_items)
        assert saved.line_items[1].excluded_from_discount is True
        assert saved.expense_date == date(2024, 3, 4)

    def test_create_with_splits(self, run, components):
        saved = run(components.repository.create_expense(Expense(
            expense_date=date(2024, 3, 4),
            is_total_only=True,
            flat_total=20,
            split_mode=SplitMode.SHARE_SPLIT,
            splits=[SplitRecord(party_id=ALICE, shares=2)],
            own_shares=1,
        )))
        assert saved.splits[0].party_id == ALICE
        assert saved.splits[0].shares == 2
        assert saved.own_shares == 1

    def test_create_rejects_invalid_expense(self, run, components, count_rows):
        with pytest.raises(ValidationError):
            run(components.repository.create_expense(Expense(
                expense_date=date(2024, 3, 4),
                is_total_only=True,
                flat_total=20,
                status=ExpenseStatus.UNPAID,
            )))
        assert count_rows("expenses") == 0

    def test_require_missing_expense(self, run, components):
        assert run(components.repository.get_expense(5)) is None
        with pytest.raises(NotFoundError):
            run(components.repository.require_expense(5))

    def test_delete_cascades_to_settlements_and_credits(self, run, components, count_rows, save_expense):
        expense = save_expense(
            line_items=[LineItem(quantity=1, unit_price=10, party_id=BOB)],
            split_mode=SplitMode.PER_ITEM,
        )
        run(components.ledger.settle(expense.id, BOB, 10, date(2024, 3, 6)))

        removed = run(components.expenses.delete_expense(expense.id))

        assert removed == 1
        assert count_rows("expenses") == 0
        assert count_rows("line_items") == 0
        assert count_rows("settlement_records") == 0
        assert count_rows("ledger_credits") == 0

    def test_delete_missing_expense(self, run, components):
        with pytest.raises(NotFoundError):
            run(components.expenses.delete_expense(404))

    def test_lookups(self, run, components):
        assert run(components.repository.get_party_name(ALICE)) == "Alice"
        assert run(components.repository.get_party_name(99)) is None
        assert run(components.repository.get_payment_method_name(1)) == "Cash"
        assert run(components.repository.get_party_names([ALICE, BOB])) == {
            ALICE: "Alice",
            BOB: "Bob",
        }
