"""
Shared fixtures.

Every test gets a fresh in-memory SQLite store with three parties and two
payment methods:

    parties:          1 Alice, 2 Bob, 3 Carol
    payment methods:  1 Cash (seeded, 0 funds), 2 Card (100 initial funds)
"""

import asyncio
from datetime import date

import pytest

from expense_ledger.config import StorageSettings
from expense_ledger.models.expense import Expense
from expense_ledger.orchestrator import create_ledger_components
from expense_ledger.services.storage import SQLiteDatabase


@pytest.fixture
def run():
    """Drive a coroutine to completion."""
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture
def database(run):
    db = SQLiteDatabase(StorageSettings(path=":memory:"))
    run(db.initialize_schema())
    for name in ("Alice", "Bob", "Carol"):
        run(db.execute("INSERT INTO parties (name) VALUES (?)", [name]))
    run(db.execute(
        "INSERT INTO payment_methods (name, initial_funds) VALUES (?, ?)",
        ["Card", 100.0],
    ))
    yield db
    run(db.close())


@pytest.fixture
def components(run, database):
    return run(create_ledger_components(database=database))


@pytest.fixture
def save_expense(run, components):
    """Persist an expense built from keyword arguments."""
    def _save(**fields):
        fields.setdefault("expense_date", date(2024, 3, 5))
        return run(components.expenses.save_expense(Expense(**fields)))
    return _save


@pytest.fixture
def count_rows(run, database):
    def _count(table: str) -> int:
        row = run(database.query_one(f"SELECT COUNT(*) AS n FROM {table}"))
        return row["n"]
    return _count
