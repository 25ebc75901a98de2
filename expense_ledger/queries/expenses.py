"""
Expense Repository

DESIGN DECISION: All SQL that reads or writes expenses, their line items and
their split records lives here. The engines never build expense rows
themselves; they load `Expense` models, derive a new model, and hand it back.

Every load returns fully populated models (items and splits included), so the
allocation math never has to go back to storage.
"""

from datetime import date
from typing import Iterable, Optional

import structlog

from expense_ledger.errors import NotFoundError
from expense_ledger.models.expense import (
    Expense,
    ExpenseStatus,
    LineItem,
    Party,
    PaymentMethod,
    SplitRecord,
)
from expense_ledger.services.storage import DatabaseInterface
from expense_ledger.validation import ExpenseValidator


EXPENSE_COLUMNS = [
    "created_at",
    "expense_date",
    "description",
    "is_total_only",
    "flat_total",
    "discount_percent",
    "split_mode",
    "own_shares",
    "status",
    "owed_to_party_id",
    "payment_method_id",
    "is_tentative",
]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class ExpenseRepository:
    """
    Loads and saves expenses through a DatabaseInterface.

    Write methods do not open their own transaction unless noted; the
    engines wrap them together with settlement writes.
    """

    def __init__(
        self,
        database: DatabaseInterface,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._db = database
        self._validator = validator or ExpenseValidator()
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            expense.created_at.isoformat(),
            expense.expense_date.isoformat(),
            expense.description,
            int(expense.is_total_only),
            expense.flat_total,
            expense.discount_percent,
            expense.split_mode.value,
            expense.own_shares,
            expense.status.value,
            expense.owed_to_party_id,
            expense.payment_method_id,
            int(expense.is_tentative),
        ]

    def _row_to_expense(
        self,
        row: dict,
        items: list[dict],
        splits: list[dict],
    ) -> Expense:
        return Expense(
            id=row["id"],
            created_at=row["created_at"],
            expense_date=row["expense_date"],
            description=row["description"],
            line_items=[LineItem(**item) for item in items],
            is_total_only=bool(row["is_total_only"]),
            flat_total=row["flat_total"],
            discount_percent=row["discount_percent"],
            split_mode=row["split_mode"],
            own_shares=row["own_shares"],
            splits=[SplitRecord(**split) for split in splits],
            status=row["status"],
            owed_to_party_id=row["owed_to_party_id"],
            payment_method_id=row["payment_method_id"],
            is_tentative=bool(row["is_tentative"]),
        )

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def create_expense(self, expense: Expense) -> Expense:
        """
        Validate and insert an expense with its items and splits.

        Runs in its own transaction (nested as a savepoint when the caller
        already holds one).

        Returns:
            The stored expense, with every generated id filled in

        Raises:
            ValidationError: If the expense fails validation
        """
        self._validator.ensure_valid(
            self._validator.validate(expense),
            operation="create_expense",
        )

        async with self._db.transaction():
            result = await self._db.execute(
                f"INSERT INTO expenses ({', '.join(EXPENSE_COLUMNS)}) "
                f"VALUES ({_placeholders(len(EXPENSE_COLUMNS))})",
                self._expense_to_row(expense),
            )
            expense_id = result.last_insert_id

            for item in expense.line_items:
                await self._insert_item(expense_id, item)
            for split in expense.splits:
                await self._insert_split(expense_id, split)

        self._logger.info(
            "expense_created",
            expense_id=expense_id,
            split_mode=expense.split_mode.value,
            items=len(expense.line_items),
        )
        return await self.require_expense(expense_id, operation="create_expense")

    async def _insert_item(self, expense_id: int, item: LineItem) -> None:
        await self._db.execute(
            "INSERT INTO line_items "
            "(expense_id, description, quantity, unit_price, party_id, excluded_from_discount) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                expense_id,
                item.description,
                item.quantity,
                item.unit_price,
                item.party_id,
                int(item.excluded_from_discount),
            ],
        )

    async def _insert_split(self, expense_id: int, split: SplitRecord) -> None:
        await self._db.execute(
            "INSERT INTO split_records (expense_id, party_id, shares) VALUES (?, ?, ?)",
            [expense_id, split.party_id, split.shares],
        )

    async def get_expense(self, expense_id: int) -> Optional[Expense]:
        """Load one expense, or None if it does not exist."""
        expenses = await self.get_expenses([expense_id])
        return expenses.get(expense_id)

    async def require_expense(
        self,
        expense_id: int,
        operation: Optional[str] = None,
    ) -> Expense:
        """
        Load one expense.

        Raises:
            NotFoundError: If the expense does not exist
        """
        expense = await self.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(
                "Expense not found",
                operation=operation,
                expense_id=expense_id,
            )
        return expense

    async def get_expenses(self, expense_ids: Iterable[int]) -> dict[int, Expense]:
        """
        Load several expenses in three queries.

        Missing ids are simply absent from the returned mapping.
        """
        ids = sorted(set(expense_ids))
        if not ids:
            return {}
        marks = _placeholders(len(ids))

        rows = await self._db.query(
            f"SELECT * FROM expenses WHERE id IN ({marks})", ids
        )
        items = await self._db.query(
            f"SELECT * FROM line_items WHERE expense_id IN ({marks}) ORDER BY id", ids
        )
        splits = await self._db.query(
            f"SELECT * FROM split_records WHERE expense_id IN ({marks}) ORDER BY id", ids
        )

        items_by_expense: dict[int, list[dict]] = {}
        for item in items:
            items_by_expense.setdefault(item["expense_id"], []).append(item)
        splits_by_expense: dict[int, list[dict]] = {}
        for split in splits:
            splits_by_expense.setdefault(split["expense_id"], []).append(split)

        return {
            row["id"]: self._row_to_expense(
                row,
                items_by_expense.get(row["id"], []),
                splits_by_expense.get(row["id"], []),
            )
            for row in rows
        }

    async def delete_expense(self, expense_id: int) -> int:
        """
        Delete an expense and everything that hangs off it.

        Settlement records go first, together with the ledger credits they
        created; line items and split records cascade.

        Returns:
            Number of settlement records removed

        Raises:
            NotFoundError: If the expense does not exist
        """
        await self.require_expense(expense_id, operation="delete_expense")

        async with self._db.transaction():
            settlements = await self._db.query(
                "SELECT id, credit_id FROM settlement_records WHERE expense_id = ?",
                [expense_id],
            )
            await self._db.execute(
                "DELETE FROM settlement_records WHERE expense_id = ?",
                [expense_id],
            )
            for settlement in settlements:
                await self._db.execute(
                    "DELETE FROM ledger_credits WHERE id = ?",
                    [settlement["credit_id"]],
                )
            await self._db.execute("DELETE FROM expenses WHERE id = ?", [expense_id])

        self._logger.info(
            "expense_deleted",
            expense_id=expense_id,
            removed_settlements=len(settlements),
        )
        return len(settlements)

    async def save_allocation(self, expense: Expense) -> None:
        """
        Persist the allocation configuration of an existing expense.

        Writes split mode and own shares, replaces the split records and
        rewrites every line item's party assignment.
        """
        await self._db.execute(
            "UPDATE expenses SET split_mode = ?, own_shares = ? WHERE id = ?",
            [expense.split_mode.value, expense.own_shares, expense.id],
        )
        await self._db.execute(
            "DELETE FROM split_records WHERE expense_id = ?",
            [expense.id],
        )
        for split in expense.splits:
            await self._insert_split(expense.id, split)
        for item in expense.line_items:
            await self._db.execute(
                "UPDATE line_items SET party_id = ? WHERE id = ? AND expense_id = ?",
                [item.party_id, item.id, expense.id],
            )

    async def set_payment_state(
        self,
        expense_id: int,
        status: ExpenseStatus,
        payment_method_id: Optional[int],
    ) -> int:
        result = await self._db.execute(
            "UPDATE expenses SET status = ?, payment_method_id = ? WHERE id = ?",
            [status.value, payment_method_id, expense_id],
        )
        return result.rowcount

    # =========================================================================
    # PARTY QUERIES
    # =========================================================================

    async def list_expense_ids_for_party(self, party_id: int) -> list[int]:
        """
        Non-tentative expenses that involve the party in either direction.

        Either the expense is owed to the party, or the party appears in its
        split records or item assignments.
        """
        rows = await self._db.query(
            """
            SELECT id FROM expenses
            WHERE is_tentative = 0 AND (
                owed_to_party_id = ?
                OR (split_mode = 'share_split' AND id IN (
                    SELECT expense_id FROM split_records WHERE party_id = ?))
                OR (split_mode = 'per_item' AND id IN (
                    SELECT expense_id FROM line_items WHERE party_id = ?))
            )
            ORDER BY expense_date, id
            """,
            [party_id, party_id, party_id],
        )
        return [row["id"] for row in rows]

    async def list_expenses_for_party(self, party_id: int) -> list[Expense]:
        ids = await self.list_expense_ids_for_party(party_id)
        expenses = await self.get_expenses(ids)
        return [expenses[expense_id] for expense_id in ids if expense_id in expenses]

    async def list_expenses_for_payment_method(self, payment_method_id: int) -> list[Expense]:
        """Non-tentative paid expenses charged to a payment method."""
        rows = await self._db.query(
            "SELECT id FROM expenses "
            "WHERE payment_method_id = ? AND is_tentative = 0 AND status = 'paid' "
            "ORDER BY expense_date, id",
            [payment_method_id],
        )
        ids = [row["id"] for row in rows]
        expenses = await self.get_expenses(ids)
        return [expenses[expense_id] for expense_id in ids]

    # =========================================================================
    # REFERENCE LOOKUPS (read-only)
    # =========================================================================

    async def get_party(self, party_id: int) -> Optional[Party]:
        row = await self._db.query_one("SELECT * FROM parties WHERE id = ?", [party_id])
        if row is None:
            return None
        return Party(id=row["id"], name=row["name"], is_active=bool(row["is_active"]))

    async def require_party(self, party_id: int, operation: Optional[str] = None) -> Party:
        party = await self.get_party(party_id)
        if party is None:
            raise NotFoundError("Party not found", operation=operation, party_id=party_id)
        return party

    async def get_party_name(self, party_id: int) -> Optional[str]:
        party = await self.get_party(party_id)
        return party.name if party else None

    async def get_party_names(self, party_ids: Iterable[int]) -> dict[int, str]:
        ids = sorted(set(party_ids))
        if not ids:
            return {}
        rows = await self._db.query(
            f"SELECT id, name FROM parties WHERE id IN ({_placeholders(len(ids))})",
            ids,
        )
        return {row["id"]: row["name"] for row in rows}

    async def get_payment_method(self, payment_method_id: int) -> Optional[PaymentMethod]:
        row = await self._db.query_one(
            "SELECT * FROM payment_methods WHERE id = ?", [payment_method_id]
        )
        if row is None:
            return None
        return PaymentMethod(**row)

    async def get_payment_method_name(self, payment_method_id: int) -> Optional[str]:
        method = await self.get_payment_method(payment_method_id)
        return method.name if method else None

    async def list_credits_for_payment_method(self, payment_method_id: int) -> list[dict]:
        """Ledger credits (repayments, top-ups) on a method, oldest first."""
        rows = await self._db.query(
            "SELECT id, amount, credit_date, note FROM ledger_credits "
            "WHERE payment_method_id = ? ORDER BY credit_date, id",
            [payment_method_id],
        )
        for row in rows:
            row["credit_date"] = date.fromisoformat(row["credit_date"])
        return rows
