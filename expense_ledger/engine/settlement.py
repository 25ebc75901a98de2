"""
Settlement Ledger

Records repayments and toggles the payment state of expenses.

Two directions, two representations:
- Party owes the payer (to_me): one Settlement Record per (expense, party).
  Settling creates a ledger credit on a payment method and the record that
  points at it; unsettling removes both. The record's presence IS the
  settled flag.
- Payer owes a party (to_entity): the expense's own status flips between
  paid and unpaid. No record, no credit.

CRITICAL: the credit and the record are written in one transaction.
A half-written settlement (credit without record or the reverse) would
skew payment method balances forever.

`is_locked` is the only place that decides whether an expense's allocation
may still change.
"""

from datetime import date
from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.config import ModuleSettings, get_settings
from expense_ledger.engine.cache import ResultCache
from expense_ledger.errors import ConflictError, NotFoundError, ValidationError
from expense_ledger.models.expense import Expense, ExpenseStatus, SettlementRecord
from expense_ledger.services.storage import DatabaseInterface, DuplicateError

if TYPE_CHECKING:
    from expense_ledger.queries.expenses import ExpenseRepository


class SettlementLedger:
    """
    Settle / unsettle debts and mark expenses paid or unpaid.

    Every mutating call invalidates cached results for the expense, the
    parties involved and the payment method touched.
    """

    def __init__(
        self,
        database: DatabaseInterface,
        repository: "ExpenseRepository",
        cache: Optional[ResultCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        modules: Optional[ModuleSettings] = None,
    ):
        self._db = database
        self._repository = repository
        self._cache = cache or ResultCache()
        self._audit = audit_logger or AuditLogger()
        self._modules = modules or get_settings().modules
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def is_locked(self, expense_id: int) -> bool:
        """Has any party of this expense already settled?"""
        row = await self._db.query_one(
            "SELECT 1 AS locked FROM settlement_records WHERE expense_id = ? LIMIT 1",
            [expense_id],
        )
        return row is not None

    async def get_settlement(
        self,
        expense_id: int,
        party_id: int,
    ) -> Optional[SettlementRecord]:
        row = await self._db.query_one(
            "SELECT * FROM settlement_records WHERE expense_id = ? AND party_id = ?",
            [expense_id, party_id],
        )
        return SettlementRecord(**row) if row else None

    async def list_settlements(self, expense_id: int) -> list[SettlementRecord]:
        rows = await self._db.query(
            "SELECT * FROM settlement_records WHERE expense_id = ? ORDER BY id",
            [expense_id],
        )
        return [SettlementRecord(**row) for row in rows]

    async def settled_party_ids(self, expense_ids: list[int]) -> set[tuple[int, int]]:
        """(expense_id, party_id) pairs that carry a Settlement Record."""
        if not expense_ids:
            return set()
        marks = ", ".join("?" for _ in expense_ids)
        rows = await self._db.query(
            f"SELECT expense_id, party_id FROM settlement_records WHERE expense_id IN ({marks})",
            list(expense_ids),
        )
        return {(row["expense_id"], row["party_id"]) for row in rows}

    # =========================================================================
    # PARTY OWES PAYER
    # =========================================================================

    def _ensure_debt_enabled(self, operation: str, expense_id: int) -> None:
        if not self._modules.debt_enabled:
            raise ValidationError(
                "Debt tracking is disabled",
                operation=operation,
                expense_id=expense_id,
            )

    async def _resolve_payment_method(
        self,
        payment_method_id: Optional[int],
        expense: Expense,
        operation: str,
        party_id: Optional[int] = None,
    ) -> int:
        """
        Pick the payment method money moves through.

        Without payment methods enabled everything lands on the default
        method; otherwise the caller's choice wins, then the expense's own
        method, then the default.

        Raises:
            ValidationError: No method resolvable, or it does not exist
        """
        if not self._modules.payment_methods_enabled:
            payment_method_id = self._modules.default_payment_method_id
        elif payment_method_id is None:
            payment_method_id = (
                expense.payment_method_id or self._modules.default_payment_method_id
            )
        if payment_method_id is None:
            raise ValidationError(
                "No payment method given and no default configured",
                operation=operation,
                expense_id=expense.id,
                party_id=party_id,
            )
        if await self._repository.get_payment_method(payment_method_id) is None:
            raise ValidationError(
                f"Payment method {payment_method_id} does not exist",
                operation=operation,
                expense_id=expense.id,
                party_id=party_id,
            )
        return payment_method_id

    async def settle(
        self,
        expense_id: int,
        party_id: int,
        amount: float,
        paid_date: date,
        payment_method_id: Optional[int] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementRecord:
        """
        Record that a party paid back its part of an expense.

        Args:
            expense_id: The expense being repaid
            party_id: Who paid
            amount: Money received (the party's computed share, normally)
            paid_date: When it was received
            payment_method_id: Where the money landed (the expense's method, then
                               the default method, if None)
            note: Credit note; defaults to "Repayment from <party> ..."

        Returns:
            The stored SettlementRecord

        Raises:
            ValidationError: Negative amount, disabled debt tracking, a party
                             the allocation does not carry, or no usable
                             payment method
            NotFoundError: Expense or party missing
            ConflictError: The pair is already settled
        """
        operation = "settle"
        self._ensure_debt_enabled(operation, expense_id)
        if amount < 0:
            raise ValidationError(
                "Settlement amount cannot be negative",
                operation=operation,
                expense_id=expense_id,
                party_id=party_id,
            )

        expense = await self._repository.require_expense(expense_id, operation=operation)
        party = await self._repository.require_party(party_id, operation=operation)

        # Only a party carried by the allocation owes anything on this expense
        if party_id not in expense.assigned_party_ids:
            raise ValidationError(
                "Party owes nothing on this expense",
                operation=operation,
                expense_id=expense_id,
                party_id=party_id,
            )

        method_id = await self._resolve_payment_method(
            payment_method_id, expense, operation, party_id
        )

        if await self.get_settlement(expense_id, party_id) is not None:
            await self._audit.log_settlement_conflict(
                expense_id, party_id, operation, correlation_id=correlation_id
            )
            raise ConflictError(
                "Debt is already settled",
                operation=operation,
                expense_id=expense_id,
                party_id=party_id,
            )

        credit_note = note or (
            f"Repayment from {party.name} for expense of {expense.expense_date.isoformat()}"
        )

        try:
            async with self._db.transaction():
                credit = await self._db.execute(
                    "INSERT INTO ledger_credits (payment_method_id, amount, credit_date, note) "
                    "VALUES (?, ?, ?, ?)",
                    [method_id, amount, paid_date.isoformat(), credit_note],
                )
                record = await self._db.execute(
                    "INSERT INTO settlement_records (expense_id, party_id, paid_date, credit_id) "
                    "VALUES (?, ?, ?, ?)",
                    [expense_id, party_id, paid_date.isoformat(), credit.last_insert_id],
                )
        except DuplicateError as e:
            # Lost a race against another settle of the same pair
            await self._audit.log_settlement_conflict(
                expense_id, party_id, operation, correlation_id=correlation_id
            )
            raise ConflictError(
                "Debt is already settled",
                operation=operation,
                expense_id=expense_id,
                party_id=party_id,
            ) from e

        self._cache.invalidate(
            expense_id=expense_id,
            party_ids=[party_id],
            payment_method_ids=[method_id],
        )
        self._logger.info(
            "debt_settled",
            expense_id=expense_id,
            party_id=party_id,
            amount=amount,
            credit_id=credit.last_insert_id,
        )
        await self._audit.log_debt_settled(
            expense_id=expense_id,
            party_id=party_id,
            amount=amount,
            paid_date=paid_date,
            credit_id=credit.last_insert_id,
            correlation_id=correlation_id,
        )

        return SettlementRecord(
            id=record.last_insert_id,
            expense_id=expense_id,
            party_id=party_id,
            paid_date=paid_date,
            credit_id=credit.last_insert_id,
        )

    async def unsettle(
        self,
        expense_id: int,
        party_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Reverse a settlement: remove the record, then its credit.

        Raises:
            NotFoundError: The pair has no Settlement Record
        """
        self._ensure_debt_enabled("unsettle", expense_id)
        record = await self.get_settlement(expense_id, party_id)
        if record is None:
            raise NotFoundError(
                "No settlement to reverse",
                operation="unsettle",
                expense_id=expense_id,
                party_id=party_id,
            )

        credit = await self._db.query_one(
            "SELECT payment_method_id FROM ledger_credits WHERE id = ?",
            [record.credit_id],
        )

        async with self._db.transaction():
            await self._db.execute(
                "DELETE FROM settlement_records WHERE id = ?",
                [record.id],
            )
            await self._db.execute(
                "DELETE FROM ledger_credits WHERE id = ?",
                [record.credit_id],
            )

        self._cache.invalidate(
            expense_id=expense_id,
            party_ids=[party_id],
            payment_method_ids=[credit["payment_method_id"] if credit else None],
        )
        self._logger.info(
            "debt_unsettled",
            expense_id=expense_id,
            party_id=party_id,
            credit_id=record.credit_id,
        )
        await self._audit.log_debt_unsettled(
            expense_id=expense_id,
            party_id=party_id,
            credit_id=record.credit_id,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # PAYER OWES PARTY
    # =========================================================================

    async def _require_owed_expense(self, expense_id: int, operation: str):
        self._ensure_debt_enabled(operation, expense_id)
        expense = await self._repository.require_expense(expense_id, operation=operation)
        if expense.owed_to_party_id is None:
            raise ValidationError(
                "Expense is not owed to any party",
                operation=operation,
                expense_id=expense_id,
            )
        return expense

    async def mark_expense_paid(
        self,
        expense_id: int,
        payment_method_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Record that the payer paid back the party an expense is owed to.

        The payment method is resolved like a settlement's: the given one,
        then the expense's, then the configured default.

        Raises:
            NotFoundError: Expense missing
            ValidationError: Expense has no owed-to party, or no usable
                             payment method
        """
        operation = "mark_expense_paid"
        expense = await self._require_owed_expense(expense_id, operation)
        method_id = await self._resolve_payment_method(payment_method_id, expense, operation)

        await self._repository.set_payment_state(
            expense_id, ExpenseStatus.PAID, method_id
        )

        self._cache.invalidate(
            expense_id=expense_id,
            party_ids=[expense.owed_to_party_id],
            payment_method_ids=[expense.payment_method_id, method_id],
        )
        await self._audit.log_expense_marked_paid(
            expense_id, method_id, correlation_id=correlation_id
        )

    async def mark_expense_unpaid(
        self,
        expense_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Reopen an expense owed to a party; its payment method is cleared."""
        expense = await self._require_owed_expense(expense_id, "mark_expense_unpaid")

        await self._repository.set_payment_state(expense_id, ExpenseStatus.UNPAID, None)

        self._cache.invalidate(
            expense_id=expense_id,
            party_ids=[expense.owed_to_party_id],
            payment_method_ids=[expense.payment_method_id],
        )
        await self._audit.log_expense_marked_unpaid(
            expense_id, correlation_id=correlation_id
        )
