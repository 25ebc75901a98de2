"""
Balance Aggregator

Answers "where do I stand with this party?" and "how much is left on this
payment method?", both as totals and as dense daily series for charts.

Qualifying expenses for a party (tentative expenses never qualify):
- owed to the party              -> to_entity, full net total,
                                    settled iff the expense is paid
- party in split records         -> to_me, allocated amount,
  or item assignments               settled iff a Settlement Record exists

Sign convention: to_me is positive, to_entity negative.
"""

from datetime import date, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from expense_ledger.config import AppSettings, get_settings
from expense_ledger.engine import cache as cache_kinds
from expense_ledger.engine.allocation import AllocationEngine
from expense_ledger.engine.cache import ResultCache
from expense_ledger.engine.discount import expense_net_total
from expense_ledger.errors import NotFoundError
from expense_ledger.engine.settlement import SettlementLedger
from expense_ledger.models.expense import (
    DebtDirection,
    ExpenseStatus,
    SettlementFilter,
    SplitMode,
)
from expense_ledger.models.results import (
    BalancePoint,
    BalanceStats,
    DebtTransaction,
    PaymentMethodBalance,
)

if TYPE_CHECKING:
    from expense_ledger.queries.expenses import ExpenseRepository


def month_start(day: date) -> date:
    return day.replace(day=1)


def dense_series(
    deltas: Iterable[tuple[date, float]],
    end: date,
    opening_balance: float = 0.0,
) -> list[BalancePoint]:
    """
    Replay dated deltas into one point per day.

    The series starts on the first day of the month of the earliest delta
    and runs through `end` (or the last delta, if that is later). Days
    without movement carry the previous balance forward.
    """
    by_day: dict[date, float] = {}
    for day, amount in deltas:
        by_day[day] = by_day.get(day, 0.0) + amount
    if not by_day:
        return []

    start = month_start(min(by_day))
    end = max(end, max(by_day))

    points = []
    balance = opening_balance
    day = start
    while day <= end:
        balance += by_day.get(day, 0.0)
        points.append(BalancePoint(day=day, balance=balance))
        day += timedelta(days=1)
    return points


class BalanceAggregator:
    """Per-party and per-payment-method balances."""

    def __init__(
        self,
        repository: "ExpenseRepository",
        allocation_engine: AllocationEngine,
        ledger: SettlementLedger,
        cache: Optional[ResultCache] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._repository = repository
        self._allocation = allocation_engine
        self._ledger = ledger
        self._cache = cache or ResultCache()
        self._app = app_settings or get_settings().app

    # =========================================================================
    # PARTY DEBTS
    # =========================================================================

    async def _party_transactions(self, party_id: int) -> list[DebtTransaction]:
        cached = self._cache.get(cache_kinds.PARTY_DEBTS, party_id)
        if cached is not None:
            return cached

        await self._repository.require_party(party_id, operation="list_debts")
        expenses = await self._repository.list_expenses_for_party(party_id)
        settled_pairs = await self._ledger.settled_party_ids(
            [expense.id for expense in expenses]
        )

        transactions = []
        for expense in expenses:
            if expense.owed_to_party_id == party_id:
                transactions.append(DebtTransaction(
                    expense_id=expense.id,
                    expense_date=expense.expense_date,
                    description=expense.description,
                    direction=DebtDirection.TO_ENTITY,
                    amount=expense_net_total(expense),
                    is_settled=expense.status == ExpenseStatus.PAID,
                ))

            if party_id not in expense.assigned_party_ids:
                continue

            allocation = self._allocation.compute(expense)
            shares = total_shares = None
            if expense.split_mode == SplitMode.SHARE_SPLIT:
                shares = sum(s.shares for s in expense.splits if s.party_id == party_id)
                total_shares = sum(s.shares for s in expense.splits) + expense.own_shares

            transactions.append(DebtTransaction(
                expense_id=expense.id,
                expense_date=expense.expense_date,
                description=expense.description,
                direction=DebtDirection.TO_ME,
                amount=allocation.amount_for(party_id),
                is_settled=(expense.id, party_id) in settled_pairs,
                shares=shares,
                total_shares=total_shares,
            ))

        transactions.sort(key=lambda t: (t.expense_date, t.expense_id))
        self._cache.set(cache_kinds.PARTY_DEBTS, party_id, transactions)
        return transactions

    async def list_debts(
        self,
        party_id: int,
        direction: Optional[DebtDirection] = None,
        status: Optional[SettlementFilter] = SettlementFilter.ALL,
    ) -> list[DebtTransaction]:
        """
        Every debt between the payer and one party, oldest first.

        Args:
            party_id: The party
            direction: Only to_me or only to_entity (both when None)
            status: all / settled / unsettled

        Raises:
            NotFoundError: If the party does not exist
        """
        # Copies, so callers cannot edit what the cache holds
        transactions = [t.model_copy() for t in await self._party_transactions(party_id)]

        if direction is not None:
            transactions = [t for t in transactions if t.direction == direction]
        if status == SettlementFilter.SETTLED:
            transactions = [t for t in transactions if t.is_settled]
        elif status == SettlementFilter.UNSETTLED:
            transactions = [t for t in transactions if not t.is_settled]
        return transactions

    async def compute_stats(self, party_id: int) -> BalanceStats:
        """
        Totals owed in both directions.

        Total figures include settled debts, open figures only unsettled.
        """
        stats = BalanceStats(party_id=party_id)
        for transaction in await self._party_transactions(party_id):
            stats.transaction_count += 1
            if transaction.direction == DebtDirection.TO_ME:
                stats.total_owed_to_me += transaction.amount
                if not transaction.is_settled:
                    stats.open_owed_to_me += transaction.amount
            else:
                stats.total_i_owe += transaction.amount
                if not transaction.is_settled:
                    stats.open_i_owe += transaction.amount

        stats.net = stats.total_owed_to_me - stats.total_i_owe
        stats.open_net = stats.open_owed_to_me - stats.open_i_owe
        return stats

    async def compute_time_series(
        self,
        party_id: int,
        today: Optional[date] = None,
        unsettled_only: bool = False,
    ) -> list[BalancePoint]:
        """
        Running net balance with one party, one point per day.

        Returns an empty list when the party has no qualifying expenses.
        """
        status = SettlementFilter.UNSETTLED if unsettled_only else SettlementFilter.ALL
        transactions = await self.list_debts(party_id, status=status)
        return dense_series(
            ((t.expense_date, t.signed_amount) for t in transactions),
            end=today or self._app.today(),
        )

    # =========================================================================
    # PAYMENT METHODS
    # =========================================================================

    async def _payment_method_movements(
        self,
        payment_method_id: int,
    ) -> tuple[float, list[tuple[date, float]], list[tuple[date, float]]]:
        method = await self._repository.get_payment_method(payment_method_id)
        if method is None:
            raise NotFoundError(
                f"Payment method {payment_method_id} not found",
                operation="payment_method_balance",
            )

        credits = [
            (row["credit_date"], row["amount"])
            for row in await self._repository.list_credits_for_payment_method(payment_method_id)
        ]
        expenses = [
            (expense.expense_date, expense_net_total(expense))
            for expense in await self._repository.list_expenses_for_payment_method(payment_method_id)
        ]
        return method.initial_funds, credits, expenses

    async def compute_payment_method_balance(
        self,
        payment_method_id: int,
    ) -> PaymentMethodBalance:
        """Initial funds plus credits minus expenses paid with the method."""
        cached = self._cache.get(cache_kinds.PAYMENT_METHOD, payment_method_id)
        if cached is not None:
            return cached

        initial, credits, expenses = await self._payment_method_movements(payment_method_id)
        total_credits = sum(amount for _, amount in credits)
        total_expenses = sum(amount for _, amount in expenses)

        balance = PaymentMethodBalance(
            payment_method_id=payment_method_id,
            initial_funds=initial,
            total_credits=total_credits,
            total_expenses=total_expenses,
            balance=initial + total_credits - total_expenses,
        )
        self._cache.set(cache_kinds.PAYMENT_METHOD, payment_method_id, balance)
        return balance

    async def compute_payment_method_time_series(
        self,
        payment_method_id: int,
        today: Optional[date] = None,
    ) -> list[BalancePoint]:
        """Daily balance of a payment method, starting from its initial funds."""
        initial, credits, expenses = await self._payment_method_movements(payment_method_id)
        deltas = credits + [(day, -amount) for day, amount in expenses]
        return dense_series(
            deltas,
            end=today or self._app.today(),
            opening_balance=initial,
        )
