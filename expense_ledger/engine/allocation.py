"""
Allocation Engine

Turns an expense's split configuration into money owed per party, and owns
every change to that configuration.

Split modes:
- none:        nobody owes anything
- share_split: net total divided by integer shares; the payer's own shares
               live on the expense and produce `own_amount`
- per_item:    each assigned line item's discounted amount goes to its party;
               unassigned items are the payer's

CRITICAL: once any party has settled (see SettlementLedger.is_locked), the
allocation configuration is frozen. Unlocked mode changes that destroy
allocation data need explicit confirmation.
"""

from typing import TYPE_CHECKING, Iterable, Mapping, Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger
from expense_ledger.engine import cache as cache_kinds
from expense_ledger.engine.cache import ResultCache
from expense_ledger.engine.discount import discounted_amount, expense_net_total
from expense_ledger.errors import ConfirmationRequiredError, ConflictError
from expense_ledger.engine.settlement import SettlementLedger
from expense_ledger.models.expense import Expense, LineItem, SplitMode, SplitRecord
from expense_ledger.models.results import (
    AllocationResult,
    ExpenseDebtSummary,
    OwnShareSummary,
    PartyDebtSummary,
    SplitModeChangePlan,
)
from expense_ledger.services.storage import DatabaseInterface
from expense_ledger.validation import ExpenseValidator

if TYPE_CHECKING:
    from expense_ledger.queries.expenses import ExpenseRepository


def allocate(
    expense: Expense,
    line_items: Iterable[LineItem],
    splits: Iterable[SplitRecord],
    net_total: float,
) -> AllocationResult:
    """
    Compute what each party owes for one expense.

    Args:
        expense: Supplies split mode, own shares and discount
        line_items: The expense's items (used by per_item)
        splits: The expense's split records (used by share_split)
        net_total: Discounted total of the expense

    Returns:
        AllocationResult; amounts are unrounded
    """
    if expense.split_mode == SplitMode.SHARE_SPLIT:
        splits = list(splits)
        total_shares = sum(split.shares for split in splits) + expense.own_shares
        if total_shares <= 0:
            return AllocationResult()

        party_amounts: dict[int, float] = {}
        for split in splits:
            amount = net_total * split.shares / total_shares
            party_amounts[split.party_id] = party_amounts.get(split.party_id, 0.0) + amount

        own_amount = None
        if expense.own_shares > 0:
            own_amount = net_total * expense.own_shares / total_shares
        return AllocationResult(party_amounts=party_amounts, own_amount=own_amount)

    if expense.split_mode == SplitMode.PER_ITEM:
        party_amounts = {}
        for item in line_items:
            if item.party_id is None:
                continue
            amount = discounted_amount(item, expense.discount_percent)
            party_amounts[item.party_id] = party_amounts.get(item.party_id, 0.0) + amount
        return AllocationResult(party_amounts=party_amounts)

    return AllocationResult()


def _with_allocation(expense: Expense, **changes) -> Expense:
    """Copy of `expense` with allocation fields replaced, re-validated."""
    data = expense.model_dump()
    data.update(changes)
    return Expense.model_validate(data)


def _unassigned_items(expense: Expense) -> list[dict]:
    return [
        {**item.model_dump(), "party_id": None}
        for item in expense.line_items
    ]


class AllocationEngine:
    """
    Computes allocations and applies allocation changes.

    Reads go through the shared ResultCache; writes invalidate it.
    """

    def __init__(
        self,
        database: DatabaseInterface,
        repository: "ExpenseRepository",
        ledger: SettlementLedger,
        cache: Optional[ResultCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._db = database
        self._repository = repository
        self._ledger = ledger
        self._cache = cache or ResultCache()
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or ExpenseValidator()
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # READS
    # =========================================================================

    def compute(self, expense: Expense) -> AllocationResult:
        """Allocation of an already loaded expense (no caching)."""
        return allocate(
            expense,
            expense.line_items,
            expense.splits,
            expense_net_total(expense),
        )

    async def allocate_expense(self, expense_id: int) -> AllocationResult:
        """
        Allocation of a stored expense, cached until the expense changes.

        Raises:
            NotFoundError: If the expense does not exist
        """
        cached = self._cache.get(cache_kinds.ALLOCATION, expense_id)
        if cached is not None:
            return cached

        expense = await self._repository.require_expense(expense_id, operation="allocate")
        result = self.compute(expense)
        self._cache.set(cache_kinds.ALLOCATION, expense_id, result)
        return result

    async def summarize_expense(self, expense_id: int) -> ExpenseDebtSummary:
        """
        Who owes what on one expense, with settled flags.

        Share splitting reports shares per party; per-item splitting reports
        how many items each party carries.
        """
        cached = self._cache.get(cache_kinds.EXPENSE_SUMMARY, expense_id)
        if cached is not None:
            return cached

        expense = await self._repository.require_expense(expense_id, operation="summarize")
        net_total = expense_net_total(expense)
        allocation = allocate(expense, expense.line_items, expense.splits, net_total)
        settled = {record.party_id for record in await self._ledger.list_settlements(expense_id)}
        names = await self._repository.get_party_names(allocation.party_amounts)

        parties = []
        own_share = None
        if expense.split_mode == SplitMode.SHARE_SPLIT:
            shares_by_party: dict[int, int] = {}
            for split in expense.splits:
                shares_by_party[split.party_id] = shares_by_party.get(split.party_id, 0) + split.shares
            total_shares = sum(shares_by_party.values()) + expense.own_shares
            for party_id, shares in shares_by_party.items():
                parties.append(PartyDebtSummary(
                    party_id=party_id,
                    name=names.get(party_id),
                    amount=allocation.amount_for(party_id),
                    is_paid=party_id in settled,
                    shares=shares,
                    total_shares=total_shares,
                ))
            if allocation.own_amount is not None:
                own_share = OwnShareSummary(
                    amount=allocation.own_amount,
                    shares=expense.own_shares,
                    total_shares=total_shares,
                )

        elif expense.split_mode == SplitMode.PER_ITEM:
            counts: dict[int, int] = {}
            for item in expense.line_items:
                if item.party_id is not None:
                    counts[item.party_id] = counts.get(item.party_id, 0) + 1
            for party_id, count in counts.items():
                parties.append(PartyDebtSummary(
                    party_id=party_id,
                    name=names.get(party_id),
                    amount=allocation.amount_for(party_id),
                    is_paid=party_id in settled,
                    item_count=count,
                    total_items=len(expense.line_items),
                ))

        summary = ExpenseDebtSummary(
            expense_id=expense_id,
            split_mode=expense.split_mode,
            net_total=net_total,
            parties=parties,
            own_share=own_share,
        )
        self._cache.set(cache_kinds.EXPENSE_SUMMARY, expense_id, summary)
        return summary

    # =========================================================================
    # MODE TRANSITIONS
    # =========================================================================

    async def _plan(self, expense: Expense, new_mode: SplitMode) -> SplitModeChangePlan:
        current = expense.split_mode
        leaving_shares = current == SplitMode.SHARE_SPLIT and new_mode != current
        leaving_items = current == SplitMode.PER_ITEM and new_mode != current

        cleared_parties: set[int] = set()
        if leaving_shares:
            cleared_parties.update(split.party_id for split in expense.splits)
        if leaving_items:
            cleared_parties.update(
                item.party_id for item in expense.line_items
                if item.party_id is not None
            )

        locked = expense.has_allocation and await self._ledger.is_locked(expense.id)

        return SplitModeChangePlan(
            expense_id=expense.id,
            current_mode=current,
            new_mode=new_mode,
            clears_splits=leaving_shares and bool(expense.splits),
            clears_item_assignments=leaving_items and bool(cleared_parties),
            affected_party_ids=sorted(cleared_parties),
            locked=locked,
        )

    async def plan_split_mode_change(
        self,
        expense_id: int,
        new_mode: SplitMode,
    ) -> SplitModeChangePlan:
        """Describe what a mode change would clear, without changing anything."""
        expense = await self._repository.require_expense(expense_id, operation="plan_split_mode_change")
        return await self._plan(expense, new_mode)

    async def change_split_mode(
        self,
        expense_id: int,
        new_mode: SplitMode,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> SplitModeChangePlan:
        """
        Switch an expense to another split mode.

        Leaving share_split drops split records and own shares; leaving
        per_item drops item assignments. Both happen in one transaction with
        the mode update.

        Returns:
            The plan that was applied

        Raises:
            ConflictError: Allocation data exists and a party has settled
            ConfirmationRequiredError: Data would be cleared and the caller
                                       has not confirmed yet
            ValidationError: The new mode does not fit the expense
        """
        operation = "change_split_mode"
        expense = await self._repository.require_expense(expense_id, operation=operation)
        plan = await self._plan(expense, new_mode)

        if plan.is_noop:
            return plan

        if plan.locked:
            await self._audit.log_settlement_conflict(
                expense_id, None, operation, correlation_id=correlation_id
            )
            raise ConflictError(
                "Allocation is locked by an existing settlement",
                operation=operation,
                expense_id=expense_id,
            )

        if plan.requires_confirmation and not confirmed:
            raise ConfirmationRequiredError(
                "Changing the split mode clears existing assignments",
                plan=plan,
                operation=operation,
                expense_id=expense_id,
            )

        changes: dict = {"split_mode": new_mode}
        cleared = []
        if expense.split_mode == SplitMode.SHARE_SPLIT:
            changes.update(splits=[], own_shares=0)
            cleared.extend(["splits", "own_shares"])
        if expense.split_mode == SplitMode.PER_ITEM:
            changes["line_items"] = _unassigned_items(expense)
            cleared.append("item_assignments")
        updated = _with_allocation(expense, **changes)

        self._validator.ensure_valid(self._validator.validate(updated), operation=operation)

        async with self._db.transaction():
            await self._repository.save_allocation(updated)

        self._cache.invalidate(expense_id=expense_id, party_ids=plan.affected_party_ids)
        self._logger.info(
            "split_mode_changed",
            expense_id=expense_id,
            old_mode=expense.split_mode.value,
            new_mode=new_mode.value,
        )
        await self._audit.log_split_mode_changed(
            expense_id=expense_id,
            old_mode=expense.split_mode.value,
            new_mode=new_mode.value,
            cleared=cleared,
            correlation_id=correlation_id,
        )
        return plan

    # =========================================================================
    # ASSIGNMENTS
    # =========================================================================

    async def _ensure_unlocked(
        self,
        expense: Expense,
        operation: str,
        correlation_id: Optional[UUID],
    ) -> None:
        if await self._ledger.is_locked(expense.id):
            await self._audit.log_settlement_conflict(
                expense.id, None, operation, correlation_id=correlation_id
            )
            raise ConflictError(
                "Allocation is locked by an existing settlement",
                operation=operation,
                expense_id=expense.id,
            )

    async def _save(
        self,
        before: Expense,
        after: Expense,
        operation: str,
    ) -> None:
        self._validator.ensure_valid(self._validator.validate(after), operation=operation)

        async with self._db.transaction():
            await self._repository.save_allocation(after)

        self._cache.invalidate(
            expense_id=after.id,
            party_ids=before.assigned_party_ids | after.assigned_party_ids,
        )

    async def assign_shares(
        self,
        expense_id: int,
        splits: Iterable[SplitRecord],
        own_shares: int = 0,
        correlation_id: Optional[UUID] = None,
    ) -> AllocationResult:
        """
        Put an expense in share_split mode with the given shares.

        Existing split records are replaced and item assignments dropped.

        Raises:
            ConflictError: A party has already settled
            ValidationError: Total shares is zero, or the expense is owed
                             to another party
        """
        operation = "assign_shares"
        expense = await self._repository.require_expense(expense_id, operation=operation)
        await self._ensure_unlocked(expense, operation, correlation_id)

        splits = [
            SplitRecord(party_id=split.party_id, shares=split.shares)
            for split in splits
        ]
        self._validator.ensure_valid(
            self._validator.validate_share_assignment(splits, own_shares, expense_id),
            operation=operation,
        )
        updated = _with_allocation(
            expense,
            split_mode=SplitMode.SHARE_SPLIT,
            splits=[split.model_dump() for split in splits],
            own_shares=own_shares,
            line_items=_unassigned_items(expense),
        )
        await self._save(expense, updated, operation)

        party_ids = sorted(updated.assigned_party_ids)
        self._logger.info("shares_assigned", expense_id=expense_id, party_ids=party_ids)
        await self._audit.log_allocation_assigned(
            expense_id, SplitMode.SHARE_SPLIT.value, party_ids, correlation_id=correlation_id
        )
        return self.compute(updated)

    async def assign_items(
        self,
        expense_id: int,
        assignments: Mapping[int, Optional[int]],
        correlation_id: Optional[UUID] = None,
    ) -> AllocationResult:
        """
        Put an expense in per_item mode and assign line items to parties.

        Args:
            assignments: line item id -> party id (None unassigns). Items
                         not mentioned keep their current party when the
                         expense is already per_item.

        Raises:
            ConflictError: A party has already settled
            ValidationError: Total-only expense, or unknown line items
        """
        operation = "assign_items"
        expense = await self._repository.require_expense(expense_id, operation=operation)
        await self._ensure_unlocked(expense, operation, correlation_id)

        self._validator.ensure_valid(
            self._validator.validate_item_assignment(expense, assignments),
            operation=operation,
        )

        keep_current = expense.split_mode == SplitMode.PER_ITEM
        items = []
        for item in expense.line_items:
            current = item.party_id if keep_current else None
            items.append({**item.model_dump(), "party_id": assignments.get(item.id, current)})

        updated = _with_allocation(
            expense,
            split_mode=SplitMode.PER_ITEM,
            splits=[],
            own_shares=0,
            line_items=items,
        )
        await self._save(expense, updated, operation)

        party_ids = sorted(updated.assigned_party_ids)
        self._logger.info("items_assigned", expense_id=expense_id, party_ids=party_ids)
        await self._audit.log_allocation_assigned(
            expense_id, SplitMode.PER_ITEM.value, party_ids, correlation_id=correlation_id
        )
        return self.compute(updated)

    async def clear_allocation(
        self,
        expense_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Return an expense to split mode none, dropping all assignments."""
        operation = "clear_allocation"
        expense = await self._repository.require_expense(expense_id, operation=operation)
        await self._ensure_unlocked(expense, operation, correlation_id)

        updated = _with_allocation(
            expense,
            split_mode=SplitMode.NONE,
            splits=[],
            own_shares=0,
            line_items=_unassigned_items(expense),
        )
        await self._save(expense, updated, operation)

        await self._audit.log_allocation_cleared(
            expense_id, sorted(expense.assigned_party_ids), correlation_id=correlation_id
        )
