"""
Bulk Allocator

Applies one allocation to an explicit list of expenses.

Every expense is handled on its own: a locked, missing or invalid expense is
skipped with a reason and the batch carries on. Nothing here settles debts.
"""

from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Optional
from uuid import UUID

import structlog

from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.engine.allocation import AllocationEngine
from expense_ledger.errors import ConflictError, LedgerError
from expense_ledger.models.expense import Expense, SplitMode, SplitRecord
from expense_ledger.models.results import BulkResult, BulkSkip

if TYPE_CHECKING:
    from expense_ledger.queries.expenses import ExpenseRepository


ProgressCallback = Callable[[float], None]

SKIP_NOT_FOUND = "not found"
SKIP_LOCKED = "locked by an existing settlement"
SKIP_ALLOCATED = "already allocated"


class BulkAllocator:
    """
    Assigns a party (or a share configuration) to many expenses at once.

    With `overwrite=False`, expenses that already carry split records or
    item assignments are skipped instead of replaced.
    """

    def __init__(
        self,
        repository: "ExpenseRepository",
        allocation_engine: AllocationEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._allocation = allocation_engine
        self._audit = audit_logger or AuditLogger()
        self._logger = structlog.get_logger(__name__)

    async def find_conflicts(self, expense_ids: Iterable[int]) -> list[int]:
        """Expenses in the batch that already carry allocation data."""
        ids = list(dict.fromkeys(expense_ids))
        expenses = await self._repository.get_expenses(ids)
        return [
            expense_id for expense_id in ids
            if expense_id in expenses and expenses[expense_id].has_allocation
        ]

    async def bulk_assign(
        self,
        expense_ids: Iterable[int],
        party_id: int,
        mode: SplitMode,
        *,
        shares: int = 1,
        own_shares: int = 0,
        overwrite: bool = True,
        progress: Optional[ProgressCallback] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BulkResult:
        """
        Assign one party to every expense in the batch.

        share_split gives the party `shares` against the payer's
        `own_shares`; per_item assigns every line item to the party;
        none clears the allocation.

        Raises:
            NotFoundError: If the party does not exist (before any change)
        """
        await self._repository.require_party(party_id, operation="bulk_assign")

        async def apply(expense: Expense, cid: UUID) -> None:
            if mode == SplitMode.SHARE_SPLIT:
                await self._allocation.assign_shares(
                    expense.id,
                    [SplitRecord(party_id=party_id, shares=shares)],
                    own_shares,
                    correlation_id=cid,
                )
            elif mode == SplitMode.PER_ITEM:
                await self._allocation.assign_items(
                    expense.id,
                    {item.id: party_id for item in expense.line_items},
                    correlation_id=cid,
                )
            else:
                await self._allocation.clear_allocation(expense.id, correlation_id=cid)

        return await self._run(expense_ids, mode, apply, overwrite, progress, correlation_id)

    async def bulk_assign_shares(
        self,
        expense_ids: Iterable[int],
        splits: Iterable[SplitRecord],
        own_shares: int = 0,
        *,
        overwrite: bool = True,
        progress: Optional[ProgressCallback] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BulkResult:
        """Apply the same multi-party share configuration to every expense."""
        splits = list(splits)

        async def apply(expense: Expense, cid: UUID) -> None:
            await self._allocation.assign_shares(
                expense.id, splits, own_shares, correlation_id=cid
            )

        return await self._run(
            expense_ids, SplitMode.SHARE_SPLIT, apply, overwrite, progress, correlation_id
        )

    async def _run(
        self,
        expense_ids: Iterable[int],
        mode: SplitMode,
        apply: Callable[[Expense, UUID], Awaitable[None]],
        overwrite: bool,
        progress: Optional[ProgressCallback],
        correlation_id: Optional[UUID],
    ) -> BulkResult:
        correlation_id = correlation_id or create_correlation_id()
        ids = list(dict.fromkeys(expense_ids))
        expenses = await self._repository.get_expenses(ids)
        result = BulkResult()

        for index, expense_id in enumerate(ids, start=1):
            reason = None
            expense = expenses.get(expense_id)

            if expense is None:
                reason = SKIP_NOT_FOUND
            elif expense.has_allocation and not overwrite:
                reason = SKIP_ALLOCATED
            else:
                try:
                    await apply(expense, correlation_id)
                except ConflictError:
                    reason = SKIP_LOCKED
                except LedgerError as e:
                    reason = e.message

            if reason is None:
                result.applied += 1
                result.applied_ids.append(expense_id)
            else:
                result.skipped += 1
                result.skipped_items.append(BulkSkip(expense_id=expense_id, reason=reason))
                self._logger.info("bulk_item_skipped", expense_id=expense_id, reason=reason)

            if progress is not None:
                progress(index * 100 / len(ids))

        self._logger.info(
            "bulk_assign_finished",
            mode=mode.value,
            applied=result.applied,
            skipped=result.skipped,
        )
        await self._audit.log_bulk_assign_completed(
            applied=result.applied,
            skipped=result.skipped,
            split_mode=mode.value,
            correlation_id=correlation_id,
        )
        return result
