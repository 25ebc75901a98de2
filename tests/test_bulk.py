"""Tests for the bulk allocator."""

from datetime import date

import pytest

from expense_ledger.engine.bulk import SKIP_ALLOCATED, SKIP_LOCKED, SKIP_NOT_FOUND
from expense_ledger.errors import NotFoundError
from expense_ledger.models.audit import AuditEventType
from expense_ledger.models.expense import LineItem, SplitMode, SplitRecord
from expense_ledger.services.storage import SQLiteAuditStorage


ALICE, BOB, CAROL = 1, 2, 3


@pytest.fixture
def batch(save_expense):
    """Three expenses: itemised, total-only, and one already split with Bob."""
    itemised = save_expense(line_items=[
        LineItem(quantity=1, unit_price=10),
        LineItem(quantity=2, unit_price=5),
    ])
    total_only = save_expense(is_total_only=True, flat_total=30)
    split = save_expense(
        is_total_only=True,
        flat_total=50,
        split_mode=SplitMode.SHARE_SPLIT,
        splits=[SplitRecord(party_id=BOB, shares=1)],
    )
    return itemised, total_only, split


class TestBulkAssign:
    """Tests for assigning one party to many expenses."""

    def test_share_split_applies_to_every_expense(self, run, components, batch):
        ids = [expense.id for expense in batch]
        result = run(components.bulk.bulk_assign(
            ids, ALICE, SplitMode.SHARE_SPLIT, shares=1, own_shares=1
        ))

        assert result.applied == 3
        assert result.skipped == 0
        assert result.applied_ids == ids

        allocation = run(components.allocation.allocate_expense(batch[1].id))
        assert allocation.party_amounts == {ALICE: 15}

    def test_locked_expense_is_skipped(self, run, components, batch):
        itemised, total_only, split = batch
        run(components.ledger.settle(split.id, BOB, 50, date(2024, 3, 9)))

        result = run(components.bulk.bulk_assign(
            [itemised.id, total_only.id, split.id], ALICE, SplitMode.SHARE_SPLIT
        ))

        assert result.applied == 2
        assert result.skipped == 1
        assert result.skipped_items[0].expense_id == split.id
        assert result.skipped_items[0].reason == SKIP_LOCKED

        stored = run(components.repository.get_expense(split.id))
        assert [s.party_id for s in stored.splits] == [BOB]

    def test_per_item_skips_total_only(self, run, components, batch):
        itemised, total_only, _ = batch
        result = run(components.bulk.bulk_assign(
            [itemised.id, total_only.id], CAROL, SplitMode.PER_ITEM
        ))

        assert result.applied == 1
        assert result.skipped_items[0].expense_id == total_only.id

        allocation = run(components.allocation.allocate_expense(itemised.id))
        assert allocation.party_amounts == {CAROL: 20}

    def test_missing_expense_is_skipped(self, run, components, batch):
        result = run(components.bulk.bulk_assign(
            [batch[0].id, 999], ALICE, SplitMode.SHARE_SPLIT
        ))
        assert result.applied == 1
        assert result.skipped_items[0].expense_id == 999
        assert result.skipped_items[0].reason == SKIP_NOT_FOUND

    def test_skip_conflicting(self, run, components, batch):
        """With overwrite off, allocated expenses keep their allocation."""
        ids = [expense.id for expense in batch]
        assert run(components.bulk.find_conflicts(ids)) == [batch[2].id]

        result = run(components.bulk.bulk_assign(
            ids, ALICE, SplitMode.SHARE_SPLIT, overwrite=False
        ))
        assert result.applied == 2
        assert result.skipped_items[0].reason == SKIP_ALLOCATED

        stored = run(components.repository.get_expense(batch[2].id))
        assert [s.party_id for s in stored.splits] == [BOB]

    def test_overwrite_replaces_allocation(self, run, components, batch):
        run(components.bulk.bulk_assign([batch[2].id], ALICE, SplitMode.SHARE_SPLIT))
        stored = run(components.repository.get_expense(batch[2].id))
        assert [s.party_id for s in stored.splits] == [ALICE]

    def test_mode_none_clears(self, run, components, batch):
        result = run(components.bulk.bulk_assign([batch[2].id], ALICE, SplitMode.NONE))
        assert result.applied == 1
        stored = run(components.repository.get_expense(batch[2].id))
        assert stored.split_mode == SplitMode.NONE

    def test_progress_reported_per_expense(self, run, components, batch):
        reported = []
        run(components.bulk.bulk_assign(
            [expense.id for expense in batch],
            ALICE,
            SplitMode.SHARE_SPLIT,
            progress=reported.append,
        ))
        assert reported == [pytest.approx(100 / 3), pytest.approx(200 / 3), 100]

    def test_duplicate_ids_processed_once(self, run, components, batch):
        result = run(components.bulk.bulk_assign(
            [batch[0].id, batch[0].id], ALICE, SplitMode.SHARE_SPLIT
        ))
        assert result.total == 1

    def test_unknown_party(self, run, components, batch):
        with pytest.raises(NotFoundError):
            run(components.bulk.bulk_assign([batch[0].id], 999, SplitMode.SHARE_SPLIT))

    def test_completion_is_audited(self, run, components, database, batch):
        run(components.bulk.bulk_assign([batch[0].id], ALICE, SplitMode.SHARE_SPLIT))
        events = run(SQLiteAuditStorage(database).get_recent_events())
        assert AuditEventType.BULK_ASSIGN_COMPLETED in [e.event_type for e in events]


class TestBulkAssignShares:
    """Tests for applying a multi-party share configuration."""

    def test_multi_party_shares(self, run, components, batch):
        _, total_only, split = batch
        result = run(components.bulk.bulk_assign_shares(
            [total_only.id, split.id],
            [SplitRecord(party_id=ALICE, shares=1), SplitRecord(party_id=CAROL, shares=2)],
            own_shares=0,
        ))
        assert result.applied == 2

        allocation = run(components.allocation.allocate_expense(split.id))
        assert allocation.party_amounts == {
            ALICE: pytest.approx(50 / 3),
            CAROL: pytest.approx(100 / 3),
        }

    def test_zero_shares_skips_everything(self, run, components, batch):
        result = run(components.bulk.bulk_assign_shares(
            [expense.id for expense in batch], [], own_shares=0
        ))
        assert result.applied == 0
        assert result.skipped == 3
