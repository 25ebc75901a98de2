"""
Tests for Expense Ledger models

Test strategy:
1. Unit tests for individual components (models, validators, math)
2. Integration tests for engines against an in-memory SQLite store
3. No network, no files on disk
"""

import pytest
from datetime import date
from uuid import uuid4

from expense_ledger.models.expense import (
    DebtDirection,
    Expense,
    ExpenseStatus,
    LineItem,
    Party,
    SplitMode,
    SplitRecord,
)
from expense_ledger.models.results import (
    BulkResult,
    BulkSkip,
    DebtTransaction,
    SplitModeChangePlan,
    ValidationIssue,
    ValidationResult,
)
from expense_ledger.models.audit import (
    AUDIT_COLUMNS,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestExpenseModels:
    """Tests for expense-related Pydantic models."""

    def test_party_strips_whitespace(self):
        """Test that whitespace is stripped from party names."""
        party = Party(id=1, name="  Alice  ")
        assert party.name == "Alice"

    def test_party_rejects_empty_name(self):
        with pytest.raises(ValueError):
            Party(id=1, name="   ")

    def test_line_item_raw_amount(self):
        item = LineItem(quantity=3, unit_price=2.5)
        assert item.raw_amount == 7.5

    def test_line_item_rejects_zero_quantity(self):
        """Quantity must be strictly positive."""
        with pytest.raises(ValueError):
            LineItem(quantity=0, unit_price=1)

    def test_line_item_rejects_negative_price(self):
        with pytest.raises(ValueError):
            LineItem(quantity=1, unit_price=-1)

    def test_split_record_requires_a_share(self):
        with pytest.raises(ValueError):
            SplitRecord(party_id=1, shares=0)

    def test_expense_defaults(self):
        expense = Expense(expense_date=date(2024, 3, 1))
        assert expense.split_mode == SplitMode.NONE
        assert expense.status == ExpenseStatus.PAID
        assert expense.is_tentative is False
        assert expense.has_allocation is False

    def test_discount_out_of_range(self):
        with pytest.raises(ValueError):
            Expense(expense_date=date(2024, 3, 1), discount_percent=120)

    def test_total_only_rejects_line_items(self):
        with pytest.raises(ValueError):
            Expense(
                expense_date=date(2024, 3, 1),
                is_total_only=True,
                line_items=[LineItem(quantity=1, unit_price=1)],
            )

    def test_splits_require_share_split_mode(self):
        with pytest.raises(ValueError):
            Expense(
                expense_date=date(2024, 3, 1),
                splits=[SplitRecord(party_id=1, shares=1)],
            )

    def test_item_assignment_requires_per_item_mode(self):
        with pytest.raises(ValueError):
            Expense(
                expense_date=date(2024, 3, 1),
                line_items=[LineItem(quantity=1, unit_price=1, party_id=2)],
                split_mode=SplitMode.SHARE_SPLIT,
            )

    def test_assigned_party_ids(self):
        expense = Expense(
            expense_date=date(2024, 3, 1),
            line_items=[
                LineItem(quantity=1, unit_price=1, party_id=2),
                LineItem(quantity=1, unit_price=1, party_id=3),
                LineItem(quantity=1, unit_price=1),
            ],
            split_mode=SplitMode.PER_ITEM,
        )
        assert expense.assigned_party_ids == {2, 3}
        assert expense.has_allocation is True


class TestResultModels:
    """Tests for engine result models."""

    def test_signed_amount(self):
        to_me = DebtTransaction(
            expense_id=1,
            expense_date=date(2024, 3, 1),
            direction=DebtDirection.TO_ME,
            amount=12,
            is_settled=False,
        )
        to_entity = to_me.model_copy(update={"direction": DebtDirection.TO_ENTITY})
        assert to_me.signed_amount == 12
        assert to_entity.signed_amount == -12

    def test_change_plan_confirmation(self):
        plan = SplitModeChangePlan(
            expense_id=1,
            current_mode=SplitMode.PER_ITEM,
            new_mode=SplitMode.NONE,
            clears_item_assignments=True,
        )
        assert plan.requires_confirmation is True
        assert plan.is_noop is False

    def test_bulk_result_total(self):
        result = BulkResult(
            applied=2,
            skipped=1,
            skipped_items=[BulkSkip(expense_id=9, reason="locked")],
        )
        assert result.total == 3


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.DEBT_SETTLED,
            description="Party settled",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_SAVED,
            description="Expense saved",
            entity_id=4,
            details={"split_mode": "none", "net_total": 12.0},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "expense_saved"
        assert log_dict["entity_id"] == 4
        assert log_dict["details"]["net_total"] == 12.0

    def test_audit_event_to_row(self):
        """Test conversion to an audit_log row."""
        event = AuditEvent(
            event_type=AuditEventType.DEBT_UNSETTLED,
            description="Settlement reversed",
            is_user_action=True,
        )
        row = event.to_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "debt_unsettled"  # event_type
        assert row[10] == 1  # is_user_action

    def test_audit_event_row_round_trip(self):
        event = AuditEventBuilder.split_mode_changed(
            expense_id=3,
            old_mode="share_split",
            new_mode="none",
            cleared=["splits", "own_shares"],
            correlation_id=uuid4(),
        )
        restored = AuditEvent.from_row(dict(zip(AUDIT_COLUMNS, event.to_row())))
        assert restored.event_id == event.event_id
        assert restored.correlation_id == event.correlation_id
        assert restored.details["cleared"] == ["splits", "own_shares"]

    def test_audit_event_builder_debt_settled(self):
        """Test AuditEventBuilder.debt_settled."""
        correlation_id = uuid4()

        event = AuditEventBuilder.debt_settled(
            expense_id=8,
            party_id=2,
            amount=40.0,
            paid_date=date(2024, 3, 9),
            credit_id=5,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.DEBT_SETTLED
        assert event.entity_id == 8
        assert event.correlation_id == correlation_id
        assert event.details["credit_id"] == 5
        assert event.is_user_action is True

    def test_audit_event_builder_conflict_is_warning(self):
        event = AuditEventBuilder.settlement_conflict(
            expense_id=8,
            party_id=None,
            operation="change_split_mode",
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.is_user_action is False

    def test_bulk_event_severity_reflects_skips(self):
        clean = AuditEventBuilder.bulk_assign_completed(3, 0, "share_split")
        partial = AuditEventBuilder.bulk_assign_completed(2, 1, "share_split")
        assert clean.severity == AuditSeverity.INFO
        assert partial.severity == AuditSeverity.WARNING


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            expense_id=1,
            issues=[
                ValidationIssue(
                    field="owed_to_party_id",
                    issue_type="missing",
                    message="Owed-to party required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.is_valid is False

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            issues=[
                ValidationIssue(
                    field="flat_total",
                    issue_type="invalid_value",
                    message="Total is negative",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.warnings == ["Total is negative"]

    def test_issue_severity_is_constrained(self):
        with pytest.raises(ValueError):
            ValidationIssue(
                field="x",
                issue_type="missing",
                message="x",
                severity="fatal",
            )


class TestSplitModes:
    """Tests for split mode enum."""

    def test_split_mode_values(self):
        """Test split mode string values."""
        assert SplitMode.NONE.value == "none"
        assert SplitMode.SHARE_SPLIT.value == "share_split"
        assert SplitMode.PER_ITEM.value == "per_item"

    def test_split_mode_from_value(self):
        for value in ("none", "share_split", "per_item"):
            assert SplitMode(value) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
