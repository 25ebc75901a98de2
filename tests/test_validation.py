"""Tests for the expense validator."""

from datetime import date

import pytest

from expense_ledger.errors import ValidationError
from expense_ledger.models.expense import (
    Expense,
    ExpenseStatus,
    LineItem,
    SplitMode,
    SplitRecord,
)
from expense_ledger.validation import ExpenseValidator


@pytest.fixture
def validator():
    return ExpenseValidator()


def _expense(**fields) -> Expense:
    fields.setdefault("expense_date", date(2024, 3, 1))
    return Expense(**fields)


class TestExpenseValidation:
    """Tests for the two-stage expense validation."""

    def test_valid_expense(self, validator):
        result = validator.validate(_expense(
            line_items=[LineItem(quantity=1, unit_price=3)],
            payment_method_id=1,
        ))
        assert result.is_valid
        assert result.issues == []

    def test_unpaid_requires_owed_to_party(self, validator):
        result = validator.validate(_expense(
            is_total_only=True,
            flat_total=10,
            status=ExpenseStatus.UNPAID,
        ))
        assert result.has_errors
        assert result.issues[0].field == "owed_to_party_id"

    def test_total_only_requires_total(self, validator):
        result = validator.validate(_expense(is_total_only=True))
        assert result.error_count == 1

    def test_negative_total_is_a_warning(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=-3, payment_method_id=1
        ))
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_discount_on_total_only_is_a_warning(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=5, discount_percent=10, payment_method_id=1
        ))
        assert result.is_valid
        assert "ignored" in result.warnings[0]

    def test_per_item_on_total_only(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=5, split_mode=SplitMode.PER_ITEM
        ))
        assert result.has_errors

    def test_split_expense_cannot_be_owed_to_party(self, validator):
        result = validator.validate(_expense(
            is_total_only=True,
            flat_total=5,
            status=ExpenseStatus.UNPAID,
            owed_to_party_id=2,
            split_mode=SplitMode.SHARE_SPLIT,
            splits=[SplitRecord(party_id=1, shares=1)],
        ))
        assert result.has_errors

    def test_semantic_stage_skipped_after_shape_errors(self, validator):
        result = validator.validate(_expense(
            is_total_only=True,
            status=ExpenseStatus.UNPAID,
            split_mode=SplitMode.PER_ITEM,
        ))
        assert {issue.field for issue in result.issues} == {"owed_to_party_id", "flat_total"}


class TestAssignmentValidation:
    """Tests for share and item assignment checks."""

    def test_zero_total_shares(self, validator):
        result = validator.validate_share_assignment([], 0, expense_id=4)
        assert result.has_errors
        with pytest.raises(ValidationError) as exc_info:
            validator.ensure_valid(result, operation="assign_shares")
        assert exc_info.value.expense_id == 4
        assert exc_info.value.operation == "assign_shares"

    def test_own_shares_only_is_valid(self, validator):
        assert validator.validate_share_assignment([], 2).is_valid

    def test_item_assignment_on_unknown_items(self, validator):
        expense = _expense(line_items=[LineItem(id=1, quantity=1, unit_price=2)])
        assert validator.validate_item_assignment(expense, {1: 3}).is_valid
        assert validator.validate_item_assignment(expense, {2: 3}).has_errors

    def test_ensure_valid_passes_warnings_through(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=-1, payment_method_id=1
        ))
        assert validator.ensure_valid(result, operation="create_expense") is result


class TestUserFriendlySummary:
    """Tests for the summary shown next to the form."""

    def test_all_passed(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=5, payment_method_id=1
        ))
        assert "All checks passed" in validator.get_user_friendly_summary(result)

    def test_errors_and_fixes_listed(self, validator):
        result = validator.validate(_expense(
            is_total_only=True, flat_total=5, status=ExpenseStatus.UNPAID
        ))
        summary = validator.get_user_friendly_summary(result)
        assert "cannot be saved" in summary
        assert "Pick who paid for it" in summary
