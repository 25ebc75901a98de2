"""
Two-Stage Expense Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SHAPE VALIDATION:
- Required fields for the chosen status
- Discount range
- Total-only expenses carry a total and no per-item splitting
- This catches malformed form input

STAGE 2 - ALLOCATION VALIDATION:
- Share counts that add up to something
- Item assignments that point at real line items
- Direction consistency (an expense owed to a party is not split)
- This catches allocations that would produce meaningless debts

IMPORTANT: Validation NEVER silently fixes issues.
It reports them, and `ensure_valid` turns errors into a ValidationError
before any mutation happens.
"""

from typing import Iterable, Mapping, Optional

from expense_ledger.errors import ValidationError
from expense_ledger.models.expense import (
    Expense,
    ExpenseStatus,
    SplitMode,
    SplitRecord,
)
from expense_ledger.models.results import ValidationIssue, ValidationResult


class ExpenseValidator:
    """
    Validates expenses and allocation changes.

    Stateless; every check works on the models alone.
    """

    def _validate_shape(self, expense: Expense) -> list[ValidationIssue]:
        """
        Stage 1: Shape validation.

        Checks:
        - Owed-to party presence for unpaid expenses
        - Discount range
        - Total-only consistency
        """
        issues = []

        if expense.status == ExpenseStatus.UNPAID and expense.owed_to_party_id is None:
            issues.append(ValidationIssue(
                field="owed_to_party_id",
                issue_type="missing",
                message="An unpaid expense must name the party it is owed to",
                severity="error",
                suggested_fix="Pick who paid for it, or mark the expense as paid",
            ))

        if not 0 <= expense.discount_percent <= 100:
            issues.append(ValidationIssue(
                field="discount_percent",
                issue_type="invalid_value",
                message=f"Discount ({expense.discount_percent}%) must be between 0 and 100",
                severity="error",
            ))

        if expense.is_total_only:
            if expense.flat_total is None:
                issues.append(ValidationIssue(
                    field="flat_total",
                    issue_type="missing",
                    message="A total-only expense needs a total amount",
                    severity="error",
                    suggested_fix="Enter the amount from the receipt",
                ))
            elif expense.flat_total < 0:
                issues.append(ValidationIssue(
                    field="flat_total",
                    issue_type="invalid_value",
                    message="Total amount is negative and will count as zero",
                    severity="warning",
                ))

            if expense.discount_percent:
                issues.append(ValidationIssue(
                    field="discount_percent",
                    issue_type="ignored_value",
                    message="Discounts are ignored on total-only expenses",
                    severity="warning",
                ))

        if (
            expense.status == ExpenseStatus.PAID
            and expense.owed_to_party_id is None
            and expense.payment_method_id is None
        ):
            issues.append(ValidationIssue(
                field="payment_method_id",
                issue_type="missing",
                message="No payment method recorded for this expense",
                severity="info",
            ))

        return issues

    def _validate_allocation(self, expense: Expense) -> list[ValidationIssue]:
        """
        Stage 2: Allocation validation.

        Returns: list of issues (empty when the allocation is sound)
        """
        issues = []

        if expense.is_total_only and expense.split_mode == SplitMode.PER_ITEM:
            issues.append(ValidationIssue(
                field="split_mode",
                issue_type="invalid_value",
                message="Per-item splitting needs line items",
                severity="error",
                suggested_fix="Use share splitting for total-only expenses",
            ))

        if (
            expense.owed_to_party_id is not None
            and expense.split_mode != SplitMode.NONE
        ):
            issues.append(ValidationIssue(
                field="split_mode",
                issue_type="inconsistent",
                message="An expense paid by another party cannot also be split",
                severity="error",
                suggested_fix="Remove the split or record the expense as yours",
            ))

        if expense.split_mode == SplitMode.SHARE_SPLIT and expense.splits:
            issues.extend(self._check_shares(expense.splits, expense.own_shares))

        return issues

    def _check_shares(
        self,
        splits: Iterable[SplitRecord],
        own_shares: int,
    ) -> list[ValidationIssue]:
        issues = []
        total = sum(split.shares for split in splits) + own_shares
        if own_shares < 0:
            issues.append(ValidationIssue(
                field="own_shares",
                issue_type="invalid_value",
                message="Own shares cannot be negative",
                severity="error",
            ))
        elif total <= 0:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="invalid_value",
                message="Total shares must be greater than zero",
                severity="error",
                suggested_fix="Give at least one party (or yourself) a share",
            ))
        return issues

    def validate(self, expense: Expense) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Stage 2 only runs when stage 1 found no errors.
        """
        issues = self._validate_shape(expense)
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_allocation(expense))
        return ValidationResult(expense_id=expense.id, issues=issues)

    def validate_share_assignment(
        self,
        splits: Iterable[SplitRecord],
        own_shares: int,
        expense_id: Optional[int] = None,
    ) -> ValidationResult:
        return ValidationResult(
            expense_id=expense_id,
            issues=self._check_shares(list(splits), own_shares),
        )

    def validate_item_assignment(
        self,
        expense: Expense,
        assignments: Mapping[int, Optional[int]],
    ) -> ValidationResult:
        """Item assignments need line items, and must name existing ones."""
        issues = []
        if expense.is_total_only:
            issues.append(ValidationIssue(
                field="split_mode",
                issue_type="invalid_value",
                message="Per-item splitting needs line items",
                severity="error",
                suggested_fix="Use share splitting for total-only expenses",
            ))
        else:
            known = {item.id for item in expense.line_items}
            unknown = sorted(set(assignments) - known)
            if unknown:
                issues.append(ValidationIssue(
                    field="line_items",
                    issue_type="invalid_value",
                    message=f"Line items {unknown} do not belong to this expense",
                    severity="error",
                ))
        return ValidationResult(expense_id=expense.id, issues=issues)

    def ensure_valid(
        self,
        result: ValidationResult,
        operation: str,
    ) -> ValidationResult:
        """
        Raise a ValidationError when the result carries errors.

        Returns the result unchanged so warnings can still be shown.
        """
        if result.has_errors:
            messages = "; ".join(
                issue.message for issue in result.issues
                if issue.severity == "error"
            )
            raise ValidationError(
                messages,
                operation=operation,
                expense_id=result.expense_id,
            )
        return result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show next to the expense form.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ This expense cannot be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
