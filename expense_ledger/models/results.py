"""
Result Models

Shapes returned by the debt engine and consumed by UI and reporting layers.
Every result is a pydantic model so callers can `model_dump()` it straight
into a table or a PDF template.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from expense_ledger.models.expense import DebtDirection, SplitMode


# =============================================================================
# DISCOUNT AND ALLOCATION
# =============================================================================

class DiscountDistribution(BaseModel):
    """Discounted amount of every line item, in input order, and their sum."""

    item_amounts: list[float] = Field(default_factory=list)
    net_total: float = 0.0


class AllocationResult(BaseModel):
    """
    Money owed by each external party for one expense.

    `own_amount` is only computed for share splitting; under per-item
    splitting the payer's part is simply whatever is left.
    """

    party_amounts: dict[int, float] = Field(default_factory=dict)
    own_amount: Optional[float] = None

    @property
    def total_allocated(self) -> float:
        """Sum owed by external parties."""
        return sum(self.party_amounts.values())

    def amount_for(self, party_id: int) -> float:
        return self.party_amounts.get(party_id, 0.0)

    def rounded(self, precision: int = 2) -> dict:
        """Display copy rounded to currency precision."""
        return {
            "party_amounts": {
                party_id: round(amount, precision)
                for party_id, amount in self.party_amounts.items()
            },
            "own_amount": (
                round(self.own_amount, precision)
                if self.own_amount is not None else None
            ),
        }


class PartyDebtSummary(BaseModel):
    """One party's line in an expense debt summary."""

    party_id: int
    name: Optional[str] = None
    amount: float
    is_paid: bool = False

    # share_split context
    shares: Optional[int] = None
    total_shares: Optional[int] = None

    # per_item context
    item_count: Optional[int] = None
    total_items: Optional[int] = None


class OwnShareSummary(BaseModel):
    amount: float
    shares: int
    total_shares: int


class ExpenseDebtSummary(BaseModel):
    """Who owes what on a single expense, with settlement flags."""

    expense_id: int
    split_mode: SplitMode
    net_total: float
    parties: list[PartyDebtSummary] = Field(default_factory=list)
    own_share: Optional[OwnShareSummary] = None

    @property
    def unpaid_count(self) -> int:
        return sum(1 for party in self.parties if not party.is_paid)


class SplitModeChangePlan(BaseModel):
    """
    What a split mode change would do, shown to the user before applying.

    A plan with `requires_confirmation` set destroys allocation data.
    """

    expense_id: int
    current_mode: SplitMode
    new_mode: SplitMode
    clears_splits: bool = False
    clears_item_assignments: bool = False
    affected_party_ids: list[int] = Field(default_factory=list)
    locked: bool = False

    @property
    def is_noop(self) -> bool:
        return self.current_mode == self.new_mode

    @property
    def requires_confirmation(self) -> bool:
        return self.clears_splits or self.clears_item_assignments


# =============================================================================
# BALANCES
# =============================================================================

class DebtTransaction(BaseModel):
    """One expense as seen from a single party's account."""

    expense_id: int
    expense_date: date
    description: Optional[str] = None
    direction: DebtDirection
    amount: float
    is_settled: bool

    shares: Optional[int] = None
    total_shares: Optional[int] = None

    @property
    def signed_amount(self) -> float:
        """Positive when the party owes the payer."""
        if self.direction == DebtDirection.TO_ME:
            return self.amount
        return -self.amount


class BalanceStats(BaseModel):
    """
    Aggregate position against one party.

    Total figures include settled debts; open figures only unsettled ones.
    """

    party_id: int
    total_owed_to_me: float = 0.0
    total_i_owe: float = 0.0
    net: float = 0.0
    open_owed_to_me: float = 0.0
    open_i_owe: float = 0.0
    open_net: float = 0.0
    transaction_count: int = 0


class BalancePoint(BaseModel):
    """One day of a dense running-balance series."""

    day: date
    balance: float


class PaymentMethodBalance(BaseModel):
    payment_method_id: int
    initial_funds: float = 0.0
    total_credits: float = 0.0
    total_expenses: float = 0.0
    balance: float = 0.0


# =============================================================================
# BULK OPERATIONS
# =============================================================================

class BulkSkip(BaseModel):
    expense_id: int
    reason: str


class BulkResult(BaseModel):
    """Outcome of one bulk allocation run."""

    applied: int = 0
    skipped: int = 0
    skipped_items: list[BulkSkip] = Field(default_factory=list)
    applied_ids: list[int] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.applied + self.skipped


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'ignored_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of validating an expense or an allocation change.

    Errors block the mutation; warnings are shown but do not block.
    """

    expense_id: Optional[int] = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
