"""
Core Data Models for Expense Ledger

These models define the strict schemas for every entity the debt engine reads
or writes. They are designed to:
1. Enforce type safety at runtime
2. Reject structurally impossible records (e.g. split records on a
   per-item expense) at the boundary
3. Map one-to-one onto rows of the relational store

DESIGN DECISION: Money is a plain float. Amounts are never rounded here;
only display layers round to currency precision.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SplitMode(str, Enum):
    """
    How an expense is divided among parties.

    NONE:        the payer carries the whole expense
    SHARE_SPLIT: the net total is divided by integer share counts
    PER_ITEM:    individual line items are assigned to parties
    """
    NONE = "none"
    SHARE_SPLIT = "share_split"
    PER_ITEM = "per_item"


class ExpenseStatus(str, Enum):
    """
    Payment status of the expense itself.

    UNPAID means the whole expense is owed to `owed_to_party_id`.
    """
    PAID = "paid"
    UNPAID = "unpaid"


class DebtDirection(str, Enum):
    """Which way money flows for a debt."""
    TO_ME = "to_me"          # party owes the payer
    TO_ENTITY = "to_entity"  # payer owes the party


class SettlementFilter(str, Enum):
    """Filter for debt listings and aggregates."""
    ALL = "all"
    SETTLED = "settled"
    UNSETTLED = "unsettled"


# =============================================================================
# REFERENCE ENTITIES (read-only to the engine)
# =============================================================================

class Party(BaseModel):
    """
    A person or counterpart who can owe or be owed money.

    Created, edited and deactivated outside the engine.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: int
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    is_active: bool = True


class PaymentMethod(BaseModel):
    """A wallet, card or account money is paid from or into."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: int
    name: str = Field(..., min_length=1, max_length=200)
    initial_funds: float = Field(
        default=0.0,
        description="Balance before the first recorded transaction"
    )


# =============================================================================
# EXPENSE AND ITS OWNED RECORDS
# =============================================================================

class LineItem(BaseModel):
    """
    A priced quantity within an expense.

    Owned exclusively by its expense and destroyed with it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    expense_id: Optional[int] = None
    description: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Product description"
    )
    quantity: float = Field(
        ...,
        gt=0,
        description="Quantity bought"
    )
    unit_price: float = Field(
        ...,
        ge=0,
        description="Price per unit"
    )
    party_id: Optional[int] = Field(
        default=None,
        description="Party this item is assigned to (per-item splitting only)"
    )
    excluded_from_discount: bool = Field(
        default=False,
        description="Item keeps its full price when a discount applies"
    )

    @property
    def raw_amount(self) -> float:
        """Quantity times unit price, before any discount."""
        return self.quantity * self.unit_price


class SplitRecord(BaseModel):
    """One party's share count under share-based splitting."""

    id: Optional[int] = None
    expense_id: Optional[int] = None
    party_id: int
    shares: int = Field(
        ...,
        ge=1,
        description="Number of shares this party carries"
    )


class Expense(BaseModel):
    """
    One shared purchase event.

    CRITICAL: the pair (status, owed_to_party_id) decides the debt direction.
    An unpaid expense is owed in full to `owed_to_party_id`; a paid expense
    may be divided among parties through its split mode.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: Optional[int] = None
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the expense was recorded"
    )

    # What was bought
    expense_date: date = Field(
        ...,
        description="Date of the purchase"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Store or merchant label"
    )
    line_items: list[LineItem] = Field(default_factory=list)

    # Total-only expenses carry a manual total instead of line items
    is_total_only: bool = False
    flat_total: Optional[float] = Field(
        default=None,
        description="Manually recorded total for total-only expenses"
    )

    discount_percent: float = Field(
        default=0.0,
        ge=0,
        le=100,
        description="Flat percentage discount on non-excluded items"
    )

    # Allocation configuration
    split_mode: SplitMode = SplitMode.NONE
    own_shares: int = Field(
        default=0,
        ge=0,
        description="Payer's own share count (share_split only)"
    )
    splits: list[SplitRecord] = Field(default_factory=list)

    # Direction and payment
    status: ExpenseStatus = ExpenseStatus.PAID
    owed_to_party_id: Optional[int] = None
    payment_method_id: Optional[int] = None

    # Drafts are ignored by every debt computation
    is_tentative: bool = False

    @model_validator(mode='after')
    def validate_allocation_shape(self) -> 'Expense':
        """Allocation data must match the split mode."""
        if self.is_total_only and self.line_items:
            raise ValueError("Total-only expense cannot have line items")

        if self.splits and self.split_mode != SplitMode.SHARE_SPLIT:
            raise ValueError("Split records require share_split mode")

        if self.split_mode != SplitMode.PER_ITEM:
            if any(item.party_id is not None for item in self.line_items):
                raise ValueError("Item assignments require per_item mode")

        return self

    @property
    def assigned_party_ids(self) -> set[int]:
        """Parties referenced by split records or item assignments."""
        ids = {split.party_id for split in self.splits}
        ids.update(
            item.party_id for item in self.line_items
            if item.party_id is not None
        )
        return ids

    @property
    def has_allocation(self) -> bool:
        """Does this expense carry split records or item assignments?"""
        return bool(self.assigned_party_ids)


# =============================================================================
# SETTLEMENT RECORDS
# =============================================================================

class LedgerCredit(BaseModel):
    """Income entry on a payment method (a repayment or top-up)."""

    id: Optional[int] = None
    payment_method_id: int
    amount: float = Field(..., ge=0)
    credit_date: date
    note: Optional[str] = Field(default=None, max_length=500)


class SettlementRecord(BaseModel):
    """
    Evidence that a party paid its share of an expense.

    At most one exists per (expense, party). Its presence is the
    "settled" flag for the party-owes-payer direction.
    """

    id: Optional[int] = None
    expense_id: int
    party_id: int
    paid_date: date
    credit_id: int
