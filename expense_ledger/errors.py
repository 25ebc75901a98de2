"""
Ledger Errors

Every error carries the operation it interrupted and the expense / party it
concerns, so the UI can render a specific message without parsing strings.
None of these are used for normal control flow.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for debt engine operations."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        expense_id: Optional[int] = None,
        party_id: Optional[int] = None,
    ):
        self.message = message
        self.operation = operation
        self.expense_id = expense_id
        self.party_id = party_id
        super().__init__(str(self))

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.expense_id is not None:
            context.append(f"expense={self.expense_id}")
        if self.party_id is not None:
            context.append(f"party={self.party_id}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ValidationError(LedgerError):
    """Input rejected before any mutation (e.g. zero total shares)."""
    pass


class ConflictError(LedgerError):
    """Operation conflicts with existing settlement state."""
    pass


class NotFoundError(LedgerError):
    """Expense, party or settlement record does not exist."""
    pass


class ConfirmationRequiredError(LedgerError):
    """
    A destructive change needs explicit user confirmation.

    `plan` describes what would be cleared.
    """

    def __init__(self, message: str, *, plan=None, **context):
        self.plan = plan
        super().__init__(message, **context)
