"""
Result Cache

Holds computed allocation and balance results between requests.

Entries are keyed by (kind, identifier). Nothing expires on its own: every
mutating engine operation invalidates the expense, parties and payment
methods it touched.
"""

from typing import Any, Hashable, Iterable, Optional

import structlog


ALLOCATION = "allocation"
EXPENSE_SUMMARY = "expense_summary"
PARTY_DEBTS = "party_debts"
PAYMENT_METHOD = "payment_method"

_EXPENSE_KINDS = (ALLOCATION, EXPENSE_SUMMARY)


class ResultCache:
    """In-process cache shared by the allocation engine and the aggregator."""

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._entries: dict[tuple[str, Hashable], Any] = {}
        self._logger = structlog.get_logger(__name__)

    def get(self, kind: str, key: Hashable) -> Optional[Any]:
        return self._entries.get((kind, key))

    def set(self, kind: str, key: Hashable, value: Any) -> None:
        if self._enabled:
            self._entries[(kind, key)] = value

    def __contains__(self, entry: tuple[str, Hashable]) -> bool:
        return entry in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate_expense(self, expense_id: int) -> None:
        for kind in _EXPENSE_KINDS:
            self._entries.pop((kind, expense_id), None)

    def invalidate_party(self, party_id: int) -> None:
        self._entries.pop((PARTY_DEBTS, party_id), None)

    def invalidate_payment_method(self, payment_method_id: Optional[int]) -> None:
        if payment_method_id is not None:
            self._entries.pop((PAYMENT_METHOD, payment_method_id), None)

    def invalidate(
        self,
        expense_id: Optional[int] = None,
        party_ids: Iterable[Optional[int]] = (),
        payment_method_ids: Iterable[Optional[int]] = (),
    ) -> None:
        """Drop everything derived from the given entities."""
        if expense_id is not None:
            self.invalidate_expense(expense_id)
        parties = {party_id for party_id in party_ids if party_id is not None}
        for party_id in parties:
            self.invalidate_party(party_id)
        for method_id in payment_method_ids:
            self.invalidate_payment_method(method_id)
        self._logger.debug(
            "cache_invalidated",
            expense_id=expense_id,
            party_ids=sorted(parties),
        )

    def clear(self) -> None:
        self._entries.clear()
