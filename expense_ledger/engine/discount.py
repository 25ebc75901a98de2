"""
Discount Distributor

Applies an expense's flat percentage discount to its line items.

Items flagged `excluded_from_discount` keep their raw amount; every other
item is multiplied by the discount factor (1 - percent / 100). Total-only
expenses have no items and bypass this module entirely; use
`expense_net_total` when the caller does not want to branch itself.
"""

from typing import Iterable, Optional

from expense_ledger.models.expense import Expense, LineItem
from expense_ledger.models.results import DiscountDistribution


def clamp_non_negative(value: Optional[float]) -> float:
    """Floor a possibly missing or negative amount at zero."""
    if value is None or value < 0:
        return 0.0
    return float(value)


def discount_factor(discount_percent: float) -> float:
    return 1 - discount_percent / 100


def discounted_amount(item: LineItem, discount_percent: float) -> float:
    """Amount one line item contributes after the discount."""
    if item.excluded_from_discount or not discount_percent:
        return item.raw_amount
    return item.raw_amount * discount_factor(discount_percent)


def distribute(
    line_items: Iterable[LineItem],
    discount_percent: float,
) -> DiscountDistribution:
    """
    Compute each item's discounted amount and the net total.

    Args:
        line_items: Items of one expense (quantity > 0, unit price >= 0)
        discount_percent: Flat discount in [0, 100]

    Returns:
        DiscountDistribution with amounts in input order
    """
    amounts = [discounted_amount(item, discount_percent) for item in line_items]
    return DiscountDistribution(item_amounts=amounts, net_total=sum(amounts))


def discount_amount(line_items: Iterable[LineItem], discount_percent: float) -> float:
    """Total discount granted, for display next to the subtotal."""
    if not discount_percent:
        return 0.0
    discountable = sum(
        item.raw_amount for item in line_items
        if not item.excluded_from_discount
    )
    return discountable * discount_percent / 100


def subtotal(line_items: Iterable[LineItem]) -> float:
    return sum(item.raw_amount for item in line_items)


def expense_net_total(expense: Expense) -> float:
    """
    Net total of an expense, branching on total-only.

    Total-only expenses report their manually recorded amount, floored at 0.
    """
    if expense.is_total_only:
        return clamp_non_negative(expense.flat_total)
    return distribute(expense.line_items, expense.discount_percent).net_total
