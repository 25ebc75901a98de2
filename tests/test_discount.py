"""Tests for the discount distributor."""

from datetime import date

import pytest

from expense_ledger.engine.discount import (
    clamp_non_negative,
    discount_amount,
    discounted_amount,
    distribute,
    expense_net_total,
    subtotal,
)
from expense_ledger.models.expense import Expense, LineItem


class TestDistribute:
    """Tests for per-item discount application."""

    def test_no_discount_keeps_raw_amounts(self):
        """Without a discount every item contributes quantity x price."""
        items = [
            LineItem(quantity=2, unit_price=5),
            LineItem(quantity=1, unit_price=10),
        ]
        result = distribute(items, 0)
        assert result.item_amounts == [10, 10]
        assert result.net_total == 20

    def test_ten_percent_discount(self):
        """A 50 item at 10% off contributes 45."""
        result = distribute([LineItem(quantity=1, unit_price=50)], 10)
        assert result.item_amounts == [pytest.approx(45)]
        assert result.net_total == pytest.approx(45)

    def test_excluded_item_keeps_full_price(self):
        """Items exempt from the discount are not reduced."""
        items = [
            LineItem(quantity=1, unit_price=100),
            LineItem(quantity=1, unit_price=50, excluded_from_discount=True),
        ]
        result = distribute(items, 20)
        assert result.item_amounts == [pytest.approx(80), 50]
        assert result.net_total == pytest.approx(130)

    def test_full_discount_zeroes_discountable_items(self):
        items = [
            LineItem(quantity=3, unit_price=4),
            LineItem(quantity=1, unit_price=7, excluded_from_discount=True),
        ]
        result = distribute(items, 100)
        assert result.item_amounts == [0, 7]

    def test_empty_items(self):
        result = distribute([], 15)
        assert result.item_amounts == []
        assert result.net_total == 0

    def test_amounts_are_not_rounded(self):
        """Rounding is a display concern."""
        amount = discounted_amount(LineItem(quantity=1, unit_price=0.1), 33)
        assert amount == 0.1 * (1 - 33 / 100)


class TestTotals:
    """Tests for subtotal, discount and net total helpers."""

    def test_discount_amount_ignores_excluded_items(self):
        items = [
            LineItem(quantity=1, unit_price=100),
            LineItem(quantity=1, unit_price=50, excluded_from_discount=True),
        ]
        assert discount_amount(items, 20) == pytest.approx(20)
        assert subtotal(items) == 150

    def test_net_total_of_itemised_expense(self):
        expense = Expense(
            expense_date=date(2024, 3, 1),
            line_items=[LineItem(quantity=2, unit_price=25)],
            discount_percent=10,
        )
        assert expense_net_total(expense) == pytest.approx(45)

    def test_net_total_of_total_only_expense(self):
        """Total-only expenses report their flat total, discount ignored."""
        expense = Expense(
            expense_date=date(2024, 3, 1),
            is_total_only=True,
            flat_total=80,
            discount_percent=50,
        )
        assert expense_net_total(expense) == 80

    def test_negative_flat_total_floors_at_zero(self):
        expense = Expense(
            expense_date=date(2024, 3, 1),
            is_total_only=True,
            flat_total=-5,
        )
        assert expense_net_total(expense) == 0

    def test_clamp_non_negative(self):
        assert clamp_non_negative(None) == 0
        assert clamp_non_negative(-1.5) == 0
        assert clamp_non_negative(2) == 2.0
