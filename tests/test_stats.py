from __future__ import annotations

import datetime as dt

import pytest

from inbox_ledger.models import ExpenseCategory, Transaction
from inbox_ledger.stats import category_breakdown, compute_dashboard_stats, daily_spend

TODAY = dt.date(2025, 3, 20)


def _tx(amount: float, category: str, *, type: str = "DEBIT", day: dt.date = TODAY) -> Transaction:
    return Transaction(
        date=day,
        amount=amount,
        merchant="M",
        description="d",
        category=category,
        type=type,
    )


def test_empty_ledger_stats():
    stats = compute_dashboard_stats([])

    assert stats.total_spent == 0
    assert stats.top_category is ExpenseCategory.OTHER
    assert stats.transaction_count == 0
    assert stats.avg_transaction == 0


def test_only_debits_count_as_spending():
    txs = [
        _tx(100, "Shopping"),
        _tx(300, "Food & Dining"),
        _tx(50000, "Income", type="CREDIT"),
    ]

    stats = compute_dashboard_stats(txs)

    assert stats.total_spent == pytest.approx(400)
    assert stats.top_category is ExpenseCategory.FOOD
    assert stats.transaction_count == 3
    assert stats.avg_transaction == pytest.approx(200)


def test_credits_only_has_no_top_category():
    stats = compute_dashboard_stats([_tx(10, "Income", type="CREDIT")])

    assert stats.top_category is ExpenseCategory.OTHER
    assert stats.total_spent == 0


def test_breakdown_orders_by_amount_then_category_order():
    txs = [
        _tx(50, "Transport"),
        _tx(50, "Shopping"),
        _tx(120, "Health"),
        _tx(30, "Health"),
    ]

    rows = category_breakdown(txs)

    assert [r.category for r in rows] == [
        ExpenseCategory.HEALTH,
        ExpenseCategory.SHOPPING,
        ExpenseCategory.TRANSPORT,
    ]
    assert rows[0].amount == pytest.approx(150)
    assert sum(r.share for r in rows) == pytest.approx(1.0)
    assert rows[0].share == pytest.approx(0.6)


def test_daily_spend_window_is_oldest_first_and_zero_filled():
    txs = [
        _tx(10, "Food & Dining", day=TODAY),
        _tx(5, "Transport", day=TODAY),
        _tx(7, "Shopping", day=TODAY - dt.timedelta(days=2)),
        _tx(99, "Travel", day=TODAY - dt.timedelta(days=3)),
        _tx(500, "Income", type="CREDIT", day=TODAY),
    ]

    rows = daily_spend(txs, days=3, today=TODAY)

    assert [r.day for r in rows] == [
        TODAY - dt.timedelta(days=2),
        TODAY - dt.timedelta(days=1),
        TODAY,
    ]
    assert [r.amount for r in rows] == [7, 0, 15]


def test_daily_spend_rejects_empty_window():
    with pytest.raises(ValueError):
        daily_spend([], days=0)
