"""Dashboard reductions over a transaction log.

Only ``DEBIT`` transactions count as spending. ``transaction_count`` covers
every transaction, credits included.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable

from .models import (
    CategoryTotal,
    DailySpend,
    DashboardStats,
    ExpenseCategory,
    Transaction,
    TransactionType,
)


def _debits(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [t for t in transactions if t.type == TransactionType.DEBIT]


def category_breakdown(transactions: Iterable[Transaction]) -> list[CategoryTotal]:
    """Debit totals per category, largest first (ties keep category order)."""

    totals: dict[ExpenseCategory, float] = {}
    for t in _debits(transactions):
        totals[t.category] = totals.get(t.category, 0.0) + t.amount
    grand = sum(totals.values())
    ranked = sorted(
        totals.items(), key=lambda kv: (-kv[1], list(ExpenseCategory).index(kv[0]))
    )
    return [
        CategoryTotal(category=cat, amount=amt, share=(amt / grand) if grand else 0.0)
        for cat, amt in ranked
    ]


def compute_dashboard_stats(transactions: Iterable[Transaction]) -> DashboardStats:
    txs = list(transactions)
    debits = _debits(txs)
    total = sum(t.amount for t in debits)
    breakdown = category_breakdown(debits)
    top = ExpenseCategory.OTHER
    if breakdown and breakdown[0].amount > 0:
        top = breakdown[0].category
    return DashboardStats(
        total_spent=total,
        top_category=top,
        transaction_count=len(txs),
        avg_transaction=(total / len(debits)) if debits else 0.0,
    )


def daily_spend(
    transactions: Iterable[Transaction],
    *,
    days: int = 7,
    today: dt.date | None = None,
) -> list[DailySpend]:
    """Debit totals for each of the last ``days`` days, oldest first."""

    if days < 1:
        raise ValueError("days must be a positive integer")
    end = today or dt.date.today()
    window = [end - dt.timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    totals = dict.fromkeys(window, 0.0)
    for t in _debits(transactions):
        if t.date in totals:
            totals[t.date] += t.amount
    return [DailySpend(day=d, amount=totals[d]) for d in window]
