"""Per-year statistics over a transaction set."""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from ..models import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    Category,
    CategorySummary,
    Transaction,
    TransactionType,
    YearSummary,
)

logger = logging.getLogger(__name__)


def filter_by_year(transactions: Iterable[Transaction], year: int) -> list[Transaction]:
    """Transactions dated within a calendar year."""
    return [t for t in transactions if t.date.year == year]


def transactions_by_year(transactions: Iterable[Transaction], year: int) -> list[Transaction]:
    """Transactions of a year for row display, newest first."""
    return sorted(filter_by_year(transactions, year), key=lambda t: (t.date, t.id), reverse=True)


def available_years(transactions: Iterable[Transaction], today: Optional[date] = None) -> list[int]:
    """Years with data plus the current year, newest first."""
    today = today or date.today()
    years = {today.year}
    years.update(t.date.year for t in transactions)
    return sorted(years, reverse=True)


def is_countable(txn: Transaction) -> bool:
    """Check if a transaction counts toward income/expense totals.

    Transfers and linked duplicates never count.
    """
    return not (
        txn.category == Category.TRANSFER
        or txn.type == TransactionType.TRANSFER
        or txn.is_duplicate
    )


def _build_side(
    buckets: dict[Category, list[float]], categories: tuple[Category, ...]
) -> tuple[float, list[CategorySummary]]:
    summaries = []
    for category in categories:
        amounts = buckets[category]
        summaries.append(CategorySummary(category=category, total=sum(amounts), count=len(amounts)))
    side_total = sum(s.total for s in summaries)
    for summary in summaries:
        summary.percentage = (summary.total / side_total) * 100 if side_total > 0 else 0.0
    return side_total, [s for s in summaries if s.count > 0]


def year_summary(transactions: Iterable[Transaction], year: int) -> YearSummary:
    """Compute income/expense totals and category breakdowns for a year.

    Income adds the signed amount, expense adds the absolute amount.
    Categories are listed in declared order, empty ones omitted. Each side
    total is the sum of its category totals.
    """
    income: dict[Category, list[float]] = {c: [] for c in INCOME_CATEGORIES}
    expense: dict[Category, list[float]] = {c: [] for c in EXPENSE_CATEGORIES}

    for txn in filter_by_year(transactions, year):
        if not is_countable(txn):
            continue
        if txn.type == TransactionType.INCOME:
            category = txn.category if txn.category in income else Category.OTHER_INCOME
            income[category].append(txn.amount)
        else:
            category = txn.category if txn.category in expense else Category.OTHER_EXPENSE
            expense[category].append(abs(txn.amount))
        if category != txn.category:
            logger.warning(
                "Transaction %s has type %s but category %s; counted as %s",
                txn.id,
                txn.type.value,
                txn.category.value,
                category.value,
            )

    total_income, income_summaries = _build_side(income, INCOME_CATEGORIES)
    total_expense, expense_summaries = _build_side(expense, EXPENSE_CATEGORIES)
    return YearSummary(
        year=year,
        total_income=total_income,
        total_expense=total_expense,
        income_by_category=income_summaries,
        expense_by_category=expense_summaries,
    )
