"""Derived summary models (never persisted)."""

from dataclasses import dataclass, field

from .transaction import Category


@dataclass
class CategorySummary:
    """Totals for one category within a year."""

    category: Category
    total: float = 0.0
    count: int = 0
    percentage: float = 0.0


@dataclass
class YearSummary:
    """Income/expense totals and per-category breakdown for a calendar year."""

    year: int
    total_income: float = 0.0
    total_expense: float = 0.0
    income_by_category: list[CategorySummary] = field(default_factory=list)
    expense_by_category: list[CategorySummary] = field(default_factory=list)

    @property
    def balance(self) -> float:
        return self.total_income - self.total_expense
