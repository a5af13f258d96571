"""Categorization rule model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .transaction import Category


@dataclass
class CategoryRule:
    """A prioritized pattern mapping descriptions to a category.

    The pattern is a case-insensitive regular expression searched in the
    lowercased description. Optional amount bounds apply to the absolute
    amount, e.g. to pin a recurring fixed fee.
    """

    id: str
    pattern: str
    category: Category
    priority: int = 100
    match_count: int = 0
    is_user_defined: bool = False
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def has_amount_range(self) -> bool:
        return self.min_amount is not None or self.max_amount is not None

    def amount_in_range(self, amount: float) -> bool:
        """Check the absolute amount against the rule's bounds."""
        value = abs(amount)
        if self.min_amount is not None and value < self.min_amount:
            return False
        if self.max_amount is not None and value > self.max_amount:
            return False
        return True
