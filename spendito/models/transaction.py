"""Transaction model and category enumerations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SourceAccount(str, Enum):
    """The two connected accounts a transaction can originate from."""

    VOLKSBANK = "volksbank"
    PAYPAL = "paypal"


class TransactionType(str, Enum):
    """Derived tag, always consistent with the category's class."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Category(str, Enum):
    """Closed category enumeration in display order."""

    # Income
    DONATION = "donation"
    PROTECTION_FEE = "protection_fee"
    MEMBERSHIP = "membership"
    OTHER_INCOME = "other_income"
    # Expense
    VETERINARY = "veterinary"
    FOSTER_CARE = "foster_care"
    TRANSPORT = "transport"
    ADMINISTRATION = "administration"
    OTHER_EXPENSE = "other_expense"
    # Internal movement between own accounts
    TRANSFER = "transfer"

    @property
    def is_income(self) -> bool:
        return self in INCOME_CATEGORIES

    @property
    def is_expense(self) -> bool:
        return self in EXPENSE_CATEGORIES

    @property
    def is_transfer(self) -> bool:
        return self in TRANSFER_CATEGORIES

    @property
    def label(self) -> str:
        return CATEGORY_INFO[self][0]

    @property
    def label_de(self) -> str:
        return CATEGORY_INFO[self][1]


INCOME_CATEGORIES: tuple[Category, ...] = (
    Category.DONATION,
    Category.PROTECTION_FEE,
    Category.MEMBERSHIP,
    Category.OTHER_INCOME,
)
EXPENSE_CATEGORIES: tuple[Category, ...] = (
    Category.VETERINARY,
    Category.FOSTER_CARE,
    Category.TRANSPORT,
    Category.ADMINISTRATION,
    Category.OTHER_EXPENSE,
)
TRANSFER_CATEGORIES: tuple[Category, ...] = (Category.TRANSFER,)

# (English label, German label)
CATEGORY_INFO: dict[Category, tuple[str, str]] = {
    Category.DONATION: ("Donations", "Spenden"),
    Category.PROTECTION_FEE: ("Protection Fees", "Schutzgebühren"),
    Category.MEMBERSHIP: ("Membership", "Mitgliedsbeiträge"),
    Category.OTHER_INCOME: ("Other Income", "Sonstige Einnahmen"),
    Category.VETERINARY: ("Veterinary", "Tierarzt"),
    Category.FOSTER_CARE: ("Foster", "Foster"),
    Category.TRANSPORT: ("Transport", "Transport"),
    Category.ADMINISTRATION: ("Administration", "Verwaltung"),
    Category.OTHER_EXPENSE: ("Other", "Sonstiges"),
    Category.TRANSFER: ("Transfer", "Umbuchung"),
}


def type_for_category(category: Category, amount: float) -> TransactionType:
    """Derive the transaction type for a category.

    The transfer category always yields a transfer. Income and expense
    categories yield their own class; the amount sign is only consulted
    for categories that carry no class of their own (none today).
    """
    if category.is_transfer:
        return TransactionType.TRANSFER
    if category.is_income:
        return TransactionType.INCOME
    if category.is_expense:
        return TransactionType.EXPENSE
    return TransactionType.INCOME if amount >= 0 else TransactionType.EXPENSE


def default_category(amount: float) -> Category:
    """Fallback category when no rule matches."""
    return Category.OTHER_INCOME if amount >= 0 else Category.OTHER_EXPENSE


def new_transaction_id() -> str:
    """Generate a fresh, never-reused transaction ID."""
    return str(uuid.uuid4())


@dataclass
class RawTransaction:
    """Normalized record yielded by a feed adapter or CSV reader.

    This is the intake shape before categorization: it carries only the
    financial facts and the origin-side identifier.
    """

    date: datetime
    amount: float
    description: str
    counterparty: str = ""
    currency: str = "EUR"
    external_id: Optional[str] = None
    raw_data: Optional[dict[str, Any]] = field(default=None, repr=False)


@dataclass
class Transaction:
    """A single transaction from one of the two source accounts."""

    id: str
    date: datetime
    amount: float  # positive = inflow, negative = outflow
    description: str
    counterparty: str
    source_account: SourceAccount
    category: Category
    type: TransactionType
    confidence: float = 0.0
    currency: str = "EUR"
    external_id: Optional[str] = None

    # Classification state
    is_manually_categorized: bool = False
    is_user_confirmed: bool = False

    # Cross-record linkage, owned by the duplicate linker
    is_duplicate: bool = False
    duplicate_reason: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    is_guthaben_transfer: bool = False
    linked_payment_id: Optional[str] = None
    linked_payment_description: Optional[str] = None
    linked_payment_counterparty: Optional[str] = None
    linked_payment_category: Optional[Category] = None

    raw_data: Optional[dict[str, Any]] = field(default=None, repr=False)

    def set_category(self, category: Category, confidence: float) -> None:
        """Set category, confidence and the derived type together."""
        self.category = category
        self.type = type_for_category(category, self.amount)
        self.confidence = confidence

    def clear_links(self) -> None:
        """Reset every field owned by the duplicate linker."""
        self.is_duplicate = False
        self.duplicate_reason = None
        self.linked_transaction_id = None
        self.is_guthaben_transfer = False
        self.linked_payment_id = None
        self.linked_payment_description = None
        self.linked_payment_counterparty = None
        self.linked_payment_category = None

    @property
    def is_transfer(self) -> bool:
        """Check if this is an internal movement rather than income/expense."""
        return self.category.is_transfer or self.type == TransactionType.TRANSFER

    @property
    def is_income(self) -> bool:
        return self.type == TransactionType.INCOME

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    @property
    def year(self) -> int:
        return self.date.year

    @property
    def display_date(self) -> str:
        """Date formatted for display."""
        return self.date.strftime("%Y-%m-%d")

    @property
    def display_amount(self) -> str:
        """Amount formatted for display, e.g. "-45.99 EUR"."""
        return f"{self.amount:,.2f} {self.currency}"

    @classmethod
    def from_raw(
        cls,
        raw: RawTransaction,
        source_account: SourceAccount,
        category: Category,
        confidence: float,
    ) -> "Transaction":
        """Create a new transaction from an intake record."""
        return cls(
            id=new_transaction_id(),
            date=raw.date,
            amount=raw.amount,
            description=raw.description,
            counterparty=raw.counterparty,
            source_account=source_account,
            category=category,
            type=type_for_category(category, raw.amount),
            confidence=confidence,
            currency=raw.currency,
            external_id=raw.external_id,
            raw_data=raw.raw_data,
        )
