"""Data models for Spendito."""

from .rule import CategoryRule
from .summary import CategorySummary, YearSummary
from .transaction import (
    CATEGORY_INFO,
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    TRANSFER_CATEGORIES,
    Category,
    RawTransaction,
    SourceAccount,
    Transaction,
    TransactionType,
    default_category,
    new_transaction_id,
    type_for_category,
)

__all__ = [
    "CATEGORY_INFO",
    "Category",
    "CategoryRule",
    "CategorySummary",
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "RawTransaction",
    "SourceAccount",
    "TRANSFER_CATEGORIES",
    "Transaction",
    "TransactionType",
    "YearSummary",
    "default_category",
    "new_transaction_id",
    "type_for_category",
]
