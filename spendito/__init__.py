"""Spendito - transaction categorization and deduplication for a dog-rescue association."""

__version__ = "0.3.0"
