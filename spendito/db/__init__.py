"""Database layer for Spendito."""

from .database import Database

__all__ = ["Database"]
