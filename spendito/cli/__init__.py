"""Command-line interface for Spendito."""

from .main import main

__all__ = ["main"]
