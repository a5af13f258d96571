"""Protocol definitions for external collaborators.

These protocols define the interface the core expects from feed adapters
(bank and PayPal) and from an optional review advisor.
"""

from datetime import datetime
from typing import Optional, Protocol

from ..models import RawTransaction, SourceAccount, Transaction


class TransactionFeedProtocol(Protocol):
    """A producer of normalized transaction records for one account."""

    source_account: SourceAccount

    def fetch_transactions(
        self,
        since_date: Optional[datetime] = None,
    ) -> list[RawTransaction]:
        """Fetch transactions, optionally only those on or after a date.

        Transport errors (network, authentication) are raised by the
        adapter and reported by the sync service.
        """
        ...


class ReviewAdvisorProtocol(Protocol):
    """An external classifier suggesting categories for review."""

    def suggest_categories(self, transactions: list[Transaction]) -> list[dict]:
        """Return one suggestion dict per reviewed transaction.

        Each dict carries ``transaction_id``, ``suggested_category``,
        ``confidence``, ``reasoning`` and ``needs_review``.
        """
        ...
