"""Sync service for pulling transactions from the account feeds.

Feeds are fetched outside the ledger lock (network I/O can be slow); the
fetched rows are then handed to ``LedgerService.import_transactions``,
which does the locked, single-commit part.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..models import SourceAccount
from .importer import ImportResult, source_key

if TYPE_CHECKING:
    from ..clients.protocols import TransactionFeedProtocol
    from .ledger import LedgerService

logger = logging.getLogger(__name__)

# Re-fetch a few days before the last sync to catch late bookings
SYNC_OVERLAP_DAYS = 7


class SyncService:
    """Pulls transactions from the bank and PayPal feeds into the ledger."""

    def __init__(
        self,
        ledger: LedgerService,
        feeds: Optional[list[TransactionFeedProtocol]] = None,
    ):
        """Initialize sync service.

        Args:
            ledger: Ledger that stores and links the imported rows.
            feeds: Feed adapters, at most one per source account.
        """
        self._ledger = ledger
        self._feeds: dict[SourceAccount, TransactionFeedProtocol] = {}
        for feed in feeds or []:
            self._feeds[feed.source_account] = feed

    @property
    def sources(self) -> list[SourceAccount]:
        return list(self._feeds)

    def _since_date(self, source_account: SourceAccount, full: bool) -> Optional[datetime]:
        if full:
            logger.debug("Full sync requested for %s", source_account.value)
            return None
        state = self._ledger.db.get_sync_state(source_key(source_account))
        if not state or not state.get("last_sync_at"):
            logger.debug("No sync state for %s, fetching everything", source_account.value)
            return None
        since = state["last_sync_at"] - timedelta(days=SYNC_OVERLAP_DAYS)
        logger.debug("Incremental sync for %s since %s", source_account.value, since)
        return since

    def pull(self, source_account: SourceAccount, full: bool = False) -> ImportResult:
        """Fetch from one account's feed and import the rows.

        Args:
            source_account: Which account to pull.
            full: Ignore the last sync time and fetch everything.

        Returns:
            ImportResult; feed failures are reported in ``errors``.
        """
        feed = self._feeds.get(source_account)
        if feed is None:
            return ImportResult(
                source=source_account.value,
                errors=[f"No feed configured for {source_account.value}"],
            )

        since_date = self._since_date(source_account, full)
        try:
            rows = feed.fetch_transactions(since_date=since_date)
        except Exception as e:
            logger.exception("Fetching %s transactions failed", source_account.value)
            return ImportResult(source=source_account.value, errors=[str(e)])
        logger.debug("Fetched %d rows from %s", len(rows), source_account.value)
        return self._ledger.import_transactions(rows, source_account)

    def pull_all(self, full: bool = False) -> dict[str, ImportResult]:
        """Pull every configured feed, bank first."""
        results = {}
        for source_account in SourceAccount:
            if source_account in self._feeds:
                results[source_account.value] = self.pull(source_account, full=full)
        return results

    def import_csv(self, path: Path) -> ImportResult:
        """Import a Volksbank CSV export file.

        Rows the reader cannot split into columns are reported alongside
        the rows the ledger rejects.
        """
        from ..clients.volksbank_csv import read_volksbank_csv

        try:
            rows, row_errors = read_volksbank_csv(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Cannot read %s: %s", path, e)
            return ImportResult(source=SourceAccount.VOLKSBANK.value, errors=[str(e)])

        result = self._ledger.import_transactions(rows, SourceAccount.VOLKSBANK)
        result.fetched += len(row_errors)
        result.row_errors = [str(e) for e in row_errors] + result.row_errors
        return result
