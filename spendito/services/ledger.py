"""Ledger service: the single entry point that mutates the transaction set.

Every public operation runs under one lock and one database commit, so the
transaction set and the rule store are never observed half-updated:

- import: validate -> dedup -> categorize -> insert -> link pass -> commit
- correction: set category -> learn -> recategorize -> link pass -> commit
- confirmation: confirm -> learn -> recategorize -> link pass -> commit
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Iterator, Optional

from tqdm import tqdm

from ..config import Config
from ..db.database import Database
from ..exceptions import RowError, TransactionNotFoundError
from ..models import (
    Category,
    CategoryRule,
    RawTransaction,
    SourceAccount,
    Transaction,
    YearSummary,
)
from . import aggregator
from .categorizer import CategorizerService
from .duplicate_linker import DuplicateLinker, DuplicateMatch, LinkResult, get_duplicate_pairs
from .importer import ImportResult, ImportRow, dedup_key, normalize_row, source_key
from .review import (
    QuarterlyReviewSummary,
    ReviewResult,
    ReviewService,
    is_quarterly_review_due,
)

__all__ = ["LedgerService", "RecategorizeResult"]

logger = logging.getLogger(__name__)

REVIEW_STATE_KEY = "review:quarterly"


@dataclass
class RecategorizeResult:
    """Outcome of a recategorization pass plus the link pass that follows it."""

    recategorized: int = 0
    relinked: int = 0


class LedgerService:
    """Orchestrates categorizer, linker and storage for both accounts."""

    def __init__(
        self,
        db: Database,
        categorizer: Optional[CategorizerService] = None,
        linker: Optional[DuplicateLinker] = None,
        config: Optional[Config] = None,
        review: Optional[ReviewService] = None,
        show_progress: bool = False,
    ):
        """Initialize ledger service.

        Args:
            db: Database holding transactions, rules and sync state.
            categorizer: Categorizer bound to the same database.
            linker: Duplicate/transfer linker.
            config: Application config (thresholds for the default services).
            review: Review service; defaults to rule-based review.
            show_progress: Show tqdm progress bars for bulk writes.
        """
        self._config = config or Config()
        self._db = db
        self._categorizer = categorizer or CategorizerService(
            db=db, config=self._config.categorization
        )
        self._linker = linker or DuplicateLinker(self._config.duplicates)
        self._review = review or ReviewService(self._categorizer, config=self._config.review)
        self._show_progress = show_progress
        self._lock = threading.RLock()

    @property
    def db(self) -> Database:
        return self._db

    @property
    def categorizer(self) -> CategorizerService:
        return self._categorizer

    # =========================================================================
    # Internal helpers (callers hold the lock and an open commit)
    # =========================================================================

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        """Hold the lock and one commit; on failure the rule store is reloaded."""
        with self._lock:
            try:
                with self._db.atomic(), self._categorizer.batch():
                    yield
            except Exception:
                self._categorizer.reload()
                raise

    def _require(self, transaction_id: str) -> Transaction:
        txn = self._db.get_transaction(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn

    def _relink(self, transactions: Optional[list[Transaction]] = None) -> LinkResult:
        if transactions is None:
            transactions = self._db.get_transactions()
        link = self._linker.mark_duplicates(transactions)
        if link.changed:
            self._db.upsert_transactions(link.changed)
        return link

    def _recategorize_and_relink(self) -> RecategorizeResult:
        transactions = self._db.get_transactions()
        changed = self._categorizer.recategorize_unconfirmed(transactions)
        if changed:
            self._db.upsert_transactions(changed)
        link = self._relink(transactions)
        return RecategorizeResult(recategorized=len(changed), relinked=link.total_changed)

    def _is_known(
        self,
        raw: RawTransaction,
        seen_external_ids: set[str],
        seen_keys: set[tuple[str, float, str]],
    ) -> bool:
        if raw.external_id:
            if raw.external_id in seen_external_ids:
                return True
        elif dedup_key(raw) in seen_keys:
            return True
        existing_id = self._db.find_existing_transaction(
            raw.external_id, raw.date, raw.amount, raw.description
        )
        return existing_id is not None

    # =========================================================================
    # Import
    # =========================================================================

    def import_transactions(
        self,
        rows: Iterable[ImportRow],
        source_account: SourceAccount,
    ) -> ImportResult:
        """Import one batch of rows from a source account.

        Invalid rows are reported in ``row_errors`` and skipped. Rows already
        stored are skipped (matched by external ID, or by date, amount and
        description when the row has none), so re-importing a batch leaves
        the stored set unchanged.
        A fatal failure rolls the whole batch back and is reported in
        ``errors``.
        """
        rows = list(rows)
        result = ImportResult(source=source_account.value, fetched=len(rows))
        try:
            with self._unit_of_work():
                seen_external_ids: set[str] = set()
                seen_keys: set[tuple[str, float, str]] = set()
                new_txns: list[Transaction] = []

                for index, row in enumerate(rows):
                    try:
                        raw = normalize_row(row, index)
                    except RowError as e:
                        logger.warning("Skipping %s row: %s", source_account.value, e)
                        result.row_errors.append(str(e))
                        continue

                    if self._is_known(raw, seen_external_ids, seen_keys):
                        logger.debug(
                            "Skipping known %s transaction %s %.2f %r",
                            source_account.value,
                            raw.date.strftime("%Y-%m-%d"),
                            raw.amount,
                            raw.description,
                        )
                        result.skipped_duplicates += 1
                        continue
                    if raw.external_id:
                        seen_external_ids.add(raw.external_id)
                    else:
                        seen_keys.add(dedup_key(raw))

                    categorization = self._categorizer.categorize(raw.description, raw.amount)
                    new_txns.append(
                        Transaction.from_raw(
                            raw,
                            source_account,
                            categorization.category,
                            categorization.confidence,
                        )
                    )

                for txn in tqdm(
                    new_txns,
                    desc="Storing transactions",
                    unit="txn",
                    leave=False,
                    disable=not self._show_progress,
                ):
                    self._db.upsert_transaction(txn)
                result.inserted = len(new_txns)

                all_txns = self._db.get_transactions()
                link = self._relink(all_txns)
                result.linked = link.total_changed

                new_ids = {t.id for t in new_txns}
                result.transactions = [t for t in all_txns if t.id in new_ids]

                self._db.update_sync_state(
                    source_key(source_account),
                    datetime.now(),
                    self._db.get_transaction_count(source_account),
                )
        except Exception as e:
            result.errors.append(str(e))
            result.inserted = 0
            result.transactions = []
            logger.exception("Import from %s failed", source_account.value)
            return result

        logger.info(
            "Imported %s: %d fetched, %d inserted, %d known, %d invalid rows",
            source_account.value,
            result.fetched,
            result.inserted,
            result.skipped_duplicates,
            len(result.row_errors),
        )
        return result

    # =========================================================================
    # Corrections
    # =========================================================================

    def update_category(self, transaction_id: str, category: Category) -> Transaction:
        """Apply a user correction and learn from it.

        The transaction becomes manually categorized and confirmed at full
        confidence, a rule is learned or boosted, every unconfirmed
        transaction is recategorized and the link pass runs again.

        Raises:
            TransactionNotFoundError: If the ID is unknown.
        """
        with self._unit_of_work():
            txn = self._require(transaction_id)
            previous = txn.category
            txn.set_category(category, 1.0)
            txn.is_manually_categorized = True
            txn.is_user_confirmed = True
            self._db.upsert_transaction(txn)

            self._categorizer.learn_from_correction(txn.description, category, txn.amount)
            outcome = self._recategorize_and_relink()
            logger.info(
                "Corrected %s: %s -> %s (%d recategorized, %d relinked)",
                transaction_id,
                previous.value,
                category.value,
                outcome.recategorized,
                outcome.relinked,
            )
            return self._require(transaction_id)

    def confirm_category(self, transaction_id: str) -> Transaction:
        """Confirm the current category of a transaction and learn from it.

        Raises:
            TransactionNotFoundError: If the ID is unknown.
        """
        with self._unit_of_work():
            txn = self._require(transaction_id)
            txn.is_user_confirmed = True
            txn.confidence = 1.0
            self._db.upsert_transaction(txn)
            self._categorizer.learn_from_correction(txn.description, txn.category, txn.amount)
            outcome = self._recategorize_and_relink()
            logger.info(
                "Confirmed %s as %s (%d recategorized, %d relinked)",
                transaction_id,
                txn.category.value,
                outcome.recategorized,
                outcome.relinked,
            )
            return self._require(transaction_id)

    def apply_review_suggestions(self, results: Iterable[ReviewResult]) -> int:
        """Apply every suggested change as a user correction.

        Returns:
            Number of transactions changed.
        """
        applied = 0
        with self._unit_of_work():
            for review in results:
                if not review.is_change:
                    continue
                self.update_category(review.transaction_id, review.suggested_category)
                applied += 1
        return applied

    def recategorize(self) -> RecategorizeResult:
        """Re-apply the current rules to every unconfirmed transaction."""
        with self._unit_of_work():
            return self._recategorize_and_relink()

    def refresh_links(self) -> LinkResult:
        """Rerun the duplicate and Guthaben-Transfer link pass."""
        with self._lock, self._db.atomic():
            return self._relink()

    # =========================================================================
    # Rules
    # =========================================================================

    def add_rule(
        self,
        pattern: str,
        category: Category,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
    ) -> CategoryRule:
        """Add a user rule and recategorize with it.

        Raises:
            re.error: If the pattern is not a valid regular expression.
        """
        re.compile(pattern)
        with self._unit_of_work():
            rule = self._categorizer.add_rule(
                pattern, category, is_user_defined=True, min_amount=min_amount, max_amount=max_amount
            )
            self._recategorize_and_relink()
            return rule

    def delete_rule(self, rule_id: str) -> None:
        """Delete a rule and recategorize without it.

        Raises:
            RuleNotFoundError: If no rule has this ID.
        """
        with self._unit_of_work():
            self._categorizer.delete_rule(rule_id)
            self._recategorize_and_relink()

    def reset_rules(self) -> RecategorizeResult:
        """Restore the built-in rule set and recategorize."""
        with self._unit_of_work():
            self._categorizer.reset_to_defaults()
            return self._recategorize_and_relink()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Look up a transaction by ID.

        Raises:
            TransactionNotFoundError: If the ID is unknown.
        """
        with self._lock:
            return self._require(transaction_id)

    def get_transactions(
        self,
        year: Optional[int] = None,
        source_account: Optional[SourceAccount] = None,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        with self._lock:
            return self._db.get_transactions(year=year, source_account=source_account, limit=limit)

    def get_transactions_by_year(self, year: int) -> list[Transaction]:
        """Transactions of a year, newest first."""
        with self._lock:
            return aggregator.transactions_by_year(self._db.get_transactions(year=year), year)

    def year_summary(self, year: int) -> YearSummary:
        with self._lock:
            return aggregator.year_summary(self._db.get_transactions(year=year), year)

    def available_years(self, today: Optional[date] = None) -> list[int]:
        with self._lock:
            return aggregator.available_years(self._db.get_transactions(), today)

    def possible_duplicates(self) -> list[DuplicateMatch]:
        """Medium-confidence pairs that need a human decision.

        Computed from a fresh link pass over the stored set; nothing is written.
        """
        with self._lock:
            return self._linker.mark_duplicates(self._db.get_transactions()).possible_duplicates

    def duplicate_pairs(self) -> list[tuple[Transaction, Transaction]]:
        """(primary, duplicate) pairs for every linked duplicate."""
        with self._lock:
            return get_duplicate_pairs(self._db.get_transactions())

    # =========================================================================
    # Review
    # =========================================================================

    def last_review_at(self) -> Optional[datetime]:
        state = self._db.get_sync_state(REVIEW_STATE_KEY)
        return state["last_sync_at"] if state else None

    def is_review_due(self, now: Optional[datetime] = None) -> bool:
        return is_quarterly_review_due(self.last_review_at(), now)

    def run_review(
        self, quarter: Optional[str] = None, apply: bool = False
    ) -> QuarterlyReviewSummary:
        """Run the quarterly review over the stored transactions.

        Args:
            quarter: Label for the review (defaults to the current quarter).
            apply: Apply suggested changes as corrections.
        """
        with self._unit_of_work():
            summary = self._review.perform_quarterly_review(self._db.get_transactions(), quarter)
            if apply:
                summary.applied_changes = self.apply_review_suggestions(summary.results)
            self._db.update_sync_state(
                REVIEW_STATE_KEY, datetime.now(), summary.reviewed_transactions
            )
            return summary
