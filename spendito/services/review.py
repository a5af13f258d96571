"""Quarterly categorization review.

An optional external advisor (e.g. an LLM-backed reviewer) suggests
categories for uncertain transactions. Whenever no advisor is configured,
or the advisor fails, the review falls back to re-evaluating the
transactions against the current rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from ..config import ReviewConfig
from ..models import Category, Transaction

if TYPE_CHECKING:
    from ..clients.protocols import ReviewAdvisorProtocol
    from .categorizer import CategorizerService

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    """Suggestion for a single transaction."""

    transaction_id: str
    original_category: Category
    suggested_category: Category
    confidence: float
    reasoning: str
    needs_review: bool

    @property
    def is_change(self) -> bool:
        return self.needs_review and self.suggested_category != self.original_category


@dataclass
class QuarterlyReviewSummary:
    """Outcome of a quarterly review run."""

    quarter: str  # e.g. "Q4 2024"
    total_transactions: int = 0
    reviewed_transactions: int = 0
    suggested_changes: int = 0
    applied_changes: int = 0
    used_advisor: bool = False
    results: list[ReviewResult] = field(default_factory=list)


def current_quarter(now: Optional[datetime] = None) -> str:
    """Quarter label such as "Q2 2025"."""
    now = now or datetime.now()
    return f"Q{(now.month - 1) // 3 + 1} {now.year}"


def is_quarterly_review_due(
    last_review: Optional[datetime], now: Optional[datetime] = None
) -> bool:
    """A review is due once per calendar quarter."""
    if last_review is None:
        return True
    now = now or datetime.now()
    current = (now.year, (now.month - 1) // 3)
    last = (last_review.year, (last_review.month - 1) // 3)
    return current > last


class ReviewService:
    """Produces review suggestions from an advisor or from the rules."""

    def __init__(
        self,
        categorizer: CategorizerService,
        advisor: Optional[ReviewAdvisorProtocol] = None,
        config: Optional[ReviewConfig] = None,
    ):
        self._categorizer = categorizer
        self._advisor = advisor
        self._config = config or ReviewConfig()

    def select_for_review(self, transactions: list[Transaction]) -> list[Transaction]:
        """Automatic, uncertain categorizations worth a second look."""
        return [
            t
            for t in transactions
            if not t.is_manually_categorized
            and not t.is_user_confirmed
            and not t.is_duplicate
            and t.confidence < self._config.confidence_threshold
        ]

    def review_transactions(
        self, transactions: list[Transaction]
    ) -> tuple[list[ReviewResult], bool]:
        """Review transactions with the advisor, falling back to rules.

        Returns:
            Tuple of (results, used_advisor).
        """
        if not transactions:
            return [], False
        if self._advisor is None:
            logger.debug("No review advisor configured, using rule-based review")
            return self.rule_based_review(transactions), False
        try:
            suggestions = self._advisor.suggest_categories(transactions)
            return self._merge_suggestions(suggestions, transactions), True
        except Exception as e:
            logger.warning("Review advisor failed, falling back to rules: %s", e)
            return self.rule_based_review(transactions), False

    def _merge_suggestions(
        self, suggestions: list[dict[str, Any]], transactions: list[Transaction]
    ) -> list[ReviewResult]:
        by_id = {s.get("transaction_id"): s for s in suggestions}
        results = []
        for txn in transactions:
            suggestion = by_id.get(txn.id)
            if suggestion is None:
                results.append(
                    ReviewResult(
                        transaction_id=txn.id,
                        original_category=txn.category,
                        suggested_category=txn.category,
                        confidence=txn.confidence,
                        reasoning="Keine Empfehlung verfügbar.",
                        needs_review=False,
                    )
                )
                continue
            try:
                suggested = Category(suggestion["suggested_category"])
            except (KeyError, ValueError):
                logger.warning(
                    "Ignoring advisor suggestion for %s: unknown category %r",
                    txn.id,
                    suggestion.get("suggested_category"),
                )
                suggested = txn.category
            results.append(
                ReviewResult(
                    transaction_id=txn.id,
                    original_category=txn.category,
                    suggested_category=suggested,
                    confidence=float(suggestion.get("confidence", 0.0)),
                    reasoning=str(suggestion.get("reasoning", "")),
                    needs_review=bool(suggestion.get("needs_review", False))
                    and suggested != txn.category,
                )
            )
        return results

    def rule_based_review(self, transactions: list[Transaction]) -> list[ReviewResult]:
        """Re-evaluate transactions against the current rules."""
        results = []
        for txn in transactions:
            suggestion = self._categorizer.categorize(txn.description, txn.amount)
            needs_review = txn.confidence < self._config.low_confidence or (
                suggestion.category != txn.category
                and suggestion.confidence > self._config.suggestion_confidence
            )
            if needs_review and suggestion.category != txn.category:
                reasoning = (
                    f'Basierend auf "{txn.description}" könnte '
                    f"{suggestion.category.label_de} passender sein."
                )
            elif needs_review:
                reasoning = "Niedrige Sicherheit, bitte bestätigen."
            else:
                reasoning = "Kategorisierung erscheint korrekt."
            results.append(
                ReviewResult(
                    transaction_id=txn.id,
                    original_category=txn.category,
                    suggested_category=suggestion.category if needs_review else txn.category,
                    confidence=suggestion.confidence,
                    reasoning=reasoning,
                    needs_review=needs_review,
                )
            )
        return results

    def perform_quarterly_review(
        self, transactions: list[Transaction], quarter: Optional[str] = None
    ) -> QuarterlyReviewSummary:
        """Review the uncertain part of a transaction set."""
        to_review = self.select_for_review(transactions)
        results, used_advisor = self.review_transactions(to_review)
        summary = QuarterlyReviewSummary(
            quarter=quarter or current_quarter(),
            total_transactions=len(transactions),
            reviewed_transactions=len(to_review),
            suggested_changes=sum(1 for r in results if r.is_change),
            used_advisor=used_advisor,
            results=results,
        )
        logger.info(
            "Review %s: %d reviewed, %d suggested changes",
            summary.quarter,
            summary.reviewed_transactions,
            summary.suggested_changes,
        )
        return summary
