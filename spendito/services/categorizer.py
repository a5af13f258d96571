"""Rule-based categorization with learning from user corrections.

Matching is split into pure functions (``rule_matches``, ``rule_confidence``,
``extract_keywords``, ``amount_band``) and the stateful ``CategorizerService``
that owns the rule store, counts matches and persists changes.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from ..config import CategorizationConfig
from ..exceptions import RuleNotFoundError
from ..models import Category, CategoryRule, Transaction, default_category

if TYPE_CHECKING:
    from ..db.database import Database

__all__ = [
    "DEFAULT_RULES",
    "CategorizationResult",
    "CategorizerService",
    "amount_band",
    "extract_keywords",
    "rule_confidence",
    "rule_matches",
]

logger = logging.getLogger(__name__)

# (pattern, category, priority)
DEFAULT_RULES: list[tuple[str, Category, int]] = [
    # Transfers first: sign-agnostic, highest priority
    (
        r"guthaben.?transfer|umbuchung|übertrag|transfer zwischen|eigenes konto",
        Category.TRANSFER,
        150,
    ),
    (
        r"paypal.*einzahlung|einzahlung.*paypal|paypal.*auszahlung|auszahlung.*paypal",
        Category.TRANSFER,
        150,
    ),
    (r"paypal guthaben|paypal-guthaben|guthaben paypal", Category.TRANSFER, 150),
    # Income
    (r"spende|donation|geschenk", Category.DONATION, 100),
    (r"schutzgebühr|schutzgeb|adoption", Category.PROTECTION_FEE, 100),
    (r"mitglied|beitrag|membership", Category.MEMBERSHIP, 100),
    # Expense
    (
        r"tierarzt|tierärzt|vet|tierklinik|tiermedizin|impf|kastration|sterilisation|medikament",
        Category.VETERINARY,
        100,
    ),
    (
        r"pflegestelle|pflege|unterbringung|pension|foster|futter|fressnapf|zooplus",
        Category.FOSTER_CARE,
        100,
    ),
    (r"transport|fahrt|benzin|tankstelle|flug|fähre|reise", Category.TRANSPORT, 100),
    (r"büro|porto|druck|verwaltung|versicherung|bank|gebühr|steuer", Category.ADMINISTRATION, 90),
]

# Recurring near-fixed fee band for adoptions
PROTECTION_FEE_BAND = (400.0, 600.0)

_NON_WORD_CHARS = re.compile(r"[^a-zäöüß\s]")


@dataclass
class CategorizationResult:
    """Category chosen for a description/amount pair."""

    category: Category
    confidence: float
    rule_id: Optional[str] = None


def default_rule_set() -> list[CategoryRule]:
    """Build a fresh copy of the built-in rules."""
    now = datetime.now()
    return [
        CategoryRule(
            id=f"default_{index}",
            pattern=pattern,
            category=category,
            priority=priority,
            created_at=now,
        )
        for index, (pattern, category, priority) in enumerate(DEFAULT_RULES)
    ]


def rule_matches(rule: CategoryRule, normalized_description: str, amount: float) -> bool:
    """Check whether a rule applies to a lowercased description and signed amount.

    Transfer rules match regardless of sign or amount range. Other rules
    require the category class to agree with the sign (non-negative is
    income) and the absolute amount to fall inside the rule's bounds.

    Raises:
        re.error: If the rule's pattern is not a valid regular expression.
    """
    if not re.search(rule.pattern, normalized_description, re.IGNORECASE):
        return False
    if rule.category.is_transfer:
        return True
    is_expense = amount < 0
    if rule.category.is_expense != is_expense:
        return False
    return rule.amount_in_range(amount)


def rule_confidence(rule: CategoryRule, ceiling: float = 0.99) -> float:
    """Confidence grows with usage and priority but never reaches certainty."""
    return min(0.5 + rule.match_count * 0.05 + rule.priority / 200, ceiling)


def extract_keywords(description: str) -> list[str]:
    """Extract candidate keywords for a learned rule.

    Lowercases, drops everything except letters (including umlauts and ß)
    and whitespace, and keeps words longer than three characters.
    """
    cleaned = _NON_WORD_CHARS.sub("", description.lower())
    return [word for word in cleaned.split() if len(word) > 3]


def amount_band(category: Category, amount: float) -> tuple[float, float]:
    """Tolerance band (±10%, widened to whole units) for a corrected amount."""
    value = abs(amount)
    low, high = PROTECTION_FEE_BAND
    if category == Category.PROTECTION_FEE and low <= value <= high:
        return low, high
    return float(math.floor(round(value * 0.9, 6))), float(math.ceil(round(value * 1.1, 6)))


def sorted_by_priority(rules: Iterable[CategoryRule]) -> list[CategoryRule]:
    """Rules ordered by priority, highest first (stable for ties)."""
    return sorted(rules, key=lambda r: r.priority, reverse=True)


class CategorizerService:
    """Owns the rule store and categorizes transactions against it.

    Rules are loaded from the database on construction (seeded with the
    default set on first run). Mutations are flushed back to the database
    immediately, or once at the end of an enclosing ``batch()`` block.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[CategorizationConfig] = None,
        rules: Optional[list[CategoryRule]] = None,
    ):
        """Initialize categorizer.

        Args:
            db: Rule repository. Without one, rules live only in memory.
            config: Categorization settings.
            rules: Explicit starting rules (skips loading from the database).
        """
        self._db = db
        self._config = config or CategorizationConfig()
        self._lock = threading.RLock()
        self._batch_depth = 0
        self._dirty = False
        if rules is not None:
            self._rules = list(rules)
        else:
            self._rules = self._load_rules()

    def _load_rules(self) -> list[CategoryRule]:
        if self._db is None:
            return default_rule_set()
        stored = self._db.get_rules()
        if not stored:
            logger.info("Seeding default categorization rules")
            rules = default_rule_set()
            self._db.save_rules(rules)
            return rules
        if not any(rule.category.is_transfer for rule in stored):
            # Rule sets saved before transfer support lack the transfer rules
            logger.info("Adding default transfer rules to stored rule set")
            stored.extend(
                rule for rule in default_rule_set() if rule.category.is_transfer
            )
            self._db.save_rules(stored)
        return stored

    # =========================================================================
    # Persistence
    # =========================================================================

    @contextmanager
    def batch(self) -> Iterator["CategorizerService"]:
        """Defer rule persistence until the outermost batch exits."""
        with self._lock:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self.flush()

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self._batch_depth == 0:
            self.flush()

    def flush(self) -> None:
        """Persist the rule store if it changed."""
        with self._lock:
            if self._dirty and self._db is not None:
                self._db.save_rules(self._rules)
            self._dirty = False

    def reload(self) -> None:
        """Discard unsaved changes and reload the rule store."""
        if self._db is None:
            return
        with self._lock:
            self._dirty = False
            self._rules = self._load_rules()

    # =========================================================================
    # Categorization
    # =========================================================================

    def categorize(self, description: str, amount: float) -> CategorizationResult:
        """Pick the best-matching rule for a description and signed amount.

        Never raises: a malformed rule is skipped, and when nothing matches
        the "other income/expense" category is returned at low confidence.
        """
        normalized = (description or "").lower()
        with self._lock:
            for rule in sorted_by_priority(self._rules):
                try:
                    matched = rule_matches(rule, normalized, amount)
                except re.error as e:
                    logger.debug("Skipping rule %s with invalid pattern %r: %s", rule.id, rule.pattern, e)
                    continue
                if not matched:
                    continue
                rule.match_count += 1
                self._mark_dirty()
                confidence = rule_confidence(rule, self._config.max_confidence)
                logger.debug(
                    "Categorized %r (%.2f) as %s via rule %s (confidence %.2f)",
                    description,
                    amount,
                    rule.category.value,
                    rule.id,
                    confidence,
                )
                return CategorizationResult(rule.category, confidence, rule.id)

        return CategorizationResult(default_category(amount), self._config.fallback_confidence)

    def learn_from_correction(
        self,
        description: str,
        correct_category: Category,
        amount: Optional[float] = None,
    ) -> Optional[CategoryRule]:
        """Turn a confirmed categorization into a new or boosted rule.

        An existing rule for the same category is boosted when its pattern
        already contains one of the description's keywords, or (without
        keyword overlap) when it already carries an amount range. Otherwise
        a new user-defined rule is appended.

        Returns:
            The boosted or created rule, or None when there was nothing to learn.
        """
        words = extract_keywords(description or "")
        if not words and amount is None:
            return None

        min_amount: Optional[float] = None
        max_amount: Optional[float] = None
        if amount is not None:
            min_amount, max_amount = amount_band(correct_category, amount)

        with self._lock:
            existing = self._find_similar_rule(correct_category, words, amount)
            if existing is not None:
                existing.priority += self._config.boost_priority
                existing.match_count += 1
                if amount is not None:
                    existing.min_amount = (
                        min_amount
                        if existing.min_amount is None
                        else min(existing.min_amount, min_amount)
                    )
                    existing.max_amount = (
                        max_amount
                        if existing.max_amount is None
                        else max(existing.max_amount, max_amount)
                    )
                logger.info(
                    "Boosted rule %s for %s (priority %d, range %s-%s)",
                    existing.id,
                    correct_category.value,
                    existing.priority,
                    existing.min_amount,
                    existing.max_amount,
                )
                self._mark_dirty()
                return existing

            pattern = "|".join(re.escape(w) for w in words[:3]) if words else ".*"
            return self.add_rule(
                pattern,
                correct_category,
                is_user_defined=True,
                min_amount=min_amount,
                max_amount=max_amount,
            )

    def _find_similar_rule(
        self, category: Category, words: list[str], amount: Optional[float]
    ) -> Optional[CategoryRule]:
        for rule in self._rules:
            if rule.category != category:
                continue
            if any(word in rule.pattern for word in words):
                return rule
            if amount is not None and rule.min_amount is not None:
                return rule
        return None

    def recategorize_unconfirmed(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        """Re-apply current rules to every transaction the user hasn't confirmed.

        Returns:
            The transactions whose category changed (mutated in place).
        """
        updated = []
        with self.batch():
            for txn in transactions:
                if txn.is_user_confirmed or txn.is_manually_categorized:
                    continue
                # The link pass owns the category of an unmatched Guthaben-Transfer
                if txn.is_guthaben_transfer and not txn.linked_payment_id:
                    continue
                result = self.categorize(txn.description, txn.amount)
                if result.category != txn.category:
                    logger.debug(
                        "Recategorized %s: %s -> %s",
                        txn.id,
                        txn.category.value,
                        result.category.value,
                    )
                    txn.set_category(result.category, result.confidence)
                    updated.append(txn)
        if updated:
            logger.info("Recategorized %d unconfirmed transactions", len(updated))
        return updated

    # =========================================================================
    # Rule management
    # =========================================================================

    def get_rules(self) -> list[CategoryRule]:
        """Return a copy of the rule list in stored order."""
        with self._lock:
            return list(self._rules)

    def get_rule(self, rule_id: str) -> CategoryRule:
        """Look up a rule by ID.

        Raises:
            RuleNotFoundError: If no rule has this ID.
        """
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    return rule
        raise RuleNotFoundError(rule_id)

    def add_rule(
        self,
        pattern: str,
        category: Category,
        is_user_defined: bool = True,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
    ) -> CategoryRule:
        """Append a rule. User rules start above the built-in priorities."""
        rule = CategoryRule(
            id=f"rule_{uuid.uuid4().hex[:12]}",
            pattern=pattern,
            category=category,
            priority=self._config.learned_rule_priority if is_user_defined else 100,
            is_user_defined=is_user_defined,
            min_amount=min_amount,
            max_amount=max_amount,
        )
        with self._lock:
            self._rules.append(rule)
            self._mark_dirty()
        logger.info("Added rule %s: %r -> %s", rule.id, pattern, category.value)
        return rule

    def delete_rule(self, rule_id: str) -> None:
        """Delete a rule (explicit user action only).

        Raises:
            RuleNotFoundError: If no rule has this ID.
        """
        with self._lock:
            rule = self.get_rule(rule_id)
            self._rules.remove(rule)
            self._mark_dirty()
        logger.info("Deleted rule %s", rule_id)

    def reset_to_defaults(self) -> None:
        """Drop all learned rules and counters, restoring the built-in set."""
        with self._lock:
            self._rules = default_rule_set()
            self._mark_dirty()
        logger.info("Reset categorization rules to defaults")
