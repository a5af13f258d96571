"""Cross-account duplicate detection and Guthaben-Transfer linking.

A payment made through PayPal shows up twice: once in the PayPal feed with
the real merchant, and once on the bank statement as a generic "PayPal"
line. Topping up the PayPal balance to fund a payment adds a third record
that is a transfer between own accounts, not an expense. The pure
functions here find both phenomena; ``mark_duplicates`` applies them in
the required order (transfers first) and is idempotent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..config import DuplicateConfig
from ..models import Category, SourceAccount, Transaction, TransactionType

__all__ = [
    "DuplicateLinker",
    "DuplicateMatch",
    "LinkResult",
    "PAYPAL_TRANSFER_REASON",
    "check_duplicate",
    "find_duplicates",
    "get_duplicate_pairs",
    "get_unique_transactions",
    "has_paypal_signature",
    "is_guthaben_transfer_candidate",
    "is_paypal_transfer",
    "jaccard_similarity",
    "link_guthaben_transfers",
    "mark_duplicates",
]

logger = logging.getLogger(__name__)

PAYPAL_TRANSFER_REASON = "PayPal Guthaben-Transfer"

# PayPal signatures in bank statement descriptions
PAYPAL_PATTERNS = [
    re.compile(r"paypal", re.IGNORECASE),
    re.compile(r"pp\.", re.IGNORECASE),
    re.compile(r"pp\*", re.IGNORECASE),
    re.compile(r"paypal \*", re.IGNORECASE),
]

# Bank-side lines that move money into or out of the PayPal balance
PAYPAL_TRANSFER_PATTERNS = [
    re.compile(r"paypal.*guthaben", re.IGNORECASE),
    re.compile(r"paypal.*einzahlung", re.IGNORECASE),
    re.compile(r"paypal.*auszahlung", re.IGNORECASE),
    re.compile(r"paypal.*überweisung", re.IGNORECASE),
    re.compile(r"paypal.*lastschrift", re.IGNORECASE),
    re.compile(r"paypal europe", re.IGNORECASE),
]

# PayPal-side records that fund the balance from the bank account
GUTHABEN_TRANSFER_PATTERNS = [
    re.compile(
        r"guthaben.?transfer|umbuchung|übertrag|transfer zwischen|eigenes konto", re.IGNORECASE
    ),
    re.compile(
        r"bankgutschrift|gutschrift (?:vom|von) bank|(?:vom|von) bankkonto|"
        r"bank.*(?:auf|an|zu).*paypal|guthaben.?aufladung",
        re.IGNORECASE,
    ),
]


@dataclass
class DuplicateMatch:
    """A scored cross-account pair (bank side and PayPal side)."""

    bank: Transaction
    paypal: Transaction
    confidence: float
    reason: str

    @property
    def transaction_ids(self) -> tuple[str, str]:
        return (self.bank.id, self.paypal.id)


@dataclass
class LinkResult:
    """Outcome of a combined marking pass."""

    changed: list[Transaction] = field(default_factory=list)
    auto_flagged: list[DuplicateMatch] = field(default_factory=list)
    possible_duplicates: list[DuplicateMatch] = field(default_factory=list)
    transfers_linked: int = 0
    transfers_unmatched: int = 0
    paypal_transfers_flagged: int = 0

    @property
    def total_changed(self) -> int:
        return len(self.changed)


def _days_between(tx1: Transaction, tx2: Transaction) -> float:
    return abs((tx1.date - tx2.date).total_seconds()) / 86400


def jaccard_similarity(text1: str, text2: str) -> float:
    """Word-set Jaccard similarity over case-folded words longer than 2 chars."""
    words1 = {w for w in text1.lower().split() if len(w) > 2}
    words2 = {w for w in text2.lower().split() if len(w) > 2}
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def has_paypal_signature(description: str) -> bool:
    """Check if a bank description looks like a PayPal payment line."""
    return any(p.search(description) for p in PAYPAL_PATTERNS)


def is_paypal_transfer(txn: Transaction) -> bool:
    """Check if a bank transaction is a PayPal balance movement."""
    if txn.source_account != SourceAccount.VOLKSBANK:
        return False
    return any(p.search(txn.description) for p in PAYPAL_TRANSFER_PATTERNS)


def is_guthaben_transfer_candidate(txn: Transaction) -> bool:
    """Check if a PayPal record funds the balance rather than paying someone."""
    if txn.source_account != SourceAccount.PAYPAL:
        return False
    text = f"{txn.description} {txn.counterparty}"
    return any(p.search(text) for p in GUTHABEN_TRANSFER_PATTERNS)


def check_duplicate(
    tx1: Transaction,
    tx2: Transaction,
    config: Optional[DuplicateConfig] = None,
) -> Optional[DuplicateMatch]:
    """Score two transactions as the same real-world payment.

    Returns:
        A DuplicateMatch at or above the medium threshold, otherwise None.
    """
    config = config or DuplicateConfig()
    if tx1.source_account == tx2.source_account:
        return None
    if tx1.type != tx2.type:
        return None

    days_diff = _days_between(tx1, tx2)
    if days_diff > config.time_window_days:
        return None
    amount_diff = abs(abs(tx1.amount) - abs(tx2.amount))
    if amount_diff > config.amount_tolerance:
        return None

    bank = tx1 if tx1.source_account == SourceAccount.VOLKSBANK else tx2
    paypal = tx2 if bank is tx1 else tx1

    confidence = 0.0
    reasons: list[str] = []

    if amount_diff <= config.amount_tolerance:
        confidence += 0.4
        reasons.append("Gleicher Betrag")

    if days_diff < 1:
        confidence += 0.3
        reasons.append("Gleicher Tag")
    elif days_diff < 3:
        confidence += 0.2
        reasons.append("Innerhalb 3 Tagen")
    else:
        confidence += 0.1
        reasons.append("Innerhalb 5 Tagen")

    if has_paypal_signature(bank.description):
        confidence += 0.3
        reasons.append("PayPal-Muster in Volksbank")

    if jaccard_similarity(tx1.description, tx2.description) > config.similarity_threshold:
        confidence += 0.2
        reasons.append("Ähnliche Beschreibung")

    confidence = round(min(confidence, 1.0), 2)
    if confidence < config.medium_confidence:
        return None

    return DuplicateMatch(bank=bank, paypal=paypal, confidence=confidence, reason=", ".join(reasons))


def find_duplicates(
    transactions: Iterable[Transaction],
    config: Optional[DuplicateConfig] = None,
) -> list[DuplicateMatch]:
    """Find scored cross-account pairs, best first.

    Every PayPal transaction is compared with every bank transaction.
    Ordering is deterministic: confidence descending, then date distance,
    then IDs.
    """
    bank_txns, paypal_txns = [], []
    for txn in transactions:
        if txn.source_account == SourceAccount.VOLKSBANK:
            bank_txns.append(txn)
        else:
            paypal_txns.append(txn)

    matches = []
    for paypal in paypal_txns:
        for bank in bank_txns:
            match = check_duplicate(paypal, bank, config)
            if match:
                matches.append(match)
    matches.sort(
        key=lambda m: (-m.confidence, _days_between(m.bank, m.paypal), m.bank.id, m.paypal.id)
    )
    return matches


def link_guthaben_transfers(
    transactions: Iterable[Transaction],
    config: Optional[DuplicateConfig] = None,
) -> tuple[int, int]:
    """Link PayPal balance top-ups to the payments they funded.

    A matched transfer is flagged as a duplicate pointing at the payment
    and keeps a snapshot of the payment for display. An unmatched transfer
    is still marked as a Guthaben-Transfer and moved to the transfer
    category, unless the user has confirmed its category.

    Returns:
        Tuple of (linked, unmatched) counts.
    """
    config = config or DuplicateConfig()
    paypal_txns = [t for t in transactions if t.source_account == SourceAccount.PAYPAL]
    candidates = sorted(
        (t for t in paypal_txns if is_guthaben_transfer_candidate(t)),
        key=lambda t: (t.date, t.id),
    )
    candidate_ids = {t.id for t in candidates}
    payments = [
        t
        for t in paypal_txns
        if t.id not in candidate_ids and not t.is_transfer and t.amount < 0
    ]

    used_payment_ids: set[str] = set()
    linked, unmatched = 0, 0
    for transfer in candidates:
        best: Optional[Transaction] = None
        best_key: Optional[tuple[float, str]] = None
        for payment in payments:
            if payment.id in used_payment_ids:
                continue
            if abs(abs(payment.amount) - abs(transfer.amount)) > config.amount_tolerance:
                continue
            days_diff = _days_between(transfer, payment)
            if days_diff > config.transfer_window_days:
                continue
            key = (days_diff, payment.id)
            if best_key is None or key < best_key:
                best, best_key = payment, key

        transfer.is_guthaben_transfer = True
        if best is not None:
            used_payment_ids.add(best.id)
            transfer.is_duplicate = True
            transfer.linked_payment_id = best.id
            transfer.linked_payment_description = best.description
            transfer.linked_payment_counterparty = best.counterparty
            transfer.linked_payment_category = best.category
            transfer.duplicate_reason = (
                f"Guthaben-Transfer für Zahlung an {best.counterparty or best.description} "
                f"({best.display_date}, {abs(best.amount):.2f})"
            )
            linked += 1
            logger.debug("Linked transfer %s to payment %s", transfer.id, best.id)
        else:
            if not transfer.is_user_confirmed:
                transfer.category = Category.TRANSFER
                transfer.type = TransactionType.TRANSFER
            unmatched += 1
            logger.debug("Transfer %s has no matching payment", transfer.id)
    return linked, unmatched


def _linkage_state(txn: Transaction) -> tuple:
    return (
        txn.category,
        txn.type,
        txn.is_duplicate,
        txn.duplicate_reason,
        txn.linked_transaction_id,
        txn.is_guthaben_transfer,
        txn.linked_payment_id,
        txn.linked_payment_description,
        txn.linked_payment_counterparty,
        txn.linked_payment_category,
    )


def mark_duplicates(
    transactions: list[Transaction],
    config: Optional[DuplicateConfig] = None,
) -> LinkResult:
    """Run the full marking pass over a transaction set (mutates in place).

    Order: Guthaben-Transfer linking, then cross-account pair scoring among
    the remaining non-transfer records, then bank-side PayPal transfer
    pattern flagging. Linker-owned flags are recomputed from scratch, so
    running the pass twice produces the same result.
    """
    config = config or DuplicateConfig()
    before = {t.id: _linkage_state(t) for t in transactions}
    for txn in transactions:
        txn.clear_links()

    result = LinkResult()
    result.transfers_linked, result.transfers_unmatched = link_guthaben_transfers(
        transactions, config
    )

    pair_candidates = [t for t in transactions if not t.is_guthaben_transfer and not t.is_transfer]
    flagged_bank_ids: set[str] = set()
    used_paypal_ids: set[str] = set()
    for match in find_duplicates(pair_candidates, config):
        if match.confidence < config.high_confidence:
            result.possible_duplicates.append(match)
            continue
        if match.bank.id in flagged_bank_ids or match.paypal.id in used_paypal_ids:
            continue
        # PayPal keeps the real merchant name, so it stays the primary record
        match.bank.is_duplicate = True
        match.bank.linked_transaction_id = match.paypal.id
        match.bank.duplicate_reason = match.reason
        flagged_bank_ids.add(match.bank.id)
        used_paypal_ids.add(match.paypal.id)
        result.auto_flagged.append(match)

    result.possible_duplicates = [
        m
        for m in result.possible_duplicates
        if m.bank.id not in flagged_bank_ids and m.paypal.id not in used_paypal_ids
    ]

    for txn in transactions:
        if txn.id in flagged_bank_ids or not is_paypal_transfer(txn):
            continue
        txn.is_duplicate = True
        txn.duplicate_reason = PAYPAL_TRANSFER_REASON
        result.paypal_transfers_flagged += 1

    result.changed = [t for t in transactions if _linkage_state(t) != before[t.id]]
    logger.info(
        "Link pass: %d auto-flagged, %d possible, %d transfers linked, "
        "%d unmatched transfers, %d PayPal transfers, %d changed",
        len(result.auto_flagged),
        len(result.possible_duplicates),
        result.transfers_linked,
        result.transfers_unmatched,
        result.paypal_transfers_flagged,
        result.total_changed,
    )
    return result


def get_unique_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Transactions that count toward totals (duplicates removed)."""
    return [t for t in transactions if not t.is_duplicate]


def get_duplicate_pairs(
    transactions: list[Transaction],
) -> list[tuple[Transaction, Transaction]]:
    """(primary, duplicate) pairs for every linked duplicate."""
    by_id = {t.id: t for t in transactions}
    pairs = []
    for txn in transactions:
        if not txn.is_duplicate:
            continue
        primary_id = txn.linked_transaction_id or txn.linked_payment_id
        primary = by_id.get(primary_id) if primary_id else None
        if primary is not None:
            pairs.append((primary, txn))
    return pairs


class DuplicateLinker:
    """Service wrapper binding the linking functions to configured thresholds."""

    def __init__(self, config: Optional[DuplicateConfig] = None):
        self.config = config or DuplicateConfig()

    def find_duplicates(self, transactions: Iterable[Transaction]) -> list[DuplicateMatch]:
        return find_duplicates(transactions, self.config)

    def link_guthaben_transfers(self, transactions: list[Transaction]) -> list[Transaction]:
        """Link transfers in place and return the same list."""
        link_guthaben_transfers(transactions, self.config)
        return transactions

    def mark_duplicates(self, transactions: list[Transaction]) -> LinkResult:
        return mark_duplicates(transactions, self.config)
