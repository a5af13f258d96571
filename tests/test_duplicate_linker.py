"""Tests for cross-account duplicate detection and Guthaben-Transfer linking."""

from datetime import datetime

from spendito.config import DuplicateConfig
from spendito.models import Category, SourceAccount, TransactionType
from spendito.services.duplicate_linker import (
    PAYPAL_TRANSFER_REASON,
    check_duplicate,
    find_duplicates,
    get_duplicate_pairs,
    get_unique_transactions,
    has_paypal_signature,
    is_guthaben_transfer_candidate,
    is_paypal_transfer,
    jaccard_similarity,
    link_guthaben_transfers,
    mark_duplicates,
)


class TestHelpers:
    """Tests for similarity and pattern helpers."""

    def test_jaccard_identical(self):
        """Identical word sets are fully similar, case-insensitively."""
        assert jaccard_similarity("Zooplus Bestellung", "zooplus bestellung") == 1.0

    def test_jaccard_ignores_short_words(self):
        """Words of two characters or fewer are ignored."""
        assert jaccard_similarity("Zooplus AG", "zooplus") == 1.0

    def test_jaccard_empty(self):
        """An empty side has no similarity."""
        assert jaccard_similarity("", "zooplus") == 0.0

    def test_paypal_signature(self):
        """Bank descriptions from PayPal payments are recognized."""
        assert has_paypal_signature("PAYPAL *ZOOPLUS")
        assert has_paypal_signature("1046991113506/PP.7142.PP")
        assert not has_paypal_signature("Tierarzt Behandlung")

    def test_is_paypal_transfer_only_on_bank_side(self, make_transaction):
        """Only bank lines can be PayPal balance movements."""
        bank = make_transaction(-50, "PayPal Guthaben-Aufladung")
        paypal = make_transaction(-50, "PayPal Guthaben-Aufladung", source_account=SourceAccount.PAYPAL)
        assert is_paypal_transfer(bank)
        assert not is_paypal_transfer(paypal)

    def test_guthaben_candidate_checks_counterparty(self, make_transaction):
        """The PayPal-side signature may sit in the counterparty."""
        txn = make_transaction(
            100, "Zahlung", source_account=SourceAccount.PAYPAL, counterparty="Bankgutschrift"
        )
        assert is_guthaben_transfer_candidate(txn)

    def test_guthaben_candidate_needs_balance_wording(self, make_transaction):
        """A payment that merely mentions a transfer is not a top-up."""
        dog_transport = make_transaction(
            -250,
            "Hundetransfer Rumaenien",
            source_account=SourceAccount.PAYPAL,
            counterparty="Transfer-Service GmbH",
        )
        recharge = make_transaction(-20, "Aufladung Prepaidkarte", source_account=SourceAccount.PAYPAL)
        assert not is_guthaben_transfer_candidate(dog_transport)
        assert not is_guthaben_transfer_candidate(recharge)
        assert is_guthaben_transfer_candidate(
            make_transaction(100, "Guthaben-Aufladung", source_account=SourceAccount.PAYPAL)
        )


class TestCheckDuplicate:
    """Tests for pairwise scoring."""

    def test_zooplus_pair_scores_high(self, zooplus_pair):
        """Same amount, one day apart, PayPal signature: confidence 0.9."""
        paypal, bank = zooplus_pair
        match = check_duplicate(paypal, bank)
        assert match is not None
        assert match.confidence >= 0.9
        assert match.bank is bank
        assert match.paypal is paypal

    def test_symmetric(self, zooplus_pair):
        """Argument order does not change the score."""
        paypal, bank = zooplus_pair
        assert check_duplicate(paypal, bank).confidence == check_duplicate(bank, paypal).confidence

    def test_same_account_never_matches(self, make_transaction):
        """Two bank lines are never duplicates of each other."""
        a = make_transaction(-45.99, "PAYPAL *ZOOPLUS")
        b = make_transaction(-45.99, "PAYPAL *ZOOPLUS")
        assert check_duplicate(a, b) is None

    def test_outside_time_window(self, zooplus_pair):
        """More than five days apart is not a duplicate."""
        paypal, bank = zooplus_pair
        bank.date = datetime(2024, 3, 20)
        assert check_duplicate(paypal, bank) is None

    def test_amount_mismatch(self, zooplus_pair):
        """Amounts differing by more than a cent are not duplicates."""
        paypal, bank = zooplus_pair
        bank.amount = -46.99
        assert check_duplicate(paypal, bank) is None

    def test_medium_confidence(self, make_transaction):
        """Same day and amount without PayPal signature scores 0.7."""
        paypal = make_transaction(
            -30, "Zooplus AG", source_account=SourceAccount.PAYPAL, category=Category.FOSTER_CARE
        )
        bank = make_transaction(-30, "Zooplus Rechnung", category=Category.FOSTER_CARE)
        match = check_duplicate(paypal, bank)
        assert match is not None
        assert match.confidence == 0.7

    def test_below_threshold(self, make_transaction):
        """Four days apart without other evidence is below 0.7."""
        paypal = make_transaction(-30, "Futter", source_account=SourceAccount.PAYPAL)
        bank = make_transaction(-30, "Rechnung", date=datetime(2024, 3, 14))
        assert check_duplicate(paypal, bank) is None

    def test_custom_config(self, zooplus_pair):
        """Thresholds come from the config."""
        paypal, bank = zooplus_pair
        assert check_duplicate(paypal, bank, DuplicateConfig(medium_confidence=0.95)) is None

    def test_find_duplicates_sorted_best_first(self, zooplus_pair, make_transaction):
        """Results come out by descending confidence."""
        paypal, bank = zooplus_pair
        same_day = make_transaction(-45.99, "PAYPAL *ZOOPLUS", id="vb-same-day")
        matches = find_duplicates([paypal, bank, same_day])
        assert [m.bank.id for m in matches] == ["vb-same-day", "vb-zooplus"]
        assert matches[0].confidence == 1.0


class TestGuthabenTransfers:
    """Tests for PayPal balance top-up linking."""

    def test_transfer_linked_to_payment(self, guthaben_pair):
        """A top-up is linked to the payment it funded."""
        transfer, payment = guthaben_pair
        linked, unmatched = link_guthaben_transfers([transfer, payment])
        assert (linked, unmatched) == (1, 0)
        assert transfer.is_guthaben_transfer
        assert transfer.is_duplicate
        assert transfer.linked_payment_id == payment.id
        assert transfer.linked_payment_counterparty == "Zooplus AG"
        assert transfer.linked_payment_category == Category.FOSTER_CARE
        assert "Zooplus AG" in transfer.duplicate_reason
        assert not payment.is_duplicate

    def test_unmatched_transfer_forced_to_transfer(self, make_transaction):
        """A top-up without a payment still becomes a transfer."""
        txn = make_transaction(
            100, "Bankgutschrift", source_account=SourceAccount.PAYPAL, category=Category.OTHER_INCOME
        )
        assert link_guthaben_transfers([txn]) == (0, 1)
        assert txn.is_guthaben_transfer
        assert not txn.is_duplicate
        assert txn.category == Category.TRANSFER
        assert txn.type == TransactionType.TRANSFER

    def test_confirmed_transfer_keeps_category(self, make_transaction):
        """The user's confirmed category is not overridden."""
        txn = make_transaction(
            100,
            "Bankgutschrift",
            source_account=SourceAccount.PAYPAL,
            category=Category.DONATION,
            is_user_confirmed=True,
        )
        link_guthaben_transfers([txn])
        assert txn.category == Category.DONATION

    def test_payment_used_once(self, guthaben_pair, make_transaction):
        """Two top-ups cannot link to the same payment."""
        transfer, payment = guthaben_pair
        second = make_transaction(
            -89.50,
            "Guthaben-Transfer",
            source_account=SourceAccount.PAYPAL,
            category=Category.TRANSFER,
            id="pp-transfer-2",
        )
        assert link_guthaben_transfers([transfer, second, payment]) == (1, 1)

    def test_payment_too_late(self, guthaben_pair):
        """Payments more than a day away are not linked."""
        transfer, payment = guthaben_pair
        payment.date = datetime(2024, 3, 13)
        assert link_guthaben_transfers([transfer, payment]) == (0, 1)


class TestMarkDuplicates:
    """Tests for the combined marking pass."""

    def test_bank_side_flagged(self, zooplus_pair):
        """The bank line becomes the duplicate of the PayPal record."""
        paypal, bank = zooplus_pair
        result = mark_duplicates([paypal, bank])
        assert bank.is_duplicate
        assert bank.linked_transaction_id == paypal.id
        assert not paypal.is_duplicate
        assert len(result.auto_flagged) == 1
        assert result.changed == [bank]

    def test_medium_confidence_left_for_review(self, make_transaction):
        """Pairs between 0.7 and 0.9 are listed, not flagged."""
        paypal = make_transaction(
            -30, "Zooplus AG", source_account=SourceAccount.PAYPAL, category=Category.FOSTER_CARE
        )
        bank = make_transaction(-30, "Zooplus Rechnung", category=Category.FOSTER_CARE)
        result = mark_duplicates([paypal, bank])
        assert not bank.is_duplicate
        assert len(result.possible_duplicates) == 1

    def test_one_to_one(self, zooplus_pair, make_transaction):
        """A PayPal record links to at most one bank line."""
        paypal, bank = zooplus_pair
        same_day = make_transaction(-45.99, "PAYPAL *ZOOPLUS", id="vb-same-day")
        result = mark_duplicates([paypal, bank, same_day])
        assert same_day.is_duplicate
        assert not bank.is_duplicate
        assert len(result.auto_flagged) == 1
        assert result.possible_duplicates == []

    def test_transfers_excluded_from_pairing(self, guthaben_pair, make_transaction):
        """A linked top-up is never also a cross-account duplicate."""
        transfer, payment = guthaben_pair
        bank = make_transaction(
            -89.50, "PAYPAL Einkauf", category=Category.FOSTER_CARE, date=datetime(2024, 3, 11)
        )
        mark_duplicates([transfer, payment, bank])
        assert transfer.linked_payment_id == payment.id
        assert bank.linked_transaction_id == payment.id

    def test_bank_paypal_transfer_flagged(self, make_transaction):
        """Bank-side PayPal top-ups get the fixed reason."""
        bank = make_transaction(-89.50, "PayPal Guthaben-Aufladung", category=Category.TRANSFER)
        result = mark_duplicates([bank])
        assert bank.is_duplicate
        assert bank.duplicate_reason == PAYPAL_TRANSFER_REASON
        assert result.paypal_transfers_flagged == 1

    def test_paired_bank_line_keeps_pair_reason(self, zooplus_pair):
        """A paired bank line that also looks like a top-up stays linked to its payment."""
        paypal, bank = zooplus_pair
        bank.description = "PayPal Europe Zooplus"
        result = mark_duplicates([paypal, bank])
        assert bank.linked_transaction_id == paypal.id
        assert bank.duplicate_reason != PAYPAL_TRANSFER_REASON
        assert result.paypal_transfers_flagged == 0

    def test_idempotent(self, zooplus_pair, guthaben_pair, make_transaction):
        """Running the pass twice changes nothing the second time."""
        unmatched = make_transaction(
            100, "Bankgutschrift", source_account=SourceAccount.PAYPAL, category=Category.OTHER_INCOME
        )
        txns = [*zooplus_pair, *guthaben_pair, unmatched]
        first = mark_duplicates(txns)
        snapshot = [(t.id, t.category, t.is_duplicate, t.linked_transaction_id) for t in txns]
        second = mark_duplicates(txns)
        assert first.total_changed > 0
        assert second.changed == []
        assert [(t.id, t.category, t.is_duplicate, t.linked_transaction_id) for t in txns] == snapshot

    def test_stale_flags_cleared(self, zooplus_pair):
        """Flags from an earlier pass are dropped when the pair no longer matches."""
        paypal, bank = zooplus_pair
        mark_duplicates([paypal, bank])
        bank.amount = -12.00
        result = mark_duplicates([paypal, bank])
        assert not bank.is_duplicate
        assert bank.linked_transaction_id is None
        assert result.changed == [bank]

    def test_unique_and_pairs(self, zooplus_pair):
        """Duplicates drop out of the unique set and show up as pairs."""
        paypal, bank = zooplus_pair
        mark_duplicates([paypal, bank])
        assert get_unique_transactions([paypal, bank]) == [paypal]
        assert get_duplicate_pairs([paypal, bank]) == [(paypal, bank)]
