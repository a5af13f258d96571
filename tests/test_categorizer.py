"""Tests for the rule-based categorizer."""

import pytest

from spendito.exceptions import RuleNotFoundError
from spendito.models import Category, CategoryRule, SourceAccount
from spendito.services.categorizer import (
    DEFAULT_RULES,
    CategorizerService,
    amount_band,
    default_rule_set,
    extract_keywords,
    rule_confidence,
    rule_matches,
)


class TestPureHelpers:
    """Tests for the module-level matching helpers."""

    def test_extract_keywords_drops_short_words_and_punctuation(self):
        """Words of three characters or fewer and non-letters are dropped."""
        assert extract_keywords("Schutzgebühr für Luna! (2024)") == ["schutzgebühr", "luna"]

    def test_extract_keywords_empty(self):
        """An empty description has no keywords."""
        assert extract_keywords("") == []

    def test_amount_band_is_ten_percent_widened(self):
        """The band is ±10%, rounded outward to whole units."""
        assert amount_band(Category.VETERINARY, -80) == (72.0, 88.0)
        assert amount_band(Category.DONATION, 45.5) == (40.0, 51.0)

    def test_amount_band_protection_fee(self):
        """Typical adoption fees get the fixed 400-600 band."""
        assert amount_band(Category.PROTECTION_FEE, 500) == (400.0, 600.0)
        assert amount_band(Category.PROTECTION_FEE, 700) == (630.0, 770.0)

    def test_rule_confidence_formula(self):
        """Confidence grows with usage and priority."""
        rule = CategoryRule(id="r", pattern="x", category=Category.DONATION, priority=40, match_count=2)
        assert rule_confidence(rule) == pytest.approx(0.8)

    def test_rule_confidence_is_capped(self):
        """Automatic confidence never reaches 1.0."""
        rule = CategoryRule(id="r", pattern="x", category=Category.DONATION, priority=500, match_count=50)
        assert rule_confidence(rule) == 0.99

    def test_rule_matches_requires_sign_agreement(self):
        """An income rule never matches an outflow."""
        rule = CategoryRule(id="r", pattern="spende", category=Category.DONATION)
        assert rule_matches(rule, "spende", 50.0)
        assert not rule_matches(rule, "spende", -50.0)

    def test_transfer_rule_ignores_sign_and_range(self):
        """Transfer rules match regardless of sign or amount bounds."""
        rule = CategoryRule(
            id="r", pattern="umbuchung", category=Category.TRANSFER, min_amount=1, max_amount=2
        )
        assert rule_matches(rule, "umbuchung", 500.0)
        assert rule_matches(rule, "umbuchung", -500.0)

    def test_rule_matches_checks_absolute_amount_range(self):
        """Bounds apply to the absolute amount."""
        rule = CategoryRule(
            id="r", pattern="tierarzt", category=Category.VETERINARY, min_amount=100, max_amount=200
        )
        assert rule_matches(rule, "tierarzt", -150.0)
        assert not rule_matches(rule, "tierarzt", -250.0)

    def test_default_rule_set_ids(self):
        """Default rules get stable positional IDs."""
        rules = default_rule_set()
        assert len(rules) == len(DEFAULT_RULES)
        assert rules[0].id == "default_0"
        assert not any(rule.is_user_defined for rule in rules)


class TestCategorize:
    """Tests for categorize()."""

    def test_donation(self, categorizer):
        """Donations are recognized on inflows."""
        result = categorizer.categorize("Spende für die Hunde", 50)
        assert result.category == Category.DONATION
        assert 0.1 < result.confidence <= 0.99
        assert result.rule_id == "default_3"

    def test_veterinary(self, categorizer):
        """Vet bills are recognized on outflows."""
        assert categorizer.categorize("Tierarzt Behandlung", -350).category == Category.VETERINARY

    def test_transfer_is_sign_agnostic(self, categorizer):
        """The same transfer description is a transfer in both directions."""
        assert categorizer.categorize("PayPal Guthaben Transfer", 200).category == Category.TRANSFER
        assert categorizer.categorize("PayPal Guthaben Transfer", -200).category == Category.TRANSFER

    def test_unmatched_inflow_falls_back(self, categorizer):
        """No match on an inflow yields other income at 0.1."""
        result = categorizer.categorize("Irgendwas", 10)
        assert result.category == Category.OTHER_INCOME
        assert result.confidence == 0.1
        assert result.rule_id is None

    def test_zero_amount_is_income(self, categorizer):
        """A zero amount counts as income for the fallback."""
        assert categorizer.categorize("Irgendwas", 0).category == Category.OTHER_INCOME

    def test_sign_mismatch_falls_back_to_other_expense(self, categorizer):
        """A donation keyword on an outflow does not make it a donation."""
        result = categorizer.categorize("Spende zurück", -50)
        assert result.category == Category.OTHER_EXPENSE
        assert result.confidence == 0.1

    def test_deterministic(self, categorizer):
        """Same input and rules give the same category."""
        first = categorizer.categorize("Fressnapf Futter", -30).category
        second = categorizer.categorize("Fressnapf Futter", -30).category
        assert first == second == Category.FOSTER_CARE

    def test_higher_priority_rule_wins(self, categorizer):
        """A user rule outranks the default rule for the same words."""
        categorizer.add_rule("spende", Category.MEMBERSHIP)
        assert categorizer.categorize("Spende", 10).category == Category.MEMBERSHIP

    def test_invalid_pattern_is_skipped(self):
        """A malformed rule never makes categorize raise."""
        bad = CategoryRule(id="bad", pattern="(", category=Category.DONATION, priority=500)
        service = CategorizerService(rules=[bad] + default_rule_set())
        assert service.categorize("Spende", 10).category == Category.DONATION

    def test_match_count_persisted(self, categorizer, database):
        """A match increments the rule's counter in the store."""
        categorizer.categorize("Spende", 10)
        reloaded = CategorizerService(db=database)
        assert reloaded.get_rule("default_3").match_count == 1

    def test_batch_defers_persistence(self, categorizer, database):
        """Inside a batch, rules are written once at the end."""
        with categorizer.batch():
            categorizer.categorize("Spende", 10)
            categorizer.categorize("Spende", 20)
            stored = {r.id: r for r in database.get_rules()}
            assert stored["default_3"].match_count == 0
        stored = {r.id: r for r in database.get_rules()}
        assert stored["default_3"].match_count == 2


class TestLearning:
    """Tests for learn_from_correction()."""

    def test_protection_fee_learning_converges(self, categorizer):
        """After learning one adoption fee, a similar one is recognized."""
        categorizer.learn_from_correction("Schutzgebühr Luna", Category.PROTECTION_FEE, 500)
        result = categorizer.categorize("Schutzgebühr Rocky", 520)
        assert result.category == Category.PROTECTION_FEE
        assert result.confidence > 0.1

    def test_boost_existing_rule(self, categorizer):
        """A correction matching an existing rule's keywords boosts it."""
        before = categorizer.get_rule("default_4").priority
        rule = categorizer.learn_from_correction("Schutzgebühr Luna", Category.PROTECTION_FEE, 500)
        assert rule.id == "default_4"
        assert rule.priority == before + 10
        assert rule.match_count == 1
        assert (rule.min_amount, rule.max_amount) == (400.0, 600.0)

    def test_boost_widens_bounds(self, categorizer):
        """Repeated corrections take the union of amount bands."""
        categorizer.learn_from_correction("Schutzgebühr Luna", Category.PROTECTION_FEE, 500)
        rule = categorizer.learn_from_correction("Schutzgebühr Max", Category.PROTECTION_FEE, 300)
        assert rule.min_amount == 270.0
        assert rule.max_amount == 600.0

    def test_new_rule_from_keywords(self, categorizer):
        """Unknown keywords create a user rule with an amount band."""
        rule = categorizer.learn_from_correction("Hundefriseur Bello", Category.VETERINARY, -80)
        assert rule.is_user_defined
        assert rule.pattern == "hundefriseur|bello"
        assert rule.priority == 150
        assert (rule.min_amount, rule.max_amount) == (72.0, 88.0)
        assert categorizer.categorize("Hundefriseur Termin", -85).category == Category.VETERINARY
        assert categorizer.categorize("Hundefriseur Termin", -300).category == Category.OTHER_EXPENSE

    def test_new_rule_keeps_top_three_keywords(self, categorizer):
        """At most three keywords make it into the pattern."""
        rule = categorizer.learn_from_correction(
            "Hundeschule Bellissima Training Samstag", Category.TRANSPORT
        )
        assert rule.pattern == "hundeschule|bellissima|training"

    def test_amount_only_rule(self, categorizer):
        """Without keywords, only the amount band distinguishes the rule."""
        rule = categorizer.learn_from_correction("123 / 45", Category.MEMBERSHIP, 42)
        assert rule.pattern == ".*"
        assert (rule.min_amount, rule.max_amount) == (37.0, 47.0)
        assert categorizer.categorize("Lastschrift", 40).category == Category.MEMBERSHIP

    def test_nothing_to_learn(self, categorizer):
        """No keywords and no amount yields no rule."""
        count = len(categorizer.get_rules())
        assert categorizer.learn_from_correction("", Category.DONATION) is None
        assert len(categorizer.get_rules()) == count

    def test_learned_rule_persisted(self, categorizer, database):
        """Learned rules survive a reload."""
        rule = categorizer.learn_from_correction("Hundefriseur Bello", Category.VETERINARY, -80)
        reloaded = CategorizerService(db=database)
        assert reloaded.get_rule(rule.id).pattern == "hundefriseur|bello"


class TestRecategorize:
    """Tests for recategorize_unconfirmed()."""

    def test_skips_confirmed(self, categorizer, make_transaction):
        """Confirmed transactions keep their category."""
        confirmed = make_transaction(50, "Spende", category=Category.MEMBERSHIP, is_user_confirmed=True)
        open_txn = make_transaction(50, "Spende", category=Category.OTHER_INCOME)
        changed = categorizer.recategorize_unconfirmed([confirmed, open_txn])
        assert changed == [open_txn]
        assert confirmed.category == Category.MEMBERSHIP
        assert open_txn.category == Category.DONATION

    def test_updates_type_with_category(self, categorizer, make_transaction):
        """Recategorizing to a transfer also changes the type."""
        txn = make_transaction(-100, "Umbuchung auf PayPal", category=Category.OTHER_EXPENSE)
        categorizer.recategorize_unconfirmed([txn])
        assert txn.category == Category.TRANSFER
        assert txn.type.value == "transfer"

    def test_unchanged_not_reported(self, categorizer, make_transaction):
        """Transactions already in the right category are not returned."""
        txn = make_transaction(50, "Spende", category=Category.DONATION, source_account=SourceAccount.PAYPAL)
        assert categorizer.recategorize_unconfirmed([txn]) == []

    def test_skips_unmatched_guthaben_transfer(self, categorizer, make_transaction):
        """The link pass owns the category of a top-up without a payment."""
        top_up = make_transaction(
            100,
            "Bankgutschrift",
            source_account=SourceAccount.PAYPAL,
            category=Category.TRANSFER,
            is_guthaben_transfer=True,
        )
        assert categorizer.recategorize_unconfirmed([top_up]) == []
        assert top_up.category == Category.TRANSFER


class TestRuleManagement:
    """Tests for rule store management."""

    def test_defaults_seeded_on_first_run(self, categorizer, database):
        """An empty store is seeded with the default rules."""
        assert database.get_rule_count() == len(DEFAULT_RULES)

    def test_transfer_rules_restored(self, database):
        """A stored rule set without transfer rules gets them added."""
        donation_only = [r for r in default_rule_set() if r.category == Category.DONATION]
        database.save_rules(donation_only)
        service = CategorizerService(db=database)
        transfer_rules = [r for r in service.get_rules() if r.category.is_transfer]
        assert len(transfer_rules) == 3
        assert database.get_rule_count() == 4

    def test_delete_rule(self, categorizer, database):
        """Deleting a rule removes it from the store."""
        categorizer.delete_rule("default_3")
        assert "default_3" not in {r.id for r in database.get_rules()}

    def test_delete_unknown_rule(self, categorizer):
        """Deleting an unknown rule raises RuleNotFoundError."""
        with pytest.raises(RuleNotFoundError):
            categorizer.delete_rule("nope")

    def test_reset_to_defaults(self, categorizer, database):
        """Reset drops learned rules and counters."""
        categorizer.learn_from_correction("Hundefriseur Bello", Category.VETERINARY, -80)
        categorizer.categorize("Spende", 10)
        categorizer.reset_to_defaults()
        rules = database.get_rules()
        assert len(rules) == len(DEFAULT_RULES)
        assert all(r.match_count == 0 for r in rules)
