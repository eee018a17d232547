"""
Tests for rule matching and special-merchant detection.
"""

import pytest
from decimal import Decimal

from api.models.rule import PatternKind, TargetField
from api.models.transaction import TransactionStatus
from core.rules_engine import (
    PatternError, classify_transaction, compile_pattern, detect_special_transaction,
    get_match_text, match, order_rules, pattern_matches
)

from conftest import make_bank_tx, make_rule


class TestRuleMatching:
    """Rule ordering and pattern evaluation."""

    def setup_method(self):
        self.tx = make_bank_tx(payee="REWE Markt GmbH", memo="")

    def test_contains_rule_on_payee(self):
        rule = make_rule("REWE", "cat-groceries", "Groceries", priority=1,
                         kind=PatternKind.CONTAINS, target=TargetField.PAYEE)
        result = match([rule], self.tx)

        assert result is not None
        assert result.category_name == "Groceries"
        assert result.category_id == "cat-groceries"
        assert result.rule is rule

    def test_no_rules_is_unassigned(self):
        assert match([], self.tx) is None

    def test_lower_priority_number_wins(self):
        late_but_urgent = make_rule("Markt", "cat-a", "A", priority=1)
        early_but_low = make_rule("REWE", "cat-b", "B", priority=5)

        assert match([early_but_low, late_but_urgent], self.tx).category_id == "cat-a"
        assert match([late_but_urgent, early_but_low], self.tx).category_id == "cat-a"

    def test_ties_keep_insertion_order(self):
        first = make_rule("REWE", "cat-first", "First", priority=3)
        second = make_rule("Markt", "cat-second", "Second", priority=3)

        assert match([first, second], self.tx).category_id == "cat-first"
        assert match([second, first], self.tx).category_id == "cat-second"

    def test_disabled_rules_are_ignored(self):
        disabled = make_rule("REWE", "cat-a", "A", priority=0, enabled=False)
        enabled = make_rule("REWE", "cat-b", "B", priority=9)

        assert order_rules([disabled, enabled]) == [enabled]
        assert match([disabled, enabled], self.tx).category_id == "cat-b"

    def test_case_insensitive_kinds(self):
        assert pattern_matches("rewe", PatternKind.CONTAINS, "REWE Markt GmbH")
        assert pattern_matches("rewe markt gmbh", PatternKind.EXACT, "REWE Markt GmbH")
        assert not pattern_matches("REWE", PatternKind.EXACT, "REWE Markt GmbH")
        assert pattern_matches(r"^rewe\s+markt", PatternKind.REGEX, "REWE Markt GmbH")

    def test_regex_searches_anywhere(self):
        assert pattern_matches(r"markt", PatternKind.REGEX, "REWE Markt GmbH")

    def test_invalid_regex_is_a_non_match(self):
        broken = make_rule("REWE(", "cat-a", "A", priority=0, kind=PatternKind.REGEX)
        fallback = make_rule("REWE", "cat-b", "B", priority=1)

        assert pattern_matches("REWE(", PatternKind.REGEX, "REWE(") is False
        assert match([broken, fallback], self.tx).category_id == "cat-b"

    def test_target_fields(self):
        tx = make_bank_tx(payee="PayPal Europe", memo="Spotify AB")

        assert get_match_text(tx, TargetField.PAYEE) == "PayPal Europe"
        assert get_match_text(tx, TargetField.MEMO) == "Spotify AB"
        assert get_match_text(tx, TargetField.COMBINED) == "PayPal Europe Spotify AB"

        memo_rule = make_rule("Spotify", "cat-music", "Music", target=TargetField.MEMO)
        payee_rule = make_rule("Spotify", "cat-music", "Music", target=TargetField.PAYEE)
        combined_rule = make_rule("Europe Spotify", "cat-music", "Music", target=TargetField.COMBINED)

        assert match([memo_rule], tx) is not None
        assert match([payee_rule], tx) is None
        assert match([combined_rule], tx) is not None

    def test_missing_payee_matches_memo_only(self):
        tx = make_bank_tx(payee=None, memo="Miete Januar")
        assert get_match_text(tx, TargetField.PAYEE) == ""
        assert match([make_rule("Miete", target=TargetField.COMBINED)], tx) is not None


class TestCompilePattern:

    def test_invalid_regex_raises(self):
        with pytest.raises(PatternError):
            compile_pattern("([unclosed", PatternKind.REGEX)

    def test_literal_kinds_never_fail(self):
        assert compile_pattern("([unclosed", PatternKind.CONTAINS).search("x ([unclosed y")
        assert compile_pattern("a.b", PatternKind.EXACT).match("A.B")
        assert not compile_pattern("a.b", PatternKind.EXACT).match("axb")


class TestSpecialMerchants:
    """Amazon and PayPal detection."""

    def test_amazon_with_order_id(self):
        tx = make_bank_tx(payee="AMAZON PAYMENTS EUROPE", memo="028-1234567-7654321 Amazon.de")
        links = detect_special_transaction(tx)

        assert len(links) == 1
        assert links[0].label == "Order 028-1234567-7654321"
        assert "orderID=028-1234567-7654321" in links[0].url

    def test_amazon_without_order_id(self):
        links = detect_special_transaction(make_bank_tx(payee="AMZN Mktp DE", memo=""))
        assert [link.label for link in links] == ["Amazon Orders"]

    def test_paypal(self):
        links = detect_special_transaction(make_bank_tx(payee="PayPal Europe S.a.r.l.", memo="PP.1234.PP"))
        assert [link.label for link in links] == ["PayPal Activity"]

    def test_ordinary_merchant(self):
        assert detect_special_transaction(make_bank_tx(payee="REWE Markt GmbH")) == []


class TestClassifyTransaction:

    def test_rule_match_is_auto_categorized(self):
        rule = make_rule("REWE", payee_override="REWE")
        in_flight = classify_transaction([rule], make_bank_tx(payee="REWE Markt GmbH"))

        assert in_flight.status == TransactionStatus.AUTO_CATEGORIZED
        assert in_flight.category_name == "Groceries"
        assert in_flight.matched_rule_id == rule.id
        assert in_flight.payee_override == "REWE"
        assert in_flight.effective_payee() == "REWE"

    def test_no_match_is_pending(self):
        in_flight = classify_transaction([], make_bank_tx(payee="Bäckerei"))

        assert in_flight.status == TransactionStatus.PENDING
        assert in_flight.category_id is None
        assert in_flight.transaction.amount == Decimal("-50.00")

    def test_special_merchant_needs_attention_and_keeps_category(self):
        rule = make_rule("AMAZON", "cat-shopping", "Shopping")
        in_flight = classify_transaction([rule], make_bank_tx(payee="AMAZON EU", memo="Amazon.de"))

        assert in_flight.status == TransactionStatus.NEEDS_ATTENTION
        assert in_flight.category_id == "cat-shopping"
        assert in_flight.external_links
