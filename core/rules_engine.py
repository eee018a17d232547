"""
Rule-based transaction categorization.

This module assigns ledger categories to bank transactions by evaluating the
user's rules in priority order, and flags merchants (Amazon, PayPal) whose
transactions usually need a manual lookup before they can be categorized.

Matching never raises: a rule whose regular expression does not compile is
simply a non-match here. Pattern validity is enforced when a rule is saved
(see compile_pattern and api.services.validator.validate_rule).
"""

import logging
import re
from functools import lru_cache
from typing import Iterable, List, NamedTuple, Optional

from api.models.rule import PatternKind, Rule, TargetField
from api.models.transaction import (
    BankTransaction, ExternalLink, InFlightTransaction, TransactionStatus
)


logger = logging.getLogger(__name__)


class PatternError(Exception):
    """Raised when a rule pattern cannot be compiled under its declared kind."""
    pass


class RuleMatch(NamedTuple):
    """Category assignment produced by the first matching rule."""
    category_id: str
    category_name: str
    rule: Rule


AMAZON_PATTERNS = [
    r"AMAZON\s*(PAYMENTS|EU|DE)?",
    r"AMZN\s*MKTP",
    r"Amazon\.de",
    r"AMAZON\s*\.DE",
]

PAYPAL_PATTERNS = [
    r"PAYPAL\s*\*",
    r"PP\.\d+",
    r"PAYPAL",
]

# Amazon order id, optionally preceded by a two-digit line number from the bank
AMAZON_ORDER_ID_PATTERN = re.compile(r"(?:(?:^|\s)\d{2})?([A-Z0-9]{3}-\d{7}-\d{7})")

AMAZON_ORDER_URL = "https://www.amazon.de/gp/your-account/order-details?ie=UTF8&orderID={order_id}"
AMAZON_HISTORY_URL = "https://www.amazon.de/gp/your-account/order-history"
PAYPAL_ACTIVITY_URL = "https://www.paypal.com/activities"

_AMAZON_REGEXES = [re.compile(p, re.IGNORECASE) for p in AMAZON_PATTERNS]
_PAYPAL_REGEXES = [re.compile(p, re.IGNORECASE) for p in PAYPAL_PATTERNS]


def compile_pattern(pattern: str, kind: PatternKind) -> re.Pattern:
    """
    Compile a rule pattern under its declared kind.

    Contains and exact patterns are escaped, so only regex patterns can fail.

    Raises:
        PatternError: If the pattern does not compile
    """
    if kind == PatternKind.EXACT:
        source = "^" + re.escape(pattern) + "$"
    elif kind == PatternKind.CONTAINS:
        source = re.escape(pattern)
    else:
        source = pattern

    try:
        return re.compile(source, re.IGNORECASE)
    except re.error as e:
        raise PatternError(f"Failed to compile pattern '{pattern}': {e}")


@lru_cache(maxsize=512)
def _cached_regex(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.debug("Ignoring rule with invalid regex %r: %s", pattern, e)
        return None


def get_match_text(transaction: BankTransaction, target_field: TargetField) -> str:
    """Extract the text a rule is evaluated against."""
    payee = transaction.payee or ""
    memo = transaction.memo or ""
    if target_field == TargetField.PAYEE:
        return payee
    if target_field == TargetField.MEMO:
        return memo
    return f"{payee} {memo}"


def pattern_matches(pattern: str, kind: PatternKind, text: str) -> bool:
    """
    Evaluate one pattern against text, case-insensitively.

    An invalid regular expression is a non-match.
    """
    if kind == PatternKind.CONTAINS:
        return pattern.casefold() in text.casefold()
    if kind == PatternKind.EXACT:
        return pattern.casefold() == text.casefold()
    regex = _cached_regex(pattern)
    if regex is None:
        return False
    return regex.search(text) is not None


def order_rules(rules: Iterable[Rule]) -> List[Rule]:
    """Enabled rules, lowest priority number first; ties keep their given order."""
    return sorted((r for r in rules if r.enabled), key=lambda r: r.priority)


def match(rules: Iterable[Rule], transaction: BankTransaction) -> Optional[RuleMatch]:
    """
    Find the category for a transaction.

    Args:
        rules: Rules in insertion order
        transaction: Bank transaction to classify

    Returns:
        RuleMatch for the first matching rule, or None when nothing matches
    """
    for rule in order_rules(rules):
        text = get_match_text(transaction, rule.target_field)
        if pattern_matches(rule.pattern, rule.pattern_kind, text):
            return RuleMatch(rule.category_id, rule.category_name, rule)
    return None


def _search_text(transaction: BankTransaction) -> str:
    if transaction.payee:
        return f"{transaction.payee} {transaction.memo or ''}"
    return transaction.memo or ""


def _amazon_link(text: str) -> ExternalLink:
    order = AMAZON_ORDER_ID_PATTERN.search(text)
    if order:
        order_id = order.group(1)
        return ExternalLink(
            label=f"Order {order_id}",
            url=AMAZON_ORDER_URL.format(order_id=order_id)
        )
    return ExternalLink(label="Amazon Orders", url=AMAZON_HISTORY_URL)


def detect_special_transaction(transaction: BankTransaction) -> List[ExternalLink]:
    """
    Detect merchants whose transactions need a manual lookup.

    Returns:
        External links for each detected merchant (empty when none)
    """
    text = _search_text(transaction)
    links = []

    if any(regex.search(text) for regex in _AMAZON_REGEXES):
        links.append(_amazon_link(text))

    if any(regex.search(text) for regex in _PAYPAL_REGEXES):
        links.append(ExternalLink(label="PayPal Activity", url=PAYPAL_ACTIVITY_URL))

    return links


def classify_transaction(rules: List[Rule], transaction: BankTransaction) -> InFlightTransaction:
    """
    Build the in-flight record for a freshly fetched bank transaction.

    A matching rule supplies category, rule id and payee override. Detected
    special merchants force NeedsAttention, keeping any rule category.
    """
    links = detect_special_transaction(transaction)
    in_flight = InFlightTransaction(transaction=transaction, external_links=links)

    result = match(rules, transaction)
    if result:
        in_flight.assign_category(result.category_id, result.category_name)
        in_flight.matched_rule_id = result.rule.id
        in_flight.payee_override = result.rule.payee_override
        in_flight.status = TransactionStatus.AUTO_CATEGORIZED
    else:
        in_flight.status = TransactionStatus.PENDING

    if links:
        in_flight.status = TransactionStatus.NEEDS_ATTENTION

    return in_flight


def classify_transactions(rules: List[Rule], transactions: List[BankTransaction]) -> List[InFlightTransaction]:
    """Classify a fetched batch; each transaction is independent of the others."""
    rules = list(rules)
    return [classify_transaction(rules, tx) for tx in transactions]
