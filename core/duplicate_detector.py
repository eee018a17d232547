"""
Duplicate detection service for identifying bank transactions that already
exist on the ledger.

Three checks run for every transaction:
- reference match: a ledger memo ends in "Ref: <reference>"
- import id match: a ledger import id was generated for this reference
- fuzzy match: date within tolerance, identical amount, payee contained in
  the other payee (either direction, case-insensitive)

Reference and import id matches confirm a duplicate. A fuzzy match alone
only marks a possible duplicate, since two same-day same-amount purchases at
one merchant are plausible. All checks always run so the verdict carries the
full diagnostic record.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from rapidfuzz import fuzz

from api.models.reference import extract_reference, matches_import_id
from api.models.transaction import (
    BankTransaction, DuplicateDetectionDetails, DuplicateStatus, DuplicateVerdict,
    InFlightTransaction, LedgerTransaction
)


@dataclass(frozen=True)
class DuplicateMatchConfig:
    """Configuration for fuzzy duplicate matching."""
    date_tolerance_days: int = 1


DEFAULT_CONFIG = DuplicateMatchConfig()


def matches_by_reference(bank_tx: BankTransaction, ledger_tx: LedgerTransaction) -> bool:
    """Check whether the ledger memo carries this bank transaction's reference."""
    return extract_reference(ledger_tx.memo) == bank_tx.reference


def matches_by_import_id(bank_tx: BankTransaction, ledger_tx: LedgerTransaction) -> bool:
    """Check whether the ledger import id was generated for this bank reference."""
    return matches_import_id(bank_tx.reference, ledger_tx.import_id)


def _normalize_payee(payee: Optional[str]) -> str:
    return (payee or "").strip().casefold()


def payees_match(bank_payee: Optional[str], ledger_payee: Optional[str]) -> bool:
    """Case-insensitive containment in either direction; a missing payee never matches."""
    bank = _normalize_payee(bank_payee)
    ledger = _normalize_payee(ledger_payee)
    if not bank or not ledger:
        return False
    return bank in ledger or ledger in bank


def matches_by_date_amount_payee(config: DuplicateMatchConfig,
                                 bank_tx: BankTransaction,
                                 ledger_tx: LedgerTransaction) -> bool:
    """Fuzzy match: date within tolerance, exact amount, payee containment."""
    date_diff = abs((bank_tx.booking_date - ledger_tx.date).days)
    if date_diff > config.date_tolerance_days:
        return False

    if bank_tx.amount != ledger_tx.amount:
        return False

    return payees_match(bank_tx.payee, ledger_tx.payee)


def calculate_payee_similarity(payee1: Optional[str], payee2: Optional[str]) -> float:
    """
    Calculate similarity between two payee names using fuzzy matching.

    Only reported as evidence; it does not influence the verdict.

    Returns:
        Similarity score between 0.0 and 1.0
    """
    if not payee1 or not payee2:
        return 0.0

    first = payee1.lower()
    second = payee2.lower()
    if first == second:
        return 1.0

    scores = [
        fuzz.ratio(first, second),
        fuzz.partial_ratio(first, second),
        fuzz.token_sort_ratio(first, second),
        fuzz.token_set_ratio(first, second),
    ]
    return round(max(scores) / 100.0, 3)


def _find(ledger_transactions: List[LedgerTransaction], predicate) -> Optional[LedgerTransaction]:
    for ledger_tx in ledger_transactions:
        if predicate(ledger_tx):
            return ledger_tx
    return None


def detect(config: DuplicateMatchConfig,
           ledger_transactions: List[LedgerTransaction],
           bank_tx: BankTransaction) -> DuplicateVerdict:
    """
    Decide whether a bank transaction already exists on the ledger.

    Priority: reference match > import id match > fuzzy match > none.

    Args:
        config: Fuzzy matching configuration
        ledger_transactions: Ledger snapshot for the detection window
        bank_tx: Bank transaction to check

    Returns:
        DuplicateVerdict with diagnostic details attached
    """
    reference_match = _find(ledger_transactions, lambda tx: matches_by_reference(bank_tx, tx))
    import_id_match = _find(ledger_transactions, lambda tx: matches_by_import_id(bank_tx, tx))
    fuzzy_match = _find(
        ledger_transactions,
        lambda tx: matches_by_date_amount_payee(config, bank_tx, tx)
    )

    details = DuplicateDetectionDetails(
        transaction_reference=bank_tx.reference,
        reference_found_in_ledger=reference_match is not None,
        import_id_found_in_ledger=import_id_match is not None,
        fuzzy_match_date=fuzzy_match.date if fuzzy_match else None,
        fuzzy_match_amount=fuzzy_match.amount if fuzzy_match else None,
        fuzzy_match_payee=fuzzy_match.payee if fuzzy_match else None,
        fuzzy_match_similarity=(
            calculate_payee_similarity(bank_tx.payee, fuzzy_match.payee) if fuzzy_match else None
        ),
    )

    if reference_match is not None or import_id_match is not None:
        return DuplicateVerdict.confirmed(bank_tx.reference, details)

    if fuzzy_match is not None:
        reason = "Similar transaction found: {payee} on {date} for {amount:.2f}".format(
            payee=fuzzy_match.payee or "Unknown",
            date=fuzzy_match.date.isoformat(),
            amount=fuzzy_match.amount
        )
        return DuplicateVerdict.possible(reason, details)

    return DuplicateVerdict.not_duplicate(details)


def mark_duplicates(config: DuplicateMatchConfig,
                    ledger_transactions: List[LedgerTransaction],
                    transactions: List[InFlightTransaction]) -> List[InFlightTransaction]:
    """Attach a verdict to every in-flight transaction, all judged against one snapshot."""
    for tx in transactions:
        tx.duplicate = detect(config, ledger_transactions, tx.transaction)
    return transactions


def count_duplicates(transactions: List[InFlightTransaction]) -> Dict[str, int]:
    """Count confirmed, possible and non-duplicates."""
    confirmed = sum(1 for tx in transactions if tx.duplicate.status == DuplicateStatus.CONFIRMED_DUPLICATE)
    possible = sum(1 for tx in transactions if tx.duplicate.status == DuplicateStatus.POSSIBLE_DUPLICATE)
    return {
        'confirmed': confirmed,
        'possible': possible,
        'none': len(transactions) - confirmed - possible
    }
