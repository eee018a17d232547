"""
Ledger write request construction.

Turns a reviewed in-flight transaction into the request sent to the ledger:
import id, memo with the embedded bank reference, payee, and either a single
category or one sub-line per split.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from api.models.reference import (
    build_memo_with_reference, generate_import_id, generate_random_import_id, truncate_memo
)
from api.models.transaction import InFlightTransaction


DEFAULT_MEMO_LIMIT = 300


class LedgerWriteError(Exception):
    """Raised when a transaction is not in a state that can be written."""
    pass


@dataclass(frozen=True)
class LedgerSubtransaction:
    """One split line of a ledger write."""
    amount: Decimal
    category_id: str
    memo: Optional[str] = None


@dataclass(frozen=True)
class LedgerWriteRequest:
    """A transaction as it is sent to the ledger."""
    transaction_id: str  # in-flight id, not sent
    account_id: str
    date: date
    amount: Decimal
    payee_name: str
    memo: str
    import_id: str
    cleared: str = "cleared"
    category_id: Optional[str] = None
    subtransactions: List[LedgerSubtransaction] = field(default_factory=list)

    @property
    def is_split(self) -> bool:
        return bool(self.subtransactions)


def build(tx: InFlightTransaction,
          force_new_token: bool = False,
          account_id: str = "",
          memo_limit: int = DEFAULT_MEMO_LIMIT) -> LedgerWriteRequest:
    """
    Build the ledger write request for one transaction.

    Args:
        tx: Reviewed, import-ready transaction
        force_new_token: Use a random import id so a previously rejected
            transaction is accepted again
        account_id: Ledger account the transaction is written to
        memo_limit: Ledger memo field limit

    Returns:
        LedgerWriteRequest

    Raises:
        LedgerWriteError: If the transaction has neither a category nor a valid split set
    """
    bank = tx.transaction

    if force_new_token:
        import_id = generate_random_import_id()
    else:
        import_id = generate_import_id(bank.reference)

    splits = tx.splits
    if splits is not None and len(splits) >= 2:
        category_id = None
        subtransactions = [
            LedgerSubtransaction(
                amount=split.amount,
                category_id=split.category_id,
                memo=truncate_memo(split.memo, memo_limit)
            )
            for split in splits
        ]
    elif tx.category_id is not None:
        category_id = tx.category_id
        subtransactions = []
    else:
        raise LedgerWriteError(f"Transaction {tx.id} has no category and no valid split set")

    return LedgerWriteRequest(
        transaction_id=tx.id,
        account_id=account_id,
        date=bank.booking_date,
        amount=bank.amount,
        payee_name=tx.effective_payee(),
        memo=build_memo_with_reference(bank.memo, bank.reference, memo_limit),
        import_id=import_id,
        category_id=category_id,
        subtransactions=subtransactions,
    )
