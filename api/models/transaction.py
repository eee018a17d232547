"""
Transaction data models for the bank-to-ledger sync.

This module defines the core data structures that flow through the
reconciliation pipeline: bank and ledger transactions, split lines, the
categorization of an in-flight transaction, duplicate verdicts and the
post-import ledger status, plus the pydantic models used by the API.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple, Union
from pydantic import BaseModel, Field, validator


# Core domain types

@dataclass(frozen=True)
class BankTransaction:
    """One line item fetched from the bank feed. Never mutated after fetch."""
    reference: str  # bank-assigned, opaque; never split or parsed
    booking_date: date
    amount: Decimal
    currency: str
    payee: Optional[str]
    memo: str = ""
    raw_data: Optional[str] = None

    def __post_init__(self):
        """Ensure amount is a Decimal type."""
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))


@dataclass(frozen=True)
class LedgerTransaction:
    """A transaction already present on the ledger, used for duplicate detection."""
    id: str
    date: date
    amount: Decimal
    payee: Optional[str] = None
    memo: Optional[str] = None
    import_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))


@dataclass(frozen=True)
class TransactionSplit:
    """A share of one bank transaction assigned to a single category."""
    category_id: str
    category_name: str
    amount: Decimal
    memo: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))


@dataclass(frozen=True)
class ExternalLink:
    """Link that helps a user look up a transaction elsewhere (order page, activity)."""
    label: str
    url: str


# Categorization is a closed set of variants; exactly one is held at a time.

@dataclass(frozen=True)
class Uncategorized:
    pass


@dataclass(frozen=True)
class SingleCategory:
    category_id: str
    category_name: str


@dataclass(frozen=True)
class SplitCategories:
    splits: Tuple[TransactionSplit, ...]


Categorization = Union[Uncategorized, SingleCategory, SplitCategories]

UNCATEGORIZED = Uncategorized()


class TransactionStatus(str, Enum):
    """Review status of an in-flight transaction."""
    PENDING = "pending"
    AUTO_CATEGORIZED = "auto_categorized"
    MANUAL_CATEGORIZED = "manual_categorized"
    NEEDS_ATTENTION = "needs_attention"
    SKIPPED = "skipped"
    IMPORTED = "imported"


class DuplicateStatus(str, Enum):
    NOT_DUPLICATE = "not_duplicate"
    POSSIBLE_DUPLICATE = "possible_duplicate"
    CONFIRMED_DUPLICATE = "confirmed_duplicate"


@dataclass(frozen=True)
class DuplicateDetectionDetails:
    """Evidence gathered by every duplicate check, whatever the verdict."""
    transaction_reference: str
    reference_found_in_ledger: bool = False
    import_id_found_in_ledger: bool = False
    fuzzy_match_date: Optional[date] = None
    fuzzy_match_amount: Optional[Decimal] = None
    fuzzy_match_payee: Optional[str] = None
    fuzzy_match_similarity: Optional[float] = None


@dataclass(frozen=True)
class DuplicateVerdict:
    """
    Outcome of duplicate detection for one bank transaction.

    ``reason`` is set for possible duplicates and ``reference`` for confirmed
    ones; ``details`` is always present.
    """
    status: DuplicateStatus
    details: DuplicateDetectionDetails
    reason: Optional[str] = None
    reference: Optional[str] = None

    @classmethod
    def not_duplicate(cls, details: DuplicateDetectionDetails) -> 'DuplicateVerdict':
        return cls(DuplicateStatus.NOT_DUPLICATE, details)

    @classmethod
    def possible(cls, reason: str, details: DuplicateDetectionDetails) -> 'DuplicateVerdict':
        return cls(DuplicateStatus.POSSIBLE_DUPLICATE, details, reason=reason)

    @classmethod
    def confirmed(cls, reference: str, details: DuplicateDetectionDetails) -> 'DuplicateVerdict':
        return cls(DuplicateStatus.CONFIRMED_DUPLICATE, details, reference=reference)

    @property
    def is_duplicate(self) -> bool:
        return self.status != DuplicateStatus.NOT_DUPLICATE


class LedgerImportStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    IMPORTED = "imported"
    REJECTED = "rejected"


@dataclass
class InFlightTransaction:
    """
    The session's working unit: one bank transaction plus everything the
    pipeline and the user add to it before and after import.

    Category assignment goes through assign_category / assign_splits /
    clear_categorization so a single category and a split set are never
    held at the same time.
    """
    transaction: BankTransaction
    status: TransactionStatus = TransactionStatus.PENDING
    matched_rule_id: Optional[str] = None
    payee_override: Optional[str] = None
    user_notes: Optional[str] = None
    external_links: List[ExternalLink] = field(default_factory=list)
    duplicate: Optional[DuplicateVerdict] = None
    import_status: LedgerImportStatus = LedgerImportStatus.NOT_ATTEMPTED
    import_error: Optional[str] = None
    import_id: Optional[str] = None
    _categorization: Categorization = field(default=UNCATEGORIZED, repr=False)

    def __post_init__(self):
        if self.duplicate is None:
            self.duplicate = DuplicateVerdict.not_duplicate(
                DuplicateDetectionDetails(transaction_reference=self.transaction.reference)
            )

    @property
    def id(self) -> str:
        return self.transaction.reference

    @property
    def categorization(self) -> Categorization:
        return self._categorization

    @property
    def category_id(self) -> Optional[str]:
        if isinstance(self._categorization, SingleCategory):
            return self._categorization.category_id
        return None

    @property
    def category_name(self) -> Optional[str]:
        if isinstance(self._categorization, SingleCategory):
            return self._categorization.category_name
        return None

    @property
    def splits(self) -> Optional[List[TransactionSplit]]:
        if isinstance(self._categorization, SplitCategories):
            return list(self._categorization.splits)
        return None

    @property
    def is_split(self) -> bool:
        return isinstance(self._categorization, SplitCategories)

    def assign_category(self, category_id: str, category_name: str) -> None:
        """Set a single category, discarding any split set."""
        self._categorization = SingleCategory(category_id, category_name)

    def assign_splits(self, splits: List[TransactionSplit]) -> None:
        """Set a split set, discarding any single category. Callers validate first."""
        self._categorization = SplitCategories(tuple(splits))

    def clear_categorization(self) -> None:
        self._categorization = UNCATEGORIZED

    def is_import_ready(self) -> bool:
        """Not skipped and carrying either a category or at least two splits."""
        if self.status == TransactionStatus.SKIPPED:
            return False
        if isinstance(self._categorization, SingleCategory):
            return True
        if isinstance(self._categorization, SplitCategories):
            return len(self._categorization.splits) >= 2
        return False

    def effective_payee(self) -> str:
        return self.payee_override or self.transaction.payee or "Unknown"


# Pydantic models for API serialization

class TransactionSplitAPI(BaseModel):
    """API model for a split line."""
    category_id: str = Field(..., description="Ledger category identifier")
    category_name: str = Field("", description="Cached category name for display")
    amount: Decimal = Field(..., description="Split amount, same sign as the transaction")
    memo: Optional[str] = Field(None, description="Optional memo for this split")

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }

    def to_split(self) -> TransactionSplit:
        return TransactionSplit(
            category_id=self.category_id,
            category_name=self.category_name,
            amount=self.amount,
            memo=self.memo
        )


class ExternalLinkAPI(BaseModel):
    label: str
    url: str


class DuplicateDetailsAPI(BaseModel):
    """Diagnostic record of the duplicate checks that were run."""
    transaction_reference: str = Field(..., description="Bank reference that was checked")
    reference_found_in_ledger: bool = Field(..., description="Whether a ledger memo carried the reference")
    import_id_found_in_ledger: bool = Field(..., description="Whether a ledger import id matched")
    fuzzy_match_date: Optional[date] = Field(None, description="Date of the fuzzy-matched ledger transaction")
    fuzzy_match_amount: Optional[Decimal] = Field(None, description="Amount of the fuzzy-matched ledger transaction")
    fuzzy_match_payee: Optional[str] = Field(None, description="Payee of the fuzzy-matched ledger transaction")
    fuzzy_match_similarity: Optional[float] = Field(None, description="Payee similarity score (0.0-1.0)")

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }


class DuplicateVerdictAPI(BaseModel):
    status: DuplicateStatus
    reason: Optional[str] = None
    reference: Optional[str] = None
    details: DuplicateDetailsAPI


class TransactionAPI(BaseModel):
    """API model for an in-flight transaction."""
    id: str = Field(..., description="Bank reference, used as the transaction id")
    booking_date: date = Field(..., description="Booking date")
    amount: Decimal = Field(..., description="Signed amount")
    currency: str = Field(..., description="Currency code")
    payee: Optional[str] = Field(None, description="Payee as reported by the bank")
    memo: str = Field("", description="Bank memo")
    status: TransactionStatus
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    splits: Optional[List[TransactionSplitAPI]] = None
    matched_rule_id: Optional[str] = None
    payee_override: Optional[str] = None
    user_notes: Optional[str] = None
    external_links: List[ExternalLinkAPI] = Field(default_factory=list)
    duplicate: DuplicateVerdictAPI
    import_status: LedgerImportStatus
    import_error: Optional[str] = None

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }

    @classmethod
    def from_in_flight(cls, tx: InFlightTransaction) -> 'TransactionAPI':
        bank = tx.transaction
        verdict = tx.duplicate
        details = verdict.details
        splits = None
        if tx.splits is not None:
            splits = [
                TransactionSplitAPI(
                    category_id=s.category_id,
                    category_name=s.category_name,
                    amount=s.amount,
                    memo=s.memo
                )
                for s in tx.splits
            ]
        return cls(
            id=tx.id,
            booking_date=bank.booking_date,
            amount=bank.amount,
            currency=bank.currency,
            payee=bank.payee,
            memo=bank.memo,
            status=tx.status,
            category_id=tx.category_id,
            category_name=tx.category_name,
            splits=splits,
            matched_rule_id=tx.matched_rule_id,
            payee_override=tx.payee_override,
            user_notes=tx.user_notes,
            external_links=[ExternalLinkAPI(label=link.label, url=link.url) for link in tx.external_links],
            duplicate=DuplicateVerdictAPI(
                status=verdict.status,
                reason=verdict.reason,
                reference=verdict.reference,
                details=DuplicateDetailsAPI(
                    transaction_reference=details.transaction_reference,
                    reference_found_in_ledger=details.reference_found_in_ledger,
                    import_id_found_in_ledger=details.import_id_found_in_ledger,
                    fuzzy_match_date=details.fuzzy_match_date,
                    fuzzy_match_amount=details.fuzzy_match_amount,
                    fuzzy_match_payee=details.fuzzy_match_payee,
                    fuzzy_match_similarity=details.fuzzy_match_similarity
                )
            ),
            import_status=tx.import_status,
            import_error=tx.import_error
        )


class CategoryUpdateAPI(BaseModel):
    category_id: str = Field(..., description="Ledger category identifier")
    category_name: str = Field(..., description="Category name for display")


class PayeeUpdateAPI(BaseModel):
    payee_override: Optional[str] = Field(None, description="Payee to send instead of the bank payee; null clears it")


class NoteUpdateAPI(BaseModel):
    note: Optional[str] = Field(None, description="Free-text note; null clears it")


class SplitUpdateAPI(BaseModel):
    splits: List[TransactionSplitAPI] = Field(..., description="Split lines, at least two")


class ForceReimportAPI(BaseModel):
    transaction_ids: List[str] = Field(..., description="Ids of ledger-rejected transactions to resend")

    @validator('transaction_ids')
    def validate_ids(cls, v):
        """Require at least one id."""
        if not v:
            raise ValueError('At least one transaction id is required')
        return v
