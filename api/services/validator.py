"""
Data validation service for rules, splits and user edits.

Validators return a list of ValidationIssue so that a caller can show every
problem at once; ValidationFailed carries such a list across layers.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from api.models.config import MAX_DAYS_TO_FETCH, MIN_DAYS_TO_FETCH
from api.models.rule import PatternKind, Rule, TargetField
from api.models.transaction import TransactionSplit
from core.rules_engine import PatternError, compile_pattern


SPLIT_TOLERANCE = Decimal('0.01')
MIN_SPLITS = 2


@dataclass(frozen=True)
class ValidationIssue:
    """One validation problem, tied to the field that caused it."""
    field: str
    code: str
    message: str

    def to_dict(self) -> dict:
        return {'field': self.field, 'code': self.code, 'message': self.message}


class ValidationFailed(Exception):
    """Exception raised when validation fails; carries every issue found."""

    def __init__(self, issues: List[ValidationIssue]):
        self.issues = list(issues)
        super().__init__("; ".join(issue.message for issue in self.issues))


def raise_if_invalid(issues: List[ValidationIssue]) -> None:
    if issues:
        raise ValidationFailed(issues)


# Reusable validators

def validate_required(field_name: str, label: str, value: Optional[str]) -> Optional[ValidationIssue]:
    if value is None or not str(value).strip():
        return ValidationIssue(field_name, 'required', f"{label} is required")
    return None


def validate_length(field_name: str, label: str, value: str, min_len: int, max_len: int) -> Optional[ValidationIssue]:
    if not min_len <= len(value) <= max_len:
        return ValidationIssue(
            field_name, 'too_long' if len(value) > max_len else 'too_short',
            f"{label} must be between {min_len} and {max_len} characters"
        )
    return None


def validate_range(field_name: str, label: str, value: int, min_value: int, max_value: int) -> Optional[ValidationIssue]:
    if not min_value <= value <= max_value:
        return ValidationIssue(field_name, 'out_of_range', f"{label} must be between {min_value} and {max_value}")
    return None


# Rules

def validate_rule(rule: Rule) -> List[ValidationIssue]:
    """
    Validate a rule before it is saved.

    Args:
        rule: Rule to validate

    Returns:
        List of validation issues (empty if valid)
    """
    issues = []

    issue = validate_required('name', "Rule name", rule.name)
    if issue is None:
        issue = validate_length('name', "Rule name", rule.name, 1, 100)
    if issue:
        issues.append(issue)

    if not isinstance(rule.pattern_kind, PatternKind):
        issues.append(ValidationIssue('pattern_kind', 'required', "Pattern kind must be contains, exact or regex"))

    issue = validate_required('pattern', "Pattern", rule.pattern)
    if issue is None:
        issue = validate_length('pattern', "Pattern", rule.pattern, 1, 500)
    if issue:
        issues.append(issue)
    elif rule.pattern_kind == PatternKind.REGEX:
        try:
            compile_pattern(rule.pattern, rule.pattern_kind)
        except PatternError as e:
            issues.append(ValidationIssue('pattern', 'invalid_pattern', str(e)))

    issue = validate_required('category_id', "Category", rule.category_id)
    if issue:
        issues.append(issue)

    if not isinstance(rule.target_field, TargetField):
        issues.append(ValidationIssue('target_field', 'required', "Target field must be payee, memo or combined"))

    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
        issues.append(ValidationIssue('priority', 'required', "Priority must be a whole number"))
    else:
        issue = validate_range('priority', "Priority", rule.priority, 0, 10000)
        if issue:
            issues.append(issue)

    if rule.payee_override is not None:
        issues.extend(validate_payee_override(rule.payee_override))

    return issues


# Transactions

def validate_payee_override(payee: Optional[str]) -> List[ValidationIssue]:
    if payee is None:
        return []
    if not payee.strip():
        return [ValidationIssue('payee_override', 'required', "Payee override cannot be empty")]
    issue = validate_length('payee_override', "Payee override", payee, 1, 200)
    return [issue] if issue else []


def validate_splits(transaction_amount: Decimal, splits: List[TransactionSplit]) -> List[ValidationIssue]:
    """
    Validate a split set against its parent transaction.

    Splits must number at least two, each must name a category, and their
    amounts must sum to the transaction amount within SPLIT_TOLERANCE.
    """
    issues = []

    if len(splits) < MIN_SPLITS:
        issues.append(ValidationIssue(
            'splits', 'too_few_splits',
            f"A split transaction needs at least {MIN_SPLITS} splits, got {len(splits)}"
        ))

    total = Decimal('0')
    for index, split in enumerate(splits):
        if not split.category_id or not str(split.category_id).strip():
            issues.append(ValidationIssue(
                f'splits[{index}].category_id', 'missing_category',
                f"Split {index + 1} has no category"
            ))
        try:
            total += Decimal(split.amount)
        except (InvalidOperation, TypeError):
            issues.append(ValidationIssue(
                f'splits[{index}].amount', 'invalid_amount',
                f"Split {index + 1} has an invalid amount: {split.amount}"
            ))

    if splits and abs(total - transaction_amount) > SPLIT_TOLERANCE:
        issues.append(ValidationIssue(
            'splits', 'amount_mismatch',
            f"Split total {total} does not match transaction amount {transaction_amount}"
        ))

    return issues


# Settings

def validate_days_to_fetch(days: int) -> List[ValidationIssue]:
    issue = validate_range('sync.days_to_fetch', "Days to fetch", days, MIN_DAYS_TO_FETCH, MAX_DAYS_TO_FETCH)
    return [issue] if issue else []
