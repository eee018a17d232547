"""
Reference and import-id handling shared by the ledger writer and the
duplicate detector.

Both sides of the round trip live here: the import id attached to a ledger
write and the "Ref: <reference>" suffix appended to its memo. The duplicate
detector recognises earlier imports with exactly the same functions, so the
two formats cannot drift apart.
"""

import re
import secrets
from typing import Optional


IMPORT_ID_PREFIX = "BS"
IMPORT_ID_SEPARATOR = ":"
IMPORT_ID_MAX_LENGTH = 36  # ledger limit for import_id

# Characters stripped from a bank reference before it goes into an import id
NORMALIZED_AWAY = "-"

REFERENCE_MARKER = "Ref: "
REFERENCE_SUFFIX_FORMAT = ", Ref: {reference}"
ELLIPSIS = "..."

_REFERENCE_PATTERN = re.compile(r".*Ref:\s*(.+)$", re.DOTALL)
_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_reference(reference: str) -> str:
    """Remove the separator characters that are not carried into import ids."""
    return reference.translate({ord(ch): None for ch in NORMALIZED_AWAY})


def _cap(token: str) -> str:
    return token[:IMPORT_ID_MAX_LENGTH]


def generate_import_id(reference: str) -> str:
    """
    Build the deterministic import id for a bank reference.

    Format: ``BS:<reference without '-'>``, capped at the ledger's limit.
    """
    return _cap(f"{IMPORT_ID_PREFIX}{IMPORT_ID_SEPARATOR}{normalize_reference(reference)}")


def generate_random_import_id() -> str:
    """Build a fresh import id with the same prefix, used for forced re-imports."""
    return _cap(f"{IMPORT_ID_PREFIX}{IMPORT_ID_SEPARATOR}{secrets.token_hex(16)}")


def matches_import_id(reference: str, import_id: Optional[str]) -> bool:
    """
    Check whether an import id was generated for this bank reference.

    The comparison goes through generate_import_id so that truncation and
    normalization are applied identically on both sides.
    """
    if not import_id:
        return False
    return import_id == generate_import_id(reference)


def collapse_whitespace(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def build_memo_with_reference(memo: Optional[str], reference: str, limit: int = 300) -> str:
    """
    Append the reference suffix to a memo, truncating the memo body from the front.

    The suffix is never shortened, so extract_reference always recovers the
    reference. When the suffix alone does not fit the limit, the bare
    ``Ref: <reference>`` form is returned even though it exceeds the limit.
    """
    body = collapse_whitespace(memo)
    if not body:
        return f"{REFERENCE_MARKER}{reference}"

    suffix = REFERENCE_SUFFIX_FORMAT.format(reference=reference)
    full = body + suffix
    if len(full) <= limit:
        return full

    keep = limit - len(suffix) - len(ELLIPSIS)
    if keep <= 0:
        return f"{REFERENCE_MARKER}{reference}"
    return ELLIPSIS + body[-keep:] + suffix


def extract_reference(memo: Optional[str]) -> Optional[str]:
    """
    Extract the reference from a ledger memo of the form ``..., Ref: <reference>``.

    The last marker wins, so a "Ref:" inside the bank's own memo text does not
    shadow the suffix appended on import.
    """
    if not memo or not memo.strip():
        return None
    match = _REFERENCE_PATTERN.match(memo)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def truncate_memo(memo: Optional[str], limit: int = 300) -> Optional[str]:
    """Plain end truncation for memos that carry no reference (split lines)."""
    if memo is None:
        return None
    if len(memo) <= limit:
        return memo
    return memo[:limit - len(ELLIPSIS)] + ELLIPSIS
