"""
Bank collaborator contract and the OFX statement adapter.

The sync orchestrator only sees BankClient: begin authentication, confirm
the challenge, fetch the transaction feed. How a bank authenticates is the
adapter's business.
"""

import asyncio
import hashlib
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, List, Optional
import ofxparse

from api.models.transaction import BankTransaction


logger = logging.getLogger(__name__)


class BankError(Exception):
    """Base class for bank collaborator failures."""
    pass


class BankAuthError(BankError):
    """Authentication or challenge confirmation failed."""
    pass


class BankFetchError(BankError):
    """The transaction feed could not be fetched or parsed."""
    pass


@dataclass(frozen=True)
class ChallengeHandle:
    """Challenge issued by the bank during authentication."""
    challenge_id: str
    kind: str  # e.g. "push_tan"; "none" when no user action is required
    message: Optional[str] = None


class BankClient(ABC):
    """Remote bank as seen by the sync orchestrator."""

    @abstractmethod
    async def begin_auth(self) -> ChallengeHandle:
        """Start authentication and return the challenge the user must answer."""

    @abstractmethod
    async def confirm_challenge(self) -> None:
        """Confirm the outstanding challenge. Raises BankAuthError on failure."""

    @abstractmethod
    async def fetch_transactions(self, account_ref: str, days: int) -> List[BankTransaction]:
        """Fetch booked transactions of the last ``days`` days. Raises BankFetchError."""


def fallback_reference(booking_date: str, payee: str, amount: Decimal, memo: str) -> str:
    """Deterministic reference for statement lines that carry no FITID."""
    hash_input = f"{booking_date}|{payee}|{amount}|{memo}"
    return "ofx-" + hashlib.sha256(hash_input.encode('utf-8')).hexdigest()[:24]


class OfxStatementBank(BankClient):
    """
    Bank adapter backed by a downloaded OFX statement.

    Authentication needs no user action, so begin_auth returns a challenge of
    kind "none" and confirm_challenge only checks that the file is readable.
    """

    def __init__(self, statement_file: str, currency: str = "EUR",
                 today: Callable[[], date] = date.today):
        self.statement_file = statement_file
        self.currency = currency
        self._today = today
        self._authenticated = False

    async def begin_auth(self) -> ChallengeHandle:
        self._authenticated = False
        return ChallengeHandle(
            challenge_id=os.path.basename(self.statement_file or ""),
            kind="none",
            message="Statement file source, no confirmation needed"
        )

    async def confirm_challenge(self) -> None:
        if not self.statement_file or not os.path.isfile(self.statement_file):
            raise BankAuthError(f"Statement file not found: {self.statement_file}")
        self._authenticated = True

    async def fetch_transactions(self, account_ref: str, days: int) -> List[BankTransaction]:
        if not self._authenticated:
            raise BankFetchError("Not authenticated; confirm the challenge first")
        transactions = await asyncio.to_thread(self._parse, account_ref)
        since = self._today() - timedelta(days=days)
        recent = [tx for tx in transactions if tx.booking_date >= since]
        logger.info("Read %d transactions from %s, %d within the last %d days",
                    len(transactions), self.statement_file, len(recent), days)
        return recent

    def _parse(self, account_ref: str) -> List[BankTransaction]:
        try:
            with open(self.statement_file, 'rb') as f:
                ofx_data = ofxparse.OfxParser.parse(f)
        except Exception as e:
            raise BankFetchError(f"Failed to parse OFX file {self.statement_file}: {e}")

        if not ofx_data.accounts:
            raise BankFetchError("No accounts found in OFX file")

        account = self._select_account(ofx_data.accounts, account_ref)
        statement = getattr(account, 'statement', None)
        if statement is None:
            return []

        currency = (getattr(statement, 'currency', None) or self.currency).upper()
        return [self._to_bank_transaction(t, currency) for t in statement.transactions]

    @staticmethod
    def _select_account(accounts, account_ref: str):
        if not account_ref:
            return accounts[0]
        for account in accounts:
            if getattr(account, 'account_id', None) == account_ref:
                return account
        raise BankFetchError(f"Account {account_ref} not found in OFX file")

    @staticmethod
    def _to_bank_transaction(ofx_transaction, currency: str) -> BankTransaction:
        booked = ofx_transaction.date.date() if ofx_transaction.date else None
        if booked is None:
            raise BankFetchError(f"Transaction {getattr(ofx_transaction, 'id', '?')} has no date")
        payee = (getattr(ofx_transaction, 'payee', '') or getattr(ofx_transaction, 'name', '') or '').strip()
        memo = (getattr(ofx_transaction, 'memo', '') or '').strip()
        amount = Decimal(str(ofx_transaction.amount)) if ofx_transaction.amount is not None else Decimal('0')
        reference = (getattr(ofx_transaction, 'id', '') or '').strip()
        if not reference:
            reference = fallback_reference(booked.isoformat(), payee, amount, memo)

        return BankTransaction(
            reference=reference,
            booking_date=booked,
            amount=amount,
            currency=currency,
            payee=payee or None,
            memo=memo,
        )
