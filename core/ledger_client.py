"""
Ledger collaborator contract and the YNAB HTTP adapter.

This module handles all HTTP communication with the budgeting ledger:
reading recent transactions for duplicate detection and creating new ones.
The ledger answers a batch create with the ids it created and the import ids
it refused as duplicates; mapping those back to transactions is the
orchestrator's job.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import requests

from api.models.transaction import LedgerTransaction
from core.ledger_writer import LedgerWriteRequest


logger = logging.getLogger(__name__)

MILLIUNITS = Decimal('1000')


class LedgerError(Exception):
    """Base class for ledger collaborator failures."""
    pass


class LedgerUnauthorizedError(LedgerError):
    pass


class LedgerNotFoundError(LedgerError):
    pass


class LedgerRateLimitError(LedgerError):
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after


class LedgerResponseError(LedgerError):
    """Unexpected status or a body that could not be decoded."""
    pass


@dataclass
class LedgerCreateResult:
    created_ids: List[str] = field(default_factory=list)
    rejected_import_ids: List[str] = field(default_factory=list)


class LedgerClient(ABC):
    """Remote ledger as seen by the sync orchestrator."""

    @abstractmethod
    async def list_transactions(self, account_ref: str, days: int) -> List[LedgerTransaction]:
        """Transactions of ``account_ref`` booked within the last ``days`` days."""

    @abstractmethod
    async def create_transactions(self, write_requests: List[LedgerWriteRequest]) -> LedgerCreateResult:
        """Create a batch; import ids the ledger already knows come back as rejected."""


def to_milliunits(amount: Decimal) -> int:
    return int((amount * MILLIUNITS).to_integral_value())


def from_milliunits(value: int) -> Decimal:
    return Decimal(value) / MILLIUNITS


def encode_write_request(request: LedgerWriteRequest) -> Dict[str, Any]:
    """Encode a write request in the ledger's JSON shape (amounts in milliunits)."""
    payload = {
        "account_id": request.account_id,
        "date": request.date.isoformat(),
        "amount": to_milliunits(request.amount),
        "payee_name": request.payee_name,
        "memo": request.memo,
        "cleared": request.cleared,
        "import_id": request.import_id,
    }
    if request.subtransactions:
        subtransactions = []
        for sub in request.subtransactions:
            encoded = {
                "amount": to_milliunits(sub.amount),
                "category_id": sub.category_id,
            }
            if sub.memo is not None:
                encoded["memo"] = sub.memo
            subtransactions.append(encoded)
        payload["subtransactions"] = subtransactions
    elif request.category_id is not None:
        payload["category_id"] = request.category_id
    return payload


def decode_ledger_transaction(data: Dict[str, Any]) -> LedgerTransaction:
    try:
        return LedgerTransaction(
            id=str(data["id"]),
            date=date.fromisoformat(data["date"]),
            amount=from_milliunits(int(data["amount"])),
            payee=data.get("payee_name"),
            memo=data.get("memo"),
            import_id=data.get("import_id"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise LedgerResponseError(f"Failed to parse ledger transaction: {e}")


class YnabLedgerClient(LedgerClient):
    """YNAB API adapter. Blocking requests calls run in a worker thread."""

    def __init__(self, token: str, budget_id: str,
                 base_url: str = "https://api.ynab.com/v1",
                 timeout: int = 30,
                 session: Optional[requests.Session] = None,
                 today: Callable[[], date] = date.today):
        self.base_url = base_url.rstrip('/')
        self.budget_id = budget_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})
        self._today = today

    def _make_request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        """
        Make an HTTP request to the ledger API.

        Raises:
            LedgerError: If the request fails or the ledger returns an error
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise LedgerError(f"Network error: {e}")

        if response.status_code == 401:
            raise LedgerUnauthorizedError("Invalid ledger token")
        if response.status_code == 404:
            raise LedgerNotFoundError(f"Budget or account not found: {endpoint}")
        if response.status_code == 429:
            try:
                retry_after = int(response.headers.get("Retry-After", 60))
            except (TypeError, ValueError):
                retry_after = 60
            raise LedgerRateLimitError("Ledger rate limit exceeded", retry_after)
        if response.status_code >= 400:
            raise LedgerResponseError(f"HTTP {response.status_code}: {response.text}")

        try:
            return response.json()
        except ValueError as e:
            raise LedgerResponseError(f"Invalid JSON response: {e}")

    def _list_transactions(self, account_ref: str, days: int) -> List[LedgerTransaction]:
        since = (self._today() - timedelta(days=days)).isoformat()
        body = self._make_request(
            "GET",
            f"/budgets/{self.budget_id}/accounts/{account_ref}/transactions",
            params={"since_date": since},
        )
        try:
            items = body["data"]["transactions"]
        except (KeyError, TypeError) as e:
            raise LedgerResponseError(f"Failed to parse transactions: {e}")
        return [decode_ledger_transaction(item) for item in items if not item.get("deleted")]

    def _create_transactions(self, write_requests: List[LedgerWriteRequest]) -> LedgerCreateResult:
        if not write_requests:
            return LedgerCreateResult()
        body = self._make_request(
            "POST",
            f"/budgets/{self.budget_id}/transactions",
            json={"transactions": [encode_write_request(r) for r in write_requests]},
        )
        data = body.get("data") or {}
        return LedgerCreateResult(
            created_ids=list(data.get("transaction_ids") or []),
            rejected_import_ids=list(data.get("duplicate_import_ids") or []),
        )

    async def list_transactions(self, account_ref: str, days: int) -> List[LedgerTransaction]:
        return await asyncio.to_thread(self._list_transactions, account_ref, days)

    async def create_transactions(self, write_requests: List[LedgerWriteRequest]) -> LedgerCreateResult:
        result = await asyncio.to_thread(self._create_transactions, write_requests)
        logger.info("Ledger created %d transactions, rejected %d import ids",
                    len(result.created_ids), len(result.rejected_import_ids))
        return result
