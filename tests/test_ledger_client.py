"""
Tests for the YNAB ledger adapter over a mocked requests session.
"""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from api.models.transaction import InFlightTransaction
from core.ledger_client import (
    LedgerError, LedgerNotFoundError, LedgerRateLimitError, LedgerResponseError,
    LedgerUnauthorizedError, YnabLedgerClient, from_milliunits, to_milliunits
)
from core.ledger_writer import build

from conftest import make_bank_tx


def make_response(status_code=200, body=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.json.return_value = body
    return response


class TestYnabLedgerClient:

    def setup_method(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.client = YnabLedgerClient(
            token="secret-token",
            budget_id="budget-1",
            base_url="https://ledger.example/v1/",
            session=self.session,
            today=lambda: date(2025, 1, 31)
        )

    def respond(self, *args, **kwargs):
        self.session.request.return_value = make_response(*args, **kwargs)

    def test_token_is_sent_as_bearer(self):
        assert self.session.headers["Authorization"] == "Bearer secret-token"

    def test_list_transactions(self):
        self.respond(body={"data": {"transactions": [
            {"id": "t1", "date": "2025-01-10", "amount": -50000, "payee_name": "REWE",
             "memo": "Einkauf, Ref: REF001", "import_id": "BS:REF001"},
            {"id": "t2", "date": "2025-01-11", "amount": -1000, "deleted": True},
            {"id": "t3", "date": "2025-01-12", "amount": 1234560},
        ]}})

        transactions = asyncio.run(self.client.list_transactions("acc-1", 31))

        method, url = self.session.request.call_args[0]
        assert method == "GET"
        assert url == "https://ledger.example/v1/budgets/budget-1/accounts/acc-1/transactions"
        assert self.session.request.call_args[1]["params"] == {"since_date": "2024-12-31"}

        assert [tx.id for tx in transactions] == ["t1", "t3"]
        assert transactions[0].amount == Decimal("-50")
        assert transactions[0].import_id == "BS:REF001"
        assert transactions[1].amount == Decimal("1234.56")
        assert transactions[1].payee is None

    def test_create_transactions(self):
        tx = InFlightTransaction(transaction=make_bank_tx(reference="REF001"))
        tx.assign_category("cat-groceries", "Groceries")
        self.respond(body={"data": {"transaction_ids": ["new-1"], "duplicate_import_ids": []}})

        result = asyncio.run(self.client.create_transactions([build(tx, account_id="acc-1")]))

        method, url = self.session.request.call_args[0]
        assert method == "POST"
        assert url.endswith("/budgets/budget-1/transactions")
        sent = self.session.request.call_args[1]["json"]["transactions"]
        assert sent[0]["import_id"] == "BS:REF001"
        assert result.created_ids == ["new-1"]
        assert result.rejected_import_ids == []

    def test_duplicate_import_ids_are_reported(self):
        tx = InFlightTransaction(transaction=make_bank_tx(reference="REF001"))
        tx.assign_category("c", "C")
        self.respond(body={"data": {"transaction_ids": [], "duplicate_import_ids": ["BS:REF001"]}})

        result = asyncio.run(self.client.create_transactions([build(tx)]))

        assert result.created_ids == []
        assert result.rejected_import_ids == ["BS:REF001"]

    def test_empty_batch_makes_no_request(self):
        result = asyncio.run(self.client.create_transactions([]))

        assert result.created_ids == []
        self.session.request.assert_not_called()

    def test_unauthorized(self):
        self.respond(status_code=401)
        with pytest.raises(LedgerUnauthorizedError):
            asyncio.run(self.client.list_transactions("acc-1", 30))

    def test_not_found(self):
        self.respond(status_code=404)
        with pytest.raises(LedgerNotFoundError):
            asyncio.run(self.client.list_transactions("acc-1", 30))

    def test_rate_limited(self):
        self.respond(status_code=429, headers={"Retry-After": "15"})
        with pytest.raises(LedgerRateLimitError) as exc_info:
            asyncio.run(self.client.list_transactions("acc-1", 30))
        assert exc_info.value.retry_after == 15

    def test_server_error(self):
        self.respond(status_code=500, text="boom")
        with pytest.raises(LedgerResponseError) as exc_info:
            asyncio.run(self.client.list_transactions("acc-1", 30))
        assert "HTTP 500" in str(exc_info.value)

    def test_network_error(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(LedgerError) as exc_info:
            asyncio.run(self.client.list_transactions("acc-1", 30))
        assert "Network error" in str(exc_info.value)

    def test_malformed_body(self):
        self.respond(body={"data": {}})
        with pytest.raises(LedgerResponseError):
            asyncio.run(self.client.list_transactions("acc-1", 30))

    def test_malformed_transaction(self):
        self.respond(body={"data": {"transactions": [{"id": "t1", "date": "not-a-date", "amount": 0}]}})
        with pytest.raises(LedgerResponseError):
            asyncio.run(self.client.list_transactions("acc-1", 30))


def test_milliunit_conversion():
    assert to_milliunits(Decimal("-19.99")) == -19990
    assert to_milliunits(Decimal("0.0005")) == 0
    assert from_milliunits(-19990) == Decimal("-19.99")
