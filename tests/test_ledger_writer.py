"""
Tests for ledger write request construction and its YNAB encoding.
"""

import pytest
from decimal import Decimal

from api.models.reference import extract_reference, generate_import_id
from api.models.transaction import InFlightTransaction, TransactionSplit
from core.ledger_client import encode_write_request
from core.ledger_writer import LedgerWriteError, build

from conftest import make_bank_tx


class TestBuild:
    """Single-category and split requests."""

    def setup_method(self):
        self.tx = InFlightTransaction(
            transaction=make_bank_tx(reference="2025-01-10-0001", amount="-50.00",
                                     payee="REWE Markt GmbH", memo="Einkauf  Lebensmittel")
        )

    def test_single_category(self):
        self.tx.assign_category("cat-groceries", "Groceries")
        request = build(self.tx, account_id="acc-1")

        assert request.transaction_id == "2025-01-10-0001"
        assert request.account_id == "acc-1"
        assert request.category_id == "cat-groceries"
        assert request.subtransactions == []
        assert request.import_id == generate_import_id("2025-01-10-0001")
        assert request.memo == "Einkauf Lebensmittel, Ref: 2025-01-10-0001"
        assert request.payee_name == "REWE Markt GmbH"
        assert request.cleared == "cleared"
        assert not request.is_split

    def test_split_has_no_top_level_category(self):
        self.tx.assign_splits([
            TransactionSplit("cat-food", "Food", Decimal("-30.00"), "Essen"),
            TransactionSplit("cat-household", "Household", Decimal("-20.00")),
        ])
        request = build(self.tx)

        assert request.is_split
        assert request.category_id is None
        assert [s.amount for s in request.subtransactions] == [Decimal("-30.00"), Decimal("-20.00")]
        assert [s.category_id for s in request.subtransactions] == ["cat-food", "cat-household"]
        assert request.subtransactions[0].memo == "Essen"
        assert request.subtransactions[1].memo is None

    def test_long_memo_keeps_reference(self):
        tx = InFlightTransaction(transaction=make_bank_tx(reference="REF999", memo="blah " * 100))
        tx.assign_category("c", "C")
        request = build(tx, memo_limit=300)

        assert len(request.memo) == 300
        assert extract_reference(request.memo) == "REF999"

    def test_forced_token_is_random(self):
        self.tx.assign_category("cat-groceries", "Groceries")
        first = build(self.tx, force_new_token=True)
        second = build(self.tx, force_new_token=True)

        assert first.import_id != generate_import_id(self.tx.id)
        assert first.import_id != second.import_id
        assert first.import_id.startswith("BS:")

    def test_payee_override_wins(self):
        self.tx.assign_category("c", "C")
        self.tx.payee_override = "REWE"
        assert build(self.tx).payee_name == "REWE"

    def test_unknown_payee(self):
        tx = InFlightTransaction(transaction=make_bank_tx(payee=None))
        tx.assign_category("c", "C")
        assert build(tx).payee_name == "Unknown"

    def test_uncategorized_is_rejected(self):
        with pytest.raises(LedgerWriteError):
            build(self.tx)


class TestEncoding:
    """YNAB payload shape."""

    def test_single_category_payload(self):
        tx = InFlightTransaction(transaction=make_bank_tx(reference="R1", amount="-19.99", memo="Abo"))
        tx.assign_category("cat-music", "Music")
        payload = encode_write_request(build(tx, account_id="acc-1"))

        assert payload == {
            "account_id": "acc-1",
            "date": "2025-01-10",
            "amount": -19990,
            "payee_name": "REWE Markt GmbH",
            "memo": "Abo, Ref: R1",
            "cleared": "cleared",
            "import_id": "BS:R1",
            "category_id": "cat-music",
        }

    def test_split_payload(self):
        tx = InFlightTransaction(transaction=make_bank_tx(reference="R1", amount="-50.00"))
        tx.assign_splits([
            TransactionSplit("cat-food", "Food", Decimal("-30.00")),
            TransactionSplit("cat-household", "Household", Decimal("-20.00"), "Putzmittel"),
        ])
        payload = encode_write_request(build(tx))

        assert "category_id" not in payload
        assert payload["subtransactions"] == [
            {"amount": -30000, "category_id": "cat-food"},
            {"amount": -20000, "category_id": "cat-household", "memo": "Putzmittel"},
        ]
