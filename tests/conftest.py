"""
Shared test fixtures: in-memory bank and ledger collaborators and builders
for transactions and rules.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from api.models.rule import PatternKind, Rule, TargetField, create_rule_id
from api.models.transaction import BankTransaction, LedgerTransaction
from api.services.session_manager import SessionManager
from api.services.sync_orchestrator import SyncOrchestrator
from core.bank import BankClient, ChallengeHandle
from core.ledger_client import LedgerClient, LedgerCreateResult
from core.store import RuleStore, SettingsStore


def make_bank_tx(reference: str = "REF001", amount="-50.00", payee: Optional[str] = "REWE Markt GmbH",
                 memo: str = "", booking_date: date = date(2025, 1, 10), currency: str = "EUR") -> BankTransaction:
    return BankTransaction(
        reference=reference,
        booking_date=booking_date,
        amount=Decimal(amount),
        currency=currency,
        payee=payee,
        memo=memo
    )


def make_ledger_tx(id: str = "L1", amount="-50.00", payee: Optional[str] = None, memo: Optional[str] = None,
                   import_id: Optional[str] = None, tx_date: date = date(2025, 1, 10)) -> LedgerTransaction:
    return LedgerTransaction(
        id=id,
        date=tx_date,
        amount=Decimal(amount),
        payee=payee,
        memo=memo,
        import_id=import_id
    )


def make_rule(pattern: str = "REWE", category_id: str = "cat-groceries", category_name: str = "Groceries",
              priority: int = 1, kind: PatternKind = PatternKind.CONTAINS,
              target: TargetField = TargetField.PAYEE, enabled: bool = True,
              payee_override: Optional[str] = None, name: Optional[str] = None) -> Rule:
    return Rule(
        id=create_rule_id(),
        name=name or f"{pattern} rule",
        pattern=pattern,
        pattern_kind=kind,
        target_field=target,
        category_id=category_id,
        category_name=category_name,
        payee_override=payee_override,
        priority=priority,
        enabled=enabled
    )


class FakeBank(BankClient):
    """Bank double: returns fixed transactions, optionally failing a step."""

    def __init__(self, transactions: Optional[List[BankTransaction]] = None,
                 challenge_kind: str = "push_tan"):
        self.transactions = list(transactions or [])
        self.challenge_kind = challenge_kind
        self.fail_auth = None
        self.fail_confirm = None
        self.fail_fetch = None
        self.fetch_calls = []

    async def begin_auth(self) -> ChallengeHandle:
        if self.fail_auth:
            raise self.fail_auth
        return ChallengeHandle(challenge_id="challenge-1", kind=self.challenge_kind,
                               message="Confirm in your banking app")

    async def confirm_challenge(self) -> None:
        if self.fail_confirm:
            raise self.fail_confirm

    async def fetch_transactions(self, account_ref: str, days: int) -> List[BankTransaction]:
        self.fetch_calls.append((account_ref, days))
        if self.fail_fetch:
            raise self.fail_fetch
        return list(self.transactions)


class FakeLedger(LedgerClient):
    """
    Ledger double: rejects any import id it has already stored, like the real
    ledger does, unless ``rejected_override`` dictates the rejected ids.
    """

    def __init__(self, transactions: Optional[List[LedgerTransaction]] = None):
        self.transactions = list(transactions or [])
        self.known_import_ids = {tx.import_id for tx in self.transactions if tx.import_id}
        self.list_calls = []
        self.create_calls = []
        self.fail_list = None
        self.fail_create = None
        self.rejected_override = None

    async def list_transactions(self, account_ref: str, days: int) -> List[LedgerTransaction]:
        self.list_calls.append((account_ref, days))
        if self.fail_list:
            raise self.fail_list
        return list(self.transactions)

    async def create_transactions(self, write_requests) -> LedgerCreateResult:
        self.create_calls.append(list(write_requests))
        if self.fail_create:
            raise self.fail_create

        if self.rejected_override is not None:
            rejected = list(self.rejected_override)
            created = [f"created-{r.transaction_id}" for r in write_requests if r.import_id not in rejected]
            return LedgerCreateResult(created_ids=created, rejected_import_ids=rejected)

        created, rejected = [], []
        for request in write_requests:
            if request.import_id in self.known_import_ids:
                rejected.append(request.import_id)
            else:
                self.known_import_ids.add(request.import_id)
                created.append(f"created-{request.transaction_id}")
        return LedgerCreateResult(created_ids=created, rejected_import_ids=rejected)


def build_orchestrator(bank: Optional[FakeBank] = None, ledger: Optional[FakeLedger] = None,
                       rules: Optional[List[Rule]] = None) -> SyncOrchestrator:
    """Orchestrator over fakes with its own session manager, for setup_method use."""
    rule_store = RuleStore()
    for rule in rules or []:
        rule_store.create(rule)
    return SyncOrchestrator(
        bank=bank or FakeBank(),
        ledger=ledger or FakeLedger(),
        rule_store=rule_store,
        settings_store=SettingsStore(),
        session_manager=SessionManager()
    )
