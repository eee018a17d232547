"""
Sync orchestration service.

This module sequences one reconciliation run through its states:

    Idle -> AwaitingBankAuth -> AwaitingChallengeResponse -> FetchingTransactions
         -> ReviewingTransactions -> Importing -> Completed

with Failed reachable from any non-terminal state and Cancelled from any
state before Importing. State checks and transitions happen under the
session manager's lock; calls to the bank and the ledger are awaited with
the lock released, and the state is checked again before their results are
applied.

Collaborator failures are the only errors that change the session state
here: the session is marked Failed with a reason naming the step, and the
error is re-raised as SyncStepError.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from api.models.config import Config
from api.models.reference import matches_import_id
from api.models.session import (
    CANCELLABLE_STATES, ImportResult, SessionState, SyncSession
)
from api.models.transaction import (
    InFlightTransaction, LedgerImportStatus, TransactionSplit, TransactionStatus
)
from api.services.session_manager import (
    InvalidSessionStateError, SessionManager, get_session_manager
)
from api.services.validator import (
    ValidationFailed, ValidationIssue, raise_if_invalid, validate_days_to_fetch,
    validate_payee_override, validate_splits
)
from core import duplicate_detector, ledger_writer, rules_engine
from core.bank import BankClient, ChallengeHandle, OfxStatementBank
from core.ledger_client import LedgerClient, LedgerCreateResult, YnabLedgerClient
from core.ledger_writer import LedgerWriteRequest
from core.store import RuleStore, SettingsStore


logger = logging.getLogger(__name__)

DAYS_TO_FETCH_SETTING = 'sync.days_to_fetch'


class SyncStepError(Exception):
    """A collaborator call failed; the session has been marked Failed."""

    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"{step} failed: {reason}")


def review_status(tx: InFlightTransaction) -> TransactionStatus:
    """Status implied by a transaction's categorization, used when it leaves Skipped."""
    if tx.is_split:
        return TransactionStatus.MANUAL_CATEGORIZED
    if tx.category_id is not None:
        if tx.matched_rule_id is not None:
            return TransactionStatus.AUTO_CATEGORIZED
        return TransactionStatus.MANUAL_CATEGORIZED
    if tx.external_links:
        return TransactionStatus.NEEDS_ATTENTION
    return TransactionStatus.PENDING


class SyncOrchestrator:
    """Drives the single sync session against the bank and ledger collaborators."""

    def __init__(self, bank: BankClient, ledger: LedgerClient, rule_store: RuleStore,
                 config: Optional[Config] = None,
                 settings_store: Optional[SettingsStore] = None,
                 session_manager: Optional[SessionManager] = None):
        self.bank = bank
        self.ledger = ledger
        self.rule_store = rule_store
        self.config = config or Config()
        self.settings_store = settings_store
        self.sessions = session_manager or get_session_manager()
        self.match_config = duplicate_detector.DuplicateMatchConfig(
            date_tolerance_days=self.config.sync.date_tolerance_days
        )

    # Step failure handling

    def _fail_step(self, step: str, error: Exception, session_id: str) -> SyncStepError:
        """Record a collaborator failure on the session it happened in."""
        reason = f"{step} failed: {error}"
        with self.sessions.lock:
            if self.sessions.has_session():
                session = self.sessions.get_session().session
                if session.session_id == session_id and not session.is_terminal:
                    self.sessions.fail(reason)
                else:
                    logger.warning("Ignoring %s failure for session %s, no longer active: %s",
                                   step, session_id, error)
        return SyncStepError(step, str(error))

    def _ensure_still(self, session_id: str, state: SessionState) -> None:
        """After an await: the same session must still be in ``state``."""
        data = self.sessions.get_session()
        if data.session.session_id != session_id or data.session.state != state:
            logger.info("Discarding result for session %s, now %s",
                        session_id, data.session.state.value)
            raise InvalidSessionStateError([state], data.session.state)

    def days_to_fetch(self) -> int:
        """Fetch window: the stored setting when valid, else the configured value."""
        default = self.config.sync.days_to_fetch
        if self.settings_store is None:
            return default

        value = self.settings_store.get(DAYS_TO_FETCH_SETTING)
        if value is None:
            return default
        try:
            days = int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer %s setting: %r", DAYS_TO_FETCH_SETTING, value)
            return default
        if validate_days_to_fetch(days):
            logger.warning("Ignoring out-of-range %s setting: %d", DAYS_TO_FETCH_SETTING, days)
            return default
        return days

    # Session lifecycle

    def start(self) -> SyncSession:
        return self.sessions.start_session()

    async def begin_bank_auth(self, session_id: Optional[str] = None) -> ChallengeHandle:
        """AwaitingBankAuth -> AwaitingChallengeResponse once the bank has issued a challenge."""
        with self.sessions.lock:
            data = self.sessions.validate_state(SessionState.AWAITING_BANK_AUTH, session_id=session_id)
            active_id = data.session.session_id

        try:
            challenge = await self.bank.begin_auth()
        except Exception as e:
            raise self._fail_step("bank authentication", e, active_id) from e

        with self.sessions.lock:
            self._ensure_still(active_id, SessionState.AWAITING_BANK_AUTH)
            self.sessions.transition([SessionState.AWAITING_BANK_AUTH],
                                     SessionState.AWAITING_CHALLENGE_RESPONSE)
        return challenge

    async def confirm_challenge(self, session_id: Optional[str] = None) -> SyncSession:
        """
        Confirm the bank challenge, then fetch, classify and check for duplicates.

        Ends in ReviewingTransactions, or in Failed if any step fails; there is
        no partial result.
        """
        with self.sessions.lock:
            data = self.sessions.validate_state(SessionState.AWAITING_CHALLENGE_RESPONSE,
                                                session_id=session_id)
            active_id = data.session.session_id

        try:
            await self.bank.confirm_challenge()
        except Exception as e:
            raise self._fail_step("challenge confirmation", e, active_id) from e

        with self.sessions.lock:
            self._ensure_still(active_id, SessionState.AWAITING_CHALLENGE_RESPONSE)
            self.sessions.transition([SessionState.AWAITING_CHALLENGE_RESPONSE],
                                     SessionState.FETCHING_TRANSACTIONS)

        days = self.days_to_fetch()
        lookup_days = days + self.config.sync.date_tolerance_days

        try:
            bank_transactions = await self.bank.fetch_transactions(self.config.bank.account_ref, days)
        except Exception as e:
            raise self._fail_step("fetch", e, active_id) from e

        # One ledger snapshot for the whole batch
        try:
            ledger_transactions = await self.ledger.list_transactions(
                self.config.ledger.account_id, lookup_days
            )
        except Exception as e:
            raise self._fail_step("ledger lookup", e, active_id) from e

        try:
            transactions = rules_engine.classify_transactions(self.rule_store.list(), bank_transactions)
        except Exception as e:
            raise self._fail_step("classification", e, active_id) from e

        try:
            duplicate_detector.mark_duplicates(self.match_config, ledger_transactions, transactions)
        except Exception as e:
            raise self._fail_step("duplicate detection", e, active_id) from e

        with self.sessions.lock:
            self._ensure_still(active_id, SessionState.FETCHING_TRANSACTIONS)
            self.sessions.set_transactions(transactions)
            session = self.sessions.transition([SessionState.FETCHING_TRANSACTIONS],
                                               SessionState.REVIEWING_TRANSACTIONS)

        logger.info("Fetched %d transactions (%d days), checked against %d ledger transactions (%d days)",
                    len(transactions), days, len(ledger_transactions), lookup_days)
        return session

    def fail(self, reason: str, session_id: Optional[str] = None) -> SyncSession:
        """
        Mark the session failed on the caller's request.

        Not accepted while Importing: a batch sent to the ledger runs to completion.
        """
        with self.sessions.lock:
            data = self.sessions.get_session(session_id)
            if data.session.state == SessionState.IMPORTING:
                raise InvalidSessionStateError(CANCELLABLE_STATES, data.session.state)
            return self.sessions.fail(reason, session_id=session_id)

    def cancel(self, session_id: Optional[str] = None) -> SyncSession:
        return self.sessions.cancel(CANCELLABLE_STATES, session_id=session_id)

    def clear(self) -> None:
        with self.sessions.lock:
            if self.sessions.has_session():
                state = self.sessions.get_session().session.state
                if state == SessionState.IMPORTING:
                    raise InvalidSessionStateError(set(SessionState) - {state}, state)
            self.sessions.clear()

    # User edits during review

    def _reviewable(self, transaction_id: str, session_id: Optional[str]) -> InFlightTransaction:
        self.sessions.validate_state(SessionState.REVIEWING_TRANSACTIONS, session_id=session_id)
        return self.sessions.get_transaction(transaction_id)

    def assign_category(self, transaction_id: str, category_id: str, category_name: str,
                        session_id: Optional[str] = None) -> InFlightTransaction:
        """Set a single category. Drops any split set and the rule attribution."""
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            tx.assign_category(category_id, category_name)
            tx.matched_rule_id = None
            if tx.status != TransactionStatus.SKIPPED:
                tx.status = TransactionStatus.MANUAL_CATEGORIZED
            return tx

    def set_payee_override(self, transaction_id: str, payee: Optional[str],
                           session_id: Optional[str] = None) -> InFlightTransaction:
        raise_if_invalid(validate_payee_override(payee))
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            tx.payee_override = payee.strip() if payee is not None else None
            return tx

    def set_note(self, transaction_id: str, note: Optional[str],
                 session_id: Optional[str] = None) -> InFlightTransaction:
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            tx.user_notes = note or None
            return tx

    def split_transaction(self, transaction_id: str, splits: List[TransactionSplit],
                          session_id: Optional[str] = None) -> InFlightTransaction:
        """
        Replace the categorization with a split set.

        Raises:
            ValidationFailed: Too few splits, a split without category, or a
                total more than 0.01 away from the transaction amount
        """
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            raise_if_invalid(validate_splits(tx.transaction.amount, splits))
            tx.assign_splits(splits)
            tx.matched_rule_id = None
            if tx.status != TransactionStatus.SKIPPED:
                tx.status = TransactionStatus.MANUAL_CATEGORIZED
            return tx

    def clear_splits(self, transaction_id: str, session_id: Optional[str] = None) -> InFlightTransaction:
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            if tx.is_split:
                tx.clear_categorization()
                if tx.status != TransactionStatus.SKIPPED:
                    tx.status = review_status(tx)
            return tx

    def skip(self, transaction_id: str, session_id: Optional[str] = None) -> InFlightTransaction:
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            tx.status = TransactionStatus.SKIPPED
            self.sessions.update_counts()
            return tx

    def unskip(self, transaction_id: str, session_id: Optional[str] = None) -> InFlightTransaction:
        with self.sessions.lock:
            tx = self._reviewable(transaction_id, session_id)
            if tx.status == TransactionStatus.SKIPPED:
                tx.status = review_status(tx)
                self.sessions.update_counts()
            return tx

    # Import

    def _build_requests(self, transactions: List[InFlightTransaction],
                        force_new_token: bool) -> List[LedgerWriteRequest]:
        return [
            ledger_writer.build(
                tx,
                force_new_token=force_new_token,
                account_id=self.config.ledger.account_id,
                memo_limit=self.config.sync.memo_limit
            )
            for tx in transactions
        ]

    def map_rejections(self, write_requests: List[LedgerWriteRequest],
                       rejected_tokens: List[str]) -> Tuple[Dict[str, str], List[str]]:
        """
        Map the ledger's rejected import ids back to in-flight transaction ids.

        A token is matched against the import ids that were sent, then against
        the batch's bank references through the import-id comparison. References
        differing only by "-" or past the length cap share one import id, so a
        token can match several requests. A token matching no request, or
        several, is returned as unmapped and marks nothing.

        Returns:
            (transaction id -> rejected token, unmapped tokens)
        """
        by_token: Dict[str, List[str]] = {}
        for request in write_requests:
            by_token.setdefault(request.import_id, []).append(request.transaction_id)
        rejected: Dict[str, str] = {}
        unmapped: List[str] = []

        for token in rejected_tokens:
            candidates = by_token.get(token) or [
                r.transaction_id for r in write_requests
                if matches_import_id(self.sessions.get_transaction(r.transaction_id).transaction.reference, token)
            ]
            if len(candidates) == 1:
                rejected[candidates[0]] = token
            elif candidates:
                logger.warning("Rejected import id %s matches %d transactions (%s); none marked",
                               token, len(candidates), ", ".join(candidates))
                unmapped.append(token)
            else:
                logger.warning("Rejected import id %s does not belong to any transaction in the batch",
                               token)
                unmapped.append(token)

        return rejected, unmapped

    def _apply_results(self, write_requests: List[LedgerWriteRequest],
                       result: LedgerCreateResult) -> ImportResult:
        rejected, unmapped = self.map_rejections(write_requests, result.rejected_import_ids)

        import_result = ImportResult(attempted=len(write_requests), unmapped_rejections=unmapped)
        for request in write_requests:
            tx = self.sessions.get_transaction(request.transaction_id)
            tx.import_id = request.import_id
            token = rejected.get(request.transaction_id)
            if token is not None:
                tx.import_status = LedgerImportStatus.REJECTED
                tx.import_error = f"Ledger rejected import id {token} as a duplicate"
                import_result.rejected += 1
            else:
                tx.import_status = LedgerImportStatus.IMPORTED
                tx.import_error = None
                tx.status = TransactionStatus.IMPORTED
                import_result.imported += 1
        return import_result

    async def _send(self, active_id: str, write_requests: List[LedgerWriteRequest],
                    step: str) -> ImportResult:
        try:
            result = await self.ledger.create_transactions(write_requests)
        except Exception as e:
            raise self._fail_step(step, e, active_id) from e

        with self.sessions.lock:
            self._ensure_still(active_id, SessionState.IMPORTING)
            import_result = self._apply_results(write_requests, result)
            self.sessions.complete()

        logger.info("Import finished: %d attempted, %d imported, %d rejected, %d unmapped rejections",
                    import_result.attempted, import_result.imported,
                    import_result.rejected, len(import_result.unmapped_rejections))
        return import_result

    async def import_transactions(self, session_id: Optional[str] = None) -> ImportResult:
        """
        ReviewingTransactions -> Importing -> Completed.

        Sends every import-ready transaction in one batch. Ledger rejections
        are a per-transaction outcome; the session still completes.
        """
        with self.sessions.lock:
            data = self.sessions.validate_state(SessionState.REVIEWING_TRANSACTIONS,
                                                session_id=session_id)
            active_id = data.session.session_id
            ready = [tx for tx in self.sessions.list_transactions() if tx.is_import_ready()]
            write_requests = self._build_requests(ready, force_new_token=False)
            self.sessions.transition([SessionState.REVIEWING_TRANSACTIONS], SessionState.IMPORTING)

        return await self._send(active_id, write_requests, "import")

    async def force_reimport(self, transaction_ids: List[str],
                             session_id: Optional[str] = None) -> ImportResult:
        """
        Resend ledger-rejected transactions with fresh import ids.

        Only transactions whose import was rejected are accepted.
        """
        with self.sessions.lock:
            data = self.sessions.validate_state(SessionState.COMPLETED, session_id=session_id)
            active_id = data.session.session_id

            issues = []
            transactions = []
            for transaction_id in dict.fromkeys(transaction_ids):
                tx = self.sessions.get_transaction(transaction_id)
                if tx.import_status != LedgerImportStatus.REJECTED:
                    issues.append(ValidationIssue(
                        'transaction_ids', 'not_rejected',
                        f"Transaction {transaction_id} was not rejected by the ledger"
                    ))
                else:
                    transactions.append(tx)
            if not transactions and not issues:
                issues.append(ValidationIssue('transaction_ids', 'required',
                                              "At least one transaction id is required"))
            if issues:
                raise ValidationFailed(issues)

            write_requests = self._build_requests(transactions, force_new_token=True)
            self.sessions.transition([SessionState.COMPLETED], SessionState.IMPORTING)

        return await self._send(active_id, write_requests, "force re-import")


# Global orchestrator instance, set up by the server entry point
_orchestrator = None
_orchestrator_lock = threading.Lock()


def configure_orchestrator(orchestrator: Optional[SyncOrchestrator]) -> None:
    global _orchestrator

    with _orchestrator_lock:
        _orchestrator = orchestrator


def get_orchestrator() -> SyncOrchestrator:
    """Get the configured orchestrator."""
    with _orchestrator_lock:
        if _orchestrator is None:
            raise RuntimeError("Sync orchestrator is not configured")
        return _orchestrator


def create_orchestrator(config: Config) -> SyncOrchestrator:
    """Build an orchestrator with the adapters and stores named in the configuration."""
    bank = OfxStatementBank(config.bank.statement_file, currency=config.bank.currency)
    ledger = YnabLedgerClient(
        token=config.ledger.token,
        budget_id=config.ledger.budget_id,
        base_url=config.ledger.base_url,
        timeout=config.ledger.timeout_seconds
    )
    return SyncOrchestrator(
        bank=bank,
        ledger=ledger,
        rule_store=RuleStore(config.storage.rules_file),
        config=config,
        settings_store=SettingsStore(config.storage.settings_file)
    )
