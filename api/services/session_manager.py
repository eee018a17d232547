"""
Session management service for the single active sync session.

This module owns the one reconciliation run a process handles at a time:
its state, its in-flight transactions and the counts derived from them.
All mutation happens under one lock; nothing here performs I/O, so the lock
is never held across a call to the bank or the ledger.
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from api.models.session import (
    SessionData, SessionState, SyncSession, TERMINAL_STATES, create_session_id
)
from api.models.transaction import InFlightTransaction, TransactionStatus


logger = logging.getLogger(__name__)


class SessionManagerError(Exception):
    """Exception raised when there is no session or a stale session id is used."""
    pass


class InvalidSessionStateError(SessionManagerError):
    """Exception raised when an operation is not allowed in the current state."""

    def __init__(self, expected: Iterable[SessionState], actual: SessionState):
        self.expected = sorted(state.value for state in expected)
        self.actual = actual
        super().__init__(
            f"Session is {actual.value}, expected one of: {', '.join(self.expected)}"
        )


class TransactionNotFoundError(SessionManagerError):
    pass


class SessionManager:
    """
    In-memory container for the single active sync session.

    A terminal session is retained until clear() or the next start(), so its
    final state and failure reason stay inspectable.
    """

    def __init__(self):
        self._data: Optional[SessionData] = None
        self._lock = threading.RLock()  # Thread-safe access

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def start_session(self) -> SyncSession:
        """
        Create a new session in AwaitingBankAuth.

        Raises:
            InvalidSessionStateError: If a non-terminal session is active
        """
        with self._lock:
            if self._data is not None and not self._data.session.is_terminal:
                raise InvalidSessionStateError(TERMINAL_STATES, self._data.session.state)

            session = SyncSession(
                session_id=create_session_id(),
                started_at=datetime.now(),
                state=SessionState.AWAITING_BANK_AUTH
            )
            self._data = SessionData(session=session)
            logger.info("Session %s started", session.session_id)
            return session

    def has_session(self) -> bool:
        with self._lock:
            return self._data is not None

    def get_session(self, session_id: Optional[str] = None) -> SessionData:
        """
        Retrieve the active session.

        Args:
            session_id: When given, must match the active session's id

        Raises:
            SessionManagerError: If there is no session or the id is stale
        """
        with self._lock:
            if self._data is None:
                raise SessionManagerError("No active session")
            if session_id is not None and session_id != self._data.session.session_id:
                raise SessionManagerError(f"Session not found: {session_id}")
            return self._data

    def validate_state(self, *allowed: SessionState, session_id: Optional[str] = None) -> SessionData:
        """
        Validate that the session is in one of the allowed states.

        Raises:
            InvalidSessionStateError: If the session is in another state
        """
        with self._lock:
            data = self.get_session(session_id)
            if data.session.state not in allowed:
                raise InvalidSessionStateError(allowed, data.session.state)
            return data

    def transition(self, from_states: Iterable[SessionState], to_state: SessionState,
                   session_id: Optional[str] = None) -> SyncSession:
        """Move the session to ``to_state`` if it is currently in one of ``from_states``."""
        with self._lock:
            data = self.validate_state(*from_states, session_id=session_id)
            previous = data.session.state
            data.session.state = to_state
            logger.info("Session %s: %s -> %s", data.session.session_id, previous.value, to_state.value)
            return data.session

    def set_transactions(self, transactions: List[InFlightTransaction]) -> None:
        """Replace the session's working set and recompute its counts."""
        with self._lock:
            data = self.get_session()
            data.transactions = {tx.id: tx for tx in transactions}
            self.update_counts()

    def get_transaction(self, transaction_id: str) -> InFlightTransaction:
        with self._lock:
            data = self.get_session()
            try:
                return data.transactions[transaction_id]
            except KeyError:
                raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

    def list_transactions(self) -> List[InFlightTransaction]:
        with self._lock:
            if self._data is None:
                return []
            return list(self._data.transactions.values())

    def status_counts(self) -> Dict[str, int]:
        """Number of transactions per review status, every status present."""
        with self._lock:
            counts = {status.value: 0 for status in TransactionStatus}
            for tx in self.list_transactions():
                counts[tx.status.value] += 1
            return counts

    def update_counts(self) -> SyncSession:
        """Recompute the session counts from the current transaction statuses."""
        with self._lock:
            data = self.get_session()
            transactions = list(data.transactions.values())
            data.session.transaction_count = len(transactions)
            data.session.imported_count = sum(
                1 for tx in transactions if tx.status == TransactionStatus.IMPORTED
            )
            data.session.skipped_count = sum(
                1 for tx in transactions if tx.status == TransactionStatus.SKIPPED
            )
            return data.session

    def _finish(self, state: SessionState, reason: Optional[str] = None) -> SyncSession:
        data = self.get_session()
        previous = data.session.state
        data.session.state = state
        data.session.completed_at = datetime.now()
        if reason is not None:
            data.session.failure_reason = reason
        self.update_counts()
        logger.info("Session %s: %s -> %s", data.session.session_id, previous.value, state.value)
        return data.session

    def complete(self) -> SyncSession:
        with self._lock:
            self.validate_state(SessionState.IMPORTING)
            return self._finish(SessionState.COMPLETED)

    def fail(self, reason: str, session_id: Optional[str] = None) -> SyncSession:
        """
        Mark the session failed.

        Raises:
            InvalidSessionStateError: If the session already ended
        """
        with self._lock:
            data = self.get_session(session_id)
            if data.session.is_terminal:
                raise InvalidSessionStateError(
                    set(SessionState) - TERMINAL_STATES, data.session.state
                )
            session = self._finish(SessionState.FAILED, reason)
            logger.error("Session %s failed: %s", session.session_id, reason)
            return session

    def cancel(self, allowed: Iterable[SessionState], session_id: Optional[str] = None) -> SyncSession:
        with self._lock:
            self.validate_state(*allowed, session_id=session_id)
            return self._finish(SessionState.CANCELLED)

    def clear(self) -> None:
        """Drop the session, whatever its state."""
        with self._lock:
            if self._data is not None:
                logger.info("Session %s cleared", self._data.session.session_id)
            self._data = None


# Global session manager instance
_session_manager = None
_manager_lock = threading.Lock()


def get_session_manager() -> SessionManager:
    """Get the global session manager instance (singleton)."""
    global _session_manager

    with _manager_lock:
        if _session_manager is None:
            _session_manager = SessionManager()
        return _session_manager


def reset_session_manager() -> None:
    """Discard the global instance; used by tests."""
    global _session_manager

    with _manager_lock:
        _session_manager = None
