"""
Session data models for managing a reconciliation run.

This module defines the sync session record held by the session manager and
the request/response models exposed by the session endpoints.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
import uuid

from .transaction import InFlightTransaction, TransactionAPI


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_BANK_AUTH = "awaiting_bank_auth"
    AWAITING_CHALLENGE_RESPONSE = "awaiting_challenge_response"
    FETCHING_TRANSACTIONS = "fetching_transactions"
    REVIEWING_TRANSACTIONS = "reviewing_transactions"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})

# States from which cancel() is accepted
CANCELLABLE_STATES = frozenset({
    SessionState.IDLE,
    SessionState.AWAITING_BANK_AUTH,
    SessionState.AWAITING_CHALLENGE_RESPONSE,
    SessionState.FETCHING_TRANSACTIONS,
    SessionState.REVIEWING_TRANSACTIONS,
})


@dataclass
class SyncSession:
    """One reconciliation run."""
    session_id: str
    started_at: datetime
    state: SessionState = SessionState.IDLE
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    transaction_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class SessionData:
    """Session record plus the in-flight transactions it owns, keyed by id."""
    session: SyncSession
    transactions: Dict[str, InFlightTransaction] = field(default_factory=dict)


@dataclass
class ImportResult:
    """Outcome of one import batch."""
    attempted: int = 0
    imported: int = 0
    rejected: int = 0
    unmapped_rejections: List[str] = field(default_factory=list)


def create_session_id() -> str:
    """Generate a unique session ID."""
    return str(uuid.uuid4())


# API Models for request/response

class SessionAPI(BaseModel):
    session_id: str = Field(..., description="Unique session identifier")
    state: SessionState = Field(..., description="Current state of the run")
    started_at: datetime
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = Field(None, description="Why the session failed, if it did")
    transaction_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0

    @classmethod
    def from_session(cls, session: SyncSession) -> 'SessionAPI':
        return cls(
            session_id=session.session_id,
            state=session.state,
            started_at=session.started_at,
            completed_at=session.completed_at,
            failure_reason=session.failure_reason,
            transaction_count=session.transaction_count,
            imported_count=session.imported_count,
            skipped_count=session.skipped_count
        )


class DuplicateCounts(BaseModel):
    confirmed: int = 0
    possible: int = 0
    none: int = 0


class SessionSummaryAPI(BaseModel):
    """Session together with its transactions and derived counts."""
    session: SessionAPI
    transactions: List[TransactionAPI] = Field(default_factory=list)
    status_counts: Dict[str, int] = Field(default_factory=dict)
    duplicate_counts: DuplicateCounts = Field(default_factory=DuplicateCounts)


class ChallengeAPI(BaseModel):
    challenge_id: str = Field(..., description="Identifier of the bank challenge")
    kind: str = Field(..., description="Challenge kind reported by the bank, e.g. push_tan or none")
    message: Optional[str] = None


class ImportResultAPI(BaseModel):
    attempted: int
    imported: int
    rejected: int
    unmapped_rejections: List[str] = Field(default_factory=list)
    session: SessionAPI


class SessionActionRequest(BaseModel):
    """Optional session id guard for state-changing calls."""
    session_id: Optional[str] = Field(None, description="Reject the call if it does not match the active session")


class FailRequest(SessionActionRequest):
    reason: str = Field(..., description="Failure reason recorded on the session")
