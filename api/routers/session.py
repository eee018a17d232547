"""
Sync session API endpoints.

This module exposes the session lifecycle: start, bank authentication,
challenge confirmation (which fetches and checks the transactions), import,
forced re-import, and the terminal cancel/fail/clear operations. Domain
errors are mapped to HTTP responses by the handlers registered in api.main.
"""

from typing import Optional
from fastapi import APIRouter

from api.models.session import (
    ChallengeAPI, DuplicateCounts, FailRequest, ImportResultAPI, SessionActionRequest,
    SessionAPI, SessionSummaryAPI
)
from api.models.transaction import ForceReimportAPI, TransactionAPI
from api.services.sync_orchestrator import SyncOrchestrator, get_orchestrator
from core.duplicate_detector import count_duplicates


router = APIRouter(prefix="/sync", tags=["sync"])


def _session_id(request: Optional[SessionActionRequest]) -> Optional[str]:
    return request.session_id if request else None


def build_summary(orchestrator: SyncOrchestrator, session_id: Optional[str] = None) -> SessionSummaryAPI:
    """Session, its transactions and the counts derived from them."""
    sessions = orchestrator.sessions
    with sessions.lock:
        data = sessions.get_session(session_id)
        transactions = sessions.list_transactions()
        return SessionSummaryAPI(
            session=SessionAPI.from_session(data.session),
            transactions=[TransactionAPI.from_in_flight(tx) for tx in transactions],
            status_counts=sessions.status_counts(),
            duplicate_counts=DuplicateCounts(**count_duplicates(transactions))
        )


@router.post("/start", response_model=SessionAPI)
async def start_session():
    """Start a new sync session. Fails with 409 while another one is running."""
    session = get_orchestrator().start()
    return SessionAPI.from_session(session)


@router.post("/bank-auth", response_model=ChallengeAPI)
async def begin_bank_auth(request: Optional[SessionActionRequest] = None):
    challenge = await get_orchestrator().begin_bank_auth(_session_id(request))
    return ChallengeAPI(
        challenge_id=challenge.challenge_id,
        kind=challenge.kind,
        message=challenge.message
    )


@router.post("/confirm", response_model=SessionSummaryAPI)
async def confirm_challenge(request: Optional[SessionActionRequest] = None):
    """
    Confirm the bank challenge.

    Fetches the bank transactions, applies the rules and the duplicate checks,
    and returns the session ready for review.
    """
    orchestrator = get_orchestrator()
    session = await orchestrator.confirm_challenge(_session_id(request))
    return build_summary(orchestrator, session.session_id)


@router.get("/session", response_model=SessionSummaryAPI)
async def get_session(session_id: Optional[str] = None):
    return build_summary(get_orchestrator(), session_id)


@router.post("/import", response_model=ImportResultAPI)
async def import_transactions(request: Optional[SessionActionRequest] = None):
    """Send every import-ready transaction to the ledger."""
    orchestrator = get_orchestrator()
    result = await orchestrator.import_transactions(_session_id(request))
    session = orchestrator.sessions.get_session().session
    return ImportResultAPI(
        attempted=result.attempted,
        imported=result.imported,
        rejected=result.rejected,
        unmapped_rejections=result.unmapped_rejections,
        session=SessionAPI.from_session(session)
    )


@router.post("/force-reimport", response_model=ImportResultAPI)
async def force_reimport(request: ForceReimportAPI, session_id: Optional[str] = None):
    """Resend ledger-rejected transactions with new import ids."""
    orchestrator = get_orchestrator()
    result = await orchestrator.force_reimport(request.transaction_ids, session_id)
    session = orchestrator.sessions.get_session().session
    return ImportResultAPI(
        attempted=result.attempted,
        imported=result.imported,
        rejected=result.rejected,
        unmapped_rejections=result.unmapped_rejections,
        session=SessionAPI.from_session(session)
    )


@router.post("/cancel", response_model=SessionAPI)
async def cancel_session(request: Optional[SessionActionRequest] = None):
    session = get_orchestrator().cancel(_session_id(request))
    return SessionAPI.from_session(session)


@router.post("/fail", response_model=SessionAPI)
async def fail_session(request: FailRequest):
    session = get_orchestrator().fail(request.reason, request.session_id)
    return SessionAPI.from_session(session)


@router.post("/clear")
async def clear_session():
    get_orchestrator().clear()
    return {"cleared": True}
