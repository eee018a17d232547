"""
Transaction review API endpoints.

This module handles the user edits made while a session is reviewing its
transactions: category, payee override, note, splits and skip/unskip. Each
edit touches one transaction and can be repeated without further effect.

Transaction ids are bank references, which may contain "/", so every route
takes the id through the path converter. Clients should percent-encode it.
"""

from typing import List, Optional
from fastapi import APIRouter

from api.models.transaction import (
    CategoryUpdateAPI, NoteUpdateAPI, PayeeUpdateAPI, SplitUpdateAPI, TransactionAPI,
    TransactionStatus
)
from api.services.sync_orchestrator import get_orchestrator


router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=List[TransactionAPI])
async def list_transactions(status: Optional[TransactionStatus] = None):
    """List the session's transactions, optionally filtered by review status."""
    sessions = get_orchestrator().sessions
    with sessions.lock:
        sessions.get_session()
        transactions = sessions.list_transactions()
        if status is not None:
            transactions = [tx for tx in transactions if tx.status == status]
        return [TransactionAPI.from_in_flight(tx) for tx in transactions]


@router.put("/{transaction_id:path}/category", response_model=TransactionAPI)
async def update_category(transaction_id: str, request: CategoryUpdateAPI, session_id: Optional[str] = None):
    """Assign a single category; any split set is discarded."""
    tx = get_orchestrator().assign_category(
        transaction_id, request.category_id, request.category_name, session_id=session_id
    )
    return TransactionAPI.from_in_flight(tx)


@router.put("/{transaction_id:path}/payee", response_model=TransactionAPI)
async def update_payee(transaction_id: str, request: PayeeUpdateAPI, session_id: Optional[str] = None):
    tx = get_orchestrator().set_payee_override(transaction_id, request.payee_override, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


@router.put("/{transaction_id:path}/note", response_model=TransactionAPI)
async def update_note(transaction_id: str, request: NoteUpdateAPI, session_id: Optional[str] = None):
    tx = get_orchestrator().set_note(transaction_id, request.note, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


@router.put("/{transaction_id:path}/splits", response_model=TransactionAPI)
async def update_splits(transaction_id: str, request: SplitUpdateAPI, session_id: Optional[str] = None):
    """
    Split a transaction across categories.

    Responds 422 with every validation issue when there are fewer than two
    splits, a split has no category, or the total does not match.
    """
    splits = [split.to_split() for split in request.splits]
    tx = get_orchestrator().split_transaction(transaction_id, splits, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


@router.delete("/{transaction_id:path}/splits", response_model=TransactionAPI)
async def clear_splits(transaction_id: str, session_id: Optional[str] = None):
    tx = get_orchestrator().clear_splits(transaction_id, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


@router.post("/{transaction_id:path}/skip", response_model=TransactionAPI)
async def skip_transaction(transaction_id: str, session_id: Optional[str] = None):
    tx = get_orchestrator().skip(transaction_id, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


@router.post("/{transaction_id:path}/unskip", response_model=TransactionAPI)
async def unskip_transaction(transaction_id: str, session_id: Optional[str] = None):
    tx = get_orchestrator().unskip(transaction_id, session_id=session_id)
    return TransactionAPI.from_in_flight(tx)


# Matches any id, so it must stay after the suffixed routes.
@router.get("/{transaction_id:path}", response_model=TransactionAPI)
async def get_transaction(transaction_id: str):
    sessions = get_orchestrator().sessions
    with sessions.lock:
        return TransactionAPI.from_in_flight(sessions.get_transaction(transaction_id))
