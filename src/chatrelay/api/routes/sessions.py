"""
Session API routes.

Endpoints for listing, inspecting and deleting root sessions.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from chatrelay.api.dependencies import get_relay
from chatrelay.api.schemas import (
    ChainResponse,
    ExchangeResponse,
    RootSessionResponse,
    SessionSummaryResponse,
)
from chatrelay.exceptions import SessionNotFound, StorageError
from chatrelay.services.relay import MessageRelay, SessionSummary

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_response(summary: SessionSummary) -> SessionSummaryResponse:
    return SessionSummaryResponse(
        session_id=summary.session_id,
        working_directory=summary.working_directory,
        system_user=summary.system_user,
        message_count=summary.message_count,
        created_at=summary.root.created_at,
        updated_at=summary.root.updated_at,
    )


@router.get("", response_model=list[SessionSummaryResponse])
def list_sessions(
    limit: Optional[int] = Query(None, ge=1, le=100),
    relay: MessageRelay = Depends(get_relay),
) -> list[SessionSummaryResponse]:
    """List root sessions, most recently updated first."""
    try:
        summaries = relay.list_recent(limit)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [_to_response(s) for s in summaries]


@router.get("/contexts", response_model=list[str])
def list_contexts(
    limit: Optional[int] = Query(None, ge=1, le=100),
    relay: MessageRelay = Depends(get_relay),
) -> list[str]:
    """List working directories that have sessions, alphabetically."""
    try:
        return relay.list_distinct_contexts(limit)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/by-context", response_model=list[SessionSummaryResponse])
def list_sessions_by_context(
    working_directory: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    relay: MessageRelay = Depends(get_relay),
) -> list[SessionSummaryResponse]:
    """List root sessions of one working directory."""
    try:
        summaries = relay.list_by_context(working_directory, limit)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [_to_response(s) for s in summaries]


@router.get("/{session_id}/chain", response_model=ChainResponse)
def get_chain(
    session_id: str,
    relay: MessageRelay = Depends(get_relay),
) -> ChainResponse:
    """
    Get a root session with every exchange under it.

    Raises:
        HTTPException: 404 if the root session does not exist
    """
    try:
        root, chain = relay.get_chain(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ChainResponse(
        root=RootSessionResponse.model_validate(root),
        exchanges=[ExchangeResponse.model_validate(e) for e in chain.ordered()],
        transcript=chain.transcript(root.user_prompt),
    )


@router.delete("/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    relay: MessageRelay = Depends(get_relay),
) -> None:
    """
    Delete a root session and its exchanges.

    Raises:
        HTTPException: 404 if the root session does not exist
    """
    try:
        relay.delete_session(session_id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
