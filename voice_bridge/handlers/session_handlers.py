"""
REST endpoints managing bridged sessions.

The call-initiation collaborator starts a session here before placing the call,
then points the telephony provider at the returned markup URL. Monitoring code
reads session status from the same router.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from voice_bridge.bot.bridge_service import BridgeService, get_bridge
from voice_bridge.config.constants import LOGGER_NAME
from voice_bridge.errors import AlreadyActive, BridgeAtCapacity, SessionNotFound
from voice_bridge.models.api_schemas import (
    EndSessionResponse,
    EvictionResponse,
    SessionListResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from voice_bridge.models.session import SessionStatus

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(tags=["sessions"])


@router.post("/sessions", response_model=StartSessionResponse, status_code=status.HTTP_201_CREATED)
async def handle_start_session(
    request: StartSessionRequest,
    bridge: BridgeService = Depends(get_bridge),
) -> StartSessionResponse:
    """
    Start a session for a subject.

    Returns 409 when the subject already has a live session; the caller must
    not place a second call in that case. Returns 503 when the bridge is full.
    """
    try:
        session_id = await bridge.start_session(
            request.subjectId,
            request.callRef,
            custom_instructions=request.customInstructions,
            subject_name=request.subjectName,
        )
    except AlreadyActive as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except BridgeAtCapacity as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return StartSessionResponse(
        sessionId=session_id,
        streamUrl=bridge.stream_url(session_id),
        twimlUrl=f"{bridge.settings.public_base_url}/twiml/{session_id}",
    )


@router.get("/sessions", response_model=SessionListResponse)
async def handle_list_sessions(bridge: BridgeService = Depends(get_bridge)) -> SessionListResponse:
    sessions = bridge.list_active_sessions()
    return SessionListResponse(count=len(sessions), sessions=sessions)


@router.get("/sessions/{session_id}", response_model=SessionStatus)
async def handle_get_session(
    session_id: str, bridge: BridgeService = Depends(get_bridge)
) -> SessionStatus:
    try:
        return bridge.get_session_status(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/sessions/{session_id}/end", response_model=EndSessionResponse)
async def handle_end_session(
    session_id: str, bridge: BridgeService = Depends(get_bridge)
) -> EndSessionResponse:
    """End a session. Ending a session that already ended succeeds as a no-op."""
    await bridge.end_session(session_id)
    logger.info(f"Session end requested via API: {session_id}")
    return EndSessionResponse(sessionId=session_id)


@router.delete("/subjects/{subject_id}/sessions", response_model=EvictionResponse)
async def handle_force_evict(
    subject_id: str, bridge: BridgeService = Depends(get_bridge)
) -> EvictionResponse:
    """Tear down every session of a subject, live or stale."""
    evicted = await bridge.force_evict_all(subject_id)
    return EvictionResponse(subjectId=subject_id, evicted=evicted)
