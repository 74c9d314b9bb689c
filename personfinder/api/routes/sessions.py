from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from personfinder.errors import InvalidQueryError, SessionNotFoundError, StaleAnswerError
from personfinder.models.schemas import (
    FlowArtifact,
    NextRequest,
    SessionDetailResponse,
    StartSessionRequest,
    StartSessionResponse,
)
from personfinder.services.flow import DisambiguationFlow, get_flow

router = APIRouter(prefix="/api", tags=["sessions"])


@router.post("/session", response_model=StartSessionResponse, status_code=201)
async def start_session(request: StartSessionRequest, flow: DisambiguationFlow = Depends(get_flow)):
    """Search for the query and return the first funnel question."""
    try:
        return await flow.start(request.query)
    except InvalidQueryError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/next", response_model=FlowArtifact)
async def next_question(request: NextRequest, flow: DisambiguationFlow = Depends(get_flow)):
    """Record an optional answer and return the next question or the results."""
    if not request.session_id.strip():
        raise HTTPException(status_code=400, detail="sessionId is required")
    try:
        return await flow.advance(request.session_id, request.answer)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except StaleAnswerError as e:
        raise HTTPException(
            status_code=409,
            detail=f"Answer is for {e.question_id} but the session is at {e.flow_state}",
        )


@router.get("/session/{session_id}", response_model=SessionDetailResponse)
async def get_session(session_id: str, flow: DisambiguationFlow = Depends(get_flow)):
    """Get a session with its populated candidates."""
    try:
        return await flow.get_detail(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
