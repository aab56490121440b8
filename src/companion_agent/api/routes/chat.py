"""Conversation routes — user input in, agent responses out."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from companion_agent.api.dependencies import get_conductor, get_session
from companion_agent.api.schemas import ChatRequest, ChatResponse
from companion_agent.orchestration.conductor import CONDUCTOR_ID, Conductor, apology_response
from companion_agent.session.controller import SessionController, SessionState

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["chat"])

_LIVE = (SessionState.ACTIVE, SessionState.DEGRADED)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    req: ChatRequest,
    conductor: Conductor = Depends(get_conductor),
    session: SessionController = Depends(get_session),
):
    """Route *text* to the matching agents and return their responses.

    Always answers 200: on an unexpected failure the body carries
    ``success: false`` and a generic apology.
    """
    try:
        result = await conductor.process_user_input(req.text, req.modality, req.context)
    except Exception:
        logger.exception("chat.failed")
        return ChatResponse(success=False, responses=[apology_response()], degraded=True)

    if req.speak and session.state in _LIVE and result.responses:
        await session.speak(result.responses[0].content)

    return ChatResponse(
        success=any(r.agent_id != CONDUCTOR_ID for r in result.responses),
        responses=result.responses,
        selected_agents=result.selected_agents,
        emotional_state=result.emotional_state,
        errors=result.errors,
        degraded=result.degraded,
    )


@router.get("/context")
async def get_context(conductor: Conductor = Depends(get_conductor)):
    """Current user context snapshot."""
    return conductor.get_context().model_dump(mode="json")
