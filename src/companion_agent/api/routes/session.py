"""Live session routes — start/end a call, avatar, media and quality."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from companion_agent.api.dependencies import get_session
from companion_agent.api.schemas import AnswerRequest, MediaToggleRequest, SessionStartRequest
from companion_agent.avatar.expression import render
from companion_agent.errors import NegotiationError
from companion_agent.session.controller import SessionController
from companion_agent.session.media import SessionDescription

router = APIRouter(prefix="/session", tags=["session"])


@router.post("/start")
async def start_session(
    req: SessionStartRequest | None = None,
    session: SessionController = Depends(get_session),
):
    """Start a call.  Falls back to a simulated peer when media is unavailable."""
    try:
        call = await session.start(req.avatar_config if req else None)
    except ValueError as exc:
        raise HTTPException(422, str(exc)) from exc
    return call.model_dump(mode="json")


@router.post("/end")
async def end_session(session: SessionController = Depends(get_session)):
    call = await session.end()
    return call.model_dump(mode="json")


@router.get("")
async def get_session_state(session: SessionController = Depends(get_session)):
    return session.get_call_state().model_dump(mode="json")


@router.get("/quality")
async def get_quality(session: SessionController = Depends(get_session)):
    quality = await session.get_call_quality()
    return quality.to_dict()


@router.post("/answer")
async def accept_answer(req: AnswerRequest, session: SessionController = Depends(get_session)):
    """Apply a genuine remote answer while the session is negotiating."""
    try:
        await session.accept_answer(SessionDescription(type=req.type, sdp=req.sdp))
    except NegotiationError as exc:
        raise HTTPException(409, str(exc)) from exc
    return {"accepted": True}


@router.get("/avatar")
async def get_avatar(session: SessionController = Depends(get_session)):
    state = session.avatar_snapshot()
    params = session.last_render or render(state)
    return {
        "config": session.get_call_state().avatar_config.model_dump(mode="json"),
        "state": state.model_dump(mode="json"),
        "render": params.to_dict(),
    }


@router.patch("/avatar")
async def update_avatar(
    update: dict[str, Any] = Body(...),
    session: SessionController = Depends(get_session),
):
    """Shallow-merge *update* into the avatar configuration."""
    try:
        config = await session.update_avatar_config(update)
    except ValueError as exc:
        raise HTTPException(422, str(exc)) from exc
    return config.model_dump(mode="json")


@router.post("/media")
async def toggle_media(req: MediaToggleRequest, session: SessionController = Depends(get_session)):
    if req.audio is not None:
        session.toggle_audio(req.audio)
    if req.video is not None:
        session.toggle_video(req.video)
    call = session.get_call_state()
    return {"audio_enabled": call.audio_enabled, "video_enabled": call.video_enabled}
