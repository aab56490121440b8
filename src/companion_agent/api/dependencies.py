"""FastAPI dependencies — hand route handlers the components on ``app.state``."""

from __future__ import annotations

from fastapi import HTTPException, Request

from companion_agent.api.websocket import ConnectionManager
from companion_agent.orchestration.conductor import Conductor
from companion_agent.session.controller import SessionController


def get_conductor(request: Request) -> Conductor:
    conductor = getattr(request.app.state, "conductor", None)
    if conductor is None:
        raise HTTPException(503, "Conductor not ready.")
    return conductor


def get_session(request: Request) -> SessionController:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(503, "Session controller not ready.")
    return session


def get_ws_manager(request: Request) -> ConnectionManager:
    manager = getattr(request.app.state, "ws_manager", None)
    if manager is None:
        raise HTTPException(503, "WebSocket manager not ready.")
    return manager
