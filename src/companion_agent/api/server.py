"""FastAPI application — REST endpoints, WebSocket fan-out and lifespan wiring.

This module wires together:
- CORS, request logging and error handling middleware
- the conductor (routing, agents, fusion, synthesis, learning)
- the live session controller (negotiation, sampling, avatar)
- real-time WebSocket broadcasting of avatar / speech / system events

Components live on ``app.state`` and reach route handlers through the
dependencies in :mod:`companion_agent.api.dependencies`.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect

from companion_agent import __version__
from companion_agent.api.dependencies import get_conductor, get_session, get_ws_manager
from companion_agent.api.middleware import setup_middleware
from companion_agent.api.routes.chat import router as chat_router
from companion_agent.api.routes.session import router as session_router
from companion_agent.api.websocket import ALL, CHANNELS, ConnectionManager
from companion_agent.config import Settings, get_settings
from companion_agent.logger import setup_logging
from companion_agent.orchestration.conductor import Conductor, create_conductor
from companion_agent.session.controller import SessionController, create_session_controller

logger = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    conductor: Conductor | None = None,
    session: SessionController | None = None,
) -> FastAPI:
    """Build the application.  Pre-built components may be injected (tests)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle hooks."""
        setup_logging(settings.log_level)
        app.state.settings = settings
        app.state.conductor = conductor or create_conductor(settings)
        app.state.session = session or create_session_controller(settings)
        app.state.ws_manager = ConnectionManager()
        unsubscribe = app.state.session.on_update(app.state.ws_manager.broadcast_event)
        logger.info("server.started", port=settings.api_port, agents=app.state.conductor.registry.ids())

        yield  # ← application runs

        unsubscribe()
        await app.state.session.end()
        await app.state.conductor.drain_background()
        logger.info("server.stopped")

    app = FastAPI(
        title="Companion Agent API",
        description="Conversational orchestration and live avatar session engine.",
        version=__version__,
        lifespan=lifespan,
    )
    setup_middleware(app, settings)
    app.include_router(chat_router)
    app.include_router(session_router)

    # ── Health ────────────────────────────────────────────────

    @app.get("/health", tags=["system"])
    async def health(session: SessionController = Depends(get_session)):
        return {"status": "ok", "session": session.state.value}

    @app.get("/system/health", tags=["system"])
    async def system_health(
        conductor: Conductor = Depends(get_conductor),
        session: SessionController = Depends(get_session),
        ws_manager: ConnectionManager = Depends(get_ws_manager),
    ):
        """Agent statuses and self-diagnosis, plus session and WebSocket state."""
        report = conductor.get_system_health()
        report["version"] = __version__
        report["session"] = {
            "state": session.state.value,
            "session_id": session.session_id,
            "sampling": session.pipeline.running if session.pipeline else False,
        }
        report["websocket"] = ws_manager.snapshot()
        return report

    # ── WebSocket (real-time avatar feed) ─────────────────────

    async def _serve_ws(ws: WebSocket, channel: str) -> None:
        manager: ConnectionManager = ws.app.state.ws_manager
        if channel != ALL and channel not in CHANNELS:
            await ws.close(code=1008)
            return
        await manager.connect(ws, channel)
        try:
            while True:
                # Clients are read-only; a JSON {"channel": ...} message switches channel.
                data = await ws.receive_text()
                if not data.startswith("{"):
                    continue
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                new_channel = msg.get("channel") if isinstance(msg, dict) else None
                if new_channel == ALL or new_channel in CHANNELS:
                    await manager.disconnect(ws)
                    await manager.subscribe(ws, new_channel)
        except WebSocketDisconnect:
            await manager.disconnect(ws)

    @app.websocket("/ws")
    async def ws_all(ws: WebSocket):
        """Every avatar, speech and system event."""
        await _serve_ws(ws, ALL)

    @app.websocket("/ws/{channel}")
    async def ws_channel(ws: WebSocket, channel: str):
        """Events of a single channel: ``avatar``, ``speech`` or ``system``."""
        await _serve_ws(ws, channel)

    return app


app = create_app()
