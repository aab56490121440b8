"""Middleware — CORS, request tracing, error handling."""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from companion_agent.config import Settings, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by load balancers and the avatar UI; never logged per request.
_QUIET_PATHS = frozenset({"/health", "/session", "/session/quality"})


def parse_origins(raw: str) -> list[str]:
    """``"*"`` or a comma-separated list of origins."""
    raw = raw.strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log its outcome.

    The id is taken from the incoming ``X-Request-ID`` header when present,
    bound into the structlog context for everything the handler logs, and
    echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        start = time.monotonic()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
            if request.url.path not in _QUIET_PATHS:
                logger.info(
                    "http.request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round((time.monotonic() - start) * 1000, 1),
                )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Unhandled exceptions become a bare 500; details go to the log only."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception("http.unhandled_error", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def setup_middleware(app: FastAPI, settings: Settings | None = None) -> None:
    """Install CORS, tracing and the error handler (outermost last)."""
    settings = settings or get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_origins(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
