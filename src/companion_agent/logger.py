"""Structured logging configuration using *structlog*.

Session-scoped context (``session_id``) is carried in contextvars: tasks
spawned after :func:`bind_session` inherit it, so every sampling, render
and negotiation event is tagged with the call it belongs to.
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str = "INFO") -> None:
    """Configure *structlog* and route stdlib loggers (uvicorn) to the same level.

    Safe to call more than once; the CLI and the API lifespan both do.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    interactive = sys.stderr.isatty()

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if interactive:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=numeric, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(numeric)


def bind_session(session_id: str) -> None:
    """Tag subsequent log events in this context with *session_id*."""
    structlog.contextvars.bind_contextvars(session_id=session_id)
