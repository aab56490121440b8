"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """All runtime configuration for the companion agent.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat
    ``COMPANION_`` namespace (stripped automatically by *pydantic-settings*),
    e.g. ``COMPANION_LOG_LEVEL=DEBUG``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMPANION_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))
    cors_origins: str = "*"  # comma-separated origins, or "*" for all

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Session / negotiation ─────────────────────────────────
    ice_servers: list[str] = [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    ]
    capture_backend: Literal["simulated", "none"] = "simulated"
    capture_timeout_seconds: float = 5.0
    negotiation_fallback_delay_seconds: float = 1.0
    negotiation_timeout_seconds: float = 10.0
    video_width: int = 1920
    video_height: int = 1080
    video_frame_rate: int = 30

    # ── Sampling pipeline ─────────────────────────────────────
    video_sample_interval_seconds: float = 0.033  # ~30 fps
    audio_sample_interval_seconds: float = 0.016  # ~one display frame
    render_interval_seconds: float = 0.033
    tracker_timeout_seconds: float = 0.5
    sample_queue_size: int = 64

    # ── Avatar speech ─────────────────────────────────────────
    speech_min_interval_seconds: float = 5.0

    # ── Orchestration ─────────────────────────────────────────
    agent_timeout_seconds: float = 10.0
    learning_webhook_url: str = ""
    learning_history_size: int = 500


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
