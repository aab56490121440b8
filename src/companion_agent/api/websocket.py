"""WebSocket connection manager — fan session events out to clients."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)

CHANNELS = ("avatar", "speech", "system")
ALL = "all"


@dataclass
class ChannelStats:
    messages_sent: int = 0
    last_message_at: float | None = None


class ConnectionManager:
    """Track WebSocket clients per channel and broadcast JSON to them.

    Clients on ``all`` receive every message; clients on a named channel
    only that channel's.  Sockets that fail to send are dropped.
    """

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self.stats: dict[str, ChannelStats] = {}

    async def connect(self, ws: WebSocket, channel: str = ALL) -> None:
        await ws.accept()
        await self.subscribe(ws, channel)

    async def subscribe(self, ws: WebSocket, channel: str) -> None:
        """Register an already-accepted socket on *channel*."""
        async with self._lock:
            self._connections.setdefault(channel, []).append(ws)
        logger.info("ws.connected", channel=channel, total=self.active_count)

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            for subscribers in self._connections.values():
                if ws in subscribers:
                    subscribers.remove(ws)
        logger.info("ws.disconnected", total=self.active_count)

    @property
    def active_count(self) -> int:
        return sum(len(subs) for subs in self._connections.values())

    def channel_breakdown(self) -> dict[str, int]:
        return {ch: len(subs) for ch, subs in self._connections.items() if subs}

    async def broadcast(self, message: dict[str, Any], channel: str) -> int:
        """Send *message* to *channel* subscribers and ``all``.  Returns the count sent."""
        targets = list(self._connections.get(channel, []))
        if channel != ALL:
            targets += self._connections.get(ALL, [])
        if not targets:
            return 0

        payload = json.dumps(message, default=_json_default)
        dead: list[WebSocket] = []
        sent = 0
        for ws in targets:
            try:
                await ws.send_text(payload)
                sent += 1
            except Exception:
                dead.append(ws)

        stats = self.stats.setdefault(channel, ChannelStats())
        stats.messages_sent += sent
        stats.last_message_at = time.monotonic()

        for ws in dead:
            await self.disconnect(ws)
        return sent

    async def broadcast_event(self, channel: str, payload: dict[str, Any]) -> None:
        """Session listener: wrap *payload* as ``{"type": channel, "data": ...}``."""
        await self.broadcast({"type": channel, "data": payload}, channel)

    def snapshot(self) -> dict[str, Any]:
        now = time.monotonic()
        return {
            "connected_clients": self.active_count,
            "channels": self.channel_breakdown(),
            "sent": {
                ch: {
                    "messages_sent": s.messages_sent,
                    "last_message_ago_sec": round(now - s.last_message_at, 1) if s.last_message_at else None,
                }
                for ch, s in self.stats.items()
            },
        }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Not serialisable: {type(obj)}")
