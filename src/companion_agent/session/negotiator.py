"""Media negotiation — capture, offer/answer, and the simulated fallback.

:meth:`MediaNegotiator.negotiate` never fails: every error path degrades to
a *simulated* result so a session can always start.

1. Acquire local capture.  Failure → simulated immediately.
2. Build the transport, attach tracks and set a local offer.
   Failure → simulated (capture kept for sampling).
3. Arm the fallback timer.  When it fires it injects a simulated remote
   answer and settles the negotiation as *simulated* at once, whether or
   not the transport ever connects.  A genuine answer (:meth:`accept_answer`)
   or a genuine ``connected`` state cancels it first.
4. Wait for the connection to settle, bounded by a timeout that only
   matters while no fallback has been injected.  Only a genuine connection
   yields mode ``real``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

import structlog

from companion_agent.errors import NegotiationError
from companion_agent.session.media import (
    CaptureConstraints,
    CaptureHandle,
    ConnectionState,
    MediaCapture,
    MediaTrack,
    SessionDescription,
    Transport,
    TransportFactory,
)

logger = structlog.get_logger(__name__)

SIMULATED_ANSWER = SessionDescription(type="answer", sdp="simulated-sdp-answer")


class ConnectionMode(str, Enum):
    REAL = "real"
    SIMULATED = "simulated"


@dataclass
class NegotiationResult:
    mode: ConnectionMode
    capture: CaptureHandle | None = None
    transport: Transport | None = None
    remote_tracks: list[MediaTrack] = field(default_factory=list)
    reason: str = ""


class MediaNegotiator:
    """Run one capture + offer/answer exchange at a time."""

    def __init__(
        self,
        capture: MediaCapture,
        transport_factory: TransportFactory,
        *,
        constraints: CaptureConstraints | None = None,
        ice_servers: list[str] | None = None,
        capture_timeout: float = 5.0,
        fallback_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        self._capture = capture
        self._transport_factory = transport_factory
        self._constraints = constraints or CaptureConstraints()
        self._ice_servers = list(ice_servers or [])
        self._capture_timeout = capture_timeout
        self._fallback_delay = fallback_delay
        self._timeout = timeout
        self._reset()

    def _reset(self) -> None:
        self._transport: Transport | None = None
        self._fallback_task: asyncio.Task[None] | None = None
        self._fallback_injected = False
        self._settled = asyncio.Event()
        self._final_state: ConnectionState | None = None
        self._remote_tracks: list[MediaTrack] = []

    @property
    def fallback_pending(self) -> bool:
        return self._fallback_task is not None and not self._fallback_task.done()

    # ── Public API ────────────────────────────────────────────

    async def negotiate(self) -> NegotiationResult:
        self._reset()
        capture: CaptureHandle | None = None
        transport: Transport | None = None
        try:
            try:
                capture = await asyncio.wait_for(
                    self._capture.acquire(self._constraints), timeout=self._capture_timeout,
                )
            except Exception as exc:
                logger.warning("negotiator.acquisition_failed", error=str(exc) or type(exc).__name__)
                return NegotiationResult(ConnectionMode.SIMULATED, reason="acquisition_failed")

            try:
                transport = self._transport_factory(self._ice_servers)
                self._transport = transport
                for track in capture.tracks:
                    transport.add_track(track)
                transport.on_track(self._remote_tracks.append)
                transport.on_connection_state_change(self._on_state_change)
                offer = await transport.create_offer()
                await transport.set_local_description(offer)
            except Exception as exc:
                error = exc if isinstance(exc, NegotiationError) else NegotiationError(f"offer failed: {exc!r}")
                logger.warning("negotiator.offer_failed", error=str(error))
                await self._close_transport(transport)
                return NegotiationResult(ConnectionMode.SIMULATED, capture=capture, reason="negotiation_failed")

            self._fallback_task = asyncio.create_task(self._inject_fallback(transport))
            try:
                await asyncio.wait_for(self._settled.wait(), timeout=self._timeout)
            except TimeoutError:
                logger.warning("negotiator.timeout", timeout=self._timeout)
                await self._cancel_fallback()
                await self._close_transport(transport)
                return NegotiationResult(ConnectionMode.SIMULATED, capture=capture, reason="timeout")

            await self._cancel_fallback()
            if self._final_state is ConnectionState.FAILED:
                logger.warning("negotiator.connection_failed")
                await self._close_transport(transport)
                return NegotiationResult(ConnectionMode.SIMULATED, capture=capture, reason="connection_failed")

            mode = ConnectionMode.SIMULATED if self._fallback_injected else ConnectionMode.REAL
            logger.info("negotiator.connected", mode=mode.value, remote_tracks=len(self._remote_tracks))
            return NegotiationResult(
                mode,
                capture=capture,
                transport=transport,
                remote_tracks=list(self._remote_tracks),
                reason="fallback_answer" if self._fallback_injected else "connected",
            )
        except asyncio.CancelledError:
            await self._cancel_fallback()
            await self._close_transport(transport)
            for track in self._remote_tracks:
                if not track.ended:
                    track.stop()
            if capture is not None:
                capture.stop()
            logger.info("negotiator.cancelled")
            raise
        finally:
            self._transport = None

    async def accept_answer(self, answer: SessionDescription) -> None:
        """Apply a genuine remote answer, superseding the fallback."""
        transport = self._transport
        if transport is None:
            raise NegotiationError("no negotiation in progress")
        await self._cancel_fallback()
        await transport.set_remote_description(answer)
        logger.info("negotiator.answer_accepted")

    # ── Internals ─────────────────────────────────────────────

    def _on_state_change(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            if not self._fallback_injected and self._fallback_task is not None:
                self._fallback_task.cancel()
            self._final_state = state
            self._settled.set()
        elif state is ConnectionState.FAILED:
            self._final_state = state
            self._settled.set()

    async def _inject_fallback(self, transport: Transport) -> None:
        await asyncio.sleep(self._fallback_delay)
        self._fallback_injected = True
        logger.info("negotiator.fallback_answer", delay=self._fallback_delay)
        try:
            await transport.set_remote_description(SIMULATED_ANSWER)
        except Exception as exc:
            logger.warning("negotiator.fallback_failed", error=str(exc))
            self._final_state = ConnectionState.FAILED
            self._settled.set()
            return
        self._settled.set()

    async def _cancel_fallback(self) -> None:
        task = self._fallback_task
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    @staticmethod
    async def _close_transport(transport: Transport | None) -> None:
        if transport is None:
            return
        try:
            await transport.close()
        except Exception:
            logger.exception("negotiator.transport_close_failed")
