"""WHEP negotiation session driving one peer connection."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Callable

from aiortc import RTCSessionDescription

from .config import DEFAULT_ICE_GATHERING_TIMEOUT
from .connection import TRACK_KINDS, MediaConnection, MediaStream
from .errors import (
    IceTimeoutError,
    MediaConnectionError,
    SignalingFatalError,
    UnexpectedNegotiationError,
    WHEPError,
)
from .events import EventHook
from .ice import gather_local_description
from .signaling import Fatal, WHEPSignalingClient

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_CREATED = "offer-created"
    AWAITING_ICE = "awaiting-ice"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"


class WHEPSession:
    """One WHEP negotiation attempt against a single endpoint.

    Connection callbacks are funnelled into a per-session queue that a single
    pump task consumes, so track, state and negotiation signals are handled
    strictly in arrival order. The session reports exactly one outcome:
    ``on_stream_ready`` once media flows, or ``on_error`` on the first fatal
    failure. ``close`` detaches the session from every callback and abandons
    any in-flight request or retry delay.
    """

    def __init__(
        self,
        connection: MediaConnection,
        signaling: WHEPSignalingClient,
        *,
        ice_gathering_timeout: float = DEFAULT_ICE_GATHERING_TIMEOUT,
    ) -> None:
        self.connection = connection
        self.signaling = signaling
        self.stream = MediaStream()
        self.state = NegotiationState.IDLE
        self.resource_location: str | None = None
        self.error: WHEPError | None = None
        self.on_stream_ready: EventHook[MediaStream] = EventHook("stream_ready")
        self.on_error: EventHook[WHEPError] = EventHook("error")
        self.on_log: EventHook[str] = EventHook("log")
        self._ice_gathering_timeout = ice_gathering_timeout
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._unsubscribers: list[Callable[[], None]] = []
        self._pump_task: asyncio.Task[None] | None = None
        self._negotiation_started = False
        self._stream_ready = False
        self._finished = False
        self._closed = False

    # ------------------------------ properties -----------------------------
    @property
    def endpoint(self) -> str:
        return self.signaling.endpoint

    @property
    def local_description(self) -> RTCSessionDescription | None:
        return self.connection.local_description

    @property
    def remote_description(self) -> RTCSessionDescription | None:
        return self.connection.remote_description

    @property
    def stream_is_ready(self) -> bool:
        return self._stream_ready

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------ operations -----------------------------
    def start(self) -> None:
        """Attach to the connection and add the receive-only transceivers."""

        if self._pump_task is not None or self._closed:
            raise RuntimeError("WHEP session has already been started")
        connection = self.connection
        self._unsubscribers = [
            connection.on_negotiation_needed.subscribe(
                lambda _: self._enqueue("negotiationneeded", None)
            ),
            connection.on_track.subscribe(lambda track: self._enqueue("track", track)),
            connection.on_connection_state_change.subscribe(
                lambda state: self._enqueue(
                    "connectionstatechange",
                    (state, self.state is NegotiationState.CONNECTED),
                )
            ),
        ]
        self._pump_task = asyncio.get_running_loop().create_task(self._pump())
        try:
            for kind in TRACK_KINDS:
                connection.add_transceiver(kind, "recvonly")
        except WHEPError as exc:
            self._fail(exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        task = self._pump_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self.signaling.close()
        finally:
            await self.connection.close()
            self.stream.clear()
            for hook in (self.on_stream_ready, self.on_error, self.on_log):
                hook.clear()
        logger.debug("WHEP session for %s closed", self.endpoint)

    # ----------------------------- implementation --------------------------
    def _enqueue(self, kind: str, payload: Any) -> None:
        if not self._closed:
            self._queue.put_nowait((kind, payload))

    async def _pump(self) -> None:
        try:
            while not self._closed:
                kind, payload = await self._queue.get()
                if self._closed:
                    return
                if kind == "negotiationneeded":
                    await self._handle_negotiation_needed()
                elif kind == "track":
                    self._handle_track(payload)
                elif kind == "connectionstatechange":
                    self._handle_connection_state(*payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("WHEP session event loop crashed")
            self._fail(UnexpectedNegotiationError(f"Error handling connection event: {exc}"))

    async def _handle_negotiation_needed(self) -> None:
        if self._negotiation_started:
            self._log("Negotiation already started, ignoring repeated negotiation request.")
            return
        self._negotiation_started = True
        await self._negotiate()

    async def _negotiate(self) -> None:
        connection = self.connection
        try:
            offer = await connection.create_offer()
            self._log(f"SDP OFFER:\n{offer.sdp}")
            self._set_state(NegotiationState.OFFER_CREATED)

            self._set_state(NegotiationState.AWAITING_ICE)
            local = await gather_local_description(
                connection, offer, self._ice_gathering_timeout
            )
            if local is None:
                raise IceTimeoutError("ICE gathering timed out.")

            self._set_state(NegotiationState.NEGOTIATING)
            outcome = await self.signaling.exchange(
                local.sdp,
                is_closed=lambda: self._closed or connection.connection_state == "closed",
            )
            if self._closed:
                return
            if outcome is None:
                raise MediaConnectionError("Peer connection closed during negotiation")
            if isinstance(outcome, Fatal):
                raise SignalingFatalError(outcome.reason, status_code=outcome.status_code)

            self._log(f"SDP ANSWER:\n{outcome.answer_sdp}")
            answer = RTCSessionDescription(sdp=outcome.answer_sdp, type="answer")
            await connection.set_remote_description(answer)
            if self._closed:
                return
            self.resource_location = outcome.resource_location
            self._set_state(NegotiationState.CONNECTED)
            self._log(f"WHEP resource created at {outcome.resource_location}")
        except asyncio.CancelledError:
            raise
        except WHEPError as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception("Unexpected error while negotiating with %s", self.endpoint)
            self._fail(UnexpectedNegotiationError(f"Error negotiating connection: {exc}"))

    def _handle_track(self, track: Any) -> None:
        if self.stream.add_track(track):
            self._log(f"Received {track.kind} track {track.id}")
        else:
            self._log(f"Ignoring extra {getattr(track, 'kind', 'unknown')} track")

    def _handle_connection_state(self, state: str, after_answer: bool) -> None:
        # Only a notification raised after the answer was applied proves media can flow.
        self._log(f"Connection state changed to: {state}")
        if state == "connected":
            if after_answer and not self._finished:
                self._log("Connection established, starting the show.")
                self._stream_ready = True
                self._finished = True
                self.on_stream_ready.emit(self.stream)
        elif state == "failed" and not self._stream_ready:
            self._fail(MediaConnectionError("Peer connection failed"))

    def _set_state(self, state: NegotiationState) -> None:
        previous = self.state
        self.state = state
        logger.debug("WHEP session %s: %s -> %s", self.endpoint, previous.value, state.value)

    def _fail(self, exc: WHEPError) -> None:
        if self._closed:
            logger.debug("Discarding error from closed session: %s", exc)
            return
        if self._finished:
            self._log(f"Additional error after session outcome: {exc}")
            return
        self._finished = True
        self.error = exc
        self._set_state(NegotiationState.FAILED)
        self.on_error.emit(exc)

    def _log(self, message: str) -> None:
        logger.debug("%s", message)
        self.on_log.emit(message)


__all__ = ["NegotiationState", "WHEPSession"]
