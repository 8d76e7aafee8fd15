"""Player state machine built on top of WHEP sessions."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from .config import PlayerSettings
from .connection import MediaStream
from .engine import MediaEngine
from .errors import MediaConnectionError, WHEPError
from .events import EventHook
from .negotiation import WHEPSession
from .signaling import WHEPSignalingClient
from .sinks import TrackSink

if TYPE_CHECKING:  # pragma: no cover - imported for type checkers only
    from aiortc.mediastreams import MediaStreamTrack


logger = logging.getLogger(__name__)


class PlayerState(str, Enum):
    NONE = "none"
    CONNECTING = "connecting"
    PLAYING = "playing"
    ERROR = "error"


class WHEPPlayer:
    """Plays one WHEP stream at a time and publishes its tracks to sinks."""

    def __init__(
        self,
        engine: MediaEngine,
        settings: PlayerSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.state = PlayerState.NONE
        self.session: WHEPSession | None = None
        self.last_error: WHEPError | None = None
        self.current_video_track: MediaStreamTrack | None = None
        self.current_audio_track: MediaStreamTrack | None = None
        self.on_video_track_changed: EventHook[MediaStreamTrack | None] = EventHook(
            "video_track_changed"
        )
        self.on_state_change: EventHook[PlayerState] = EventHook("state_change")
        self._transport = transport
        self._video_sinks: list[TrackSink] = []
        self._audio_sinks: list[TrackSink] = []
        self._lock = asyncio.Lock()

    # ------------------------------- sinks ---------------------------------
    def bind_video_sink(self, sink: TrackSink) -> None:
        if sink in self._video_sinks:
            return
        self._video_sinks.append(sink)
        if self.current_video_track is not None:
            sink.set_track(self.current_video_track)

    def unbind_video_sink(self, sink: TrackSink) -> None:
        if sink in self._video_sinks:
            self._video_sinks.remove(sink)
            sink.set_track(None)

    def bind_audio_sink(self, sink: TrackSink) -> None:
        if sink in self._audio_sinks:
            return
        self._audio_sinks.append(sink)
        if self.current_audio_track is not None:
            sink.set_track(self.current_audio_track)

    def unbind_audio_sink(self, sink: TrackSink) -> None:
        if sink in self._audio_sinks:
            self._audio_sinks.remove(sink)
            sink.set_track(None)

    # ------------------------------ lifecycle ------------------------------
    async def play(self) -> None:
        """Start a fresh session, tearing down any previous one first."""

        async with self._lock:
            if self.state is not PlayerState.NONE:
                await self._teardown()
            self.last_error = None
            self._set_state(PlayerState.CONNECTING)
            try:
                connection = self.engine.create_connection(self.settings.ice_servers)
            except MediaConnectionError as exc:
                self._handle_error(None, exc)
                return
            signaling = WHEPSignalingClient(
                self.settings.endpoint,
                retry=self.settings.retry,
                timeout=self.settings.request_timeout,
                transport=self._transport,
            )
            session = WHEPSession(
                connection,
                signaling,
                ice_gathering_timeout=self.settings.ice_gathering_timeout,
            )
            session.on_stream_ready.subscribe(
                lambda stream: self._handle_stream_ready(session, stream)
            )
            session.on_error.subscribe(lambda exc: self._handle_error(session, exc))
            session.on_log.subscribe(self._handle_log)
            self.session = session
            logger.info("Connecting to WHEP endpoint %s", self.settings.endpoint)
            session.start()

    async def stop(self) -> None:
        """Tear down the current session. Safe to call in any state."""

        async with self._lock:
            await self._teardown()

    async def wait_for_state(self, *states: PlayerState, timeout: float | None = None) -> PlayerState:
        """Wait until the player enters one of ``states`` and return it."""

        if self.state in states:
            return self.state
        reached = asyncio.Event()

        def _on_change(state: PlayerState) -> None:
            if state in states:
                reached.set()

        unsubscribe = self.on_state_change.subscribe(_on_change)
        try:
            await asyncio.wait_for(reached.wait(), timeout=timeout)
        finally:
            unsubscribe()
        return self.state

    # ----------------------------- implementation --------------------------
    async def _teardown(self) -> None:
        self._publish_video(None)
        self._publish_audio(None)
        session = self.session
        self.session = None
        if session is not None:
            await session.close()
        if self.state is not PlayerState.NONE:
            self._set_state(PlayerState.NONE)

    def _handle_stream_ready(self, session: WHEPSession, stream: MediaStream) -> None:
        if session is not self.session:
            return
        self._set_state(PlayerState.PLAYING)
        video = stream.video_track
        if video is not None:
            self._publish_video(video)
        audio = stream.audio_track
        if audio is not None:
            self._publish_audio(audio)
        logger.info(
            "Playing %s (video=%s, audio=%s)",
            self.settings.endpoint,
            video is not None,
            audio is not None,
        )

    def _handle_error(self, session: WHEPSession | None, exc: WHEPError) -> None:
        if session is not self.session:
            return
        self.last_error = exc
        self._set_state(PlayerState.ERROR)
        logger.error("WHEP playback failed: %s", exc)

    def _handle_log(self, message: str) -> None:
        logger.debug("%s", message)

    def _publish_video(self, track: MediaStreamTrack | None) -> None:
        if track is self.current_video_track:
            return
        self.current_video_track = track
        self.on_video_track_changed.emit(track)
        for sink in list(self._video_sinks):
            sink.set_track(track)

    def _publish_audio(self, track: MediaStreamTrack | None) -> None:
        if track is self.current_audio_track:
            return
        self.current_audio_track = track
        for sink in list(self._audio_sinks):
            sink.set_track(track)

    def _set_state(self, state: PlayerState) -> None:
        if state is self.state:
            return
        self.state = state
        self.on_state_change.emit(state)


__all__ = ["PlayerState", "WHEPPlayer"]
