"""Peer connection wrapper used by WHEP sessions."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.exceptions import InternalError, InvalidAccessError, InvalidStateError

from .errors import MediaConnectionError
from .events import EventHook

if TYPE_CHECKING:  # pragma: no cover - imported for type checkers only
    from aiortc import RTCConfiguration
    from aiortc.mediastreams import MediaStreamTrack


logger = logging.getLogger(__name__)

TRACK_KINDS = ("video", "audio")

_ENGINE_ERRORS = (InternalError, InvalidAccessError, InvalidStateError, ValueError)


class MediaStream:
    """Holds at most one received track per media kind."""

    def __init__(self) -> None:
        self._tracks: dict[str, MediaStreamTrack] = {}

    def add_track(self, track: MediaStreamTrack) -> bool:
        """Admit ``track`` unless a track of the same kind is already present."""

        kind = getattr(track, "kind", None)
        if kind not in TRACK_KINDS:
            logger.warning("Ignoring track of unknown kind %r", kind)
            return False
        if kind in self._tracks:
            logger.debug("Dropping duplicate %s track %s", kind, getattr(track, "id", "?"))
            return False
        self._tracks[kind] = track
        return True

    def get_track(self, kind: str) -> MediaStreamTrack | None:
        return self._tracks.get(kind)

    @property
    def video_track(self) -> MediaStreamTrack | None:
        return self._tracks.get("video")

    @property
    def audio_track(self) -> MediaStreamTrack | None:
        return self._tracks.get("audio")

    def tracks(self) -> list[MediaStreamTrack]:
        return list(self._tracks.values())

    def clear(self) -> None:
        self._tracks.clear()

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, kind: object) -> bool:
        return kind in self._tracks


class MediaConnection:
    """Thin async facade over :class:`aiortc.RTCPeerConnection`.

    Engine failures surface as :class:`MediaConnectionError`. State changes
    are re-published through :class:`EventHook` instances so that callers can
    unsubscribe individually.
    """

    def __init__(self, configuration: RTCConfiguration | None = None) -> None:
        try:
            self._pc = RTCPeerConnection(configuration)
        except _ENGINE_ERRORS as exc:
            raise MediaConnectionError(f"Unable to create peer connection: {exc}") from exc
        self._closed = False
        self._transceiver_kinds: list[str] = []
        self.on_track: EventHook[MediaStreamTrack] = EventHook("track")
        self.on_connection_state_change: EventHook[str] = EventHook("connectionstatechange")
        self.on_ice_gathering_state_change: EventHook[str] = EventHook("icegatheringstatechange")
        self.on_negotiation_needed: EventHook[None] = EventHook("negotiationneeded")

        self._pc.on("track", self._handle_track)
        self._pc.on("connectionstatechange", self._handle_connection_state)
        self._pc.on("icegatheringstatechange", self._handle_ice_gathering_state)

    # ------------------------------ properties -----------------------------
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection_state(self) -> str:
        if self._closed:
            return "closed"
        return self._pc.connectionState

    @property
    def ice_gathering_state(self) -> str:
        return self._pc.iceGatheringState

    @property
    def local_description(self) -> RTCSessionDescription | None:
        return self._pc.localDescription

    @property
    def remote_description(self) -> RTCSessionDescription | None:
        return self._pc.remoteDescription

    @property
    def transceiver_kinds(self) -> tuple[str, ...]:
        return tuple(self._transceiver_kinds)

    # ------------------------------ operations -----------------------------
    def add_transceiver(self, kind: str, direction: str = "recvonly") -> None:
        """Add a transceiver and raise the negotiation-needed signal."""

        self._ensure_open()
        if kind not in TRACK_KINDS:
            raise MediaConnectionError(f"Unsupported transceiver kind: {kind!r}")
        try:
            self._pc.addTransceiver(kind, direction=direction)
        except _ENGINE_ERRORS as exc:
            raise MediaConnectionError(f"Unable to add {kind} transceiver: {exc}") from exc
        self._transceiver_kinds.append(kind)
        asyncio.get_running_loop().call_soon(self._signal_negotiation_needed)

    async def create_offer(self) -> RTCSessionDescription:
        self._ensure_open()
        try:
            return await self._pc.createOffer()
        except _ENGINE_ERRORS as exc:
            raise MediaConnectionError(f"Unable to create offer: {exc}") from exc

    async def set_local_description(self, description: RTCSessionDescription) -> None:
        self._ensure_open()
        try:
            await self._pc.setLocalDescription(description)
        except _ENGINE_ERRORS as exc:
            raise MediaConnectionError(f"Unable to set local description: {exc}") from exc

    async def set_remote_description(self, description: RTCSessionDescription) -> None:
        self._ensure_open()
        try:
            await self._pc.setRemoteDescription(description)
        except _ENGINE_ERRORS as exc:
            raise MediaConnectionError(f"Unable to set remote description: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for hook in (
            self.on_track,
            self.on_connection_state_change,
            self.on_ice_gathering_state_change,
            self.on_negotiation_needed,
        ):
            hook.clear()
        self._pc.remove_all_listeners()
        await self._pc.close()

    # ----------------------------- implementation --------------------------
    def _ensure_open(self) -> None:
        if self._closed:
            raise MediaConnectionError("Peer connection is closed")

    def _signal_negotiation_needed(self) -> None:
        if not self._closed:
            self.on_negotiation_needed.emit(None)

    def _handle_track(self, track: MediaStreamTrack) -> None:
        self.on_track.emit(track)

    def _handle_connection_state(self) -> None:
        self.on_connection_state_change.emit(self._pc.connectionState)

    def _handle_ice_gathering_state(self) -> None:
        self.on_ice_gathering_state_change.emit(self._pc.iceGatheringState)


__all__ = ["MediaConnection", "MediaStream", "TRACK_KINDS"]
