"""Playback sinks that consume tracks published by a player."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol

import numpy as np
from aiortc.mediastreams import MediaStreamError

if TYPE_CHECKING:  # pragma: no cover - imported for type checkers only
    from aiortc.mediastreams import MediaStreamTrack
    from av import AudioFrame, VideoFrame


logger = logging.getLogger(__name__)


class TrackSink(Protocol):
    """Anything that can be bound to a player to receive a track."""

    def set_track(self, track: MediaStreamTrack | None) -> None:
        ...


class TrackConsumer(ABC):
    """Pulls frames from the bound track in a background task.

    Rebinding cancels the previous consumer; binding ``None`` just stops.
    """

    kind = ""

    def __init__(self) -> None:
        self._track: MediaStreamTrack | None = None
        self._task: asyncio.Task[None] | None = None
        self.frames = 0

    @property
    def track(self) -> MediaStreamTrack | None:
        return self._track

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_track(self, track: MediaStreamTrack | None) -> None:
        if track is self._track:
            return
        if track is not None and track.kind != self.kind:
            raise ValueError(f"{type(self).__name__} expects a {self.kind} track, got {track.kind}")
        self._cancel()
        self._track = track
        if track is None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._consume(track))
        self._task.add_done_callback(self._on_consumer_done)

    async def _consume(self, track: MediaStreamTrack) -> None:
        while True:
            try:
                frame = await track.recv()
            except MediaStreamError:
                logger.info("%s track ended", self.kind)
                return
            self.frames += 1
            self.handle_frame(frame)

    @abstractmethod
    def handle_frame(self, frame) -> None:
        """Process one decoded frame from the bound track."""

    def _on_consumer_done(self, task: asyncio.Task[None]) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception:  # pragma: no cover - logging only
            logger.exception("%s consumer terminated unexpectedly", self.kind)
        finally:
            if self._task is task:
                self._task = None

    def _cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()


class LatestFrameSink(TrackConsumer):
    """Video sink keeping only the most recent decoded frame as RGB pixels."""

    kind = "video"

    def __init__(self) -> None:
        super().__init__()
        self.latest: np.ndarray | None = None
        self._frame_event = asyncio.Event()

    @property
    def frame_size(self) -> tuple[int, int] | None:
        if self.latest is None:
            return None
        height, width = self.latest.shape[:2]
        return (int(width), int(height))

    def set_track(self, track: MediaStreamTrack | None) -> None:
        if track is None:
            self.latest = None
            self._frame_event.clear()
        super().set_track(track)

    def handle_frame(self, frame: VideoFrame) -> None:
        self.latest = frame.to_ndarray(format="rgb24")
        self._frame_event.set()

    async def wait_for_frame(self, timeout: float | None = None) -> np.ndarray | None:
        try:
            await asyncio.wait_for(self._frame_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self.latest


class AudioDrainSink(TrackConsumer):
    """Audio sink that drains the track and counts decoded samples."""

    kind = "audio"

    def __init__(self) -> None:
        super().__init__()
        self.samples = 0
        self.sample_rate: int | None = None

    def handle_frame(self, frame: AudioFrame) -> None:
        self.samples += frame.samples
        self.sample_rate = frame.sample_rate


__all__ = ["AudioDrainSink", "LatestFrameSink", "TrackConsumer", "TrackSink"]
