"""Shared test doubles for WHEP player tests."""
from __future__ import annotations

import asyncio
import itertools
from typing import Callable

import httpx
from aioice.ice import get_host_addresses
from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from whep_player.events import EventHook

ANSWER_SDP = "v=0\r\no=- 0 0 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"

_ids = itertools.count(1)

# Real ICE gathering only sends candidates from non-loopback interfaces.
HAS_HOST_ADDRESS = bool(get_host_addresses(use_ipv4=True, use_ipv6=False))


def run_async(coro):
    return asyncio.run(coro)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.id = f"{kind}-{next(_ids)}"


class FakeConnection:
    """In-memory stand-in for :class:`whep_player.connection.MediaConnection`."""

    def __init__(
        self, *, gather: bool = True, gather_delay: float = 0.01, inline_gather: bool = False
    ) -> None:
        self.on_track = EventHook("track")
        self.on_connection_state_change = EventHook("connectionstatechange")
        self.on_ice_gathering_state_change = EventHook("icegatheringstatechange")
        self.on_negotiation_needed = EventHook("negotiationneeded")
        self.connection_state = "new"
        self.ice_gathering_state = "new"
        self.local_description: RTCSessionDescription | None = None
        self.remote_description: RTCSessionDescription | None = None
        self.transceivers: list[tuple[str, str]] = []
        self.offers = 0
        self.closed = False
        self.offer_error: BaseException | None = None
        self.remote_error: BaseException | None = None
        self._gather = gather
        self._gather_delay = gather_delay
        self._inline_gather = inline_gather

    def hook_count(self) -> int:
        return sum(
            len(hook)
            for hook in (
                self.on_track,
                self.on_connection_state_change,
                self.on_ice_gathering_state_change,
                self.on_negotiation_needed,
            )
        )

    def add_transceiver(self, kind: str, direction: str = "recvonly") -> None:
        self.transceivers.append((kind, direction))
        asyncio.get_running_loop().call_soon(self.on_negotiation_needed.emit, None)

    async def create_offer(self) -> RTCSessionDescription:
        self.offers += 1
        if self.offer_error is not None:
            raise self.offer_error
        return RTCSessionDescription(sdp="v=0\r\noffer\r\n", type="offer")

    async def set_local_description(self, description: RTCSessionDescription) -> None:
        self.local_description = description
        self.set_gathering_state("gathering")
        if self._inline_gather:
            # aiortc returns only once gathering has finished.
            if not self._gather:
                await asyncio.Event().wait()
            await asyncio.sleep(self._gather_delay)
            self._complete_gathering()
        elif self._gather:
            asyncio.get_running_loop().call_later(
                self._gather_delay, self._complete_gathering
            )

    async def set_remote_description(self, description: RTCSessionDescription) -> None:
        if self.remote_error is not None:
            raise self.remote_error
        self.remote_description = description

    def _complete_gathering(self) -> None:
        self.local_description = RTCSessionDescription(
            sdp="v=0\r\noffer\r\na=candidate:1 1 udp 1 10.0.0.2 5000 typ host\r\n",
            type="offer",
        )
        self.set_gathering_state("complete")

    def set_gathering_state(self, state: str) -> None:
        self.ice_gathering_state = state
        self.on_ice_gathering_state_change.emit(state)

    def set_connection_state(self, state: str) -> None:
        self.connection_state = state
        self.on_connection_state_change.emit(state)

    async def close(self) -> None:
        self.closed = True
        self.connection_state = "closed"
        for hook in (
            self.on_track,
            self.on_connection_state_change,
            self.on_ice_gathering_state_change,
            self.on_negotiation_needed,
        ):
            hook.clear()


class FakeEngine:
    def __init__(self, **connection_kwargs) -> None:
        self.connections: list[FakeConnection] = []
        self._kwargs = connection_kwargs

    def create_connection(self, ice_servers=()) -> FakeConnection:
        connection = FakeConnection(**self._kwargs)
        self.connections.append(connection)
        return connection


class ScriptedWHEPServer:
    """Replies to offers with a scripted list of HTTP statuses.

    The last status repeats once the script runs out.
    """

    def __init__(
        self,
        statuses: list[int] | tuple[int, ...] = (201,),
        *,
        answer: str = ANSWER_SDP,
        location: str | None = "/whep/resource/abc",
        body: str = "stream not ready",
        headers: dict[str, str] | None = None,
    ) -> None:
        self._statuses = list(statuses)
        self.answer = answer
        self.location = location
        self.body = body
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        if status == 201:
            headers = {"Content-Type": "application/sdp"}
            if self.location is not None:
                headers["Location"] = self.location
            return httpx.Response(201, text=self.answer, headers=headers)
        return httpx.Response(status, text=self.body, headers=self.headers)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class AiortcWHEPServer:
    """WHEP endpoint backed by a real aiortc peer sending test media."""

    def __init__(self, location: str = "/whep/resource/live") -> None:
        self.location = location
        self.requests: list[httpx.Request] = []
        self._pcs: list[RTCPeerConnection] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        pc = RTCPeerConnection(RTCConfiguration(iceServers=[]))
        self._pcs.append(pc)
        offer = RTCSessionDescription(sdp=request.content.decode("utf-8"), type="offer")
        await pc.setRemoteDescription(offer)
        pc.addTrack(VideoStreamTrack())
        pc.addTrack(AudioStreamTrack())
        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        assert pc.localDescription is not None
        return httpx.Response(
            201,
            text=pc.localDescription.sdp,
            headers={"Content-Type": "application/sdp", "Location": self.location},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def close(self) -> None:
        for pc in self._pcs:
            await pc.close()
