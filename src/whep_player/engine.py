"""Process-wide media engine handle."""
from __future__ import annotations

import logging
from typing import Iterable

from aiortc import RTCBundlePolicy, RTCConfiguration, RTCIceServer

from .config import IceServerSettings
from .connection import MediaConnection
from .errors import MediaConnectionError

logger = logging.getLogger(__name__)


def build_rtc_configuration(ice_servers: Iterable[IceServerSettings] = ()) -> RTCConfiguration:
    """Return the peer connection configuration for the given ICE servers.

    An empty list disables STUN/TURN entirely so only host candidates are
    gathered.
    """

    servers = [
        RTCIceServer(
            urls=list(server.urls),
            username=server.username,
            credential=server.credential,
        )
        for server in ice_servers
    ]
    return RTCConfiguration(iceServers=servers, bundlePolicy=RTCBundlePolicy.MAX_BUNDLE)


class MediaEngine:
    """Explicit handle owning every peer connection created by players.

    The host application calls :meth:`initialize` once before creating
    players and :meth:`shutdown` when it exits.
    """

    def __init__(self) -> None:
        self._running = False
        self._connections: set[MediaConnection] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def connection_count(self) -> int:
        self._prune()
        return len(self._connections)

    def initialize(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info("Media engine initialised")

    def create_connection(
        self, ice_servers: Iterable[IceServerSettings] = ()
    ) -> MediaConnection:
        if not self._running:
            raise MediaConnectionError("Media engine is not initialised")
        self._prune()
        connection = MediaConnection(build_rtc_configuration(ice_servers))
        self._connections.add(connection)
        return connection

    async def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        connections = list(self._connections)
        self._connections.clear()
        for connection in connections:
            try:
                await connection.close()
            except Exception:  # pragma: no cover - logging only
                logger.exception("Failed to close peer connection during shutdown")
        logger.info("Media engine shut down (%d connection(s) closed)", len(connections))

    def _prune(self) -> None:
        self._connections = {conn for conn in self._connections if not conn.closed}

    async def __aenter__(self) -> "MediaEngine":
        self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()


__all__ = ["MediaEngine", "build_rtc_configuration"]
