"""Waiting for ICE candidate gathering to finish."""
from __future__ import annotations

import asyncio
import logging

from aiortc import RTCSessionDescription

from .connection import MediaConnection

logger = logging.getLogger(__name__)


async def wait_for_ice_gathering(
    connection: MediaConnection, timeout: float
) -> RTCSessionDescription | None:
    """Return the local description once gathering completes.

    Returns ``None`` when ``timeout`` seconds pass first. The state listener
    is removed before returning on either path.
    """

    if connection.ice_gathering_state == "complete":
        return connection.local_description

    event = asyncio.Event()

    def _on_state_change(state: str) -> None:
        logger.debug("ICE gathering state changed to: %s", state)
        if state == "complete":
            event.set()

    unsubscribe = connection.on_ice_gathering_state_change.subscribe(_on_state_change)
    try:
        if connection.ice_gathering_state == "complete":
            event.set()
        await asyncio.wait_for(event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("ICE gathering did not complete within %.1fs", timeout)
        return None
    finally:
        unsubscribe()
    return connection.local_description


async def gather_local_description(
    connection: MediaConnection, description: RTCSessionDescription, timeout: float
) -> RTCSessionDescription | None:
    """Apply ``description`` and wait for gathering under one deadline.

    aiortc gathers every candidate inside ``setLocalDescription``, so the
    timeout has to cover that call as well as the state wait. Returns ``None``
    once ``timeout`` seconds have passed.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        await asyncio.wait_for(connection.set_local_description(description), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("ICE gathering did not complete within %.1fs", timeout)
        return None
    return await wait_for_ice_gathering(connection, max(deadline - loop.time(), 0.0))


__all__ = ["gather_local_description", "wait_for_ice_gathering"]
