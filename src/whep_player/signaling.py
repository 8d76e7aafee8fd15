"""HTTP offer/answer exchange against a WHEP endpoint."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Union

import httpx

from .config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_RETRY_POLICY, RetryPolicy
from .errors import SignalingTransientError

logger = logging.getLogger(__name__)

SDP_CONTENT_TYPE = "application/sdp"


@dataclass(frozen=True, slots=True)
class Accepted:
    """The server answered the offer and created a session resource."""

    answer_sdp: str
    resource_location: str


@dataclass(frozen=True, slots=True)
class Retry:
    """The attempt failed in a way worth repeating."""

    reason: str
    status_code: int | None = None
    retry_after: float | None = None


@dataclass(frozen=True, slots=True)
class Fatal:
    """The server will never accept this offer."""

    reason: str
    status_code: int | None = None


ExchangeOutcome = Union[Accepted, Retry, Fatal]


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        # HTTP-date values are not honoured.
        return None
    if seconds < 0:
        return None
    return seconds


class WHEPSignalingClient:
    """POSTs SDP offers to a WHEP endpoint and interprets the reply."""

    def __init__(
        self,
        endpoint: str,
        *,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.retry = retry
        self._timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self.attempts = 0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def _send(self, offer_sdp: str) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.post(
                self.endpoint,
                content=offer_sdp.encode("utf-8"),
                headers={"Content-Type": SDP_CONTENT_TYPE},
            )
        except httpx.TransportError as exc:
            raise SignalingTransientError(
                f"Request to {self.endpoint} failed: {exc}"
            ) from exc

    def _resolve_location(self, response: httpx.Response) -> str | None:
        location = response.headers.get("Location")
        if not location:
            return None
        return str(response.request.url.join(location))

    async def post_offer(self, offer_sdp: str) -> ExchangeOutcome:
        """Perform a single offer POST and classify the response."""

        self.attempts += 1
        try:
            response = await self._send(offer_sdp)
        except SignalingTransientError as exc:
            return Retry(str(exc))

        status = response.status_code
        if status == 201:
            answer = response.text
            if not answer.strip():
                return Fatal("Server accepted the offer without an SDP answer", status)
            location = self._resolve_location(response)
            if location is None:
                return Fatal("Server accepted the offer without a Location header", status)
            return Accepted(answer_sdp=answer, resource_location=location)
        if status == 405:
            return Fatal("WHEP negotiation is not yet supported by this server", status)
        return Retry(
            f"Server returned error: {status} {response.text.strip()}".rstrip(),
            status,
            _parse_retry_after(response.headers.get("Retry-After")),
        )

    async def exchange(
        self,
        offer_sdp: str,
        *,
        is_closed: Callable[[], bool] = lambda: False,
    ) -> ExchangeOutcome | None:
        """Post ``offer_sdp`` until it is accepted, rejected or abandoned.

        Returns ``None`` when ``is_closed`` reports the connection went away
        before an outcome was reached.
        """

        failures = 0
        while not is_closed():
            outcome = await self.post_offer(offer_sdp)
            if not isinstance(outcome, Retry):
                return outcome
            failures += 1
            logger.warning("WHEP offer attempt %d failed: %s", failures, outcome.reason)
            if not self.retry.allows(failures):
                return Fatal(
                    f"Giving up after {failures} attempt(s): {outcome.reason}",
                    outcome.status_code,
                )
            delay = self.retry.delay_for(failures)
            if outcome.retry_after is not None:
                delay = min(max(delay, outcome.retry_after), self.retry.max_delay)
            await self._sleep(delay)
        logger.info("Connection closed, abandoning WHEP exchange")
        return None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = [
    "Accepted",
    "ExchangeOutcome",
    "Fatal",
    "Retry",
    "SDP_CONTENT_TYPE",
    "WHEPSignalingClient",
]
