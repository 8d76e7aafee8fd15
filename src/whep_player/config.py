"""Configuration management for the WHEP player."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

DEFAULT_ICE_GATHERING_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_RETRY_DELAY = 5.0
DEFAULT_RETRY_BACKOFF = 1.0
DEFAULT_RETRY_MAX_DELAY = 60.0
DEFAULT_RETRY_MAX_ATTEMPTS = 12

_ICE_URL_SCHEMES = ("stun:", "stuns:", "turn:", "turns:")


def _positive_float(value: Any, name: str, *, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be numeric") from exc
    if not math.isfinite(number) or number < 0 or (number == 0 and not allow_zero):
        raise ValueError(f"{name} must be a positive finite value")
    return number


@dataclass(frozen=True, slots=True)
class IceServerSettings:
    """A STUN or TURN server offered to the peer connection."""

    urls: tuple[str, ...]
    username: str | None = None
    credential: str | None = None

    def __post_init__(self) -> None:
        urls = (self.urls,) if isinstance(self.urls, str) else tuple(self.urls)
        if not urls:
            raise ValueError("ICE server entries need at least one URL")
        for url in urls:
            if not isinstance(url, str) or not url.lower().startswith(_ICE_URL_SCHEMES):
                raise ValueError(f"Unsupported ICE server URL: {url!r}")
        object.__setattr__(self, "urls", urls)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"urls": list(self.urls)}
        if self.username is not None:
            payload["username"] = self.username
        if self.credential is not None:
            payload["credential"] = self.credential
        return payload


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay schedule applied between WHEP offer attempts.

    ``backoff`` of 1.0 keeps the delay fixed. ``max_attempts`` of ``None``
    retries for as long as the connection stays open.
    """

    delay: float = DEFAULT_RETRY_DELAY
    backoff: float = DEFAULT_RETRY_BACKOFF
    max_delay: float = DEFAULT_RETRY_MAX_DELAY
    max_attempts: int | None = DEFAULT_RETRY_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        object.__setattr__(self, "delay", _positive_float(self.delay, "Retry delay", allow_zero=True))
        backoff = _positive_float(self.backoff, "Retry backoff")
        if backoff < 1.0:
            raise ValueError("Retry backoff must be at least 1.0")
        object.__setattr__(self, "backoff", backoff)
        max_delay = _positive_float(self.max_delay, "Retry max delay", allow_zero=True)
        object.__setattr__(self, "max_delay", max(max_delay, self.delay))
        if self.max_attempts is not None:
            if isinstance(self.max_attempts, bool) or int(self.max_attempts) < 1:
                raise ValueError("Retry max attempts must be at least 1")
            object.__setattr__(self, "max_attempts", int(self.max_attempts))

    def delay_for(self, attempt: int) -> float:
        """Return the wait after the given (1-based) failed attempt."""

        if attempt < 1:
            return 0.0
        return min(self.delay * self.backoff ** (attempt - 1), self.max_delay)

    def allows(self, attempt: int) -> bool:
        """Whether another attempt may follow ``attempt`` failed ones."""

        return self.max_attempts is None or attempt < self.max_attempts

    def to_dict(self) -> dict[str, object]:
        return {
            "delay": self.delay,
            "backoff": self.backoff,
            "max_delay": self.max_delay,
            "max_attempts": self.max_attempts,
        }


DEFAULT_RETRY_POLICY = RetryPolicy()


@dataclass(frozen=True, slots=True)
class PlayerSettings:
    """Everything a player needs to negotiate one WHEP session."""

    endpoint: str
    ice_gathering_timeout: float = DEFAULT_ICE_GATHERING_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ice_servers: tuple[IceServerSettings, ...] = ()

    def __post_init__(self) -> None:
        endpoint = self.endpoint.strip() if isinstance(self.endpoint, str) else ""
        if not endpoint.lower().startswith(("http://", "https://")):
            raise ValueError("WHEP endpoint must be an http(s) URL")
        object.__setattr__(self, "endpoint", endpoint)
        object.__setattr__(
            self,
            "ice_gathering_timeout",
            _positive_float(self.ice_gathering_timeout, "ICE gathering timeout"),
        )
        object.__setattr__(
            self, "request_timeout", _positive_float(self.request_timeout, "Request timeout")
        )
        object.__setattr__(self, "ice_servers", tuple(self.ice_servers))

    def to_dict(self) -> dict[str, object]:
        return {
            "endpoint": self.endpoint,
            "ice_gathering_timeout": self.ice_gathering_timeout,
            "request_timeout": self.request_timeout,
            "retry": self.retry.to_dict(),
            "ice_servers": [server.to_dict() for server in self.ice_servers],
        }


def _parse_retry_policy(value: Any, *, default: RetryPolicy) -> RetryPolicy:
    if value is None:
        return default
    if not isinstance(value, Mapping):
        raise ValueError("Retry settings must be an object")
    max_attempts = value.get("max_attempts", default.max_attempts)
    if max_attempts is not None:
        try:
            max_attempts = int(max_attempts)
        except (TypeError, ValueError) as exc:
            raise ValueError("Retry max attempts must be an integer") from exc
    return RetryPolicy(
        delay=value.get("delay", default.delay),
        backoff=value.get("backoff", default.backoff),
        max_delay=value.get("max_delay", default.max_delay),
        max_attempts=max_attempts,
    )


def _parse_ice_server(value: Any) -> IceServerSettings:
    if isinstance(value, str):
        return IceServerSettings(urls=(value,))
    if not isinstance(value, Mapping):
        raise ValueError("ICE server entries must be strings or objects")
    urls = value.get("urls")
    if isinstance(urls, str):
        urls = (urls,)
    elif isinstance(urls, Sequence):
        urls = tuple(urls)
    else:
        raise ValueError("ICE server entries need a 'urls' field")
    username = value.get("username")
    credential = value.get("credential")
    return IceServerSettings(
        urls=urls,
        username=str(username) if username is not None else None,
        credential=str(credential) if credential is not None else None,
    )


def _parse_ice_servers(value: Any) -> tuple[IceServerSettings, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, Mapping)) or not isinstance(value, Sequence):
        raise ValueError("ICE servers must be a list")
    return tuple(_parse_ice_server(entry) for entry in value)


def parse_settings(payload: Mapping[str, Any]) -> PlayerSettings:
    """Build :class:`PlayerSettings` from a decoded JSON object."""

    if not isinstance(payload, Mapping):
        raise ValueError("Configuration must be a JSON object")
    endpoint = payload.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint.strip():
        raise ValueError("Configuration requires an 'endpoint'")
    return PlayerSettings(
        endpoint=endpoint,
        ice_gathering_timeout=payload.get("ice_gathering_timeout", DEFAULT_ICE_GATHERING_TIMEOUT),
        request_timeout=payload.get("request_timeout", DEFAULT_REQUEST_TIMEOUT),
        retry=_parse_retry_policy(payload.get("retry"), default=DEFAULT_RETRY_POLICY),
        ice_servers=_parse_ice_servers(payload.get("ice_servers")),
    )


def load_settings(path: Path | str) -> PlayerSettings:
    """Read player settings from a JSON file."""

    config_path = Path(path)
    try:
        payload = json.loads(config_path.read_text())
        return parse_settings(payload)
    except (OSError, ValueError) as exc:
        raise RuntimeError(f"Failed to load configuration: {exc}") from exc


def save_settings(path: Path | str, settings: PlayerSettings) -> None:
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(settings.to_dict(), indent=2))


__all__ = [
    "DEFAULT_ICE_GATHERING_TIMEOUT",
    "DEFAULT_REQUEST_TIMEOUT",
    "DEFAULT_RETRY_POLICY",
    "IceServerSettings",
    "PlayerSettings",
    "RetryPolicy",
    "load_settings",
    "parse_settings",
    "save_settings",
]
