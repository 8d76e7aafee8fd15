"""Error hierarchy for WHEP negotiation failures."""
from __future__ import annotations


class WHEPError(RuntimeError):
    """Base error raised when a WHEP session cannot be established."""


class MediaConnectionError(WHEPError):
    """Raised when the local peer connection is unavailable or misused."""


class IceTimeoutError(WHEPError):
    """Raised when ICE candidate gathering does not complete in time."""


class SignalingFatalError(WHEPError):
    """Raised when the WHEP endpoint rejects the offer for good."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SignalingTransientError(WHEPError):
    """Describes a retryable signaling failure. Logged, never surfaced."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnexpectedNegotiationError(WHEPError):
    """Wraps any other exception raised while negotiating."""


__all__ = [
    "WHEPError",
    "MediaConnectionError",
    "IceTimeoutError",
    "SignalingFatalError",
    "SignalingTransientError",
    "UnexpectedNegotiationError",
]
