"""Client for the WebRTC-HTTP Egress Protocol (WHEP)."""

from .config import IceServerSettings, PlayerSettings, RetryPolicy, load_settings
from .connection import MediaConnection, MediaStream
from .engine import MediaEngine
from .errors import (
    IceTimeoutError,
    MediaConnectionError,
    SignalingFatalError,
    SignalingTransientError,
    UnexpectedNegotiationError,
    WHEPError,
)
from .negotiation import NegotiationState, WHEPSession
from .player import PlayerState, WHEPPlayer
from .signaling import Accepted, Fatal, Retry, WHEPSignalingClient

__version__ = "0.1.0"

__all__ = [
    "Accepted",
    "Fatal",
    "IceServerSettings",
    "IceTimeoutError",
    "MediaConnection",
    "MediaConnectionError",
    "MediaEngine",
    "MediaStream",
    "NegotiationState",
    "PlayerSettings",
    "PlayerState",
    "Retry",
    "RetryPolicy",
    "SignalingFatalError",
    "SignalingTransientError",
    "UnexpectedNegotiationError",
    "WHEPError",
    "WHEPPlayer",
    "WHEPSession",
    "WHEPSignalingClient",
    "load_settings",
    "__version__",
]
