"""Command line launcher that plays a WHEP stream and reports what arrives."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import Sequence

from .config import IceServerSettings, PlayerSettings, load_settings
from .engine import MediaEngine
from .logging_utils import configure_logging
from .player import PlayerState, WHEPPlayer
from .sinks import AudioDrainSink, LatestFrameSink


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the player CLI."""

    parser = argparse.ArgumentParser(
        prog="whep-player",
        description="Negotiate a WHEP session and report on the received media.",
    )
    parser.add_argument("endpoint", nargs="?", help="WHEP endpoint URL.")
    parser.add_argument("--config", help="JSON settings file.")
    parser.add_argument(
        "--duration",
        type=float,
        default=5.0,
        help="Seconds to keep playing once the stream is ready (default: 5).",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for the stream to become ready (default: 60).",
    )
    parser.add_argument("--ice-timeout", type=float, help="ICE gathering timeout in seconds.")
    parser.add_argument("--retry-delay", type=float, help="Delay between offer attempts.")
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Maximum offer attempts; 0 retries until the connection closes.",
    )
    parser.add_argument(
        "--ice-server",
        action="append",
        default=[],
        metavar="URL",
        help="STUN/TURN server URL. May be repeated; none are used by default.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def settings_from_args(args: argparse.Namespace) -> PlayerSettings:
    """Merge the optional config file with command line overrides."""

    if args.config:
        settings = load_settings(args.config)
        if args.endpoint:
            settings = dataclasses.replace(settings, endpoint=args.endpoint)
    elif args.endpoint:
        settings = PlayerSettings(endpoint=args.endpoint)
    else:
        raise ValueError("An endpoint or --config file is required")

    retry = settings.retry
    if args.retry_delay is not None:
        retry = dataclasses.replace(retry, delay=args.retry_delay)
    if args.max_attempts is not None:
        retry = dataclasses.replace(retry, max_attempts=args.max_attempts or None)
    overrides: dict[str, object] = {"retry": retry}
    if args.ice_timeout is not None:
        overrides["ice_gathering_timeout"] = args.ice_timeout
    if args.ice_server:
        overrides["ice_servers"] = settings.ice_servers + tuple(
            IceServerSettings(urls=(url,)) for url in args.ice_server
        )
    return dataclasses.replace(settings, **overrides)


async def play_stream(
    settings: PlayerSettings, *, duration: float, connect_timeout: float
) -> int:
    video = LatestFrameSink()
    audio = AudioDrainSink()
    async with MediaEngine() as engine:
        player = WHEPPlayer(engine, settings)
        player.bind_video_sink(video)
        player.bind_audio_sink(audio)
        await player.play()
        try:
            state = await player.wait_for_state(
                PlayerState.PLAYING, PlayerState.ERROR, timeout=connect_timeout
            )
            if state is PlayerState.ERROR:
                print(f"Playback failed: {player.last_error}")
                return 1
            session = player.session
            location = session.resource_location if session is not None else None
            print(f"Playing {settings.endpoint}")
            print(f" - Resource: {location}")
            await asyncio.sleep(duration)
            size = video.frame_size
            print(
                f" - Video: {video.frames} frame(s)"
                + (f", {size[0]}x{size[1]}" if size else "")
            )
            rate = f" at {audio.sample_rate} Hz" if audio.sample_rate else ""
            print(f" - Audio: {audio.samples} sample(s){rate}")
            return 0
        except asyncio.TimeoutError:
            print(f"Timed out after {connect_timeout:.0f}s waiting for the stream")
            return 1
        finally:
            await player.stop()


def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        settings = settings_from_args(args)
    except (RuntimeError, ValueError) as exc:
        parser.error(str(exc))
    return asyncio.run(
        play_stream(settings, duration=args.duration, connect_timeout=args.connect_timeout)
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by `python -m whep_player` and `whep-player`."""

    return run(argv)


__all__ = ["build_parser", "main", "play_stream", "run", "settings_from_args"]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())
