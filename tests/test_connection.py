import asyncio

import pytest
from aiortc import RTCSessionDescription

from whep_player.connection import MediaConnection, MediaStream
from whep_player.engine import MediaEngine, build_rtc_configuration
from whep_player.errors import MediaConnectionError

from fakes import FakeTrack, run_async


def test_media_stream_keeps_one_track_per_kind() -> None:
    stream = MediaStream()
    video = FakeTrack("video")
    audio = FakeTrack("audio")
    assert stream.add_track(video) is True
    assert stream.add_track(FakeTrack("video")) is False
    assert stream.add_track(audio) is True
    assert stream.add_track(FakeTrack("audio")) is False
    assert stream.add_track(FakeTrack("data")) is False
    assert stream.video_track is video
    assert stream.audio_track is audio
    assert len(stream) == 2
    stream.clear()
    assert stream.tracks() == []


def test_transceivers_raise_negotiation_needed() -> None:
    async def _test() -> None:
        connection = MediaConnection(build_rtc_configuration())
        signals: list[None] = []
        connection.on_negotiation_needed.subscribe(signals.append)
        try:
            connection.add_transceiver("video")
            connection.add_transceiver("audio")
            assert signals == []
            await asyncio.sleep(0)
            assert len(signals) == 2
            assert connection.transceiver_kinds == ("video", "audio")
        finally:
            await connection.close()

    run_async(_test())


def test_offer_contains_recvonly_media_and_candidates() -> None:
    async def _test() -> None:
        connection = MediaConnection(build_rtc_configuration())
        states: list[str] = []
        connection.on_ice_gathering_state_change.subscribe(states.append)
        try:
            connection.add_transceiver("video")
            connection.add_transceiver("audio")
            offer = await connection.create_offer()
            await connection.set_local_description(offer)
            assert connection.ice_gathering_state == "complete"
            assert states[-1] == "complete"
            sdp = connection.local_description.sdp
            assert "m=video" in sdp
            assert "m=audio" in sdp
            assert "a=recvonly" in sdp
        finally:
            await connection.close()

    run_async(_test())


def test_out_of_order_description_raises_connection_error() -> None:
    async def _test() -> None:
        offerer = MediaConnection(build_rtc_configuration())
        connection = MediaConnection(build_rtc_configuration())
        try:
            offerer.add_transceiver("video")
            offer = await offerer.create_offer()
            with pytest.raises(MediaConnectionError, match="remote description"):
                await connection.set_remote_description(
                    RTCSessionDescription(sdp=offer.sdp, type="answer")
                )
        finally:
            await offerer.close()
            await connection.close()

    run_async(_test())


def test_closed_connection_rejects_operations() -> None:
    async def _test() -> None:
        connection = MediaConnection(build_rtc_configuration())
        connection.on_track.subscribe(lambda track: None)
        await connection.close()
        await connection.close()
        assert connection.closed is True
        assert connection.connection_state == "closed"
        assert len(connection.on_track) == 0
        with pytest.raises(MediaConnectionError):
            await connection.create_offer()
        with pytest.raises(MediaConnectionError):
            connection.add_transceiver("video")

    run_async(_test())


def test_rtc_configuration_disables_stun_by_default() -> None:
    from aiortc import RTCBundlePolicy

    from whep_player.config import IceServerSettings

    configuration = build_rtc_configuration()
    assert configuration.iceServers == []
    assert configuration.bundlePolicy == RTCBundlePolicy.MAX_BUNDLE

    configuration = build_rtc_configuration(
        [IceServerSettings(urls=("turn:turn.example:3478",), username="u", credential="p")]
    )
    server = configuration.iceServers[0]
    assert server.urls == ["turn:turn.example:3478"]
    assert server.username == "u"
    assert server.credential == "p"


def test_engine_requires_initialisation() -> None:
    async def _test() -> None:
        engine = MediaEngine()
        with pytest.raises(MediaConnectionError, match="not initialised"):
            engine.create_connection()

    run_async(_test())


def test_engine_shutdown_closes_live_connections() -> None:
    async def _test() -> None:
        async with MediaEngine() as engine:
            first = engine.create_connection()
            second = engine.create_connection()
            await first.close()
            assert engine.connection_count == 1
        assert engine.running is False
        assert second.closed is True

    run_async(_test())
