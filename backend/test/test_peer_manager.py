"""Unit tests for PeerSessionBuilder."""

import asyncio

import pytest
from aiortc import RTCIceCandidate
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from conftest import blackhole_sink, build_harness, denied_device, make_device_factory
from voice_mesh.shared.errors import CaptureDenied, StaleReference
from voice_mesh.signaling.messages import ICE_CANDIDATE
from voice_mesh.webrtc.peer_manager import PeerSessionBuilder


class TestBuildSession:
    """Test one-session-per-peer construction."""

    @pytest.mark.asyncio
    async def test_build_twice_returns_same_session(self, peer) -> None:
        first = await peer.builder.build_session("peer-b")
        second = await peer.builder.build_session("peer-b")

        assert first is second
        assert len(peer.transports) == 1
        assert peer.table.get("peer-b") is first
        assert len(first.transport.tracks) == 1

    @pytest.mark.asyncio
    async def test_interleaved_builds_share_construction(self, peer) -> None:
        sessions = await asyncio.gather(
            peer.builder.build_session("peer-b"),
            peer.builder.build_session("peer-b"),
        )

        assert sessions[0] is sessions[1]
        assert len(peer.transports) == 1
        assert not peer.builder.is_building("peer-b")

    @pytest.mark.asyncio
    async def test_sessions_share_one_device(self, peer) -> None:
        await asyncio.gather(
            peer.builder.build_session("peer-b"),
            peer.builder.build_session("peer-c"),
        )

        assert sorted(peer.table.peer_ids()) == ["peer-b", "peer-c"]
        track_b = peer.table.get("peer-b").transport.tracks[0]
        track_c = peer.table.get("peer-c").transport.tracks[0]
        assert track_b is not track_c

    @pytest.mark.asyncio
    async def test_capture_denied_registers_nothing(self, relay) -> None:
        harness = build_harness("me", relay, device_factory=denied_device)

        with pytest.raises(CaptureDenied):
            await harness.builder.build_session("peer-b")

        assert "peer-b" not in harness.table
        assert harness.transports[0].close_count == 1
        assert not harness.builder.is_building("peer-b")

    @pytest.mark.asyncio
    async def test_teardown_during_construction(self, relay) -> None:
        gate = asyncio.Event()
        harness = build_harness("me", relay, device_factory=make_device_factory(gate=gate))

        building = asyncio.ensure_future(harness.builder.build_session("peer-b"))
        await asyncio.sleep(0)
        assert harness.builder.is_building("peer-b")

        assert await harness.builder.teardown("peer-b") is False
        gate.set()

        with pytest.raises(StaleReference):
            await building
        assert "peer-b" not in harness.table
        assert harness.transports[0].close_count == 1
        await harness.controller.leave()

    @pytest.mark.asyncio
    async def test_failed_session_is_replaced(self, peer) -> None:
        stale = await peer.builder.build_session("peer-b")
        stale.transport.connectionState = "failed"

        fresh = await peer.builder.build_session("peer-b")

        assert fresh is not stale
        assert peer.table.get("peer-b") is fresh
        assert stale.transport.close_count == 1
        assert stale.playback_sink.closed
        assert len(peer.transports) == 2

    @pytest.mark.asyncio
    async def test_transport_factory_error_closes_sink(self, peer) -> None:
        sinks = []

        def broken_transport(configuration):
            raise RuntimeError("no network")

        def recording_sink(peer_id):
            sinks.append(blackhole_sink(peer_id))
            return sinks[-1]

        builder = PeerSessionBuilder(
            peer.table,
            peer.capture,
            peer.outbound,
            transport_factory=broken_transport,
            sink_factory=recording_sink,
        )

        with pytest.raises(RuntimeError):
            await builder.build_session("peer-b")

        assert "peer-b" not in peer.table
        assert not builder.is_building("peer-b")
        assert sinks[0].closed


class TestTeardown:
    """Test idempotent teardown."""

    @pytest.mark.asyncio
    async def test_teardown_unknown_peer(self, peer) -> None:
        assert await peer.builder.teardown("ghost") is False
        assert "ghost" not in peer.table

    @pytest.mark.asyncio
    async def test_teardown_twice(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")

        assert await peer.builder.teardown("peer-b") is True
        assert await peer.builder.teardown("peer-b") is False

        assert "peer-b" not in peer.table
        assert session.transport.close_count == 1
        assert session.playback_sink.closed

    @pytest.mark.asyncio
    async def test_teardown_clears_pending_candidates(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")
        session.pending_candidates.append(object())

        await peer.builder.teardown("peer-b")
        assert session.pending_candidates == []

    @pytest.mark.asyncio
    async def test_teardown_survives_close_errors(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")

        async def broken_close():
            raise RuntimeError("transport already gone")

        session.transport.close = broken_close
        assert await peer.builder.teardown("peer-b") is True
        assert "peer-b" not in peer.table
        assert session.playback_sink.closed

    @pytest.mark.asyncio
    async def test_teardown_all(self, peer) -> None:
        await peer.builder.build_session("peer-b")
        await peer.builder.build_session("peer-c")

        await peer.builder.teardown_all()
        assert len(peer.table) == 0
        assert all(pc.close_count == 1 for pc in peer.transports)


class TestTransportEvents:
    """Test handlers registered on the transport."""

    @pytest.mark.asyncio
    async def test_local_candidate_sent_immediately(self, peer, relay) -> None:
        session = await peer.builder.build_session("peer-b")
        candidate = RTCIceCandidate(
            component=1,
            foundation="1",
            ip="192.168.0.10",
            port=50000,
            priority=2130706431,
            protocol="udp",
            type="host",
            sdpMid="0",
            sdpMLineIndex=0,
        )

        # remote description 전이어도 바로 전송
        await session.transport.fire("icecandidate", candidate)
        await session.transport.fire("icecandidate", None)

        sent = relay.events(ICE_CANDIDATE)
        assert len(sent) == 1
        assert sent[0]["targetPeerId"] == "peer-b"
        assert sent[0]["candidate"]["candidate"].startswith("candidate:1 1 udp")
        assert sent[0]["candidate"]["sdpMid"] == "0"

    @pytest.mark.asyncio
    async def test_first_audio_track_bound_to_sink(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")
        first = AudioStreamTrack()

        await session.transport.fire("track", VideoStreamTrack())
        assert not session.playback_sink.attached

        await session.transport.fire("track", first)
        await session.transport.fire("track", AudioStreamTrack())
        assert session.playback_sink.track.track is first

    @pytest.mark.asyncio
    async def test_remote_close_tears_down_session(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")
        pc = session.transport

        # 상대가 연결을 닫으면 transport가 스스로 closed로 전이
        pc.connectionState = "closed"
        await pc.fire("connectionstatechange")

        assert "peer-b" not in peer.table
        assert pc.close_count == 1
        assert session.playback_sink.closed

    @pytest.mark.asyncio
    async def test_close_of_replaced_transport_keeps_new_session(self, peer) -> None:
        old = await peer.builder.build_session("peer-b")
        await peer.builder.teardown("peer-b")
        new = await peer.builder.build_session("peer-b")

        await old.transport.fire("connectionstatechange")

        assert peer.table.get("peer-b") is new
        assert new.transport.close_count == 0

    @pytest.mark.asyncio
    async def test_failed_connection_is_kept(self, peer) -> None:
        session = await peer.builder.build_session("peer-b")

        session.transport.connectionState = "failed"
        await session.transport.fire("connectionstatechange")

        assert peer.table.get("peer-b") is session
