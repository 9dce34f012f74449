"""Shared fixtures for voice mesh tests.

FakeTransport는 RTCPeerConnection의 시그널링 상태 전이만 흉내내서 협상 순서를
결정적으로 검사할 수 있게 합니다. MemoryRelay는 릴레이 서버 대신 같은 프로세스 안의
피어들 사이에서 targetPeerId 기반으로 메시지를 전달합니다.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiortc import RTCConfiguration, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole
from aiortc.exceptions import InvalidStateError
from aiortc.mediastreams import AudioStreamTrack

from voice_mesh.room.membership import MembershipReactor
from voice_mesh.session.controller import SessionController
from voice_mesh.session.state import LocalSessionState
from voice_mesh.shared.dto import Participant
from voice_mesh.shared.errors import RelayUnavailable
from voice_mesh.signaling.dispatcher import SignalingDispatcher
from voice_mesh.signaling.messages import SET_STATUS
from voice_mesh.signaling.outbound import OutboundSignaling
from voice_mesh.webrtc.capture import MediaCaptureManager
from voice_mesh.webrtc.config import VoiceSettings
from voice_mesh.webrtc.connection_table import ConnectionTable
from voice_mesh.webrtc.peer_manager import PeerSessionBuilder, default_transport_factory
from voice_mesh.webrtc.playback import PlaybackSink

_ids = itertools.count(1)


# ============================================================
# Fake transport
# ============================================================

class FakeTransport:
    """RTCPeerConnection 대역 (시그널링 상태 전이만 구현)."""

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        self.configuration = configuration
        self.id = next(_ids)
        self.handlers: Dict[str, List[Callable]] = {}
        self.tracks: List[Any] = []
        self.candidates: List[Any] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.signalingState = "stable"
        self.connectionState = "new"
        self.close_count = 0
        # 설정되면 setRemoteDescription이 이 이벤트를 기다림
        self.remote_gate: Optional[asyncio.Event] = None
        self.fail_remote = False

    def on(self, event: str):
        def decorator(handler):
            self.handlers.setdefault(event, []).append(handler)
            return handler
        return decorator

    async def fire(self, event: str, *args) -> None:
        for handler in self.handlers.get(event, []):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result

    def addTrack(self, track):
        self.tracks.append(track)

    def _check_open(self):
        if self.signalingState == "closed":
            raise InvalidStateError("RTCPeerConnection is closed")

    async def createOffer(self) -> RTCSessionDescription:
        self._check_open()
        await asyncio.sleep(0)
        return RTCSessionDescription(sdp=f"offer-{self.id}", type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        self._check_open()
        if self.signalingState != "have-remote-offer":
            raise InvalidStateError(f"Cannot create answer in signaling state \"{self.signalingState}\"")
        await asyncio.sleep(0)
        return RTCSessionDescription(sdp=f"answer-{self.id}", type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self._check_open()
        await asyncio.sleep(0)
        if description.type == "offer":
            if self.signalingState != "stable":
                raise InvalidStateError("Cannot set local offer")
            self.signalingState = "have-local-offer"
        else:
            if self.signalingState != "have-remote-offer":
                raise InvalidStateError("Cannot set local answer")
            self.signalingState = "stable"
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self._check_open()
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        await asyncio.sleep(0)
        if self.fail_remote:
            raise ValueError("malformed session description")
        if description.type == "offer":
            if self.signalingState != "stable":
                raise InvalidStateError(
                    f"Cannot handle offer in signaling state \"{self.signalingState}\""
                )
            self.signalingState = "have-remote-offer"
        else:
            if self.signalingState != "have-local-offer":
                raise InvalidStateError(
                    f"Cannot handle answer in signaling state \"{self.signalingState}\""
                )
            self.signalingState = "stable"
        self.remoteDescription = description

    async def addIceCandidate(self, candidate) -> None:
        self._check_open()
        if self.remoteDescription is None:
            raise InvalidStateError("remote description not set")
        self.candidates.append(candidate)

    async def close(self) -> None:
        self.close_count += 1
        self.signalingState = "closed"
        self.connectionState = "closed"


# ============================================================
# Relays
# ============================================================

class FakeRelay:
    """보낸 메시지를 기록만 하는 릴레이."""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.connected = True

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.connected:
            raise RelayUnavailable("relay not connected")
        self.sent.append((event, payload))

    async def set_status(self, status: str) -> None:
        await self.send(SET_STATUS, {"status": status})

    def events(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event, payload in self.sent if event == name]


class MemoryRelay:
    """프로세스 내부 릴레이 허브: targetPeerId를 senderPeerId로 바꿔 대상 dispatcher에 전달."""

    def __init__(self):
        self.endpoints: Dict[str, SignalingDispatcher] = {}
        self.log: List[Tuple[str, str, str]] = []
        self._tasks: List[asyncio.Task] = []

    def channel(self, peer_id: str) -> "MemoryChannel":
        return MemoryChannel(self, peer_id)

    def register(self, peer_id: str, dispatcher: SignalingDispatcher) -> None:
        self.endpoints[peer_id] = dispatcher

    def deliver(self, sender: str, event: str, payload: Dict[str, Any]) -> None:
        body = dict(payload)
        target = body.pop("targetPeerId")
        body["senderPeerId"] = sender
        self.log.append((event, sender, target))
        dispatcher = self.endpoints.get(target)
        if dispatcher is None:
            return
        self._tasks.append(asyncio.ensure_future(dispatcher.dispatch(event, body)))

    def sent(self, event: str, sender: str, target: str) -> int:
        return self.log.count((event, sender, target))

    async def drain(self) -> None:
        while self._tasks:
            tasks, self._tasks = self._tasks, []
            await asyncio.gather(*tasks)


class MemoryChannel:
    def __init__(self, hub: MemoryRelay, peer_id: str):
        self.hub = hub
        self.peer_id = peer_id

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        self.hub.deliver(self.peer_id, event, payload)


# ============================================================
# Capture / playback factories
# ============================================================

def make_device_factory(counter: Optional[List[int]] = None, gate: Optional[asyncio.Event] = None):
    """AudioStreamTrack(무음)을 마이크 대신 돌려주는 장치 팩토리."""
    async def open_device():
        if counter is not None:
            counter.append(1)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        return AudioStreamTrack()
    return open_device


async def denied_device():
    raise PermissionError("microphone access denied")


def blackhole_sink(peer_id: str) -> PlaybackSink:
    return PlaybackSink(peer_id, output_factory=MediaBlackhole)


# ============================================================
# Peer harness
# ============================================================

@dataclass
class PeerHarness:
    """참가자 한 명의 전체 음성 구성."""
    peer_id: str
    relay: Any
    table: ConnectionTable
    state: LocalSessionState
    capture: MediaCaptureManager
    outbound: OutboundSignaling
    builder: PeerSessionBuilder
    dispatcher: SignalingDispatcher
    reactor: MembershipReactor
    controller: SessionController
    transports: List[Any] = field(default_factory=list)

    def transport_for(self, peer_id: str):
        session = self.table.get(peer_id)
        return session.transport if session is not None else None

    async def members(self, *peer_ids: str):
        return await self.reactor.on_members_changed([Participant(p, p.upper()) for p in peer_ids])


def build_harness(
    peer_id: str,
    relay: Any,
    device_factory=None,
    real_transport: bool = False,
) -> PeerHarness:
    transports: List[Any] = []

    def transport_factory(configuration):
        pc = default_transport_factory(configuration) if real_transport else FakeTransport(configuration)
        transports.append(pc)
        return pc

    table = ConnectionTable()
    state = LocalSessionState()
    capture = MediaCaptureManager(
        device_factory=device_factory or make_device_factory(),
        settings=VoiceSettings(),
    )
    outbound = OutboundSignaling(relay)
    builder = PeerSessionBuilder(
        table,
        capture,
        outbound,
        transport_factory=transport_factory,
        sink_factory=blackhole_sink,
        rtc_configuration=RTCConfiguration(iceServers=[]),
    )
    dispatcher = SignalingDispatcher(builder, outbound)
    reactor = MembershipReactor(builder, outbound, state, self_peer_id=peer_id)
    controller = SessionController(state, capture, builder, reactor)
    return PeerHarness(
        peer_id=peer_id,
        relay=relay,
        table=table,
        state=state,
        capture=capture,
        outbound=outbound,
        builder=builder,
        dispatcher=dispatcher,
        reactor=reactor,
        controller=controller,
        transports=transports,
    )


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest_asyncio.fixture
async def peer(relay):
    """FakeRelay에 연결된 참가자 "me"."""
    harness = build_harness("me", relay)
    yield harness
    await harness.controller.leave()


@pytest_asyncio.fixture
async def joined_peer(peer):
    await peer.controller.join()
    return peer


@pytest.fixture
def hub() -> MemoryRelay:
    return MemoryRelay()


@pytest.fixture
def offer_payload():
    def make(sender: str, sdp: str = "remote-offer"):
        return {"offer": {"sdp": sdp, "type": "offer"}, "senderPeerId": sender}
    return make


@pytest.fixture
def answer_payload():
    def make(sender: str, sdp: str = "remote-answer"):
        return {"answer": {"sdp": sdp, "type": "answer"}, "senderPeerId": sender}
    return make


@pytest.fixture
def candidate_payload():
    def make(sender: str, port: int = 50000):
        return {
            "candidate": {
                "candidate": f"candidate:1 1 udp 2130706431 192.168.0.10 {port} typ host",
                "sdpMid": "0",
                "sdpMLineIndex": 0,
            },
            "senderPeerId": sender,
        }
    return make
