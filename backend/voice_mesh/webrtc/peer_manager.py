"""피어 세션 생성/정리 모듈.

이 모듈은 원격 참가자 한 명당 하나의 RTCPeerConnection을 만들고, 로컬 마이크 트랙과
원격 재생 싱크를 연결한 뒤 ConnectionTable에 등록합니다. 룸의 모든 참가자끼리
직접 연결하는 풀 메시(full mesh) 구조이며 서버는 미디어를 중계하지 않습니다.

주요 기능:
    - 피어 세션 생성 (피어 ID당 하나, 중복 요청 시 기존 세션 반환)
    - 닫히거나 실패한 세션은 재사용하지 않고 새 세션으로 교체
    - 원격에서 연결이 닫히면 세션 자동 정리
    - ICE candidate 발견 즉시 시그널링 송신 경로로 전달
    - 첫 번째 원격 오디오 트랙을 재생 싱크에 연결
    - 세션 정리 (transport 종료, 싱크 분리, 테이블 제거)

Session Build Flow:
    1. STUN 서버만 설정된 RTCPeerConnection 생성
    2. icecandidate 핸들러 등록 (발견 즉시 송신, fire-and-forget)
    3. 재생 싱크 생성 및 track 핸들러 등록
    4. 로컬 스트림 획득 후 로컬 트랙 추가 (실패 시 등록하지 않음)
    5. ConnectionTable에 등록

Examples:
    >>> builder = PeerSessionBuilder(table, capture, outbound)
    >>> session = await builder.build_session("peer-456")
    >>> await builder.teardown("peer-456")

See Also:
    signaling/dispatcher.py: 수신 시그널링 처리
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Dict, Optional

from aiortc import MediaStreamTrack, RTCConfiguration, RTCPeerConnection

from ..shared.errors import CaptureDenied, StaleReference
from .capture import MediaCaptureManager
from .config import build_rtc_configuration
from .connection_table import ConnectionTable, PeerSession
from .playback import PlaybackSink

if TYPE_CHECKING:
    from ..signaling.outbound import OutboundSignaling

logger = logging.getLogger(__name__)

TransportFactory = Callable[[RTCConfiguration], RTCPeerConnection]
SinkFactory = Callable[[str], PlaybackSink]


def default_transport_factory(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class PeerSessionBuilder:
    """피어 세션을 만들고 정리하는 클래스.

    ConnectionTable을 변경하는 유일한 경로(build_session/teardown)입니다.

    Attributes:
        table (ConnectionTable): 피어 ID -> PeerSession 테이블
        capture (MediaCaptureManager): 로컬 마이크 관리자
        outbound (OutboundSignaling): ICE candidate를 보낼 송신 경로

    Concurrency:
        - 단일 asyncio 루프에서 동작하므로 락은 사용하지 않음
        - 마이크 획득 대기 중 같은 피어에 대한 요청이 겹치면 진행 중인 생성 작업을 공유함
        - 생성 도중 teardown()이 호출되면 생성 결과는 등록되지 않고 transport가 닫힘
    """

    def __init__(
        self,
        table: ConnectionTable,
        capture: MediaCaptureManager,
        outbound: "OutboundSignaling",
        transport_factory: Optional[TransportFactory] = None,
        sink_factory: Optional[SinkFactory] = None,
        rtc_configuration: Optional[RTCConfiguration] = None,
    ):
        self.table = table
        self.capture = capture
        self.outbound = outbound
        self._transport_factory = transport_factory or default_transport_factory
        self._sink_factory = sink_factory or PlaybackSink
        self._rtc_configuration = rtc_configuration

        # peer_id -> 진행 중인 세션 생성 작업
        self._building: Dict[str, asyncio.Task] = {}

    @property
    def rtc_configuration(self) -> RTCConfiguration:
        if self._rtc_configuration is None:
            self._rtc_configuration = build_rtc_configuration()
        return self._rtc_configuration

    def is_building(self, peer_id: str) -> bool:
        return peer_id in self._building

    async def build_session(self, peer_id: str) -> PeerSession:
        """피어 세션을 생성하거나 기존 세션을 반환합니다.

        기존 세션의 transport가 closed/failed 상태이면 정리한 뒤 새로 만듭니다.

        Args:
            peer_id (str): 원격 피어 ID

        Returns:
            PeerSession: 테이블에 등록된 세션

        Raises:
            CaptureDenied: 로컬 마이크 획득 실패 (세션은 등록되지 않음)
            StaleReference: 생성 도중 teardown 되었을 때
            Exception: transport 생성 오류는 그대로 전파
        """
        existing = self.table.get(peer_id)
        if existing is not None:
            if not existing.is_defunct:
                return existing
            # 닫히거나 실패한 transport는 재사용하지 않고 새로 만듦
            logger.info(
                f"[WebRTC] 피어 {peer_id[:8]} 기존 연결 종료됨 "
                f"(connection={existing.transport.connectionState}), 새 세션으로 교체"
            )
            await self.teardown(peer_id)

        task = self._building.get(peer_id)
        if task is None:
            task = asyncio.ensure_future(self._construct(peer_id))
            self._building[peer_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._building.get(peer_id) is task:
                del self._building[peer_id]

    async def _construct(self, peer_id: str) -> PeerSession:
        logger.info(f"[WebRTC] 피어 연결 생성: peer={peer_id[:8]}")
        this_task = asyncio.current_task()

        sink = self._sink_factory(peer_id)
        try:
            pc = self._transport_factory(self.rtc_configuration)
        except Exception:
            await sink.close()
            raise
        session = PeerSession(peer_id=peer_id, transport=pc, playback_sink=sink)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            """로컬 ICE candidate 발견 즉시 상대에게 전달 (remote description 여부와 무관)."""
            if candidate is None:
                return
            logger.debug(f"[WebRTC] ICE 후보 발견 -> {peer_id[:8]}")
            await self.outbound.send_candidate(peer_id, candidate)

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            """첫 번째 원격 오디오 트랙을 재생 싱크에 연결."""
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} {track.kind} 트랙 수신")
            if track.kind != "audio":
                return
            if not await sink.attach(track):
                logger.debug(f"[WebRTC] 피어 {peer_id[:8]} 추가 트랙 무시")

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            # 재협상/ICE restart 없음, 실패한 연결은 새 offer나 외부 teardown까지 유지
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 상태: {pc.connectionState}")
            if pc.connectionState == "closed" and self.table.is_current(session):
                logger.info(f"[WebRTC] 피어 {peer_id[:8]} 원격에서 연결 종료, 세션 정리")
                await self.teardown(peer_id)

        registered = False
        try:
            await self.capture.acquire()
            if self._building.get(peer_id) is not this_task:
                logger.info(f"[WebRTC] 피어 {peer_id[:8]} 생성 중 teardown 됨, 등록 취소")
                raise StaleReference(peer_id)

            pc.addTrack(self.capture.create_track())
            self.table.insert(session)
            registered = True
        except CaptureDenied as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} 세션 생성 중단 (마이크 없음): {e}")
            raise
        finally:
            if not registered:
                await self._discard(peer_id, pc, sink)

        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 세션 등록 (총 {len(self.table)})")
        return session

    async def teardown(self, peer_id: str) -> bool:
        """피어 세션을 정리합니다.

        테이블에서 먼저 제거한 뒤 transport를 닫고 재생 싱크를 분리합니다.
        진행 중인 비동기 작업은 재개 시 세션이 사라진 것을 확인하고 중단합니다.

        Args:
            peer_id (str): 정리할 피어 ID

        Returns:
            bool: 정리할 세션이 있었으면 True

        Note:
            - 존재하지 않는 피어 ID나 이미 정리된 피어로 호출해도 안전함
            - 생성 중인 세션은 등록되지 않도록 표시만 함
        """
        if self._building.pop(peer_id, None) is not None:
            logger.info(f"[WebRTC] 피어 {peer_id[:8]} 생성 중 teardown 요청")

        session = self.table.remove(peer_id)
        if session is None:
            return False

        session.pending_candidates.clear()
        await self._discard(peer_id, session.transport, session.playback_sink)
        logger.info(f"[WebRTC] 피어 {peer_id[:8]} 연결 종료")
        return True

    async def teardown_all(self) -> None:
        """모든 피어 세션을 협상 상태와 무관하게 정리합니다."""
        peer_ids = set(self.table.peer_ids()) | set(self._building)
        for peer_id in peer_ids:
            await self.teardown(peer_id)

    async def _discard(self, peer_id: str, pc: RTCPeerConnection, sink: PlaybackSink) -> None:
        try:
            await pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} transport 종료 중 오류: {e}")
        try:
            await sink.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {peer_id[:8]} 재생 싱크 분리 중 오류: {e}")
