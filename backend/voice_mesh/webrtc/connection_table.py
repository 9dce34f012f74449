"""피어 연결 테이블.

peer_id -> PeerSession 매핑을 소유하는 단일 진실 공급원(single source of truth)입니다.
테이블은 PeerSessionBuilder의 build_session()/teardown()을 통해서만 변경되며,
나머지 컴포넌트와 UI는 조회만 합니다.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from aiortc import RTCIceCandidate, RTCPeerConnection

from .playback import PlaybackSink

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PeerSession:
    """원격 참가자 한 명과의 연결 상태.

    Attributes:
        peer_id (str): 원격 피어 ID
        transport (RTCPeerConnection): 세션이 단독 소유하는 피어 연결
        playback_sink (PlaybackSink): transport와 1:1로 묶인 재생 싱크
        locally_muted (bool): 이 기기에서만 적용되는 재생 음소거 (전송되지 않음)
        pending_candidates (List[RTCIceCandidate]): remote description 설정 전에
            도착한 원격 ICE candidate 큐
    """
    peer_id: str
    transport: RTCPeerConnection
    playback_sink: PlaybackSink
    locally_muted: bool = False
    pending_candidates: List[RTCIceCandidate] = field(default_factory=list)

    @property
    def has_remote_description(self) -> bool:
        return self.transport.remoteDescription is not None

    @property
    def signaling_state(self) -> str:
        return self.transport.signalingState

    @property
    def is_defunct(self) -> bool:
        """transport가 닫혔거나 실패해서 더 이상 협상에 쓸 수 없는지 여부."""
        transport = self.transport
        return transport.signalingState == "closed" or transport.connectionState in ("closed", "failed")


class ConnectionTable:
    """peer_id -> PeerSession 매핑.

    Invariants:
        - peer_id당 세션은 최대 하나
        - 테이블의 모든 transport는 살아있거나 제거 중인 상태
    """

    def __init__(self):
        # peer_id -> PeerSession
        self._sessions: Dict[str, PeerSession] = {}

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, peer_id: str) -> Optional[PeerSession]:
        return self._sessions.get(peer_id)

    def peer_ids(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[PeerSession]:
        return list(self._sessions.values())

    def is_current(self, session: PeerSession) -> bool:
        """세션이 아직 테이블에 등록된 바로 그 인스턴스인지 확인합니다.

        비동기 작업 재개 후 세션이 teardown 되었는지(또는 교체되었는지) 판단할 때 사용합니다.
        """
        return self._sessions.get(session.peer_id) is session

    def muted_map(self) -> Dict[str, bool]:
        """UI 렌더링용 peer_id -> 로컬 재생 음소거 여부."""
        return {peer_id: s.locally_muted for peer_id, s in self._sessions.items()}

    def insert(self, session: PeerSession) -> None:
        if session.peer_id in self._sessions:
            raise ValueError(f"session for peer {session.peer_id} already registered")
        self._sessions[session.peer_id] = session
        logger.debug(f"[Table] 세션 등록: {session.peer_id[:8]} (총 {len(self._sessions)})")

    def remove(self, peer_id: str) -> Optional[PeerSession]:
        session = self._sessions.pop(peer_id, None)
        if session is not None:
            logger.debug(f"[Table] 세션 제거: {peer_id[:8]} (총 {len(self._sessions)})")
        return session
