"""음성 세션 컨트롤러.

UI에 노출되는 최상위 API입니다: 음성 참여/퇴장, 로컬 음소거, 원격 재생 음소거.
UI는 joined/local_muted/remote_muted를 읽기만 하고, 연결 테이블이 유일한
진실 공급원입니다.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from ..shared.dto import Participant
from ..shared.errors import RelayUnavailable
from ..signaling.messages import STATUS_IN_VOICE, STATUS_ONLINE
from ..webrtc.capture import MediaCaptureManager
from ..webrtc.peer_manager import PeerSessionBuilder
from .state import LocalSessionState

if TYPE_CHECKING:
    from ..room.membership import MembershipReactor
    from ..signaling.relay_client import RelayClient

logger = logging.getLogger(__name__)


class SessionController:
    """join/leave/음소거 동작을 제공하는 클래스.

    Attributes:
        state (LocalSessionState): joined/local_muted 상태
        capture (MediaCaptureManager): 로컬 마이크 관리자
        builder (PeerSessionBuilder): 세션 정리에 사용
        reactor (Optional[MembershipReactor]): 참가자 목록 조회용
        relay (Optional[RelayClient]): 참여 상태 알림 및 close() 시 함께 닫을 릴레이 연결

    Note:
        join()은 피어 세션을 직접 만들지 않습니다. 세션 생성은 다음 멤버십 갱신
        (또는 MembershipReactor.refresh())에서 이루어집니다.

    Examples:
        >>> controller = SessionController(state, capture, builder, reactor)
        >>> await controller.join()
        >>> controller.toggle_local_mute()
        True
        >>> await controller.leave()
    """

    def __init__(
        self,
        state: LocalSessionState,
        capture: MediaCaptureManager,
        builder: PeerSessionBuilder,
        reactor: Optional["MembershipReactor"] = None,
        relay: Optional["RelayClient"] = None,
    ):
        self.state = state
        self.capture = capture
        self.builder = builder
        self.reactor = reactor
        self.relay = relay

    # ============================================================
    # UI 조회용
    # ============================================================

    @property
    def joined(self) -> bool:
        return self.state.joined

    @property
    def local_muted(self) -> bool:
        return self.state.local_muted

    @property
    def remote_muted(self) -> Dict[str, bool]:
        return self.builder.table.muted_map()

    @property
    def participants(self) -> List[Participant]:
        if self.reactor is None:
            return []
        return list(self.reactor.participants)

    # ============================================================
    # 동작
    # ============================================================

    async def join(self) -> bool:
        """음성에 참여합니다.

        Returns:
            bool: 새로 참여했으면 True, 이미 참여 중이면 False

        Raises:
            CaptureDenied: 마이크 획득 실패 (상태는 바뀌지 않음)
        """
        if self.state.joined:
            return False

        await self.capture.acquire()
        self.state.joined = True
        self.state.local_muted = False
        self.capture.set_local_muted(False)
        logger.info("[Voice] 음성 참여")
        await self._announce(STATUS_IN_VOICE)
        return True

    async def leave(self) -> None:
        """음성에서 나갑니다. 여러 번 호출해도 안전합니다.

        로컬 스트림을 해제하고 모든 피어 세션을 협상 상태와 무관하게 정리합니다.
        """
        was_joined = self.state.joined
        self.state.reset()
        self.capture.release()
        await self.builder.teardown_all()
        if was_joined:
            logger.info("[Voice] 음성 퇴장")
            await self._announce(STATUS_ONLINE)

    def toggle_local_mute(self) -> Optional[bool]:
        """로컬 마이크 음소거를 토글합니다.

        Returns:
            Optional[bool]: 새 음소거 상태, 참여 중이 아니면 None
        """
        if not self.state.joined:
            return None
        self.state.local_muted = not self.state.local_muted
        self.capture.set_local_muted(self.state.local_muted)
        return self.state.local_muted

    def toggle_remote_mute(self, peer_id: str) -> Optional[bool]:
        """피어 재생 음소거를 토글합니다 (이 기기에서만 적용, 전송하지 않음).

        Returns:
            Optional[bool]: 새 음소거 상태, 세션이 없으면 None
        """
        session = self.builder.table.get(peer_id)
        if session is None:
            return None
        session.locally_muted = not session.locally_muted
        session.playback_sink.set_muted(session.locally_muted)
        logger.info(f"[Voice] 피어 {peer_id[:8]} 재생 음소거: {session.locally_muted}")
        return session.locally_muted

    async def close(self) -> None:
        """음성에서 나가고 릴레이 연결까지 닫습니다 (클라이언트 종료 시)."""
        await self.leave()
        if self.relay is not None:
            await self.relay.close()

    async def _announce(self, status: str) -> None:
        """룸 참가자 목록의 내 상태를 갱신합니다. 릴레이가 끊겨 있으면 로그만 남깁니다."""
        if self.relay is None:
            return
        try:
            await self.relay.set_status(status)
        except RelayUnavailable as e:
            logger.warning(f"[Voice] 상태 알림 실패 ({status}): {e}")
