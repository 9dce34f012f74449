"""룸 멤버십 변화에 반응하는 모듈.

멤버십 서비스가 참가자 목록 전체를 갱신할 때마다, 로컬 참가자가 음성에
참여 중이면 아직 세션이 없는 피어에게 offer를 보냅니다.

Glare 회피 규칙:
    새 피어를 "관찰한" 쪽만 offer를 보내고, 새로 들어온 피어는 offer를
    기다립니다. 명시적인 glare 해소 로직 대신 이 비대칭 규칙에 의존합니다.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..shared.dto import Participant
from ..shared.errors import CaptureDenied, StaleReference
from ..session.state import LocalSessionState
from ..signaling.messages import PeerDisconnected
from ..signaling.outbound import OutboundSignaling
from ..webrtc.peer_manager import PeerSessionBuilder

logger = logging.getLogger(__name__)


class MembershipReactor:
    """멤버십 변경 시 offer 개시, 퇴장 시 세션 정리를 담당하는 클래스.

    Attributes:
        builder (PeerSessionBuilder): 세션 생성/정리
        outbound (OutboundSignaling): offer 송신 경로
        state (LocalSessionState): joined 여부 조회
        self_peer_id (Optional[str]): 릴레이가 부여한 로컬 피어 ID
        participants (List[Participant]): 마지막으로 받은 참가자 목록
    """

    def __init__(
        self,
        builder: PeerSessionBuilder,
        outbound: OutboundSignaling,
        state: LocalSessionState,
        self_peer_id: Optional[str] = None,
    ):
        self.builder = builder
        self.outbound = outbound
        self.state = state
        self.self_peer_id = self_peer_id
        self.participants: List[Participant] = []

    def set_self_peer_id(self, peer_id: str) -> None:
        self.self_peer_id = peer_id
        logger.info(f"[Membership] 로컬 피어 ID: {peer_id[:8]}")

    async def on_members_changed(self, participants: Iterable[Participant]) -> List[str]:
        """참가자 목록 갱신 처리.

        Args:
            participants: 현재 룸의 전체 참가자 목록

        Returns:
            List[str]: 이번 갱신에서 offer를 보낸 피어 ID 목록
        """
        self.participants = list(participants)
        if not self.state.joined:
            return []
        if self.self_peer_id is None:
            logger.warning("[Membership] 로컬 피어 ID 미확인, offer 개시 보류")
            return []

        targets = [
            p.peer_id for p in self.participants
            if p.peer_id != self.self_peer_id
            and p.peer_id not in self.builder.table
            and not self.builder.is_building(p.peer_id)
        ]
        if not targets:
            return []

        logger.info(f"[Membership] 새 피어 {len(targets)}명에게 offer 개시")
        results = await asyncio.gather(*(self._initiate(peer_id) for peer_id in targets))
        return [peer_id for peer_id, sent in zip(targets, results) if sent]

    async def refresh(self) -> List[str]:
        """마지막 참가자 목록으로 다시 offer 개시를 시도합니다 (join 직후 사용)."""
        return await self.on_members_changed(self.participants)

    async def _initiate(self, peer_id: str) -> bool:
        try:
            session = await self.builder.build_session(peer_id)
        except StaleReference:
            return False
        except CaptureDenied as e:
            logger.warning(f"[Membership] 피어 {peer_id[:8]} 건너뜀 (마이크 없음): {e}")
            await self.builder.teardown(peer_id)
            return False
        except Exception as e:
            logger.error(f"[Membership] 피어 {peer_id[:8]} 세션 생성 실패: {e}", exc_info=True)
            await self.builder.teardown(peer_id)
            return False

        pc = session.transport
        if pc.localDescription is not None or pc.remoteDescription is not None:
            # 그 사이에 상대 offer로 이미 협상 중
            logger.info(f"[Membership] 피어 {peer_id[:8]} 이미 협상 중, offer 생략")
            return False

        try:
            offer = await pc.createOffer()
            if not self.builder.table.is_current(session):
                return False
            await pc.setLocalDescription(offer)
            if not self.builder.table.is_current(session):
                return False
        except Exception as e:
            logger.error(f"[Membership] 피어 {peer_id[:8]} offer 생성 실패: {e}")
            if self.builder.table.is_current(session) and pc.remoteDescription is None:
                await self.builder.teardown(peer_id)
            return False

        await self.outbound.send_offer(peer_id, pc.localDescription)
        logger.info(f"[Membership] offer 전송 -> {peer_id[:8]}")
        return True

    async def on_peer_departed(self, peer_id: str) -> None:
        """피어 퇴장 처리: joined 여부와 무관하게 세션을 정리합니다."""
        self.participants = [p for p in self.participants if p.peer_id != peer_id]
        await self.builder.teardown(peer_id)
        logger.info(f"[Membership] 피어 {peer_id[:8]} 퇴장 처리")

    async def handle_departure_event(self, payload: Dict[str, Any]) -> None:
        """멤버십 서비스의 peer-disconnected 페이로드 처리."""
        message = PeerDisconnected.model_validate(payload)
        await self.on_peer_departed(message.user.peer_id)
