"""수신 시그널링 이벤트 처리 모듈.

릴레이에서 받은 offer/answer/ICE candidate/peer-disconnected 이벤트로
해당 피어 세션의 협상 단계를 진행하고, 필요한 응답을 송신 경로로 내보냅니다.

처리 규칙:
    - offer: 세션 생성(또는 재사용) -> remote description -> answer 생성/설정 -> answer 전송
    - answer: 세션이 없으면 버림, 있으면 remote description 설정
    - ice-candidate: 세션이 없으면 버림, remote description 전이면 큐에 보관
    - peer-disconnected: 세션 정리

Error Handling:
    - 모든 실패는 로그만 남기고 이벤트를 버림 (SignalingDropped)
    - 세션이 없는 피어에 대한 이벤트는 조용히 버림 (StaleReference)
    - 예상하지 못한 예외도 스택과 함께 로그를 남기고 버림 (호출자에게 전파하지 않음)
    - 로컬 재시도는 하지 않음, 상대가 새 offer로 다시 시도할 수 있음

Concurrency:
    같은 피어에서 온 이벤트는 도착 순서대로 하나씩 처리하고,
    서로 다른 피어의 이벤트는 독립적으로 진행됩니다.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from aiortc import RTCIceCandidate, RTCSessionDescription
from pydantic import ValidationError

from ..shared.errors import CaptureDenied, SignalingDropped, StaleReference
from ..webrtc.connection_table import PeerSession
from ..webrtc.peer_manager import PeerSessionBuilder
from .messages import (
    ANSWER,
    ICE_CANDIDATE,
    OFFER,
    PEER_DISCONNECTED,
    InboundAnswer,
    InboundCandidate,
    InboundOffer,
    PeerDisconnected,
    SessionDescriptionPayload,
    sender_of,
)
from .outbound import OutboundSignaling

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class SignalingDispatcher:
    """수신 시그널링 이벤트를 피어 세션 협상 단계로 변환하는 클래스.

    Attributes:
        builder (PeerSessionBuilder): 세션 생성/정리
        table (ConnectionTable): builder가 소유한 연결 테이블
        outbound (OutboundSignaling): 송신 경로

    Examples:
        >>> dispatcher = SignalingDispatcher(builder, outbound)
        >>> await dispatcher.dispatch("offer", {"offer": {...}, "senderPeerId": "peer-123"})
    """

    def __init__(self, builder: PeerSessionBuilder, outbound: OutboundSignaling):
        self.builder = builder
        self.table = builder.table
        self.outbound = outbound

        self._handlers: Dict[str, Handler] = {
            OFFER: self.handle_offer,
            ANSWER: self.handle_answer,
            ICE_CANDIDATE: self.handle_candidate,
            PEER_DISCONNECTED: self.handle_peer_disconnected,
        }

        # peer_id -> 이벤트 직렬화용 락 (대기자가 없어지면 제거)
        self._peer_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # ============================================================
    # 송신 경로
    # ============================================================

    async def send_offer(self, peer_id: str, description: RTCSessionDescription) -> None:
        await self.outbound.send_offer(peer_id, description)

    async def send_answer(self, peer_id: str, description: RTCSessionDescription) -> None:
        await self.outbound.send_answer(peer_id, description)

    async def send_candidate(self, peer_id: str, candidate: RTCIceCandidate) -> None:
        await self.outbound.send_candidate(peer_id, candidate)

    # ============================================================
    # 수신 이벤트
    # ============================================================

    async def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        """수신 이벤트 하나를 처리합니다. 예외를 밖으로 던지지 않습니다.

        Args:
            event: 이벤트 이름 (offer, answer, ice-candidate, peer-disconnected)
            payload: 릴레이가 전달한 페이로드 (senderPeerId 포함)
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"[Signaling] 알 수 없는 이벤트 무시: {event}")
            return

        key = sender_of(event, payload) or ""
        lock = self._peer_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                await self._run(event, handler, payload)
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._peer_locks[key]

    async def _run(self, event: str, handler: Handler, payload: Dict[str, Any]) -> None:
        try:
            await handler(payload)
        except ValidationError as e:
            logger.warning(f"[Signaling] 잘못된 {event} 페이로드 버림: {e.error_count()}개 오류")
        except StaleReference as e:
            logger.debug(f"[Signaling] 세션 없는 피어 {e.peer_id[:8]}의 {event} 버림")
        except CaptureDenied as e:
            logger.warning(f"[Signaling] 마이크 없음, {event} 버림: {e}")
        except SignalingDropped as e:
            logger.warning(f"[Signaling] {event} 처리 실패, 이벤트 버림: {e}")
        except Exception as e:
            logger.error(f"[Signaling] {event} 처리 중 예상치 못한 오류, 이벤트 버림: {e}", exc_info=True)

    async def handle_offer(self, payload: Dict[str, Any]) -> None:
        """offer 수신: 세션 생성/재사용 후 answer를 만들어 보냅니다."""
        message = InboundOffer.model_validate(payload)
        peer_id = message.sender_peer_id
        logger.info(f"[Signaling] offer 수신 <- {peer_id[:8]}")

        try:
            session = await self.builder.build_session(peer_id)
        except (CaptureDenied, StaleReference):
            raise
        except Exception as e:
            raise SignalingDropped(f"session build failed: {e}", peer_id) from e

        pc = session.transport
        try:
            await pc.setRemoteDescription(message.offer.to_rtc())
            self._ensure_current(session)
            await self._flush_pending(session)

            answer = await pc.createAnswer()
            self._ensure_current(session)
            await pc.setLocalDescription(answer)
            self._ensure_current(session)
        except StaleReference:
            raise
        except Exception as e:
            self._ensure_current(session)
            raise SignalingDropped(f"offer from {peer_id[:8]}: {type(e).__name__}: {e}", peer_id) from e

        await self.outbound.send_answer(peer_id, pc.localDescription)
        logger.info(f"[Signaling] answer 전송 -> {peer_id[:8]} (signaling={pc.signalingState})")

    async def handle_answer(self, payload: Dict[str, Any]) -> None:
        """answer 수신: 세션이 있으면 remote description을 설정합니다."""
        message = InboundAnswer.model_validate(payload)
        peer_id = message.sender_peer_id
        session = self._lookup(peer_id)

        try:
            await session.transport.setRemoteDescription(message.answer.to_rtc())
            self._ensure_current(session)
            await self._flush_pending(session)
        except StaleReference:
            raise
        except Exception as e:
            self._ensure_current(session)
            raise SignalingDropped(f"answer from {peer_id[:8]}: {type(e).__name__}: {e}", peer_id) from e

        logger.info(f"[Signaling] answer 적용 <- {peer_id[:8]} (signaling={session.signaling_state})")

    async def handle_candidate(self, payload: Dict[str, Any]) -> None:
        """ICE candidate 수신: remote description 전이면 큐에 보관, 아니면 바로 추가합니다."""
        message = InboundCandidate.model_validate(payload)
        peer_id = message.sender_peer_id
        session = self._lookup(peer_id)

        try:
            candidate = message.candidate.to_rtc()
        except ValueError as e:
            raise SignalingDropped(str(e), peer_id) from e

        if not session.has_remote_description:
            session.pending_candidates.append(candidate)
            logger.debug(f"[Signaling] ICE 후보 대기열 보관 <- {peer_id[:8]} ({len(session.pending_candidates)})")
            return

        try:
            await session.transport.addIceCandidate(candidate)
        except Exception as e:
            raise SignalingDropped(f"candidate from {peer_id[:8]}: {e}", peer_id) from e

    async def handle_peer_disconnected(self, payload: Dict[str, Any]) -> None:
        """peer-disconnected 수신: 해당 피어 세션을 정리합니다."""
        message = PeerDisconnected.model_validate(payload)
        await self.builder.teardown(message.user.peer_id)

    # ============================================================
    # 내부 헬퍼
    # ============================================================

    def _lookup(self, peer_id: str) -> PeerSession:
        session = self.table.get(peer_id)
        if session is None:
            raise StaleReference(peer_id)
        return session

    def _ensure_current(self, session: PeerSession) -> None:
        """비동기 작업 재개 후 세션이 teardown 되었는지 확인합니다."""
        if not self.table.is_current(session):
            raise StaleReference(session.peer_id)

    async def _flush_pending(self, session: PeerSession) -> None:
        """remote description 설정 전에 도착한 ICE candidate를 적용합니다.

        잘못된 후보 하나가 전체 협상을 중단시키지 않도록 개별 실패는 로그만 남깁니다.
        """
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            try:
                await session.transport.addIceCandidate(candidate)
            except Exception as e:
                logger.warning(f"[Signaling] 대기 ICE 후보 적용 실패 ({session.peer_id[:8]}): {e}")
            self._ensure_current(session)
        if pending:
            logger.debug(f"[Signaling] 대기 ICE 후보 {len(pending)}개 적용 ({session.peer_id[:8]})")
