"""시그널링 송신 경로.

offer/answer/ICE candidate를 대상 피어 ID와 함께 릴레이로 전달만 합니다.
확인 응답(ack)이나 재시도는 없습니다.
"""

import logging
from typing import Any, Dict, Protocol

from aiortc import RTCIceCandidate, RTCSessionDescription

from ..shared.errors import RelayUnavailable
from .messages import (
    ANSWER,
    ICE_CANDIDATE,
    OFFER,
    IceCandidatePayload,
    SessionDescriptionPayload,
    outbound_payload,
)

logger = logging.getLogger(__name__)


class RelayChannel(Protocol):
    """메시지 릴레이 인터페이스 (페이로드 내용은 해석하지 않음)."""

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class OutboundSignaling:
    """릴레이로 시그널링 메시지를 내보내는 송신 경로.

    Attributes:
        relay (RelayChannel): 메시지를 전달할 릴레이
    """

    def __init__(self, relay: RelayChannel):
        self.relay = relay

    async def send_offer(self, peer_id: str, description: RTCSessionDescription) -> None:
        payload = outbound_payload(OFFER, SessionDescriptionPayload.from_rtc(description), peer_id)
        await self._send(OFFER, payload, peer_id)

    async def send_answer(self, peer_id: str, description: RTCSessionDescription) -> None:
        payload = outbound_payload(ANSWER, SessionDescriptionPayload.from_rtc(description), peer_id)
        await self._send(ANSWER, payload, peer_id)

    async def send_candidate(self, peer_id: str, candidate: RTCIceCandidate) -> None:
        payload = outbound_payload("candidate", IceCandidatePayload.from_rtc(candidate), peer_id)
        await self._send(ICE_CANDIDATE, payload, peer_id)

    async def _send(self, event: str, payload: Dict[str, Any], peer_id: str) -> None:
        try:
            await self.relay.send(event, payload)
            logger.debug(f"[Signaling] {event} 전송 -> {peer_id[:8]}")
        except RelayUnavailable as e:
            logger.warning(f"[Signaling] 릴레이 연결 없음, {event} 전송 버림 -> {peer_id[:8]}: {e}")
