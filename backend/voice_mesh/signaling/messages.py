"""시그널링 메시지 스키마 정의.

릴레이를 통해 오가는 이벤트 이름과 페이로드 모델을 정의합니다.
페이로드 키는 브라우저 클라이언트와 호환되도록 camelCase(senderPeerId 등)를 사용합니다.

Wire format:
    송신: {"type": "offer", "data": {"offer": {...}, "targetPeerId": "..."}}
    수신: {"type": "offer", "data": {"offer": {...}, "senderPeerId": "..."}}
"""

from typing import Any, Dict, List, Literal, Optional

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from pydantic import BaseModel, ConfigDict, Field

from ..shared.dto import Participant

# ============================================================
# 이벤트 이름
# ============================================================

OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"
PEER_DISCONNECTED = "peer-disconnected"

# 릴레이/멤버십 서비스 이벤트
PEER_ID = "peer-id"
ROOM_MEMBERS = "room-members"
SET_STATUS = "set-status"

# set-status 값 (음성 참여 여부)
STATUS_ONLINE = "online"
STATUS_IN_VOICE = "in-voice"

SIGNALING_EVENTS = (OFFER, ANSWER, ICE_CANDIDATE)
FORWARDED_EVENTS = SIGNALING_EVENTS

_CANDIDATE_PREFIX = "candidate:"


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============================================================
# 페이로드 본문
# ============================================================

class SessionDescriptionPayload(_Message):
    """offer/answer session description."""
    sdp: str
    type: Literal["offer", "answer", "pranswer", "rollback"]

    def to_rtc(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=self.sdp, type=self.type)

    @classmethod
    def from_rtc(cls, description: RTCSessionDescription) -> "SessionDescriptionPayload":
        return cls(sdp=description.sdp, type=description.type)


class IceCandidatePayload(_Message):
    """브라우저 RTCIceCandidateInit 형식의 ICE candidate."""
    candidate: str
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None

    def to_rtc(self) -> RTCIceCandidate:
        """aiortc RTCIceCandidate로 변환합니다.

        Raises:
            ValueError: candidate 문자열을 해석할 수 없을 때
        """
        value = self.candidate
        if value.startswith(_CANDIDATE_PREFIX):
            value = value[len(_CANDIDATE_PREFIX):]
        if not value:
            raise ValueError("empty candidate")
        try:
            candidate = candidate_from_sdp(value)
        except (AssertionError, IndexError, ValueError) as e:
            raise ValueError(f"invalid candidate: {self.candidate!r}") from e
        candidate.sdpMid = self.sdpMid
        candidate.sdpMLineIndex = self.sdpMLineIndex
        return candidate

    @classmethod
    def from_rtc(cls, candidate: RTCIceCandidate) -> "IceCandidatePayload":
        return cls(
            candidate=_CANDIDATE_PREFIX + candidate_to_sdp(candidate),
            sdpMid=candidate.sdpMid,
            sdpMLineIndex=candidate.sdpMLineIndex,
        )


# ============================================================
# 수신 메시지
# ============================================================

class InboundOffer(_Message):
    offer: SessionDescriptionPayload
    sender_peer_id: str = Field(alias="senderPeerId")


class InboundAnswer(_Message):
    answer: SessionDescriptionPayload
    sender_peer_id: str = Field(alias="senderPeerId")


class InboundCandidate(_Message):
    candidate: IceCandidatePayload
    sender_peer_id: str = Field(alias="senderPeerId")


class DepartedUser(_Message):
    peer_id: str = Field(alias="peerId")
    display_name: Optional[str] = Field(default=None, alias="displayName")


class PeerDisconnected(_Message):
    user: DepartedUser


class MemberPayload(_Message):
    peer_id: str = Field(alias="peerId")
    display_name: str = Field(default="", alias="displayName")
    status: str = "online"

    def to_participant(self) -> Participant:
        return Participant(peer_id=self.peer_id, display_name=self.display_name, status=self.status)


class RoomMembers(_Message):
    members: List[MemberPayload] = Field(default_factory=list)

    def participants(self) -> List[Participant]:
        return [m.to_participant() for m in self.members]


# ============================================================
# 송신 페이로드
# ============================================================

def outbound_payload(body_key: str, body: BaseModel, target_peer_id: str) -> Dict[str, Any]:
    """릴레이로 보낼 페이로드를 만듭니다.

    Examples:
        >>> outbound_payload("answer", SessionDescriptionPayload(sdp="v=0", type="answer"), "peer-1")
        {'answer': {'sdp': 'v=0', 'type': 'answer'}, 'targetPeerId': 'peer-1'}
    """
    return {body_key: body.model_dump(), "targetPeerId": target_peer_id}


def sender_of(event: str, payload: Any) -> Optional[str]:
    """수신 페이로드에서 대상 피어 ID를 꺼냅니다 (검증 전, 직렬화 키 용도)."""
    if not isinstance(payload, dict):
        return None
    if event == PEER_DISCONNECTED:
        user = payload.get("user")
        return user.get("peerId") if isinstance(user, dict) else None
    sender = payload.get("senderPeerId")
    return sender if isinstance(sender, str) else None
