"""음성 세션 예외 정의.

각 컴포넌트 경계에서 발생/처리되는 예외 계층입니다.
UI까지 전파되는 것은 CaptureDenied 뿐이며, 나머지는 감지한 컴포넌트에서
로그를 남기고 이벤트를 버립니다.
"""

from typing import Optional


class VoiceMeshError(Exception):
    """음성 세션 모듈 공통 예외."""


class CaptureDenied(VoiceMeshError):
    """마이크 장치 획득이 거부되었거나 사용할 수 없음.

    join() 및 피어 세션 생성 호출자에게 전파됩니다.
    """


class SignalingDropped(VoiceMeshError):
    """원격 description/candidate 적용 실패로 시그널링 이벤트를 버림."""

    def __init__(self, message: str, peer_id: Optional[str] = None):
        super().__init__(message)
        self.peer_id = peer_id


class StaleReference(VoiceMeshError):
    """살아있는 세션이 없는 피어를 참조하는 이벤트 (항상 조용히 버림)."""

    def __init__(self, peer_id: str):
        super().__init__(f"no live session for peer {peer_id}")
        self.peer_id = peer_id


class RelayUnavailable(VoiceMeshError):
    """릴레이 연결이 없어 시그널링 메시지를 보낼 수 없음."""
