"""로컬 참가자 음성 상태."""

from dataclasses import dataclass


@dataclass
class LocalSessionState:
    """룸 단위로 하나만 존재하는 로컬 음성 상태.

    Attributes:
        joined (bool): 로컬 참가자가 음성에 참여했는지 여부
        local_muted (bool): 송신 트랙 음소거 여부
    """
    joined: bool = False
    local_muted: bool = False

    def reset(self) -> None:
        self.joined = False
        self.local_muted = False
