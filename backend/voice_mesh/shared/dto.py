"""Lightweight shared DTOs for cross-component communication."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Participant:
    """룸 멤버십 서비스가 알려주는 참가자 한 명.

    Attributes:
        peer_id (str): 릴레이가 부여한 피어 식별자
        display_name (str): 표시 이름
        status (str): 참가자 상태 (예: "online")
    """
    peer_id: str
    display_name: str = ""
    status: str = "online"
