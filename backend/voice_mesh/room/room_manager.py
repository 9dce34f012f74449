"""릴레이 서버의 룸/참가자 관리 모듈.

릴레이 서버는 룸 단위로 참가자(WebSocket 연결)를 추적하고, 참가자 목록을
룸 전체에 브로드캐스트합니다. 미디어는 전혀 다루지 않습니다.

Architecture:
    - rooms: Dict[str, Dict[str, Member]] - 룸 이름 → 참가자 맵
    - peer_to_room: Dict[str, str] - 피어 ID → 룸 이름 (빠른 조회용)

Examples:
    >>> manager = RoomManager()
    >>> manager.join_room("회의실1", "peer-123", "홍길동", websocket)
    >>> manager.get_room_count("회의실1")
    1
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """룸에 접속한 참가자.

    Attributes:
        peer_id (str): 릴레이가 부여한 UUID
        display_name (str): 표시 이름
        websocket (Any): 참가자의 WebSocket 연결 (send_json 지원)
        status (str): 참가자 상태 (기본 "online")
    """
    peer_id: str
    display_name: str
    websocket: Any
    status: str = "online"

    def to_payload(self) -> Dict[str, str]:
        return {"peerId": self.peer_id, "displayName": self.display_name, "status": self.status}


class RoomManager:
    """룸과 참가자를 관리하는 클래스.

    Note:
        asyncio 단일 루프에서만 사용합니다. 룸은 첫 참가자가 들어올 때 만들어지고
        마지막 참가자가 나가면 삭제됩니다.
    """

    def __init__(self):
        # room_name -> {peer_id: Member}
        self.rooms: Dict[str, Dict[str, Member]] = {}

        # peer_id -> room_name
        self.peer_to_room: Dict[str, str] = {}

    def join_room(self, room_name: str, peer_id: str, display_name: str, websocket: Any) -> Member:
        """참가자를 룸에 추가합니다. 룸이 없으면 만듭니다."""
        if room_name not in self.rooms:
            self.rooms[room_name] = {}
            logger.info(f"[Room] 룸 '{room_name}' 생성")

        member = Member(peer_id=peer_id, display_name=display_name, websocket=websocket)
        self.rooms[room_name][peer_id] = member
        self.peer_to_room[peer_id] = room_name

        logger.info(
            f"[Room] '{display_name}' ({peer_id[:8]}) 입장 -> '{room_name}' "
            f"(참가자 {len(self.rooms[room_name])}명)"
        )
        return member

    def leave_room(self, peer_id: str) -> Optional[Member]:
        """참가자를 룸에서 제거합니다.

        Returns:
            Optional[Member]: 제거된 참가자, 어느 룸에도 없으면 None
        """
        room_name = self.peer_to_room.pop(peer_id, None)
        if room_name is None:
            return None

        room = self.rooms.get(room_name, {})
        member = room.pop(peer_id, None)

        if not room:
            self.rooms.pop(room_name, None)
            logger.info(f"[Room] 룸 '{room_name}' 삭제 (비어 있음)")
        elif member is not None:
            logger.info(
                f"[Room] '{member.display_name}' ({peer_id[:8]}) 퇴장 <- '{room_name}' "
                f"(참가자 {len(room)}명)"
            )
        return member

    def get_member(self, peer_id: str) -> Optional[Member]:
        room_name = self.peer_to_room.get(peer_id)
        if room_name is None:
            return None
        return self.rooms.get(room_name, {}).get(peer_id)

    def get_peer_room(self, peer_id: str) -> Optional[str]:
        return self.peer_to_room.get(peer_id)

    def get_room_members(self, room_name: str) -> List[Member]:
        return list(self.rooms.get(room_name, {}).values())

    def get_room_count(self, room_name: str) -> int:
        return len(self.rooms.get(room_name, {}))

    def set_status(self, peer_id: str, status: str) -> Optional[Member]:
        member = self.get_member(peer_id)
        if member is not None:
            member.status = status
        return member

    def roster_payload(self, room_name: str) -> Dict[str, List[Dict[str, str]]]:
        """room-members 이벤트 페이로드를 만듭니다."""
        return {"members": [m.to_payload() for m in self.get_room_members(room_name)]}

    @property
    def room_total(self) -> int:
        return len(self.rooms)

    @property
    def peer_total(self) -> int:
        return len(self.peer_to_room)
