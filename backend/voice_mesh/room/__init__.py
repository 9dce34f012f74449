"""룸 멤버십 모듈."""

from .membership import MembershipReactor
from .room_manager import Member, RoomManager

__all__ = ["MembershipReactor", "Member", "RoomManager"]
