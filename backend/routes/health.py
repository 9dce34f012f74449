"""Health Check API 라우터.

릴레이 서버 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter

from .signaling import get_room_manager

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """릴레이 상태를 확인합니다.

    Returns:
        dict: 상태와 현재 룸/참가자 수
    """
    room_manager = get_room_manager()
    if room_manager is None:
        return {"status": "not_initialized", "rooms": 0, "peers": 0}

    return {
        "status": "ok",
        "rooms": room_manager.room_total,
        "peers": room_manager.peer_total,
    }
