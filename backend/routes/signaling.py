"""시그널링 릴레이 WebSocket 라우터.

룸 참가/퇴장과 참가자 목록 브로드캐스트, 피어 간 offer/answer/ICE candidate
전달을 담당합니다. 서버는 SDP나 candidate 내용을 해석하지 않고
targetPeerId만 보고 그대로 전달합니다.

메시지 흐름:
    1. 접속: peer-id 전송 -> 룸 입장 -> room-members 브로드캐스트
    2. offer/answer/ice-candidate: targetPeerId -> senderPeerId로 바꿔 대상에게 전달
    3. set-status: 상태 갱신 후 room-members 브로드캐스트
    4. 연결 종료: peer-disconnected + room-members 브로드캐스트
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from voice_mesh.room.room_manager import RoomManager
from voice_mesh.signaling.messages import (
    FORWARDED_EVENTS,
    PEER_DISCONNECTED,
    PEER_ID,
    ROOM_MEMBERS,
    SET_STATUS,
)
from .deps import verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_room_manager: Optional[RoomManager] = None


def init_managers(room_manager: RoomManager):
    """매니저 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 매니저 참조를 설정합니다.

    Args:
        room_manager: RoomManager 인스턴스
    """
    global _room_manager
    _room_manager = room_manager
    logger.info("시그널링 라우터 매니저 초기화 완료")


def get_room_manager() -> Optional[RoomManager]:
    return _room_manager


async def broadcast_to_room(room_name: str, message: dict, exclude: Optional[List[str]] = None):
    """특정 룸의 모든 참가자에게 메시지를 브로드캐스트합니다.

    전송에 실패한 참가자는 퇴장 처리합니다.

    Args:
        room_name: 메시지를 전송할 룸 이름
        message: 전송할 메시지 딕셔너리
        exclude: 메시지를 받지 않을 peer_id 리스트
    """
    if _room_manager is None:
        logger.error("매니저가 초기화되지 않음")
        return

    exclude = exclude or []
    disconnected = []

    for member in _room_manager.get_room_members(room_name):
        if member.peer_id in exclude:
            continue
        try:
            await member.websocket.send_json(message)
        except Exception as e:
            logger.error(f"피어 {member.peer_id[:8]}에 브로드캐스트 중 오류: {e}")
            disconnected.append(member.peer_id)

    for peer_id in disconnected:
        await remove_member(peer_id, close_socket=True)


async def broadcast_roster(room_name: str):
    """룸의 현재 참가자 목록(room-members)을 브로드캐스트합니다."""
    await broadcast_to_room(
        room_name,
        {"type": ROOM_MEMBERS, "data": _room_manager.roster_payload(room_name)},
    )


async def remove_member(peer_id: str, close_socket: bool = False):
    """참가자를 룸에서 제거하고 남은 참가자에게 알립니다.

    이미 제거된 참가자면 아무것도 하지 않습니다.

    Args:
        peer_id: 제거할 피어 ID
        close_socket: True면 해당 참가자의 WebSocket도 닫음 (전송 실패로 인한 퇴장)
    """
    if _room_manager is None:
        return

    room_name = _room_manager.get_peer_room(peer_id)
    member = _room_manager.leave_room(peer_id)
    if member is None:
        return

    if close_socket:
        try:
            await member.websocket.close()
        except Exception as e:
            logger.debug(f"피어 {peer_id[:8]} WebSocket 닫기 실패: {e}")

    await broadcast_to_room(
        room_name,
        {
            "type": PEER_DISCONNECTED,
            "data": {"user": {"peerId": member.peer_id, "displayName": member.display_name}},
        },
    )
    await broadcast_roster(room_name)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    room: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    """시그널링 릴레이 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - offer / answer / ice-candidate: targetPeerId에게 전달
        - set-status: 참가자 상태 갱신

    Args:
        websocket: FastAPI WebSocket 연결 객체
        room: 참가할 룸 이름 (필수)
        name: 표시 이름
        token: 인증 토큰 (쿼리 파라미터)
    """
    if _room_manager is None:
        logger.error("매니저가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    if not room:
        await websocket.close(code=4000, reason="Room name is required")
        return

    await websocket.accept()

    peer_id = str(uuid.uuid4())
    display_name = name or "Anonymous"
    logger.info(f"피어 {peer_id[:8]} 연결됨 ({display_name})")

    try:
        await websocket.send_json({"type": PEER_ID, "data": {"peerId": peer_id}})
        _room_manager.join_room(room, peer_id, display_name, websocket)
        await broadcast_roster(room)

        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"피어 {peer_id[:8]}의 JSON이 아닌 메시지 무시")
                continue
            if not isinstance(message, dict):
                continue

            message_type = message.get("type")
            data = message.get("data") or {}

            if message_type in FORWARDED_EVENTS:
                await _forward(peer_id, message_type, data)

            elif message_type == SET_STATUS:
                await _handle_set_status(peer_id, data)

            else:
                logger.warning(f"알 수 없는 메시지 타입: {message_type}")

    except WebSocketDisconnect:
        logger.info(f"피어 {peer_id[:8]} 연결 끊김")
    except Exception as e:
        logger.error(f"피어 {peer_id[:8]}의 WebSocket 연결 중 오류: {e}")
    finally:
        await remove_member(peer_id)
        logger.info(f"피어 {peer_id[:8]} 정리 완료")


async def _forward(sender_id: str, event: str, data: Dict[str, Any]):
    """시그널링 메시지를 같은 룸의 대상 피어에게 전달합니다."""
    if not isinstance(data, dict):
        logger.warning(f"[{event}] 잘못된 페이로드 무시 (피어 {sender_id[:8]})")
        return

    body = dict(data)
    target_id = body.pop("targetPeerId", None)
    room_name = _room_manager.get_peer_room(sender_id)

    target = _room_manager.get_member(target_id) if target_id else None
    if target is None or room_name is None or _room_manager.get_peer_room(target_id) != room_name:
        logger.warning(f"[{event}] 대상 피어 없음, 버림: {str(target_id)[:8]} (발신 {sender_id[:8]})")
        return

    body["senderPeerId"] = sender_id
    try:
        await target.websocket.send_json({"type": event, "data": body})
    except Exception as e:
        logger.error(f"[{event}] 피어 {target_id[:8]}에 전달 실패: {e}")
        await remove_member(target_id, close_socket=True)
        return

    logger.debug(f"[{event}] {sender_id[:8]} -> {target_id[:8]}")


async def _handle_set_status(peer_id: str, data: Dict[str, Any]):
    """참가자 상태 변경 처리."""
    status = data.get("status") if isinstance(data, dict) else None
    if not isinstance(status, str) or not status:
        logger.warning(f"피어 {peer_id[:8]}의 잘못된 set-status 무시")
        return

    member = _room_manager.set_status(peer_id, status)
    if member is None:
        return
    logger.info(f"피어 {peer_id[:8]} 상태 변경: {status}")
    await broadcast_roster(_room_manager.get_peer_room(peer_id))
