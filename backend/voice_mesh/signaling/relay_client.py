"""시그널링 릴레이 WebSocket 클라이언트.

릴레이 서버(routes/signaling.py)에 접속해 시그널링 페이로드를 주고받고,
수신 메시지를 SignalingDispatcher와 MembershipReactor로 라우팅합니다.

메시지 형식:
    {"type": <이벤트 이름>, "data": <페이로드>}

라우팅:
    - peer-id: 로컬 피어 ID 설정
    - room-members: 참가자 목록 갱신 -> MembershipReactor
    - peer-disconnected: 퇴장 처리 -> MembershipReactor
    - offer/answer/ice-candidate: SignalingDispatcher
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set
from urllib.parse import urlencode

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from ..shared.errors import RelayUnavailable
from .messages import (
    PEER_DISCONNECTED,
    PEER_ID,
    ROOM_MEMBERS,
    SET_STATUS,
    SIGNALING_EVENTS,
    RoomMembers,
)

logger = logging.getLogger(__name__)


class RelayClient:
    """시그널링 릴레이 WebSocket 연결.

    Attributes:
        url (str): 릴레이 WebSocket 주소
        room (str): 참가할 룸 이름
        display_name (str): 표시 이름
        peer_id (Optional[str]): 릴레이가 부여한 로컬 피어 ID

    Examples:
        >>> relay = RelayClient("ws://localhost:8000/ws", "회의실1", "홍길동")
        >>> relay.bind(dispatcher, reactor)
        >>> await relay.connect()
        >>> await relay.run()
    """

    def __init__(
        self,
        url: str,
        room: str,
        display_name: str,
        token: Optional[str] = None,
    ):
        self.url = url
        self.room = room
        self.display_name = display_name
        self.token = token
        self.peer_id: Optional[str] = None

        self._ws = None
        self._dispatcher = None
        self._reactor = None
        self._tasks: Set[asyncio.Task] = set()

    def bind(self, dispatcher, reactor) -> None:
        """수신 메시지를 처리할 dispatcher/reactor를 연결합니다."""
        self._dispatcher = dispatcher
        self._reactor = reactor

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def _connect_url(self) -> str:
        query = {"room": self.room, "name": self.display_name}
        if self.token:
            query["token"] = self.token
        return f"{self.url}?{urlencode(query)}"

    async def connect(self) -> None:
        logger.info(f"[Relay] 릴레이 접속: {self.url} (룸: {self.room})")
        self._ws = await websockets.connect(self._connect_url())

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """이벤트를 릴레이로 보냅니다.

        Raises:
            RelayUnavailable: 연결되어 있지 않거나 연결이 끊겼을 때
        """
        if self._ws is None:
            raise RelayUnavailable("relay not connected")
        try:
            await self._ws.send(json.dumps({"type": event, "data": payload}))
        except ConnectionClosed as e:
            raise RelayUnavailable(f"relay connection closed: {e}") from e

    async def set_status(self, status: str) -> None:
        await self.send(SET_STATUS, {"status": status})

    async def run(self) -> None:
        """연결이 끊길 때까지 메시지를 읽어 라우팅합니다."""
        if self._ws is None:
            raise RelayUnavailable("relay not connected")
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("[Relay] JSON이 아닌 메시지 무시")
                    continue
                if not isinstance(message, dict):
                    continue
                self.route(message.get("type"), message.get("data") or {})
        except ConnectionClosed as e:
            logger.info(f"[Relay] 릴레이 연결 끊김: {e}")
        finally:
            self._ws = None

    def route(self, event: Optional[str], data: Dict[str, Any]) -> None:
        """수신 메시지 하나를 처리 대상에게 넘깁니다.

        시그널링/멤버십 처리는 각자 태스크로 실행되어 느린 협상이
        다른 피어의 이벤트를 막지 않습니다.
        """
        if event == PEER_ID:
            self.peer_id = data.get("peerId")
            if self._reactor is not None and self.peer_id:
                self._reactor.set_self_peer_id(self.peer_id)

        elif event == ROOM_MEMBERS:
            try:
                members = RoomMembers.model_validate(data)
            except ValidationError as e:
                logger.warning(f"[Relay] 잘못된 참가자 목록 무시: {e.error_count()}개 오류")
                return
            if self._reactor is not None:
                self._spawn(self._reactor.on_members_changed(members.participants()))

        elif event == PEER_DISCONNECTED:
            if self._reactor is not None:
                self._spawn(self._handle_departure(data))

        elif event in SIGNALING_EVENTS:
            if self._dispatcher is not None:
                self._spawn(self._dispatcher.dispatch(event, data))

        else:
            logger.warning(f"[Relay] 알 수 없는 메시지 타입: {event}")

    async def _handle_departure(self, data: Dict[str, Any]) -> None:
        try:
            await self._reactor.handle_departure_event(data)
        except ValidationError as e:
            logger.warning(f"[Relay] 잘못된 퇴장 이벤트 무시: {e.error_count()}개 오류")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """진행 중인 처리 태스크가 모두 끝날 때까지 기다립니다."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """연결을 닫고 진행 중인 처리 태스크를 취소합니다."""
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[Relay] 릴레이 연결 종료")
