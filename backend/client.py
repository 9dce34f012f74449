"""음성 메시 CLI 클라이언트.

릴레이 서버에 접속해 룸의 다른 참가자들과 오디오 전용 풀 메시 연결을 맺습니다.
실행 직후 음성에 참여하며, 표준 입력으로 간단한 명령을 받습니다.

Usage:
    python client.py --relay ws://localhost:8000/ws --room 회의실1 --name 홍길동

Commands:
    mute                로컬 마이크 음소거 토글
    unmute-peer <id>    해당 피어 재생 음소거 토글 (ID 앞부분만 입력 가능)
    leave               음성 퇴장
    join                음성 참여
    status              현재 상태 출력
    quit                종료
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from voice_mesh.room.membership import MembershipReactor
from voice_mesh.session.controller import SessionController
from voice_mesh.session.state import LocalSessionState
from voice_mesh.shared.errors import CaptureDenied
from voice_mesh.shared.log_config import cleanup_old_logs, configure_logging
from voice_mesh.signaling.dispatcher import SignalingDispatcher
from voice_mesh.signaling.outbound import OutboundSignaling
from voice_mesh.signaling.relay_client import RelayClient
from voice_mesh.webrtc.capture import MediaCaptureManager
from voice_mesh.webrtc.config import get_voice_settings
from voice_mesh.webrtc.connection_table import ConnectionTable
from voice_mesh.webrtc.peer_manager import PeerSessionBuilder

logger = logging.getLogger(__name__)


def build_client(relay: RelayClient) -> SessionController:
    """릴레이 연결 하나에 음성 세션 구성 요소를 연결합니다."""
    settings = get_voice_settings()

    table = ConnectionTable()
    state = LocalSessionState()
    capture = MediaCaptureManager(settings=settings)
    outbound = OutboundSignaling(relay)
    builder = PeerSessionBuilder(table, capture, outbound)
    dispatcher = SignalingDispatcher(builder, outbound)
    reactor = MembershipReactor(builder, outbound, state)

    relay.bind(dispatcher, reactor)
    return SessionController(state, capture, builder, reactor, relay)


def _resolve_peer(controller: SessionController, prefix: str) -> Optional[str]:
    matches = [p for p in controller.remote_muted if p.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


def _print_status(controller: SessionController, relay: RelayClient) -> None:
    print(f"룸: {relay.room} / 내 ID: {(relay.peer_id or '-')[:8]}")
    print(f"참여: {controller.joined} / 마이크 음소거: {controller.local_muted}")
    remote_muted = controller.remote_muted
    for participant in controller.participants:
        if participant.peer_id == relay.peer_id:
            continue
        if participant.peer_id in remote_muted:
            link = "음소거" if remote_muted[participant.peer_id] else "연결"
        else:
            link = "세션 없음"
        print(f"  - {participant.peer_id[:8]} {participant.display_name} ({participant.status}) [{link}]")


async def _join(controller: SessionController) -> None:
    try:
        if await controller.join():
            await controller.reactor.refresh()
    except CaptureDenied as e:
        print(f"마이크를 사용할 수 없습니다: {e}")


async def command_loop(controller: SessionController, relay: RelayClient) -> None:
    """표준 입력 명령을 처리합니다. quit 또는 EOF에서 끝납니다."""
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        parts = line.strip().split()
        if not parts:
            continue
        command, args = parts[0], parts[1:]

        if command == "quit":
            return
        elif command == "join":
            await _join(controller)
        elif command == "leave":
            await controller.leave()
        elif command == "mute":
            muted = controller.toggle_local_mute()
            print("참여 중이 아닙니다" if muted is None else f"마이크 음소거: {muted}")
        elif command == "unmute-peer":
            peer_id = _resolve_peer(controller, args[0]) if args else None
            if peer_id is None:
                print("피어를 찾을 수 없습니다")
                continue
            print(f"{peer_id[:8]} 재생 음소거: {controller.toggle_remote_mute(peer_id)}")
        elif command == "status":
            _print_status(controller, relay)
        else:
            print(f"알 수 없는 명령: {command}")


async def run_client(relay_url: str, room: str, name: str, token: Optional[str]) -> None:
    relay = RelayClient(relay_url, room, name, token=token)
    controller = build_client(relay)

    await relay.connect()
    reader = asyncio.create_task(relay.run())
    commands = asyncio.create_task(command_loop(controller, relay))
    try:
        await _join(controller)
        done, _ = await asyncio.wait({reader, commands}, return_when=asyncio.FIRST_COMPLETED)
        if reader in done:
            logger.warning("[Voice] 릴레이 연결이 끊어졌습니다. Enter를 누르면 종료합니다")
    finally:
        # stdin 대기 스레드는 취소되지 않으므로 태스크만 정리
        commands.cancel()
        await controller.close()
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)


def main():
    settings = get_voice_settings()

    parser = argparse.ArgumentParser(description="Voice mesh CLI client")
    parser.add_argument("--relay", default=settings.RELAY_URL, help="릴레이 WebSocket 주소")
    parser.add_argument("--room", required=True, help="참가할 룸 이름")
    parser.add_argument("--name", required=True, help="표시 이름")
    parser.add_argument("--token", default=settings.ACCESS_PASSWORD or None, help="릴레이 접속 토큰")
    args = parser.parse_args()

    configure_logging("client", settings.LOG_LEVEL)
    cleanup_old_logs("logs", settings.LOG_RETENTION_DAYS, "client")

    try:
        asyncio.run(run_client(args.relay, args.room, args.name, args.token))
    except KeyboardInterrupt:
        logger.info("[Voice] 사용자 중단")


if __name__ == "__main__":
    main()
