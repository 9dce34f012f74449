"""FastAPI 시그널링 릴레이 서버.

음성 메시 클라이언트들이 같은 룸에 모여 offer/answer/ICE candidate를
주고받을 수 있도록 WebSocket 릴레이와 참가자 목록(멤버십)을 제공합니다.
서버는 미디어를 전혀 다루지 않으며 SDP 내용도 해석하지 않습니다.

주요 기능:
    - 룸 기반 참가자 관리 (room-members 브로드캐스트)
    - targetPeerId 기반 offer/answer/ICE candidate 전달
    - 퇴장 알림 (peer-disconnected)
    - STUN 서버 목록 제공

Architecture:
    - 풀 메시: 각 클라이언트가 다른 모든 참가자와 직접 연결
    - RoomManager: 룸 및 참가자 상태 관리
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes import health_router, signaling_router, init_signaling_managers
from voice_mesh.room.room_manager import RoomManager
from voice_mesh.shared.log_config import cleanup_old_logs, configure_logging
from voice_mesh.webrtc.config import get_voice_settings

settings = get_voice_settings()

# 로그 설정
configure_logging("server", settings.LOG_LEVEL)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={settings.LOG_LEVEL}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 시작: 오래된 로그 정리
        - 종료: 남은 참가자 연결 정리
    """
    logger.info("시그널링 릴레이 서버 시작 중...")

    # 오래된 로그 파일 정리
    deleted_logs = cleanup_old_logs("logs", settings.LOG_RETENTION_DAYS, "server")
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({settings.LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    room_manager: RoomManager = app.state.room_manager
    for peer_id in list(room_manager.peer_to_room):
        member = room_manager.leave_room(peer_id)
        if member is None:
            continue
        try:
            await member.websocket.close(code=1001)
        except Exception as e:
            logger.debug(f"피어 {peer_id[:8]} 연결 종료 실패: {e}")


def create_app() -> FastAPI:
    """릴레이 앱을 생성합니다. 앱마다 독립된 RoomManager를 가집니다."""
    app = FastAPI(title="Voice Mesh Signaling Relay", lifespan=lifespan)

    room_manager = RoomManager()
    app.state.room_manager = room_manager
    init_signaling_managers(room_manager)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(signaling_router)

    @app.get("/api/ice-servers")
    async def get_ice_servers():
        """클라이언트가 사용할 STUN 서버 목록을 제공합니다 (TURN 없음).

        Returns:
            list: ICE server 설정 리스트

        Examples:
            [{"urls": "stun:stun.l.google.com:19302"}]
        """
        return [{"urls": url} for url in settings.stun_urls]

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
