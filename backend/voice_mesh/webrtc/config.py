"""음성 세션 WebRTC 설정.

STUN 서버, 마이크/스피커 장치, 릴레이 주소, 로그 설정 등
환경변수 기반 설정을 제공합니다.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from aiortc import RTCConfiguration, RTCIceServer
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


class VoiceSettings(BaseSettings):
    """음성 세션 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    # ============================================================
    # ICE 설정 (STUN만 사용, TURN 없음)
    # ============================================================
    STUN_SERVER_URL: Optional[str] = Field(
        default=None,
        description="우선 사용할 STUN 서버 URL"
    )

    DEFAULT_STUN_SERVERS: List[str] = Field(
        default_factory=lambda: ["stun:stun.l.google.com:19302"],
        description="기본 공개 STUN 서버 목록"
    )

    # ============================================================
    # 오디오 장치 (ffmpeg 장치명/포맷)
    # ============================================================
    CAPTURE_DEVICE: str = Field(
        default="default",
        description="마이크 장치 이름"
    )

    CAPTURE_FORMAT: Optional[str] = Field(
        default="pulse",
        description="마이크 입력 포맷 (pulse, alsa, avfoundation, dshow 등)"
    )

    PLAYBACK_DEVICE: Optional[str] = Field(
        default=None,
        description="스피커 장치 이름 (없으면 수신 오디오를 버림)"
    )

    PLAYBACK_FORMAT: Optional[str] = Field(
        default="pulse",
        description="스피커 출력 포맷"
    )

    # ============================================================
    # 릴레이 서버
    # ============================================================
    RELAY_URL: str = Field(
        default="ws://localhost:8000/ws",
        description="시그널링 릴레이 WebSocket 주소"
    )

    ACCESS_PASSWORD: str = Field(
        default="",
        description="릴레이 접속 토큰 (비어있으면 인증 없음)"
    )

    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="릴레이 서버 CORS 허용 origin"
    )

    # ============================================================
    # 로깅
    # ============================================================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="로그 레벨"
    )

    LOG_RETENTION_DAYS: int = Field(
        default=60,
        description="로그 파일 보관 기간 (일)"
    )

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    @property
    def stun_urls(self) -> List[str]:
        """실제로 사용할 STUN URL 목록 (우선 서버 + 기본 서버)."""
        urls = []
        if self.STUN_SERVER_URL:
            urls.append(self.STUN_SERVER_URL)
        for url in self.DEFAULT_STUN_SERVERS:
            if url not in urls:
                urls.append(url)
        return urls

    class Config:
        """Pydantic 설정"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_voice_settings() -> VoiceSettings:
    """설정 싱글톤 인스턴스 반환.

    Returns:
        VoiceSettings: 설정 객체
    """
    return VoiceSettings()


def build_rtc_configuration(settings: Optional[VoiceSettings] = None) -> RTCConfiguration:
    """STUN 서버만 포함한 RTCConfiguration을 생성합니다.

    Args:
        settings: 사용할 설정 (None이면 전역 설정)

    Returns:
        RTCConfiguration: RTCPeerConnection 생성용 설정
    """
    settings = settings or get_voice_settings()
    ice_servers = [RTCIceServer(urls=[url]) for url in settings.stun_urls]
    return RTCConfiguration(iceServers=ice_servers)


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[Voice Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
