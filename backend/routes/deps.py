"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 의존성을 정의합니다.
"""

from typing import Optional

from voice_mesh.webrtc.config import get_voice_settings


def verify_ws_token(token: Optional[str]) -> bool:
    """WebSocket 연결 시 토큰을 검증합니다.

    Args:
        token: WebSocket 쿼리 파라미터로 전달된 토큰

    Returns:
        bool: 검증 성공 여부 (ACCESS_PASSWORD가 비어있으면 항상 True)
    """
    password = get_voice_settings().ACCESS_PASSWORD
    if not password:
        return True
    return token == password
