"""음소거 가능한 오디오 트랙 모듈.

aiortc의 MediaStreamTrack에는 브라우저의 `track.enabled` 같은 플래그가 없으므로,
원본 트랙을 감싸서 비활성화 상태일 때 같은 모양의 무음 프레임을 내보냅니다.
로컬 마이크 음소거와 원격 피어 재생 음소거 양쪽에서 사용됩니다.
"""

import logging

from aiortc import MediaStreamTrack
from av import AudioFrame

logger = logging.getLogger(__name__)


def silence_like(frame: AudioFrame) -> AudioFrame:
    """주어진 프레임과 포맷/레이아웃/타이밍이 같은 무음 프레임을 만듭니다."""
    silent = AudioFrame(
        format=frame.format.name,
        layout=frame.layout.name,
        samples=frame.samples,
    )
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


class MutableAudioTrack(MediaStreamTrack):
    """enabled 플래그를 가진 오디오 트랙 래퍼.

    원본 트랙에서 프레임을 받아 enabled일 때는 그대로, 비활성화 상태일 때는
    무음 프레임으로 바꿔서 반환합니다. 프레임 타이밍(pts)은 유지되므로
    수신측 jitter buffer에는 영향이 없습니다.

    Attributes:
        kind (str): 트랙 종류 ("audio")
        track (MediaStreamTrack): 원본 오디오 트랙
        enabled (bool): False이면 무음 프레임 전달

    Examples:
        >>> mic = MutableAudioTrack(player.audio)
        >>> mic.enabled = False  # 이후 recv()는 무음 프레임 반환
    """
    kind = "audio"

    def __init__(self, track: MediaStreamTrack, enabled: bool = True):
        super().__init__()
        self.track = track
        self.enabled = enabled

    async def recv(self):
        frame = await self.track.recv()

        if not hasattr(self, '_first_frame_logged'):
            logger.debug(f"[Track] 첫 프레임 수신 (enabled={self.enabled})")
            self._first_frame_logged = True

        if self.enabled:
            return frame
        return silence_like(frame)
