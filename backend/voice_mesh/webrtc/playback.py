"""원격 피어 오디오 재생 싱크.

피어 세션 하나당 하나의 PlaybackSink가 만들어지며, 트랜스포트로 처음 수신된
원격 오디오 트랙을 스피커(MediaRecorder) 또는 MediaBlackhole에 연결합니다.
재생 음소거는 로컬 청취 설정일 뿐이며 상대방에게 전달되지 않습니다.
"""

import logging
from typing import Callable, Optional, Union

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from .config import get_voice_settings
from .tracks import MutableAudioTrack

logger = logging.getLogger(__name__)

MediaOutput = Union[MediaRecorder, MediaBlackhole]


def default_output_factory() -> MediaOutput:
    """설정된 스피커 장치로 출력하는 MediaRecorder를 만듭니다.

    PLAYBACK_DEVICE가 없으면 수신 오디오를 소비만 하는 MediaBlackhole을 반환합니다.
    """
    settings = get_voice_settings()
    if not settings.PLAYBACK_DEVICE:
        return MediaBlackhole()
    return MediaRecorder(settings.PLAYBACK_DEVICE, format=settings.PLAYBACK_FORMAT)


class PlaybackSink:
    """피어 하나의 원격 오디오를 재생하는 출력 장치.

    Attributes:
        peer_id (str): 연결된 피어 ID
        muted (bool): 로컬 재생 음소거 여부
        track (Optional[MutableAudioTrack]): 연결된 원격 트랙 (래핑됨)

    Note:
        - 첫 번째로 attach된 트랙만 재생되고 이후 트랙은 무시됨
        - close() 이후에는 attach가 거부됨
    """

    def __init__(
        self,
        peer_id: str,
        output_factory: Optional[Callable[[], MediaOutput]] = None,
    ):
        self.peer_id = peer_id
        self.muted = False
        self.track: Optional[MutableAudioTrack] = None
        self._output_factory = output_factory or default_output_factory
        self._output: Optional[MediaOutput] = None
        self._closed = False

    @property
    def attached(self) -> bool:
        return self.track is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def attach(self, track: MediaStreamTrack) -> bool:
        """원격 트랙을 싱크에 연결하고 재생을 시작합니다.

        Args:
            track: 트랜스포트에서 수신한 원격 오디오 트랙

        Returns:
            bool: 연결되었으면 True, 이미 연결되어 있거나 닫힌 싱크면 False
        """
        if self._closed or self.track is not None:
            return False

        self.track = MutableAudioTrack(track, enabled=not self.muted)
        self._output = self._output_factory()
        self._output.addTrack(self.track)
        await self._output.start()
        logger.info(f"[Playback] 피어 {self.peer_id[:8]} 원격 오디오 재생 시작")
        return True

    def set_muted(self, muted: bool) -> None:
        """로컬 재생 음소거를 설정합니다 (원격 송신자에게는 알리지 않음)."""
        self.muted = muted
        if self.track is not None:
            self.track.enabled = not muted

    async def close(self) -> None:
        """재생을 멈추고 출력 장치를 분리합니다. 여러 번 호출해도 안전합니다."""
        if self._closed:
            return
        self._closed = True

        output, self._output = self._output, None
        track, self.track = self.track, None

        if output is not None:
            await output.stop()
        if track is not None:
            track.stop()

        logger.debug(f"[Playback] 피어 {self.peer_id[:8]} 싱크 분리")
