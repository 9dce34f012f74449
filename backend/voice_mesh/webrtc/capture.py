"""로컬 마이크 캡처 관리 모듈.

마이크 스트림을 필요할 때 한 번만 열고(lazy acquire), 모든 피어 연결이
같은 마이크를 공유하도록 MediaRelay로 구독 트랙을 나눠줍니다.
로컬 음소거도 이 모듈이 소유합니다.

Architecture:
    MediaPlayer(마이크) -> MutableAudioTrack(음소거) -> MediaRelay
        -> relay.subscribe() 트랙 (피어 연결마다 하나)

Note:
    - 음소거는 MediaRelay 앞단에서 적용되므로 모든 피어에게 동시에 반영됨
    - 장치 활성화/비활성화는 사용자에게 보임 (마이크 표시등)
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay

from ..shared.errors import CaptureDenied
from .config import VoiceSettings, get_voice_settings
from .tracks import MutableAudioTrack

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[], Awaitable[MediaStreamTrack]]


class MediaCaptureManager:
    """로컬 오디오 스트림의 획득/해제와 음소거를 관리하는 클래스.

    Attributes:
        local_stream (Optional[MutableAudioTrack]): 현재 보유 중인 로컬 스트림.
            획득 성공 후 해제 전까지만 None이 아님
        muted (bool): 로컬 음소거 여부
        relay (Optional[MediaRelay]): 피어별 구독 트랙을 만드는 미디어 릴레이

    Examples:
        >>> capture = MediaCaptureManager()
        >>> stream = await capture.acquire()
        >>> pc.addTrack(capture.create_track())
        >>> capture.set_local_muted(True)
        >>> capture.release()
    """

    def __init__(
        self,
        device_factory: Optional[DeviceFactory] = None,
        settings: Optional[VoiceSettings] = None,
    ):
        self._settings = settings or get_voice_settings()
        self._device_factory = device_factory or self._open_microphone
        self._player: Optional[MediaPlayer] = None
        self._source: Optional[MediaStreamTrack] = None
        self._subscribers: List[MediaStreamTrack] = []
        self._pending: Optional[asyncio.Task] = None
        # release()가 호출될 때마다 증가, 진행 중인 획득을 무효화하는 데 사용
        self._generation = 0

        self.local_stream: Optional[MutableAudioTrack] = None
        self.relay: Optional[MediaRelay] = None
        self.muted = False

    @property
    def has_stream(self) -> bool:
        return self.local_stream is not None

    async def acquire(self) -> MutableAudioTrack:
        """로컬 오디오 스트림을 획득합니다.

        이미 보유 중이면 그대로 반환하고, 동시에 여러 번 호출되면
        장치는 한 번만 엽니다.

        Returns:
            MutableAudioTrack: 로컬 오디오 스트림

        Raises:
            CaptureDenied: 장치 접근이 거부되었거나 사용할 수 없을 때
        """
        if self.local_stream is not None:
            return self.local_stream

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._open(self._generation))
        task = self._pending
        try:
            return await asyncio.shield(task)
        finally:
            if self._pending is task and task.done():
                self._pending = None

    async def _open(self, generation: int) -> MutableAudioTrack:
        logger.info("[Capture] 마이크 장치 요청")
        try:
            source = await self._device_factory()
        except CaptureDenied:
            raise
        except Exception as e:
            logger.error(f"[Capture] 마이크 접근 실패: {type(e).__name__}: {e}")
            raise CaptureDenied(f"microphone unavailable: {e}") from e

        if source is None or source.kind != "audio":
            raise CaptureDenied("capture device returned no audio track")

        if generation != self._generation:
            # 획득 도중 release()가 호출됨
            source.stop()
            self._close_player()
            logger.info("[Capture] 획득 중 해제 요청, 장치 반납")
            raise CaptureDenied("capture released during acquisition")

        self._source = source
        self.local_stream = MutableAudioTrack(source, enabled=not self.muted)
        self.relay = MediaRelay()
        logger.info("[Capture] 마이크 스트림 획득 완료")
        return self.local_stream

    async def _open_microphone(self) -> MediaStreamTrack:
        """설정된 ffmpeg 장치로 마이크를 엽니다."""
        device = self._settings.CAPTURE_DEVICE
        fmt = self._settings.CAPTURE_FORMAT

        # MediaPlayer 생성은 장치를 동기적으로 열기 때문에 스레드에서 실행
        player = await asyncio.to_thread(MediaPlayer, device, format=fmt)
        if player.audio is None:
            raise CaptureDenied(f"device '{device}' has no audio stream")

        self._player = player
        logger.info(f"[Capture] 장치 열림: device={device}, format={fmt}")
        return player.audio

    def create_track(self) -> MediaStreamTrack:
        """피어 연결 하나에 붙일 로컬 오디오 트랙을 만듭니다.

        Returns:
            MediaStreamTrack: 로컬 스트림의 독립적인 구독 트랙

        Raises:
            CaptureDenied: 보유 중인 스트림이 없을 때
        """
        if self.local_stream is None or self.relay is None:
            raise CaptureDenied("no local stream held")
        track = self.relay.subscribe(self.local_stream)
        self._subscribers.append(track)
        return track

    def set_local_muted(self, muted: bool) -> None:
        """보유 중인 스트림의 모든 트랙 활성 상태를 바꿉니다.

        스트림이 없으면 아무 것도 하지 않습니다.
        """
        if self.local_stream is None:
            logger.debug("[Capture] 스트림 없음, 음소거 요청 무시")
            return
        self.muted = muted
        self.local_stream.enabled = not muted
        logger.info(f"[Capture] 로컬 음소거: {muted}")

    def release(self) -> None:
        """로컬 스트림을 멈추고 버립니다. 보유 중인 스트림이 없으면 no-op."""
        self._generation += 1
        self._pending = None

        if self.local_stream is None:
            return

        for track in self._subscribers:
            track.stop()
        self._subscribers.clear()

        self.local_stream.stop()
        if self._source is not None:
            self._source.stop()
        self._close_player()

        self.local_stream = None
        self._source = None
        self.relay = None
        self.muted = False
        logger.info("[Capture] 마이크 스트림 해제")

    def _close_player(self) -> None:
        player, self._player = self._player, None
        if player is not None and player.audio is not None:
            player.audio.stop()
