"""WebRTC 미디어/연결 관리 모듈."""

from .capture import MediaCaptureManager
from .config import VoiceSettings, build_rtc_configuration, get_voice_settings
from .connection_table import ConnectionTable, PeerSession
from .peer_manager import PeerSessionBuilder
from .playback import PlaybackSink
from .tracks import MutableAudioTrack

__all__ = [
    "MediaCaptureManager",
    "VoiceSettings",
    "build_rtc_configuration",
    "get_voice_settings",
    "ConnectionTable",
    "PeerSession",
    "PeerSessionBuilder",
    "PlaybackSink",
    "MutableAudioTrack",
]
