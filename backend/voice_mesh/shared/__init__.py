"""Shared errors and DTOs."""

from .errors import (
    VoiceMeshError,
    CaptureDenied,
    SignalingDropped,
    StaleReference,
    RelayUnavailable,
)
from .dto import Participant

__all__ = [
    "VoiceMeshError",
    "CaptureDenied",
    "SignalingDropped",
    "StaleReference",
    "RelayUnavailable",
    "Participant",
]
