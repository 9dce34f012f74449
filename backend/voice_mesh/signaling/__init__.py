"""시그널링 송수신 모듈."""

from .dispatcher import SignalingDispatcher
from .outbound import OutboundSignaling, RelayChannel
from .relay_client import RelayClient

__all__ = [
    "SignalingDispatcher",
    "OutboundSignaling",
    "RelayChannel",
    "RelayClient",
]
