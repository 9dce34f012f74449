"""로컬 음성 세션 상태와 컨트롤러."""

from .state import LocalSessionState
from .controller import SessionController

__all__ = ["LocalSessionState", "SessionController"]
