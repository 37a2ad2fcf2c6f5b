"""Per-user in-process session state."""

from .manager import SessionConfig, SessionManager, SessionState

__all__ = ["SessionConfig", "SessionManager", "SessionState"]
