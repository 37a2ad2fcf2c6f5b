"""Session manager for per-user in-process state."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from ..errors import StorageError
from ..logging import JSONLLogger, get_logger

if TYPE_CHECKING:
    from ..memory import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """State for a single user. Timestamps are seconds since the epoch."""

    user_id: str
    display_name: str | None = None
    last_message_time: float | None = None
    last_interaction_time: float | None = None
    last_proactive_send_time: float | None = None

    @property
    def last_activity(self) -> float | None:
        """Most recent of the interaction and proactive timestamps."""
        stamps = [
            t
            for t in (
                self.last_message_time,
                self.last_interaction_time,
                self.last_proactive_send_time,
            )
            if t is not None
        ]
        return max(stamps) if stamps else None

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        """Check if session has been inactive longer than the TTL."""
        last = self.last_activity
        return last is None or (now - last) > ttl_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class SessionConfig:
    """Configuration for session manager."""

    ttl_seconds: float = 7 * 24 * 3600  # 7 days
    cleanup_interval: float = 3600  # 1 hour


class SessionManager:
    """Owns the session table, per-user turn locks and stale-session eviction.

    Sessions are created lazily on first activity. Everything except the
    display name can be rebuilt from the memory store after eviction.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        store: MemoryStore | None = None,
        clock: Callable[[], float] = time.time,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.store = store
        self._clock = clock
        self.json_logger = json_logger or get_logger()
        self._sessions: dict[str, SessionState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._cleanup_task: asyncio.Task | None = None

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str) -> SessionState | None:
        """Get a session if one is in memory."""
        return self._sessions.get(user_id)

    def get_session(self, user_id: str) -> SessionState:
        """Get or create an empty session for user_id."""
        if user_id not in self._sessions:
            self._sessions[user_id] = SessionState(user_id=user_id)
        return self._sessions[user_id]

    def get_or_rebuild(self, user_id: str) -> SessionState:
        """Get a session, rebuilding its timestamps from the store if absent.

        The last user message stands in for the last interaction. Assistant
        messages that do not directly follow a user message were proactive,
        and the newest of them restores ``last_proactive_send_time``.
        """
        session = self._sessions.get(user_id)
        if session is not None:
            return session

        session = SessionState(user_id=user_id)
        if self.store is not None:
            try:
                last_user = self.store.last_message_at(user_id, role="user")
                last_proactive = self.store.last_proactive_at(user_id)
            except StorageError as e:
                logger.warning(f"Could not rebuild session for {user_id}: {e}")
                last_user = last_proactive = None
            session.last_message_time = last_user
            session.last_interaction_time = last_user
            session.last_proactive_send_time = last_proactive

        self._sessions[user_id] = session
        return session

    def observe(self, user_id: str, display_name: str | None = None) -> SessionState:
        """Record inbound activity from a user."""
        session = self.get_or_rebuild(user_id)
        if display_name and not session.display_name:
            session.display_name = display_name
        session.last_interaction_time = self._clock()
        return session

    def mark_replied(self, user_id: str) -> None:
        """Stamp the time of the user's last completed turn."""
        self.get_session(user_id).last_message_time = self._clock()

    def mark_proactive_sent(self, user_id: str, when: float | None = None) -> None:
        """Stamp the time of the last proactive message."""
        self.get_session(user_id).last_proactive_send_time = (
            self._clock() if when is None else when
        )

    def turn_lock(self, user_id: str) -> asyncio.Lock:
        """Get the lock that serializes turn handling for a user."""
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    def forget(self, user_id: str) -> None:
        """Drop all in-process state for a user."""
        self._sessions.pop(user_id, None)
        lock = self._locks.get(user_id)
        if lock is not None and not lock.locked():
            del self._locks[user_id]

    def evict_stale(self, now: float | None = None) -> int:
        """Evict sessions inactive for longer than the TTL. Returns count."""
        now = self._clock() if now is None else now
        expired = [
            user_id
            for user_id, session in self._sessions.items()
            if session.is_expired(self.config.ttl_seconds, now)
        ]
        for user_id in expired:
            self.forget(user_id)

        if expired:
            logger.info(f"Evicted {len(expired)} stale session(s)")
            self.json_logger.log("sessions_evicted", count=len(expired))
        return len(expired)

    async def _cleanup_loop(self) -> None:
        """Background task for periodic eviction."""
        while True:
            try:
                await asyncio.sleep(self.config.cleanup_interval)
                self.evict_stale()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Session cleanup failed")

    def start_cleanup_task(self) -> None:
        """Start the background cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    def stop_cleanup_task(self) -> None:
        """Stop the background cleanup task."""
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
