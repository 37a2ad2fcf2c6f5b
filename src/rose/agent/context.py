"""Context assembly: turns stored memory into a bounded prompt."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from ..errors import StorageError
from ..persona import build_system_prompt, current_mood

if TYPE_CHECKING:
    from ..memory import MemoryStore
    from ..session import SessionManager

logger = logging.getLogger(__name__)

HOUR = 3600
LONG_GAP_HOURS = 6
SHORT_GAP_HOURS = 1


def time_gap_hint(gap_seconds: float | None) -> str | None:
    """Describe the pause since the user's last message, if it matters."""
    if gap_seconds is None:
        return None

    hours = int(gap_seconds // HOUR)
    if hours >= LONG_GAP_HOURS:
        return f"距离上次聊天已经过了{hours}小时了，可以自然地问候一句"
    if hours >= SHORT_GAP_HOURS:
        return "隔了一会儿才回，可以简单说一句"
    return None


def fallback_messages(user_message: str) -> list[dict[str, str]]:
    """Minimal valid context: bare persona plus the user's message."""
    return [
        {"role": "system", "content": build_system_prompt()},
        {"role": "user", "content": user_message},
    ]


class ContextAssembler:
    """Builds the message list sent to the model for one turn.

    Layout: persona system message, recent history, an optional time-gap
    note, then the new user message. Nothing is cached; every call reads
    the current facts and mood.
    """

    def __init__(
        self,
        store: MemoryStore,
        sessions: SessionManager,
        history_limit: int = 20,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.history_limit = history_limit
        self._clock = clock

    def build(self, user_id: str, user_message: str) -> list[dict[str, str]]:
        """Assemble the context, falling back to a minimal one on any error."""
        try:
            return self._assemble(user_id, user_message)
        except Exception:
            logger.exception(f"Context assembly failed for {user_id}, using fallback")
            return fallback_messages(user_message)

    def _assemble(self, user_id: str, user_message: str) -> list[dict[str, str]]:
        now = self._clock()
        session = self.sessions.get_or_rebuild(user_id)

        history = self.store.recent_messages(user_id, self.history_limit)
        facts = list(dict.fromkeys(self.store.facts(user_id)))
        chat_count = self.store.message_count(user_id)

        system_prompt = build_system_prompt(
            user_name=session.display_name,
            facts=facts,
            chat_count=chat_count,
            mood=self.mood_hint(user_id, datetime.fromtimestamp(now).hour),
        )

        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(m.for_llm() for m in history)

        gap = None
        if session.last_message_time is not None:
            gap = now - session.last_message_time
        hint = time_gap_hint(gap)
        if hint:
            messages.append({"role": "system", "content": f"[系统提示: {hint}]"})

        messages.append({"role": "user", "content": user_message})
        return messages

    def mood_hint(self, user_id: str, hour: int | None = None) -> str:
        """Time-of-day mood, joined with the last recorded mood when known."""
        hint = current_mood(hour)
        try:
            recent = self.store.recent_mood(user_id)
        except StorageError as e:
            logger.warning(f"Mood lookup failed for {user_id}: {e}")
            recent = None

        if recent:
            hint += f"，上次对话心情: {recent}"
        return hint
