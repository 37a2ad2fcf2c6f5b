"""Proactive engagement: periodically reach out to users who went quiet."""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import ModelResponseError, StorageError, TransportError
from ..logging import JSONLLogger, get_logger
from ..persona import PROACTIVE_PROMPT, build_system_prompt, current_mood

if TYPE_CHECKING:
    from ..agent.conversation import Transport
    from ..llm import ModelClient
    from ..memory import MemoryStore
    from ..session import SessionManager, SessionState

logger = logging.getLogger(__name__)

FALLBACK_MESSAGES = (
    "在干嘛呢",
    "突然想到你，最近还好吗",
    "今天过得怎么样？",
    "我有点无聊，来找你说说话",
    "刚才看到一个好玩的东西，想起你了",
)


@dataclass
class SchedulerConfig:
    """Configuration for the proactive scheduler. Times are in seconds."""

    interval: float = 10 * 60
    inactivity_threshold: float = 30 * 60
    min_proactive_interval: float = 2 * 3600


class ProactiveScheduler:
    """Sends unprompted messages to inactive users.

    Two independent gates must both pass for a user: idle for longer than
    ``inactivity_threshold`` and not proactively contacted within
    ``min_proactive_interval``. A failure for one user never stops the sweep.
    """

    def __init__(
        self,
        store: MemoryStore,
        sessions: SessionManager,
        client: ModelClient,
        transport: Transport,
        config: SchedulerConfig | None = None,
        clock: Callable[[], float] = time.time,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.client = client
        self.transport = transport
        self.config = config or SchedulerConfig()
        self._clock = clock
        self.json_logger = json_logger or get_logger()
        self._task: asyncio.Task | None = None

    def is_due(self, session: SessionState, now: float) -> bool:
        """Check both cooldown gates for a session."""
        if session.last_interaction_time is None:
            return False

        since_interaction = now - session.last_interaction_time
        if session.last_proactive_send_time is None:
            since_proactive = math.inf
        else:
            since_proactive = now - session.last_proactive_send_time

        return (
            since_interaction > self.config.inactivity_threshold
            and since_proactive > self.config.min_proactive_interval
        )

    async def sweep(self, now: float | None = None) -> int:
        """Run one pass over all known users.

        Returns:
            Number of proactive messages delivered.
        """
        now = self._clock() if now is None else now
        sent = 0

        for user_id in self.store.user_ids():
            try:
                session = self.sessions.get_or_rebuild(user_id)
                if not self.is_due(session, now):
                    continue
                if await self._reach_out(session, now):
                    sent += 1
            except Exception as e:
                logger.exception(f"Proactive message to {user_id} failed")
                self.json_logger.log_proactive(user_id, generated=False, error=str(e))

        if sent:
            logger.info(f"Proactive sweep sent {sent} message(s)")
        return sent

    async def _reach_out(self, session: SessionState, now: float) -> bool:
        user_id = session.user_id
        text, generated = await self.generate_message(session)

        await self.transport.send_text(user_id, text)
        self.sessions.mark_proactive_sent(user_id, now)

        try:
            self.store.append(user_id, "assistant", text)
        except StorageError as e:
            logger.error(f"Failed to persist proactive message for {user_id}: {e}")

        self.json_logger.log_proactive(user_id, generated=generated)
        return True

    async def generate_message(self, session: SessionState) -> tuple[str, bool]:
        """Produce an outreach message.

        Returns:
            (text, generated) where ``generated`` is False if a fallback
            line was used because generation failed or came back empty.
        """
        user_id = session.user_id
        try:
            facts = self.store.facts(user_id)
            mood = self.store.recent_mood(user_id)
            chat_count = self.store.message_count(user_id)
        except StorageError as e:
            logger.warning(f"Proactive context degraded for {user_id}: {e}")
            facts, mood, chat_count = [], None, 0

        mood_hint = current_mood()
        if mood:
            mood_hint += f"，对方上次的心情: {mood}"

        system_prompt = build_system_prompt(
            user_name=session.display_name,
            facts=facts,
            chat_count=chat_count,
            mood=mood_hint,
        )

        try:
            text = await self.client.complete([
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": PROACTIVE_PROMPT},
            ])
        except (TransportError, ModelResponseError) as e:
            logger.warning(f"Proactive generation failed for {user_id}: {e}")
            text = ""

        if text.strip():
            return text.strip(), True
        return random.choice(FALLBACK_MESSAGES), False

    async def _loop(self) -> None:
        """Background task that sweeps on a fixed period."""
        while True:
            try:
                await asyncio.sleep(self.config.interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Proactive sweep failed")

    def start(self) -> None:
        """Start the periodic sweep task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        """Stop the periodic sweep task."""
        if self._task and not self._task.done():
            self._task.cancel()
