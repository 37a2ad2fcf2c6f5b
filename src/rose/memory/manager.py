"""Memory manager: orchestrates extraction and background memory writes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from ..errors import StorageError
from ..logging import JSONLLogger, get_logger
from .store import MemoryStore

if TYPE_CHECKING:
    from .extractor import FactExtractor, MoodExtractor

logger = logging.getLogger(__name__)

FACT_EXTRACTION_EVERY = 10
EXTRACTION_WINDOW = 20


class BackgroundTasks:
    """A set of detached tasks whose failures are logged, never propagated.

    Tasks are tracked until they finish so that :meth:`drain` can await them,
    which tests and shutdown use instead of racing a timer.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until every scheduled task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel outstanding tasks and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class MemoryManager:
    """Coordinates the store with the fact and mood extractors.

    After each turn it decides which extractions to run and hands them to a
    :class:`BackgroundTasks` set, so the reply path never waits on them.
    """

    def __init__(
        self,
        store: MemoryStore,
        fact_extractor: FactExtractor | None = None,
        mood_extractor: MoodExtractor | None = None,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The MemoryStore for persistence.
            fact_extractor: Optional extractor for long-term facts.
            mood_extractor: Optional extractor for the user's mood.
            json_logger: Structured event logger.
        """
        self.store = store
        self.fact_extractor = fact_extractor
        self.mood_extractor = mood_extractor
        self.json_logger = json_logger or get_logger()
        self.tasks = BackgroundTasks()

    async def extract_facts(self, user_id: str) -> list[str]:
        """Extract facts from the last messages and store them.

        Returns:
            The facts reported by the model (already known ones included).
        """
        if not self.fact_extractor:
            return []

        messages = self.store.all_messages(user_id)[-EXTRACTION_WINDOW:]
        facts = await self.fact_extractor.extract([m.for_llm() for m in messages])

        new_count = 0
        for fact in facts:
            if self.store.record_fact(user_id, fact):
                new_count += 1

        if facts:
            logger.info(f"Recorded {new_count} new fact(s) for user {user_id}")
            self.json_logger.log(
                "facts_extracted", user_id=user_id, extracted=len(facts), new=new_count
            )
        return facts

    async def analyze_mood(
        self, user_id: str, user_message: str, assistant_reply: str
    ) -> str | None:
        """Infer and store the user's mood from one exchange."""
        if not self.mood_extractor:
            return None

        mood = await self.mood_extractor.extract(user_message, assistant_reply)
        if mood is None:
            return None

        self.store.record_mood(user_id, mood)
        self.json_logger.log("mood_recorded", user_id=user_id, mood=mood)
        return mood

    def after_turn(self, user_id: str, user_message: str, assistant_reply: str) -> None:
        """Schedule background extraction for a persisted turn.

        Fact extraction runs when the message count is a multiple of 10. The
        check is a plain read, so under concurrent writes it may fire zero or
        two times near a boundary.
        """
        try:
            count = self.store.message_count(user_id)
        except StorageError as e:
            logger.error(f"Could not read message count for {user_id}: {e}")
            count = None

        if count and count % FACT_EXTRACTION_EVERY == 0:
            self.tasks.spawn(self.extract_facts(user_id), name=f"facts:{user_id}")

        self.tasks.spawn(
            self.analyze_mood(user_id, user_message, assistant_reply),
            name=f"mood:{user_id}",
        )

    async def drain(self) -> None:
        """Wait for all pending background extraction."""
        await self.tasks.drain()

    async def shutdown(self) -> None:
        """Cancel pending background extraction."""
        await self.tasks.cancel_all()
