"""Turn handling and the chat command surface."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from ..errors import ModelResponseError, StorageError, TransportError, ValidationError
from ..logging import JSONLLogger, get_logger
from ..persona import DIARY_PROMPT, build_system_prompt, format_conversation
from .context import ContextAssembler

if TYPE_CHECKING:
    from ..llm import ModelClient
    from ..memory import MemoryManager, MemoryStore
    from ..session import SessionManager

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "嗨，我是 Rose。\n\n有什么就说吧，别客气。"
CLEARED_MESSAGE = "行，重新开始吧。"
TOO_LONG_MESSAGE = "太长了，看不过来……挑重点说？"
EMPTY_REPLY = "嗯..."
FALLBACK_REPLIES = (
    "刚才卡住了，你说啥？",
    "没听清，再说一遍？",
    "有点走神了...",
    "信号不好吗，我没收到",
)
DIARY_EMPTY_MESSAGE = "还没聊啥呢，写什么日记。"
DIARY_FAILED_MESSAGE = "写日记的时候走神了..."

DIARY_WINDOW = 30


class Transport(Protocol):
    """Outbound side of the chat platform."""

    async def send_text(self, user_id: str, text: str) -> None:
        """Deliver a text message to the user."""
        ...

    async def send_typing(self, user_id: str) -> None:
        """Show a typing indicator to the user."""
        ...


@dataclass
class InboundMessage:
    """A text message received from the chat platform."""

    user_id: str
    text: str
    display_name: str | None = None

    def validate(self) -> None:
        """Raise ValidationError if the user or text is missing."""
        if not self.user_id:
            raise ValidationError("Inbound message has no user id")
        if not self.text or not self.text.strip():
            raise ValidationError("Inbound message has no text")


@dataclass
class ConversationConfig:
    """Configuration for turn handling."""

    history_limit: int = 20
    max_input_chars: int = 2000


class ConversationHandler:
    """Runs turns and commands against memory, sessions and the model.

    A turn is: assemble context, ask the model, deliver the reply, persist
    both messages, then hand extraction off to the memory manager. Any error
    before persistence becomes a natural-sounding fallback reply.
    """

    def __init__(
        self,
        transport: Transport,
        client: ModelClient,
        memory: MemoryManager,
        sessions: SessionManager,
        config: ConversationConfig | None = None,
        json_logger: JSONLLogger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.transport = transport
        self.client = client
        self.memory = memory
        self.sessions = sessions
        self.config = config or ConversationConfig()
        self.json_logger = json_logger or get_logger()
        self.assembler = ContextAssembler(
            memory.store, sessions, history_limit=self.config.history_limit, clock=clock
        )

    @property
    def store(self) -> MemoryStore:
        return self.memory.store

    async def handle_message(self, event: InboundMessage) -> str | None:
        """Handle one inbound text message.

        Returns:
            The text sent back to the user, or None if nothing was sent.
        """
        try:
            event.validate()
        except ValidationError as e:
            logger.warning(f"Dropping inbound message: {e}")
            return None

        if event.text.startswith("/"):
            return None

        user_id = event.user_id
        self.sessions.observe(user_id, event.display_name)

        if len(event.text) > self.config.max_input_chars:
            self.json_logger.log(
                "input_rejected", user_id=user_id, reason="too_long", length=len(event.text)
            )
            await self._send_quietly(user_id, TOO_LONG_MESSAGE)
            return TOO_LONG_MESSAGE

        async with self.sessions.turn_lock(user_id):
            return await self._run_turn(user_id, event.text)

    async def _run_turn(self, user_id: str, text: str) -> str:
        start = time.monotonic()

        try:
            await self.transport.send_typing(user_id)
        except Exception as e:
            logger.debug(f"Typing indicator failed for {user_id}: {e}")

        try:
            messages = self.assembler.build(user_id, text)
            reply = await self.client.complete(messages)

            if not reply.strip():
                logger.error(f"Model returned an empty reply for {user_id}")
                await self.transport.send_text(user_id, EMPTY_REPLY)
                return EMPTY_REPLY

            await self.transport.send_text(user_id, reply)
        except Exception as e:
            logger.exception(f"Error handling message from {user_id}")
            self.json_logger.log("turn_error", user_id=user_id, error=str(e))
            fallback = random.choice(FALLBACK_REPLIES)
            await self._send_quietly(user_id, fallback)
            return fallback

        try:
            self.store.append(user_id, "user", text)
            self.store.append(user_id, "assistant", reply)
        except StorageError:
            logger.error(f"Failed to persist turn for {user_id}")
            raise

        self.sessions.mark_replied(user_id)
        self.memory.after_turn(user_id, text, reply)

        self.json_logger.log_turn(
            user_id,
            duration_ms=(time.monotonic() - start) * 1000,
            reply_length=len(reply),
            history_size=len(messages),
        )
        return reply

    async def _send_quietly(self, user_id: str, text: str) -> None:
        try:
            await self.transport.send_text(user_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to {user_id}: {e}")

    def welcome(self) -> str:
        """Text for /start."""
        return WELCOME_MESSAGE

    def memory_summary(self, user_id: str) -> str:
        """Text for /memory: facts, last mood and message count."""
        try:
            count = self.store.message_count(user_id)
            facts = self.store.facts(user_id)
            mood = self.store.recent_mood(user_id)
        except StorageError as e:
            logger.warning(f"Memory summary degraded for {user_id}: {e}")
            count, facts, mood = 0, [], None

        if not facts:
            return f"我们聊了 {count} 条消息，但我还没记住什么特别的。"

        lines = "\n".join(f"• {fact}" for fact in facts)
        reply = f"我们聊了 {count} 条消息。\n\n我记得:\n{lines}"
        if mood:
            reply += f"\n\n上次聊完心情: {mood}"
        return reply

    def clear(self, user_id: str) -> str:
        """Text for /clear, after wiping the user's memory and session."""
        self.store.clear_user(user_id)
        self.sessions.forget(user_id)
        self.json_logger.log("memory_cleared", user_id=user_id)
        return CLEARED_MESSAGE

    async def write_diary(self, user_id: str) -> str:
        """Text for /diary: a short first-person note about recent chats."""
        try:
            history = self.store.all_messages(user_id)[-DIARY_WINDOW:]
        except StorageError as e:
            logger.warning(f"Diary history unavailable for {user_id}: {e}")
            return DIARY_FAILED_MESSAGE

        if not history:
            return DIARY_EMPTY_MESSAGE

        try:
            await self.transport.send_typing(user_id)
        except Exception as e:
            logger.debug(f"Typing indicator failed for {user_id}: {e}")

        conversation = format_conversation(
            [m.for_llm() for m in history], user_label="Ta", assistant_label="我"
        )
        try:
            diary = await self.client.complete([
                {"role": "system", "content": build_system_prompt()},
                {"role": "user", "content": DIARY_PROMPT.format(conversation=conversation)},
            ])
        except (TransportError, ModelResponseError) as e:
            logger.warning(f"Diary generation failed for {user_id}: {e}")
            return DIARY_FAILED_MESSAGE

        return f"📔\n\n{diary}"
