"""Telegram bot integration for Rose."""

import logging
import os
from pathlib import Path

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..agent import ConversationConfig, ConversationHandler, InboundMessage
from ..errors import TransportError
from ..llm import ModelClient, ModelConfig
from ..logging import get_logger
from ..memory import FactExtractor, MemoryManager, MemoryStore, MoodExtractor
from ..proactive import ProactiveScheduler, SchedulerConfig
from ..session import SessionConfig, SessionManager

MEMORY_DB_PATH = Path.home() / ".rose" / "memory.db"

MAX_MESSAGE_LENGTH = 4096


logger = logging.getLogger(__name__)


def _config_from_env() -> tuple[ModelConfig, ConversationConfig]:
    """Load configuration from environment variables."""
    model_config = ModelConfig(
        api_key=os.getenv("DEEPSEEK_API_KEY", ""),
        model=os.getenv("MODEL_NAME", "deepseek-chat"),
        base_url=os.getenv("MODEL_BASE_URL", "https://api.deepseek.com"),
    )

    conversation_config = ConversationConfig(
        history_limit=int(os.getenv("MEMORY_LIMIT", "20")),
        max_input_chars=int(os.getenv("MAX_INPUT_CHARS", "2000")),
    )

    return model_config, conversation_config


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 10] + "\n..."


def display_name_of(update: Update) -> str | None:
    """Best display name for the sender: username, else first name."""
    user = update.effective_user
    if user is None:
        return None
    return user.username or user.first_name or None


class TelegramBot:
    """Telegram transport for Rose.

    Wires the memory store, model client, sessions, conversation handler and
    proactive scheduler together, and implements the outbound transport
    (``send_text`` / ``send_typing``) on top of python-telegram-bot.
    """

    def __init__(
        self,
        token: str | None = None,
        model_config: ModelConfig | None = None,
        conversation_config: ConversationConfig | None = None,
        session_config: SessionConfig | None = None,
        scheduler_config: SchedulerConfig | None = None,
        memory_db_path: Path | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise ValueError("TELEGRAM_TOKEN not set")

        # Load config from env if not provided
        if model_config is None or conversation_config is None:
            env_model, env_conversation = _config_from_env()
            model_config = model_config or env_model
            conversation_config = conversation_config or env_conversation

        if not model_config.api_key:
            raise ValueError("DEEPSEEK_API_KEY not set")

        self.json_logger = get_logger()

        db_path = memory_db_path or Path(os.getenv("ROSE_DB_PATH", str(MEMORY_DB_PATH)))
        self.memory_store = MemoryStore(db_path)
        self.memory_store.init_db()

        self.client = ModelClient(model_config)
        self.memory_manager = MemoryManager(
            self.memory_store,
            fact_extractor=FactExtractor(self.client),
            mood_extractor=MoodExtractor(self.client),
            json_logger=self.json_logger,
        )
        self.sessions = SessionManager(
            session_config, store=self.memory_store, json_logger=self.json_logger
        )
        self.conversation = ConversationHandler(
            transport=self,
            client=self.client,
            memory=self.memory_manager,
            sessions=self.sessions,
            config=conversation_config,
            json_logger=self.json_logger,
        )
        self.scheduler = ProactiveScheduler(
            self.memory_store,
            self.sessions,
            self.client,
            transport=self,
            config=scheduler_config,
            json_logger=self.json_logger,
        )

        self._app: Application | None = None

    def _get_user_id(self, update: Update) -> str:
        """Get chat_id as string from update."""
        assert update.effective_chat is not None
        return str(update.effective_chat.id)

    async def send_text(self, user_id: str, text: str) -> None:
        """Send a text message to a chat."""
        if self._app is None:
            raise TransportError("Telegram application is not running")
        try:
            await self._app.bot.send_message(chat_id=user_id, text=truncate_message(text))
        except Exception as e:
            raise TransportError(f"send_message to {user_id} failed: {e}") from e

    async def send_typing(self, user_id: str) -> None:
        """Show the typing indicator in a chat."""
        if self._app is None:
            raise TransportError("Telegram application is not running")
        try:
            await self._app.bot.send_chat_action(chat_id=user_id, action=ChatAction.TYPING)
        except Exception as e:
            raise TransportError(f"send_chat_action to {user_id} failed: {e}") from e

    async def _handle_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /start command."""
        assert update.message is not None
        user_id = self._get_user_id(update)
        self.sessions.observe(user_id, display_name_of(update))

        self.json_logger.log("command", user_id=user_id, command="start")
        await update.message.reply_text(self.conversation.welcome())

    async def _handle_memory(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /memory command."""
        assert update.message is not None
        user_id = self._get_user_id(update)

        self.json_logger.log("command", user_id=user_id, command="memory")
        await update.message.reply_text(
            truncate_message(self.conversation.memory_summary(user_id))
        )

    async def _handle_clear(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /clear command."""
        assert update.message is not None
        user_id = self._get_user_id(update)

        self.json_logger.log("command", user_id=user_id, command="clear")
        await update.message.reply_text(self.conversation.clear(user_id))

    async def _handle_diary(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /diary command."""
        assert update.message is not None
        user_id = self._get_user_id(update)

        self.json_logger.log("command", user_id=user_id, command="diary")
        diary = await self.conversation.write_diary(user_id)
        await update.message.reply_text(truncate_message(diary))

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle incoming text messages."""
        if update.message is None or update.effective_chat is None:
            return

        event = InboundMessage(
            user_id=self._get_user_id(update),
            text=update.message.text or "",
            display_name=display_name_of(update),
        )
        await self.conversation.handle_message(event)

    async def _handle_error(
        self, update: object, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Log errors raised by handlers."""
        logger.error("Unhandled error in Telegram handler", exc_info=context.error)
        self.json_logger.log("handler_error", error=str(context.error))

    async def _post_init(self, application: Application) -> None:
        """Called after Application.initialize()."""
        stats = self.memory_store.stats()
        logger.info(
            f"Memory loaded: {stats['users']} user(s), "
            f"{stats['facts']} fact(s), {stats['moods']} mood record(s)"
        )
        self.sessions.start_cleanup_task()
        self.scheduler.start()

    async def _post_shutdown(self, application: Application) -> None:
        """Called after Application.shutdown()."""
        self.scheduler.stop()
        self.sessions.stop_cleanup_task()
        await self.memory_manager.shutdown()
        await self.client.aclose()
        self.memory_store.close()

    def build_app(self) -> Application:
        """Build the Telegram application."""
        self._app = (
            Application.builder()
            .token(self.token)
            .post_init(self._post_init)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        # Add handlers
        self._app.add_handler(CommandHandler("start", self._handle_start))
        self._app.add_handler(CommandHandler("memory", self._handle_memory))
        self._app.add_handler(CommandHandler("clear", self._handle_clear))
        self._app.add_handler(CommandHandler("diary", self._handle_diary))
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
        )
        self._app.add_error_handler(self._handle_error)

        return self._app

    def run(self) -> None:
        """Run the bot (blocking)."""
        app = self.build_app()

        logger.info(f"Starting Rose with model {self.client.model}...")
        app.run_polling()
