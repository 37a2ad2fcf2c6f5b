"""Turn handling and context assembly."""

from .context import ContextAssembler, fallback_messages, time_gap_hint
from .conversation import (
    ConversationConfig,
    ConversationHandler,
    InboundMessage,
    Transport,
)

__all__ = [
    "ContextAssembler",
    "ConversationConfig",
    "ConversationHandler",
    "InboundMessage",
    "Transport",
    "fallback_messages",
    "time_gap_hint",
]
