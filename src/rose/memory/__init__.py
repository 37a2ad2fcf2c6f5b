"""Memory module for durable per-user conversation state."""

from .extractor import FactExtractor, MoodExtractor, parse_facts
from .manager import BackgroundTasks, MemoryManager
from .models import ConversationMessage, MoodEntry
from .store import MemoryStore

__all__ = [
    "BackgroundTasks",
    "ConversationMessage",
    "FactExtractor",
    "MemoryManager",
    "MemoryStore",
    "MoodEntry",
    "MoodExtractor",
    "parse_facts",
]
