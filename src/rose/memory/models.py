"""Data models for the memory system."""

from dataclasses import dataclass

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class ConversationMessage:
    """One stored message of a conversation.

    Attributes:
        user_id: Owner of the conversation.
        role: 'user' or 'assistant'.
        content: Message text.
        created_at: Seconds since the epoch.
        id: Database ID.
    """

    user_id: str
    role: str
    content: str
    created_at: float
    id: int | None = None

    def for_llm(self) -> dict[str, str]:
        """Return the chat-completion representation of this message."""
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class MoodEntry:
    """A mood inferred from one exchange."""

    user_id: str
    mood: str
    created_at: float
    id: int | None = None
