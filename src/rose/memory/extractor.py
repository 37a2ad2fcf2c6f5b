"""Fact and mood extraction from conversations using the LLM."""

import logging
import re
from typing import Any

from ..errors import ModelResponseError, TransportError
from ..llm import ModelClient
from ..persona import (
    EXTRACTION_PROMPT,
    MOOD_ANALYSIS_PROMPT,
    NOTHING_SIGNAL,
    format_conversation,
)

logger = logging.getLogger(__name__)

BULLET_PREFIX = re.compile(r"^[-•*]\s*")

MIN_FACT_LENGTH = 3
MAX_FACT_LENGTH = 100


def is_nothing(text: str | None) -> bool:
    """True if the model signalled that there is nothing to record."""
    if not text:
        return True
    return text.strip().strip("。.!！\"'“”") in (NOTHING_SIGNAL, "")


def parse_facts(content: str) -> list[str]:
    """Parse a bullet-list response into fact strings.

    Bullet prefixes are stripped and only lines strictly longer than 3 and
    shorter than 100 characters are kept.
    """
    if is_nothing(content):
        return []

    facts = []
    for line in content.split("\n"):
        fact = BULLET_PREFIX.sub("", line.strip()).strip()
        if MIN_FACT_LENGTH < len(fact) < MAX_FACT_LENGTH and not is_nothing(fact):
            facts.append(fact)
    return facts


class FactExtractor:
    """Extracts long-term facts from recent conversation."""

    def __init__(self, client: ModelClient) -> None:
        self.client = client

    async def extract(self, messages: list[dict[str, Any]]) -> list[str]:
        """Extract facts from a conversation.

        Args:
            messages: Chronological role/content dicts.

        Returns:
            Extracted facts, empty if the conversation is too short, the
            model had nothing to report, or the model call failed.
        """
        if len(messages) < 2:
            return []

        conversation = format_conversation(messages)
        prompt = f"{EXTRACTION_PROMPT}\n\n对话记录:\n{conversation}\n\n需要记住的信息:"

        try:
            content = await self.client.complete([
                {"role": "system", "content": EXTRACTION_PROMPT},
                {"role": "user", "content": prompt},
            ])
        except (TransportError, ModelResponseError) as e:
            logger.warning(f"Fact extraction failed: {e}")
            return []

        return parse_facts(content)


class MoodExtractor:
    """Infers the user's mood from the latest exchange."""

    def __init__(self, client: ModelClient) -> None:
        self.client = client

    async def extract(self, user_message: str, assistant_reply: str) -> str | None:
        """Return a short mood descriptor, or None when nothing was inferred."""
        conversation = format_conversation([
            {"role": "user", "content": user_message},
            {"role": "assistant", "content": assistant_reply},
        ])
        prompt = f"{MOOD_ANALYSIS_PROMPT}\n\n对话:\n{conversation}"

        try:
            mood = await self.client.complete([
                {"role": "system", "content": MOOD_ANALYSIS_PROMPT},
                {"role": "user", "content": prompt},
            ])
        except (TransportError, ModelResponseError) as e:
            logger.warning(f"Mood analysis failed: {e}")
            return None

        if is_nothing(mood):
            return None
        return mood.strip()
