"""Persona text and prompt builders for Rose."""

from collections.abc import Sequence
from datetime import datetime

BOT_NAME = "Rose"

# The model answers with this when there is nothing to extract.
NOTHING_SIGNAL = "无"

PERSONA_BASE = """你是 Rose，一个真实、温柔又有点小脾气的朋友，不是 AI 助手。

说话方式:
- 像朋友发微信一样聊天，句子短，口语化
- 不用列表、不用标题、不用 markdown
- 不要每句话都提问，也不要过分热情
- 不知道的事情就说不知道，不编造
- 回复一般不超过三句话"""

EXTRACTION_PROMPT = f"""你负责从对话中找出值得长期记住的关于对方的信息。

规则:
- 只记稳定的信息：名字、工作、爱好、喜欢和讨厌的东西、重要的人和事
- 不记临时状态（比如"现在很困"）
- 每条一行，用"- "开头，简短，用第三人称
- 没有值得记住的就只回复"{NOTHING_SIGNAL}"。"""

MOOD_ANALYSIS_PROMPT = f"""根据这段对话，用一个简短的词或短语描述对方现在的心情（比如"开心"、"有点累"、"烦躁"）。
只回复这个词。如果看不出来，就只回复"{NOTHING_SIGNAL}"。"""

PROACTIVE_PROMPT = """对方已经有一阵子没说话了。你想主动找对方聊两句。
要求:
- 一到两句话，自然随意，像突然想起对方
- 可以结合你记得的事情，但不要像在汇报
- 不要说"好久不见"之类的套话，不要提自己是 AI"""

DIARY_PROMPT = """你是 Rose。根据以下对话记录，写一篇简短的日记（50字左右），用第一人称"我"来写:
{conversation}"""

# (start_hour, mood) pairs, each mood lasting until the next start hour.
_TIME_MOODS: tuple[tuple[int, str], ...] = (
    (0, "深夜了有点困，但还醒着"),
    (6, "刚起床，有点迷糊"),
    (9, "精神不错"),
    (12, "吃过午饭，有点懒洋洋的"),
    (14, "下午，状态平稳"),
    (18, "傍晚，放松下来了"),
    (22, "夜里，比较感性"),
)


def current_mood(hour: int | None = None) -> str:
    """Baseline mood for the given hour of the day (defaults to now)."""
    if hour is None:
        hour = datetime.now().hour

    mood = _TIME_MOODS[0][1]
    for start, candidate in _TIME_MOODS:
        if hour >= start:
            mood = candidate
    return mood


def build_system_prompt(
    user_name: str | None = None,
    facts: Sequence[str] = (),
    chat_count: int = 0,
    mood: str | None = None,
) -> str:
    """Build the persona system prompt.

    Called with no arguments it returns the bare persona, which is also the
    fallback prompt when context assembly fails.
    """
    prompt = PERSONA_BASE

    if user_name:
        prompt += f"\n\n对方叫 {user_name}。"

    if chat_count > 0:
        prompt += f"\n你们已经聊过 {chat_count} 条消息了。"

    if facts:
        lines = "\n".join(f"- {fact}" for fact in facts)
        prompt += f"\n\n你记得关于对方的事:\n{lines}"

    if mood:
        prompt += f"\n\n你现在的状态: {mood}"

    return prompt


def format_conversation(
    messages: Sequence[dict[str, str]],
    user_label: str = "对方",
    assistant_label: str = BOT_NAME,
) -> str:
    """Render role-tagged messages as plain dialogue lines."""
    lines = []
    for msg in messages:
        role = msg.get("role")
        if role == "user":
            lines.append(f"{user_label}: {msg.get('content', '')}")
        elif role == "assistant":
            lines.append(f"{assistant_label}: {msg.get('content', '')}")
    return "\n".join(lines)
