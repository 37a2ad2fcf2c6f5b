"""SQLite storage for conversation history, facts and moods."""

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import StorageError, ValidationError
from .models import ROLES, ConversationMessage, MoodEntry

logger = logging.getLogger(__name__)

MAX_RECENT_MESSAGES = 50
MAX_HISTORY_MESSAGES = 100
MAX_MOODS_PER_USER = 50

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     TEXT NOT NULL,
        role        TEXT NOT NULL,
        content     TEXT NOT NULL,
        created_at  INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_user_created ON messages(user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS facts (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     TEXT NOT NULL,
        fact        TEXT NOT NULL,
        created_at  INTEGER NOT NULL,
        UNIQUE(user_id, fact)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_facts_user ON facts(user_id)",
    """
    CREATE TABLE IF NOT EXISTS moods (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     TEXT NOT NULL,
        mood        TEXT NOT NULL,
        created_at  INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_moods_user_created ON moods(user_id, created_at)",
)


def _to_ms(seconds: float) -> int:
    return int(seconds * 1000)


def _to_seconds(ms: int) -> float:
    return ms / 1000.0


class MemoryStore:
    """Persistent per-user memory backed by SQLite.

    Three tables are kept: ``messages`` (append-only history), ``facts``
    (unique per user and text) and ``moods`` (the 50 newest per user).
    Timestamps are integer milliseconds, clamped so that they never go
    backwards for a user within a table.

    Every ``sqlite3.Error`` is re-raised as :class:`StorageError`.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            clock: Source of the current time in seconds.
        """
        self.db_path = db_path
        self._clock = clock
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    @contextmanager
    def _connection(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self._get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to {action}: {e}") from e

    def init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._connection("initialize database") as conn:
            with conn:
                for statement in _SCHEMA:
                    conn.execute(statement)

    def append(self, user_id: str, role: str, content: str) -> ConversationMessage:
        """Append a message to a user's history.

        Returns:
            The stored message with its id and timestamp.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role!r}")

        with self._connection("append message") as conn:
            with conn:
                row = conn.execute(
                    """
                    INSERT INTO messages (user_id, role, content, created_at)
                    VALUES (?, ?, ?, MAX(?, COALESCE(
                        (SELECT MAX(created_at) FROM messages WHERE user_id = ?), 0)))
                    RETURNING id, created_at
                    """,
                    (user_id, role, content, _to_ms(self._clock()), user_id),
                ).fetchall()[0]

        return ConversationMessage(
            id=row["id"],
            user_id=user_id,
            role=role,
            content=content,
            created_at=_to_seconds(row["created_at"]),
        )

    def record_fact(self, user_id: str, fact: str) -> bool:
        """Store a fact about a user.

        Duplicate text for the same user is silently ignored.

        Returns:
            True if the fact was new, False if it was already known.
        """
        fact = fact.strip()
        if not fact:
            raise ValidationError("Fact must not be empty")

        with self._connection("record fact") as conn:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO facts (user_id, fact, created_at)
                    VALUES (?, ?, MAX(?, COALESCE(
                        (SELECT MAX(created_at) FROM facts WHERE user_id = ?), 0)))
                    ON CONFLICT(user_id, fact) DO NOTHING
                    """,
                    (user_id, fact, _to_ms(self._clock()), user_id),
                )
        return cursor.rowcount > 0

    def record_mood(self, user_id: str, mood: str) -> MoodEntry:
        """Insert a mood and trim the user's moods to the newest 50."""
        with self._connection("record mood") as conn:
            with conn:
                row = conn.execute(
                    """
                    INSERT INTO moods (user_id, mood, created_at)
                    VALUES (?, ?, MAX(?, COALESCE(
                        (SELECT MAX(created_at) FROM moods WHERE user_id = ?), 0)))
                    RETURNING id, created_at
                    """,
                    (user_id, mood, _to_ms(self._clock()), user_id),
                ).fetchall()[0]
                conn.execute(
                    """
                    DELETE FROM moods WHERE id IN (
                        SELECT id FROM moods WHERE user_id = ?
                        ORDER BY created_at DESC, id DESC
                        LIMIT -1 OFFSET ?
                    )
                    """,
                    (user_id, MAX_MOODS_PER_USER),
                )

        return MoodEntry(
            id=row["id"],
            user_id=user_id,
            mood=mood,
            created_at=_to_seconds(row["created_at"]),
        )

    def recent_messages(self, user_id: str, limit: int) -> list[ConversationMessage]:
        """Get the most recent messages, oldest first.

        ``limit`` is clamped to ``MAX_RECENT_MESSAGES``.
        """
        limit = max(0, min(limit, MAX_RECENT_MESSAGES))
        if limit == 0:
            return []
        return self._latest_messages(user_id, limit)

    def all_messages(self, user_id: str) -> list[ConversationMessage]:
        """Get the conversation history, capped to the newest 100 messages."""
        return self._latest_messages(user_id, MAX_HISTORY_MESSAGES)

    def _latest_messages(self, user_id: str, limit: int) -> list[ConversationMessage]:
        with self._connection("read messages") as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, role, content, created_at FROM messages
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    def facts(self, user_id: str) -> list[str]:
        """Get all facts about a user, most recent first."""
        with self._connection("read facts") as conn:
            rows = conn.execute(
                "SELECT fact FROM facts WHERE user_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [row["fact"] for row in rows]

    def recent_mood(self, user_id: str) -> str | None:
        """Get the latest recorded mood, if any."""
        with self._connection("read mood") as conn:
            row = conn.execute(
                """
                SELECT mood FROM moods WHERE user_id = ?
                ORDER BY created_at DESC, id DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return row["mood"] if row else None

    def mood_count(self, user_id: str) -> int:
        """Number of moods retained for a user."""
        with self._connection("count moods") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM moods WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row["count"]

    def message_count(self, user_id: str) -> int:
        """Total number of messages ever stored for a user."""
        with self._connection("count messages") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM messages WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row["count"]

    def last_message_at(self, user_id: str, role: str | None = None) -> float | None:
        """Timestamp of the user's newest message, optionally for one role."""
        query = "SELECT MAX(created_at) AS latest FROM messages WHERE user_id = ?"
        params: tuple[str, ...] = (user_id,)
        if role is not None:
            query += " AND role = ?"
            params += (role,)

        with self._connection("read last message time") as conn:
            row = conn.execute(query, params).fetchone()
        if row["latest"] is None:
            return None
        return _to_seconds(row["latest"])

    def last_proactive_at(self, user_id: str) -> float | None:
        """Timestamp of the newest assistant message that was not a reply.

        A reply is always stored right after the user message it answers,
        so an assistant message whose predecessor is not a user message
        (or that has no predecessor) was sent proactively.
        """
        with self._connection("read last proactive time") as conn:
            row = conn.execute(
                """
                SELECT m.created_at FROM messages AS m
                WHERE m.user_id = ? AND m.role = 'assistant'
                  AND COALESCE((
                      SELECT p.role FROM messages AS p
                      WHERE p.user_id = m.user_id
                        AND (p.created_at < m.created_at
                             OR (p.created_at = m.created_at AND p.id < m.id))
                      ORDER BY p.created_at DESC, p.id DESC
                      LIMIT 1
                  ), 'assistant') != 'user'
                ORDER BY m.created_at DESC, m.id DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return _to_seconds(row["created_at"]) if row else None

    def clear_user(self, user_id: str) -> None:
        """Delete every message, fact and mood of a user. Irreversible."""
        with self._connection("clear user") as conn:
            with conn:
                conn.execute("DELETE FROM messages WHERE user_id = ?", (user_id,))
                conn.execute("DELETE FROM facts WHERE user_id = ?", (user_id,))
                conn.execute("DELETE FROM moods WHERE user_id = ?", (user_id,))
        logger.info(f"Cleared memory for user {user_id}")

    def user_ids(self) -> list[str]:
        """Distinct users that have conversation history."""
        with self._connection("list users") as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM messages ORDER BY user_id"
            ).fetchall()
        return [row["user_id"] for row in rows]

    def stats(self) -> dict[str, int]:
        """Totals across all users, for startup logging."""
        with self._connection("read stats") as conn:
            users = conn.execute(
                "SELECT COUNT(DISTINCT user_id) FROM messages"
            ).fetchone()[0]
            facts = conn.execute("SELECT COUNT(*) FROM facts").fetchone()[0]
            moods = conn.execute("SELECT COUNT(*) FROM moods").fetchone()[0]
        return {"users": users, "facts": facts, "moods": moods}

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_message(self, row: sqlite3.Row) -> ConversationMessage:
        """Convert a database row to a ConversationMessage."""
        return ConversationMessage(
            id=row["id"],
            user_id=row["user_id"],
            role=row["role"],
            content=row["content"],
            created_at=_to_seconds(row["created_at"]),
        )
