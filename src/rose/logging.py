"""Structured JSONL event log.

Operational messages go through the standard ``logging`` module. This module
records one JSON object per line for the events worth auditing later: turns,
extractions, proactive sends and evictions.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_LOG_DIR = Path.home() / ".rose" / "logs"
LOG_FILENAME = "events.jsonl"
MAX_LOG_BYTES = 10 * 1024 * 1024


@dataclass
class EventRecord:
    """One line of the event log. Unset fields are left out."""

    timestamp: str
    event: str
    user_id: str | None = None
    duration_ms: float | None = None
    reason: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, event: str, **fields: Any) -> "EventRecord":
        """Build a record stamped with the current UTC time."""
        return cls(timestamp=datetime.now(timezone.utc).isoformat(), event=event, **fields)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v != {}}


class JSONLLogger:
    """Appends :class:`EventRecord` lines to ``<log_dir>/events.jsonl``.

    Once the file reaches ``max_bytes`` it is renamed with a UTC timestamp
    suffix and a fresh file is started.
    """

    def __init__(self, log_dir: str | Path | None = None, max_bytes: int = MAX_LOG_BYTES) -> None:
        self.log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.max_bytes = max_bytes

    @property
    def log_path(self) -> Path:
        return self.log_dir / LOG_FILENAME

    def _rotate(self) -> None:
        path = self.log_path
        if not path.exists() or path.stat().st_size < self.max_bytes:
            return
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path.rename(path.with_name(f"{path.stem}.{stamp}.jsonl"))

    def write(self, record: EventRecord) -> None:
        """Append a record, rotating the file first if it is full."""
        self._rotate()
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        duration_ms: float | None = None,
        reason: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Record an event; keyword arguments beyond the known fields go to ``extra``."""
        self.write(
            EventRecord.create(
                event,
                user_id=user_id,
                duration_ms=duration_ms,
                reason=reason,
                error=error,
                extra=extra,
            )
        )

    def log_turn(
        self,
        user_id: str,
        *,
        duration_ms: float,
        reply_length: int,
        history_size: int,
    ) -> None:
        """Record a completed conversational turn."""
        self.log(
            "turn",
            user_id=user_id,
            duration_ms=duration_ms,
            reply_length=reply_length,
            history_size=history_size,
        )

    def log_proactive(self, user_id: str, *, generated: bool, error: str | None = None) -> None:
        """Record a proactive send, or its failure when ``error`` is given.

        ``generated`` is False when a hand-written fallback line was used.
        """
        self.log(
            "proactive_error" if error else "proactive_sent",
            user_id=user_id,
            error=error,
            generated=generated,
        )


_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Process-wide event logger, created on first use."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None) -> JSONLLogger:
    """Replace the process-wide event logger with one writing to ``log_dir``."""
    global _logger
    _logger = JSONLLogger(log_dir)
    return _logger
