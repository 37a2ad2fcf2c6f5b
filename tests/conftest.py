"""Shared fixtures and fakes."""

from collections.abc import Callable
from pathlib import Path

import pytest

from rose.errors import TransportError
from rose.logging import JSONLLogger, configure_logger
from rose.memory import MemoryStore


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeModelClient:
    """Model client returning scripted replies.

    Items in ``replies`` are returned in order (exceptions are raised).
    When they run out, ``responder(messages)`` is used, else a default.
    """

    def __init__(
        self,
        replies: list[str | Exception] | None = None,
        responder: Callable[[list[dict[str, str]]], str] | None = None,
    ) -> None:
        self.replies = list(replies or [])
        self.responder = responder
        self.calls: list[list[dict[str, str]]] = []
        self.model = "fake-model"

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        if self.responder is not None:
            return self.responder(messages)
        return "好呀"


class FakeTransport:
    """Transport that records outbound messages."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []
        self.fail_for = fail_for or set()

    async def send_text(self, user_id: str, text: str) -> None:
        if user_id in self.fail_for:
            raise TransportError(f"cannot reach {user_id}")
        self.sent.append((user_id, text))

    async def send_typing(self, user_id: str) -> None:
        self.typing.append(user_id)

    def texts_for(self, user_id: str) -> list[str]:
        return [text for uid, text in self.sent if uid == user_id]


@pytest.fixture(autouse=True)
def json_logger(tmp_path: Path) -> JSONLLogger:
    """Route structured logs to a temporary directory."""
    return configure_logger(tmp_path / "logs")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> MemoryStore:
    """Create a MemoryStore with a temporary database."""
    store = MemoryStore(tmp_path / "test_memory.db", clock=clock)
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
