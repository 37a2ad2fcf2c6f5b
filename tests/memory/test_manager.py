"""Tests for MemoryManager and BackgroundTasks."""

import asyncio

import pytest

from conftest import FakeModelClient
from rose.memory import BackgroundTasks, FactExtractor, MemoryManager, MemoryStore, MoodExtractor


def make_manager(store: MemoryStore, client: FakeModelClient) -> MemoryManager:
    return MemoryManager(
        store,
        fact_extractor=FactExtractor(client),
        mood_extractor=MoodExtractor(client),
    )


def add_turns(store: MemoryStore, user_id: str, turns: int) -> None:
    for i in range(turns):
        store.append(user_id, "user", f"q{i}")
        store.append(user_id, "assistant", f"a{i}")


class TestBackgroundTasks:
    """Tests for the background task set."""

    @pytest.mark.asyncio
    async def test_drain_waits_for_tasks(self):
        tasks = BackgroundTasks()
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(True)

        tasks.spawn(work(), name="work")
        assert len(tasks) == 1
        await tasks.drain()

        assert done == [True]
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_failure_is_isolated_and_logged(self, caplog):
        tasks = BackgroundTasks()

        async def boom():
            raise RuntimeError("extraction crashed")

        tasks.spawn(boom(), name="boom")
        await tasks.drain()  # Should not raise

        assert "boom" in caplog.text
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(60), name="sleepy")

        await tasks.cancel_all()

        assert task.cancelled()
        assert len(tasks) == 0


class TestExtractFacts:
    """Tests for MemoryManager.extract_facts."""

    @pytest.mark.asyncio
    async def test_records_facts(self, store: MemoryStore):
        add_turns(store, "u1", 2)
        manager = make_manager(store, FakeModelClient(["- 对方叫小明\n- 对方喜欢猫"]))

        facts = await manager.extract_facts("u1")

        assert facts == ["对方叫小明", "对方喜欢猫"]
        assert set(store.facts("u1")) == {"对方叫小明", "对方喜欢猫"}

    @pytest.mark.asyncio
    async def test_repeated_facts_not_duplicated(self, store: MemoryStore):
        add_turns(store, "u1", 2)
        client = FakeModelClient(["- 对方喜欢猫", "- 对方喜欢猫\n- 对方养了一只狗"])
        manager = make_manager(store, client)

        await manager.extract_facts("u1")
        await manager.extract_facts("u1")

        assert sorted(store.facts("u1")) == sorted(["对方喜欢猫", "对方养了一只狗"])

    @pytest.mark.asyncio
    async def test_concurrent_extractions_do_not_duplicate(self, store: MemoryStore):
        add_turns(store, "u1", 2)
        in_flight = 0
        peak = 0

        class InterleavingClient(FakeModelClient):
            async def complete(self, messages):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0)
                in_flight -= 1
                return "- 对方喜欢猫\n- 对方叫小明\n- 对方住在上海"

        manager = make_manager(store, InterleavingClient())

        await asyncio.gather(manager.extract_facts("u1"), manager.extract_facts("u1"))

        assert peak == 2
        facts = store.facts("u1")
        assert sorted(facts) == sorted(["对方喜欢猫", "对方叫小明", "对方住在上海"])
        assert len(facts) == len(set(facts))

    @pytest.mark.asyncio
    async def test_only_last_twenty_messages(self, store: MemoryStore):
        add_turns(store, "u1", 15)
        client = FakeModelClient(["无"])
        manager = make_manager(store, client)

        await manager.extract_facts("u1")

        prompt = client.calls[0][1]["content"]
        assert "对方: q5" in prompt
        assert "对方: q4" not in prompt

    @pytest.mark.asyncio
    async def test_without_extractor(self, store: MemoryStore):
        manager = MemoryManager(store)
        assert await manager.extract_facts("u1") == []
        assert await manager.analyze_mood("u1", "hi", "hello") is None


class TestAnalyzeMood:
    """Tests for MemoryManager.analyze_mood."""

    @pytest.mark.asyncio
    async def test_records_mood(self, store: MemoryStore):
        manager = make_manager(store, FakeModelClient(["开心"]))

        mood = await manager.analyze_mood("u1", "发工资了", "恭喜")

        assert mood == "开心"
        assert store.recent_mood("u1") == "开心"

    @pytest.mark.asyncio
    async def test_nothing_not_stored(self, store: MemoryStore):
        manager = make_manager(store, FakeModelClient(["无"]))

        await manager.analyze_mood("u1", "嗯", "嗯")

        assert store.recent_mood("u1") is None


class TestAfterTurn:
    """Tests for scheduling extraction after a turn."""

    @pytest.mark.asyncio
    async def test_mood_every_turn_no_facts_off_boundary(self, store: MemoryStore):
        add_turns(store, "u1", 1)  # 2 messages
        client = FakeModelClient(responder=lambda messages: "平静")
        manager = make_manager(store, client)

        manager.after_turn("u1", "q0", "a0")
        await manager.drain()

        assert len(client.calls) == 1  # mood only
        assert store.recent_mood("u1") == "平静"
        assert store.facts("u1") == []

    @pytest.mark.asyncio
    async def test_facts_on_multiple_of_ten(self, store: MemoryStore):
        add_turns(store, "u1", 5)  # 10 messages

        def respond(messages):
            if "值得长期记住" in messages[0]["content"]:
                return "- 对方喜欢猫"
            return "开心"

        manager = make_manager(store, FakeModelClient(responder=respond))

        manager.after_turn("u1", "q4", "a4")
        await manager.drain()

        assert store.facts("u1") == ["对方喜欢猫"]
        assert store.recent_mood("u1") == "开心"

    @pytest.mark.asyncio
    async def test_background_storage_failure_does_not_raise(self, store: MemoryStore):
        add_turns(store, "u1", 1)
        manager = make_manager(store, FakeModelClient(["开心"]))
        store._get_connection().execute("DROP TABLE moods")

        manager.after_turn("u1", "q0", "a0")
        await manager.drain()  # Should not raise
