"""Tests for the in-memory event bus."""

import asyncio

import pytest


class TestPartitioning:
    """Test key to partition mapping."""

    def test_stable_for_key(self):
        """Test the same key always maps to the same partition."""
        from commitguard.events.bus import partition_for

        assert partition_for("a1b2c3", 3) == partition_for("a1b2c3", 3)
        assert 0 <= partition_for("a1b2c3", 3) < 3

    def test_no_key_uses_fallback(self):
        """Test unkeyed messages use the fallback modulo partitions."""
        from commitguard.events.bus import partition_for

        assert partition_for(None, 3, fallback=4) == 1


class TestInMemoryEventBus:
    """Test consumer-group semantics."""

    @pytest.mark.asyncio
    async def test_per_key_order(self, memory_bus):
        """Test messages with one key are handled in publish order."""
        seen = []

        async def handler(record):
            await asyncio.sleep(0)
            seen.append(record.value["n"])

        await memory_bus.subscribe("commit-analysis", "g1", handler)
        await memory_bus.start()
        try:
            for n in range(10):
                await memory_bus.publish("commit-analysis", "same-commit", {"n": n})
            await memory_bus.wait_idle()
        finally:
            await memory_bus.stop()

        assert seen == list(range(10))

    @pytest.mark.asyncio
    async def test_group_members_share_records(self, memory_bus):
        """Test each record is handled by exactly one member of a group."""
        first, second, other_group = [], [], []

        async def member_one(record):
            first.append(record.key)

        async def member_two(record):
            second.append(record.key)

        async def other(record):
            other_group.append(record.key)

        await memory_bus.subscribe("commit-analysis", "analyzers", member_one)
        await memory_bus.subscribe("commit-analysis", "analyzers", member_two)
        await memory_bus.subscribe("commit-analysis", "auditors", other)
        await memory_bus.start()
        try:
            keys = [f"commit-{i}" for i in range(12)]
            for key in keys:
                await memory_bus.publish("commit-analysis", key, {"k": key})
            await memory_bus.wait_idle()
        finally:
            await memory_bus.stop()

        assert sorted(first + second) == sorted(keys)
        assert not set(first) & set(second)
        assert sorted(other_group) == sorted(keys)

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_partition(self, memory_bus, metrics):
        """Test a raising handler is logged and the next record still arrives."""
        seen = []

        async def handler(record):
            if record.value["n"] == 0:
                raise RuntimeError("poison")
            seen.append(record.value["n"])

        await memory_bus.subscribe("commit-analysis", "g1", handler)
        await memory_bus.start()
        try:
            await memory_bus.publish("commit-analysis", "k", {"n": 0})
            await memory_bus.publish("commit-analysis", "k", {"n": 1})
            await memory_bus.wait_idle()
        finally:
            await memory_bus.stop()

        assert seen == [1]
        snapshot = metrics.snapshot()
        assert snapshot["total_errors"] == 1
        assert snapshot["total_messages_received"] == 1

    @pytest.mark.asyncio
    async def test_unavailable_bus(self, memory_bus, metrics):
        """Test publishing to an unavailable bus returns False and reports the error."""
        outcomes = []
        memory_bus.available = False

        published = await memory_bus.publish(
            "commit-analysis", "k", {"n": 1}, on_delivery=lambda topic, error: outcomes.append(error)
        )

        assert published is False
        assert isinstance(outcomes[0], ConnectionError)
        assert memory_bus.messages("commit-analysis") == []
        assert metrics.snapshot()["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_delivery_callback_errors_swallowed(self, memory_bus):
        """Test a raising delivery callback does not fail the publish."""
        def callback(topic, error):
            raise ValueError("callback bug")

        assert await memory_bus.publish("commit-analysis", "k", {"n": 1}, on_delivery=callback) is True

    @pytest.mark.asyncio
    async def test_redeliver_replays(self, memory_bus):
        """Test rewinding a group hands every record to it again."""
        seen = []

        async def handler(record):
            seen.append(record.value["n"])

        await memory_bus.subscribe("commit-analysis", "g1", handler)
        await memory_bus.start()
        try:
            await memory_bus.publish("commit-analysis", "k", {"n": 1})
            await memory_bus.wait_idle()
            await memory_bus.redeliver("commit-analysis", "g1")
            await memory_bus.wait_idle()
        finally:
            await memory_bus.stop()

        assert seen == [1, 1]

    @pytest.mark.asyncio
    async def test_dead_letter(self, memory_bus):
        """Test dead-lettering copies the original record."""
        from commitguard.events.bus import Record, dead_letter
        from commitguard.events.topics import TOPIC_DLQ

        record = Record(topic="commit-analysis", partition=1, offset=7, key="abc", value={"broken": True})

        assert await dead_letter(memory_bus, record, "bad payload", "g1") is True

        [dead] = memory_bus.messages(TOPIC_DLQ)
        assert dead.key == "abc"
        assert dead.value["payload"] == {"broken": True}
        assert dead.value["error"] == "bad payload"


class TestCreateEventBus:
    """Test backend selection."""

    def test_memory_backend(self, mock_env_vars):
        """Test the memory backend yields an InMemoryEventBus."""
        from commitguard.config import Settings
        from commitguard.events.bus import InMemoryEventBus, create_event_bus

        assert isinstance(create_event_bus(Settings()), InMemoryEventBus)

    def test_kafka_backend(self, mock_env_vars, monkeypatch):
        """Test the kafka backend yields a KafkaEventBus without connecting."""
        monkeypatch.setenv("EVENT_BUS_BACKEND", "kafka")
        from commitguard.config import Settings
        from commitguard.events.bus import KafkaEventBus, create_event_bus

        assert isinstance(create_event_bus(Settings()), KafkaEventBus)

    @pytest.mark.asyncio
    async def test_kafka_publish_requires_start(self):
        """Test publishing before start() raises."""
        from commitguard.events.bus import KafkaEventBus

        bus = KafkaEventBus(bootstrap_servers="localhost:9092")

        with pytest.raises(RuntimeError):
            await bus.publish("commit-analysis", "k", {"n": 1})
