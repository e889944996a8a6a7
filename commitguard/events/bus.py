"""
Event bus abstraction over a partitioned, durable message log.

Two implementations share the ``EventBus`` interface:
- KafkaEventBus: aiokafka producer plus one consumer per subscription,
  offsets committed after the handler returns (at-least-once)
- InMemoryEventBus: single-process log with the same partitioning and
  consumer-group semantics, used for local runs and tests

Publishing never waits on consumers. Messages sharing a key land on the
same partition and are handled in order; a partition is owned by exactly
one member of a consumer group at a time.
"""

import asyncio
import json
import time
import zlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Protocol, Sequence

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError

from commitguard.config import EventBusBackend, Settings, get_settings
from commitguard.events.metrics import MetricsRecorder, get_metrics_registry
from commitguard.events.schemas import BusMessage, DeadLetterMessage, DecodeResult, decode_message
from commitguard.events.topics import TOPIC_DLQ, get_topic_config

logger = structlog.get_logger(__name__)

DeliveryCallback = Callable[[str, Exception | None], None]


@dataclass(frozen=True)
class Record:
    """A message as seen by a subscriber."""

    topic: str
    partition: int
    offset: int
    key: str | None
    value: Any
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def decode(self) -> DecodeResult:
        """Decode ``value`` against the topic's schema."""
        return decode_message(self.topic, self.value)


Handler = Callable[[Record], Awaitable[None]]


class EventBus(Protocol):
    """Publish/subscribe contract shared by all bus implementations."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def publish(
        self,
        topic: str,
        key: str | None,
        message: BusMessage | dict[str, Any],
        on_delivery: DeliveryCallback | None = None,
    ) -> bool: ...

    async def subscribe(self, topics: str | Sequence[str], group_id: str, handler: Handler) -> None: ...


def _to_value(message: BusMessage | dict[str, Any]) -> dict[str, Any]:
    return message.to_dict() if isinstance(message, BusMessage) else message


def _notify(on_delivery: DeliveryCallback | None, topic: str, error: Exception | None) -> None:
    if on_delivery is None:
        return
    try:
        on_delivery(topic, error)
    except Exception as e:
        logger.warning("Delivery callback raised", topic=topic, error=str(e))


def partition_for(key: str | None, partitions: int, fallback: int = 0) -> int:
    """Stable key-to-partition mapping (CRC32 modulo partition count)."""
    if key is None:
        return fallback % partitions
    return zlib.crc32(key.encode("utf-8")) % partitions


# =============================================================================
# Kafka
# =============================================================================


class KafkaEventBus:
    """aiokafka-backed event bus.

    Usage:
        bus = KafkaEventBus(bootstrap_servers="localhost:9092")
        await bus.start()
        try:
            await bus.publish("commit-analysis", commit_id, request)
        finally:
            await bus.stop()
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str = "commitguard",
        sasl_username: str | None = None,
        sasl_password: str | None = None,
        security_protocol: str = "SASL_PLAINTEXT",
        sasl_mechanism: str = "SCRAM-SHA-512",
        auto_offset_reset: str = "earliest",
        acks: str | int = "all",
        request_timeout_ms: int = 30000,
        metrics: MetricsRecorder | None = None,
    ):
        self._bootstrap_servers = bootstrap_servers
        self._client_id = client_id
        self._auto_offset_reset = auto_offset_reset
        self._metrics = metrics or get_metrics_registry()

        self._connection: dict[str, Any] = {
            "bootstrap_servers": bootstrap_servers,
            "client_id": client_id,
        }
        if sasl_username and sasl_password:
            self._connection.update({
                "security_protocol": security_protocol,
                "sasl_mechanism": sasl_mechanism,
                "sasl_plain_username": sasl_username,
                "sasl_plain_password": sasl_password,
            })

        self._producer_config: dict[str, Any] = {
            **self._connection,
            "acks": acks,
            "request_timeout_ms": request_timeout_ms,
            "enable_idempotence": acks == "all",
            "key_serializer": lambda k: k.encode("utf-8") if k else None,
            "value_serializer": lambda v: json.dumps(v).encode("utf-8"),
        }

        self._producer: AIOKafkaProducer | None = None
        self._consumers: list[AIOKafkaConsumer] = []
        self._tasks: list[asyncio.Task] = []
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings, metrics: MetricsRecorder | None = None) -> "KafkaEventBus":
        return cls(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            client_id=settings.kafka_client_id,
            sasl_username=settings.kafka_sasl_username,
            sasl_password=(
                settings.kafka_sasl_password.get_secret_value()
                if settings.kafka_sasl_password
                else None
            ),
            security_protocol=settings.kafka_security_protocol,
            sasl_mechanism=settings.kafka_sasl_mechanism,
            auto_offset_reset=settings.kafka_auto_offset_reset,
            metrics=metrics,
        )

    async def start(self) -> None:
        """Start the producer and connect to Kafka."""
        if self._started:
            return

        self._producer = AIOKafkaProducer(**self._producer_config)
        await self._producer.start()
        self._started = True
        logger.info(
            "Kafka event bus started",
            bootstrap_servers=self._bootstrap_servers,
            client_id=self._client_id,
        )

    async def stop(self) -> None:
        """Stop consumers and flush the producer."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for consumer in self._consumers:
            await consumer.stop()
        self._consumers.clear()

        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
        self._started = False
        logger.info("Kafka event bus stopped")

    async def publish(
        self,
        topic: str,
        key: str | None,
        message: BusMessage | dict[str, Any],
        on_delivery: DeliveryCallback | None = None,
    ) -> bool:
        """Publish a message and wait for the broker acknowledgement.

        Args:
            topic: Destination topic
            key: Partition key (commit id or analysis id)
            message: Schema model or plain dict
            on_delivery: Called with (topic, error-or-None) once the outcome is known

        Returns:
            True if the broker acknowledged the message, False otherwise
        """
        if not self._started or self._producer is None:
            raise RuntimeError("Event bus not started. Call start() first.")

        headers = [("source", self._client_id.encode("utf-8"))]
        if isinstance(message, BusMessage):
            headers.append(("message_type", type(message).__name__.encode("utf-8")))

        try:
            metadata = await self._producer.send_and_wait(
                topic=topic,
                key=key,
                value=_to_value(message),
                headers=headers,
            )
        except KafkaError as e:
            logger.error("Failed to publish message", topic=topic, key=key, error=str(e))
            self._metrics.record_error(topic, str(e))
            _notify(on_delivery, topic, e)
            return False

        self._metrics.record_sent(topic)
        logger.debug(
            "Message published",
            topic=topic,
            key=key,
            partition=metadata.partition,
            offset=metadata.offset,
        )
        _notify(on_delivery, topic, None)
        return True

    async def subscribe(self, topics: str | Sequence[str], group_id: str, handler: Handler) -> None:
        """Join ``group_id`` on ``topics`` and dispatch each record to ``handler``.

        Offsets are committed after the handler returns, so a crash between
        handling and commit redelivers the record.
        """
        topic_list = [topics] if isinstance(topics, str) else list(topics)
        consumer = AIOKafkaConsumer(
            *topic_list,
            **self._connection,
            group_id=group_id,
            auto_offset_reset=self._auto_offset_reset,
            enable_auto_commit=False,
        )
        await consumer.start()
        self._consumers.append(consumer)
        self._tasks.append(asyncio.create_task(self._consume(consumer, group_id, handler)))
        logger.info("Subscribed", topics=topic_list, group_id=group_id)

    async def _consume(self, consumer: AIOKafkaConsumer, group_id: str, handler: Handler) -> None:
        try:
            async for message in consumer:
                record = Record(
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                    key=message.key.decode("utf-8") if message.key else None,
                    value=_parse_json(message.value),
                    headers={k: v.decode("utf-8", "replace") for k, v in (message.headers or ())},
                )
                await _dispatch(handler, record, group_id, self._metrics)
                await consumer.commit()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled", group_id=group_id)
            raise


def _parse_json(raw: bytes | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return raw.decode("utf-8", "replace")


async def _dispatch(handler: Handler, record: Record, group_id: str, metrics: MetricsRecorder) -> None:
    started = time.perf_counter()
    try:
        await handler(record)
    except Exception as e:
        logger.exception(
            "Unhandled error in message handler",
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            group_id=group_id,
        )
        metrics.record_error(record.topic, str(e))
        return
    metrics.record_received(record.topic, (time.perf_counter() - started) * 1000)


# =============================================================================
# In-memory
# =============================================================================


class _GroupState:
    """Committed offsets and members of one consumer group on one topic."""

    def __init__(self, topic: str, group_id: str, partitions: int):
        self.topic = topic
        self.group_id = group_id
        self.members: list[Handler] = []
        self.offsets = [0] * partitions
        self.in_flight = 0
        self.tasks: list[asyncio.Task] = []

    def owner(self, partition: int) -> Handler:
        return self.members[partition % len(self.members)]


class InMemoryEventBus:
    """Single-process event bus with Kafka-like semantics.

    - Records are appended to per-topic partition logs chosen by key
    - Each (topic, group) keeps its own committed offsets
    - One dispatch loop per partition per group, so records on a partition
      are handled strictly in order by a single member at a time
    - ``redeliver`` rewinds a group's offsets to simulate a rebalance replay
    """

    def __init__(self, metrics: MetricsRecorder | None = None, default_partitions: int = 3):
        self._metrics = metrics or get_metrics_registry()
        self._default_partitions = default_partitions
        self._logs: dict[str, list[list[Record]]] = {}
        self._groups: dict[tuple[str, str], _GroupState] = {}
        self._cond = asyncio.Condition()
        self._running = False
        self.available = True

    def _partitions(self, topic: str) -> list[list[Record]]:
        if topic not in self._logs:
            config = get_topic_config(topic)
            count = config.partitions if config else self._default_partitions
            self._logs[topic] = [[] for _ in range(count)]
        return self._logs[topic]

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for state in self._groups.values():
            self._spawn(state)

    async def stop(self) -> None:
        async with self._cond:
            self._running = False
            self._cond.notify_all()
        tasks = [task for state in self._groups.values() for task in state.tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for state in self._groups.values():
            state.tasks.clear()

    async def publish(
        self,
        topic: str,
        key: str | None,
        message: BusMessage | dict[str, Any],
        on_delivery: DeliveryCallback | None = None,
    ) -> bool:
        if not self.available:
            error = ConnectionError("In-memory bus marked unavailable")
            logger.error("Failed to publish message", topic=topic, key=key, error=str(error))
            self._metrics.record_error(topic, str(error))
            _notify(on_delivery, topic, error)
            return False

        async with self._cond:
            partitions = self._partitions(topic)
            total = sum(len(p) for p in partitions)
            index = partition_for(key, len(partitions), fallback=total)
            log = partitions[index]
            log.append(Record(
                topic=topic,
                partition=index,
                offset=len(log),
                key=key,
                value=json.loads(json.dumps(_to_value(message))),
            ))
            self._cond.notify_all()

        self._metrics.record_sent(topic)
        _notify(on_delivery, topic, None)
        return True

    async def subscribe(self, topics: str | Sequence[str], group_id: str, handler: Handler) -> None:
        topic_list = [topics] if isinstance(topics, str) else list(topics)
        for topic in topic_list:
            state = self._groups.get((topic, group_id))
            if state is None:
                state = _GroupState(topic, group_id, len(self._partitions(topic)))
                self._groups[(topic, group_id)] = state
            state.members.append(handler)
            if self._running and not state.tasks:
                self._spawn(state)

    def _spawn(self, state: _GroupState) -> None:
        state.tasks = [
            asyncio.create_task(self._run_partition(state, partition))
            for partition in range(len(state.offsets))
        ]

    async def _run_partition(self, state: _GroupState, partition: int) -> None:
        log = self._partitions(state.topic)[partition]
        while True:
            async with self._cond:
                await self._cond.wait_for(
                    lambda: not self._running or state.offsets[partition] < len(log)
                )
                if not self._running:
                    return
                record = log[state.offsets[partition]]
                handler = state.owner(partition)
                state.in_flight += 1

            try:
                await _dispatch(handler, record, state.group_id, self._metrics)
            finally:
                async with self._cond:
                    if state.offsets[partition] == record.offset:
                        state.offsets[partition] += 1
                    state.in_flight -= 1
                    self._cond.notify_all()

    def _idle(self) -> bool:
        for state in self._groups.values():
            if state.in_flight:
                return False
            partitions = self._partitions(state.topic)
            if any(state.offsets[i] < len(partitions[i]) for i in range(len(partitions))):
                return False
        return True

    async def wait_idle(self, timeout: float = 5.0) -> None:
        """Block until every subscribed group has handled every record."""
        async with self._cond:
            await asyncio.wait_for(self._cond.wait_for(self._idle), timeout)

    async def redeliver(self, topic: str, group_id: str) -> None:
        """Rewind a group to the start of every partition of ``topic``."""
        async with self._cond:
            state = self._groups[(topic, group_id)]
            state.offsets = [0] * len(state.offsets)
            self._cond.notify_all()

    def messages(self, topic: str) -> list[Record]:
        """All records published to ``topic`` in partition order."""
        return [record for partition in self._logs.get(topic, []) for record in partition]


# =============================================================================
# Factory
# =============================================================================


def create_event_bus(settings: Settings | None = None, metrics: MetricsRecorder | None = None) -> EventBus:
    """Build the bus configured by ``event_bus_backend``."""
    settings = settings or get_settings()
    if settings.event_bus_backend == EventBusBackend.MEMORY:
        return InMemoryEventBus(metrics=metrics)
    return KafkaEventBus.from_settings(settings, metrics=metrics)


async def dead_letter(bus: EventBus, record: Record, error: str, group_id: str | None = None) -> bool:
    """Copy a record a stage could not handle to the dead-letter topic."""
    message = DeadLetterMessage(
        original_topic=record.topic,
        key=record.key,
        payload=record.value,
        error=error,
        consumer_group=group_id,
    )
    published = await bus.publish(TOPIC_DLQ, message.partition_key(), message)
    if not published:
        logger.error("Failed to dead-letter message", topic=record.topic, key=record.key)
    return published
