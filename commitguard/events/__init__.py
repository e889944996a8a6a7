"""Message bus: topics, schemas, bus implementations and metrics."""

from commitguard.events.bus import (
    EventBus,
    InMemoryEventBus,
    KafkaEventBus,
    Record,
    create_event_bus,
)
from commitguard.events.metrics import MetricsRegistry, get_metrics_registry
from commitguard.events.schemas import (
    AnalysisResultMessage,
    CommitAnalysisRequest,
    DeadLetterMessage,
    DecodeResult,
    MergeRequestAnalysisRequest,
    NotificationMessage,
    PullRequestAnalysisRequest,
    decode_message,
)

__all__ = [
    "AnalysisResultMessage",
    "CommitAnalysisRequest",
    "DeadLetterMessage",
    "DecodeResult",
    "EventBus",
    "InMemoryEventBus",
    "KafkaEventBus",
    "MergeRequestAnalysisRequest",
    "MetricsRegistry",
    "NotificationMessage",
    "PullRequestAnalysisRequest",
    "Record",
    "create_event_bus",
    "decode_message",
    "get_metrics_registry",
]
