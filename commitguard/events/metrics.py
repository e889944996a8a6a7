"""
Process-local message bus metrics.

Tracks sent / received / error counts in total and per topic, the most recent
activity and handling latencies. Counters only go back to zero through an
explicit ``reset()`` (exposed as an admin endpoint).
"""

import threading
import time
from collections import Counter, deque
from datetime import UTC, datetime
from typing import Any, Protocol

MAX_RECENT_MESSAGES = 100
MAX_LATENCY_SAMPLES = 1000


class MetricsRecorder(Protocol):
    """What bus and stage code needs from a metrics sink."""

    def record_sent(self, topic: str) -> None: ...

    def record_received(self, topic: str, duration_ms: float) -> None: ...

    def record_error(self, topic: str, error: str) -> None: ...


class MetricsRegistry:
    """Thread-safe in-memory implementation of ``MetricsRecorder``."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._sent = 0
        self._received = 0
        self._errors = 0
        self._per_topic: Counter[str] = Counter()
        self._recent: deque[str] = deque(maxlen=MAX_RECENT_MESSAGES)
        self._latencies: deque[float] = deque(maxlen=MAX_LATENCY_SAMPLES)
        self._started = time.monotonic()

    @staticmethod
    def _stamp() -> str:
        return datetime.now(UTC).isoformat()

    def record_sent(self, topic: str) -> None:
        with self._lock:
            self._sent += 1
            self._per_topic[f"{topic}_sent"] += 1
            self._recent.appendleft(f"[SENT] {topic} at {self._stamp()}")

    def record_received(self, topic: str, duration_ms: float) -> None:
        with self._lock:
            self._received += 1
            self._per_topic[f"{topic}_received"] += 1
            self._latencies.append(duration_ms)
            self._recent.appendleft(
                f"[RECEIVED] {topic} processed in {duration_ms:.1f}ms at {self._stamp()}"
            )

    def record_error(self, topic: str, error: str) -> None:
        with self._lock:
            self._errors += 1
            self._per_topic[f"{topic}_errors"] += 1
            self._recent.appendleft(f"[ERROR] {topic} - {error[:200]} at {self._stamp()}")

    def reset(self) -> None:
        """Zero every counter and clear recent activity."""
        with self._lock:
            self._reset_locked()

    def snapshot(self) -> dict[str, Any]:
        """Point-in-time copy of all metrics."""
        with self._lock:
            latencies = list(self._latencies)
            uptime = time.monotonic() - self._started
            snapshot: dict[str, Any] = {
                "total_messages_sent": self._sent,
                "total_messages_received": self._received,
                "total_errors": self._errors,
                "uptime_seconds": round(uptime, 3),
                "topic_metrics": dict(self._per_topic),
                "recent_messages": list(self._recent),
            }

        if latencies:
            snapshot["average_latency_ms"] = round(sum(latencies) / len(latencies), 2)
            snapshot["max_latency_ms"] = round(max(latencies), 2)
            snapshot["min_latency_ms"] = round(min(latencies), 2)
        if uptime > 0:
            snapshot["throughput_per_second"] = round(snapshot["total_messages_sent"] / uptime, 2)
        return snapshot


# Global instance
_registry: MetricsRegistry | None = None


def get_metrics_registry() -> MetricsRegistry:
    """Get the process-wide metrics registry."""
    global _registry
    if _registry is None:
        _registry = MetricsRegistry()
    return _registry
