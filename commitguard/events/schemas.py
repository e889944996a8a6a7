"""
Message schemas for CommitGuard topics.

One pydantic model per topic. Field names are snake_case in Python and
camelCase on the wire. Decoding never raises: ``decode_message`` returns a
``DecodeResult`` carrying either the typed message or the parse error.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaValidationError
from pydantic.alias_generators import to_camel

from commitguard.events.topics import (
    TOPIC_ANALYSIS_RESULTS,
    TOPIC_COMMIT_ANALYSIS,
    TOPIC_DLQ,
    TOPIC_MERGE_REQUEST_ANALYSIS,
    TOPIC_NOTIFICATIONS,
    TOPIC_PULL_REQUEST_ANALYSIS,
)
from commitguard.models import AnalysisStatus, Finding, Platform, Severity


def _now() -> datetime:
    return datetime.now(UTC)


def split_paths(joined: str | None) -> tuple[str, ...]:
    """Split a comma-joined path list, dropping blanks."""
    if not joined:
        return ()
    return tuple(path.strip() for path in joined.split(",") if path.strip())


class BusMessage(BaseModel):
    """Base class for all messages published on the bus."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    topic: ClassVar[str]

    def partition_key(self) -> str:
        """Kafka message key; messages sharing a key keep their order."""
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase dict written to Kafka."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Analysis requests
# =============================================================================


class FileContentPayload(BaseModel):
    """Inline file content carried with an analysis request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: str
    content: str


class CommitAnalysisRequest(BusMessage):
    """Published by CommitTracker for each newly seen commit."""

    topic: ClassVar[str] = TOPIC_COMMIT_ANALYSIS

    commit_id: str = Field(..., min_length=1, description="Commit SHA (idempotency key)")
    analysis_id: Optional[str] = Field(None, description="Analysis id assigned by the tracker")
    repository_id: str
    repository_name: str
    repository_url: Optional[str] = None
    repository_clone_url: Optional[str] = None
    platform: Platform
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    files_added: str = ""
    files_modified: str = ""
    files_removed: str = ""
    files: list[FileContentPayload] = Field(default_factory=list, description="Inline file contents")
    timestamp: datetime = Field(default_factory=_now)
    analysis_status: AnalysisStatus = AnalysisStatus.QUEUED

    def partition_key(self) -> str:
        return self.commit_id

    @property
    def changed_paths(self) -> tuple[str, ...]:
        return split_paths(self.files_added) + split_paths(self.files_modified)


class ChangeRequestAnalysisRequest(BusMessage):
    """Lightweight request for a pull/merge request (no file diff)."""

    analysis_id: str = Field(..., min_length=1)
    number: int
    repository_id: str
    repository_name: str
    repository_url: Optional[str] = None
    repository_clone_url: Optional[str] = None
    platform: Platform
    action: Optional[str] = None
    title: str = ""
    author_name: str = ""
    source_branch: Optional[str] = None
    target_branch: Optional[str] = None
    head_commit_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    def partition_key(self) -> str:
        return self.analysis_id


class PullRequestAnalysisRequest(ChangeRequestAnalysisRequest):
    topic: ClassVar[str] = TOPIC_PULL_REQUEST_ANALYSIS


class MergeRequestAnalysisRequest(ChangeRequestAnalysisRequest):
    topic: ClassVar[str] = TOPIC_MERGE_REQUEST_ANALYSIS


AnalysisRequest = CommitAnalysisRequest | PullRequestAnalysisRequest | MergeRequestAnalysisRequest


# =============================================================================
# Results
# =============================================================================


class FindingPayload(BaseModel):
    """A Finding as carried on the results topic."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    severity: Severity
    type: str
    category: Optional[str] = None
    title: Optional[str] = None
    file: str
    line: int = 0
    description: str = ""
    remediation: str = ""
    cwe_id: Optional[str] = None
    snippet: Optional[str] = None

    @classmethod
    def from_finding(cls, finding: Finding) -> "FindingPayload":
        return cls.model_validate(finding.to_dict())


class ResultSummary(BaseModel):
    """Severity counts and risk for one analysis."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_findings: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    risk_score: int = 0
    risk_level: Optional[str] = None


class AnalysisResultMessage(BusMessage):
    """Published by the orchestrator when an analysis reaches a terminal state."""

    topic: ClassVar[str] = TOPIC_ANALYSIS_RESULTS

    analysis_id: str = Field(..., min_length=1)
    commit_id: Optional[str] = None
    repository_id: str
    repository_name: str = ""
    repository_url: Optional[str] = None
    status: AnalysisStatus
    findings: list[FindingPayload] = Field(default_factory=list)
    summary: ResultSummary = Field(default_factory=ResultSummary)
    compliance: dict[str, Any] = Field(default_factory=dict, description="Derived compliance rollups")
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    def partition_key(self) -> str:
        return self.commit_id or self.analysis_id


# =============================================================================
# Notifications and DLQ
# =============================================================================


class NotificationMessage(BusMessage):
    """Human-readable event for subscribers (dashboards, chat bots)."""

    topic: ClassVar[str] = TOPIC_NOTIFICATIONS

    type: str
    title: str
    message: str
    severity: str
    priority: str
    repository: str = ""
    analysis_id: Optional[str] = None
    commit_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    def partition_key(self) -> str:
        return self.commit_id or self.analysis_id or self.repository


class DeadLetterMessage(BusMessage):
    """A message a stage could not handle."""

    topic: ClassVar[str] = TOPIC_DLQ

    original_topic: str
    key: Optional[str] = None
    payload: Any = None
    error: str
    consumer_group: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)

    def partition_key(self) -> str:
        return self.key or self.original_topic


SCHEMA_BY_TOPIC: dict[str, type[BusMessage]] = {
    TOPIC_COMMIT_ANALYSIS: CommitAnalysisRequest,
    TOPIC_PULL_REQUEST_ANALYSIS: PullRequestAnalysisRequest,
    TOPIC_MERGE_REQUEST_ANALYSIS: MergeRequestAnalysisRequest,
    TOPIC_ANALYSIS_RESULTS: AnalysisResultMessage,
    TOPIC_NOTIFICATIONS: NotificationMessage,
    TOPIC_DLQ: DeadLetterMessage,
}


# =============================================================================
# Encode / decode
# =============================================================================


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding a raw bus payload."""

    topic: str
    message: BusMessage | None = None
    error: str | None = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.message is not None


def encode_message(message: BusMessage) -> bytes:
    """Serialize a message to JSON bytes."""
    return json.dumps(message.to_dict()).encode("utf-8")


def decode_message(topic: str, raw: bytes | str | dict[str, Any]) -> DecodeResult:
    """Decode a raw payload into the schema registered for ``topic``.

    Args:
        topic: Topic the payload was read from
        raw: JSON bytes/str or an already-parsed dict

    Returns:
        DecodeResult with ``message`` set on success or ``error`` on failure
    """
    schema = SCHEMA_BY_TOPIC.get(topic)
    if schema is None:
        return DecodeResult(topic=topic, error=f"No schema registered for topic {topic}", raw=raw)

    try:
        data = raw if isinstance(raw, dict) else json.loads(raw)
    except (TypeError, ValueError) as e:
        return DecodeResult(topic=topic, error=f"Invalid JSON: {e}", raw=raw)

    if not isinstance(data, dict):
        return DecodeResult(topic=topic, error="Payload is not a JSON object", raw=raw)

    try:
        return DecodeResult(topic=topic, message=schema.model_validate(data), raw=data)
    except SchemaValidationError as e:
        return DecodeResult(
            topic=topic,
            error=f"Schema validation failed: {e.error_count()} error(s): {e.errors()[0]['msg']}",
            raw=data,
        )
