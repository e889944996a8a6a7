"""
Domain model for the commit analysis pipeline.

Entities:
- RepositorySource: a watched repository, keyed by (platform, external id)
- CommitEvent: an immutable pushed commit, keyed by commit SHA
- TrackedCommit: CommitTracker's lifecycle record around a CommitEvent
- AnalysisJob: one analysis run for one commit, with monotonic status
- Finding: one rule hit from an engine
- RiskScore: 0-100 composite derived from a job's findings
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from commitguard.exceptions import PermanentError, StateTransitionError


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Enums
# =============================================================================


class Platform(str, Enum):
    """Supported source-control platforms."""
    GITHUB = "GITHUB"
    GITLAB = "GITLAB"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """Resolve a platform name case-insensitively.

        Raises:
            PermanentError: If the platform is not supported
        """
        if isinstance(value, Platform):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise PermanentError(f"Unsupported platform: {value}") from None


class Severity(str, Enum):
    """Finding severity, most severe first."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class Category(str, Enum):
    """Rule engine categories."""
    SECURITY = "SECURITY"
    QUALITY = "QUALITY"
    COMPLIANCE = "COMPLIANCE"


class RiskLevel(str, Enum):
    """Qualitative risk levels."""
    LOW = "LOW"            # 0-29
    MEDIUM = "MEDIUM"      # 30-59
    HIGH = "HIGH"          # 60-79
    CRITICAL = "CRITICAL"  # 80-100


class AnalysisStatus(str, Enum):
    """Lifecycle of an AnalysisJob (and of the commit it analyses)."""
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)

    def can_transition_to(self, target: "AnalysisStatus") -> bool:
        """Whether moving from this status to ``target`` is a forward step."""
        if self.is_terminal:
            return False
        return _STATUS_ORDER[target] > _STATUS_ORDER[self]


_STATUS_ORDER = {
    AnalysisStatus.PENDING: 0,
    AnalysisStatus.QUEUED: 1,
    AnalysisStatus.ANALYZING: 2,
    AnalysisStatus.COMPLETED: 3,
    AnalysisStatus.FAILED: 3,
}


# =============================================================================
# Entities
# =============================================================================


@dataclass(frozen=True)
class RepositorySource:
    """A repository known to the pipeline."""
    platform: Platform
    external_id: str
    name: str
    clone_url: str
    default_branch: str = "main"
    full_name: str | None = None
    url: str | None = None

    @property
    def repository_id(self) -> str:
        """Natural key shared by every writer: ``<platform>-<external id>``."""
        return f"{self.platform.value.lower()}-{self.external_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.repository_id,
            "platform": self.platform.value,
            "external_id": self.external_id,
            "name": self.name,
            "full_name": self.full_name,
            "url": self.url,
            "clone_url": self.clone_url,
            "default_branch": self.default_branch,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositorySource":
        return cls(
            platform=Platform.parse(data["platform"]),
            external_id=str(data["external_id"]),
            name=data["name"],
            clone_url=data.get("clone_url") or "",
            default_branch=data.get("default_branch") or "main",
            full_name=data.get("full_name"),
            url=data.get("url"),
        )


@dataclass(frozen=True)
class CommitEvent:
    """A single pushed commit. Never modified after creation."""
    commit_id: str
    repository_id: str
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    files_added: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    files_removed: tuple[str, ...] = ()

    @property
    def changed_paths(self) -> tuple[str, ...]:
        """Paths with content worth scanning (added + modified)."""
        return self.files_added + self.files_modified

    def to_dict(self) -> dict[str, Any]:
        return {
            "commit_id": self.commit_id,
            "repository_id": self.repository_id,
            "message": self.message,
            "author_name": self.author_name,
            "author_email": self.author_email,
            "timestamp": self.timestamp.isoformat(),
            "files_added": ",".join(self.files_added),
            "files_modified": ",".join(self.files_modified),
            "files_removed": ",".join(self.files_removed),
        }


@dataclass(frozen=True)
class TrackedCommit:
    """CommitTracker's lifecycle record for one commit."""
    event: CommitEvent
    status: AnalysisStatus = AnalysisStatus.PENDING
    analysis_id: str | None = None
    error: str | None = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def commit_id(self) -> str:
        return self.event.commit_id

    def advance(self, status: AnalysisStatus, *, error: str | None = None, **changes: Any) -> "TrackedCommit":
        """Return a copy moved forward to ``status``.

        Raises:
            StateTransitionError: If the move would go backwards or leave a terminal state
        """
        if not self.status.can_transition_to(status):
            raise StateTransitionError(
                f"Commit {self.commit_id} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, error=error, updated_at=utcnow(), **changes)

    def reopen(self, analysis_id: str) -> "TrackedCommit":
        """Operator retry: back to PENDING under a fresh analysis id."""
        return replace(
            self,
            status=AnalysisStatus.PENDING,
            analysis_id=analysis_id,
            error=None,
            updated_at=utcnow(),
        )


@dataclass(frozen=True)
class FileChange:
    """A file's content as it appears in the analysed commit."""
    path: str
    content: str


@dataclass(frozen=True)
class Finding:
    """One issue detected by a rule engine."""
    category: Category
    rule_id: str
    severity: Severity
    file_path: str
    line_number: int
    description: str
    remediation: str
    reference: str | None = None
    title: str | None = None
    snippet: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire format used on the ``analysis-results`` topic."""
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "type": self.rule_id,
            "title": self.title,
            "file": self.file_path,
            "line": self.line_number,
            "description": self.description,
            "remediation": self.remediation,
            "cweId": self.reference,
            "snippet": self.snippet,
        }


@dataclass(frozen=True)
class RiskScore:
    """Composite risk for one AnalysisJob."""
    value: int
    level: RiskLevel

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.value, "level": self.level.value}


@dataclass(frozen=True)
class AnalysisJob:
    """One analysis run for one commit.

    Status only moves forward; COMPLETED and FAILED are terminal.
    """
    id: str
    commit_id: str
    repository_id: str
    status: AnalysisStatus = AnalysisStatus.PENDING
    findings: tuple[Finding, ...] = ()
    risk_score: RiskScore | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, commit_id: str, repository_id: str, job_id: str | None = None) -> "AnalysisJob":
        return cls(id=job_id or new_analysis_id(), commit_id=commit_id, repository_id=repository_id)

    def transition(self, status: AnalysisStatus, **changes: Any) -> "AnalysisJob":
        """Return a copy moved forward to ``status``.

        Raises:
            StateTransitionError: If the move would go backwards or leave a terminal state
        """
        if not self.status.can_transition_to(status):
            raise StateTransitionError(
                f"Analysis {self.id} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, updated_at=utcnow(), **changes)

    def fail(self, error: str) -> "AnalysisJob":
        return self.transition(AnalysisStatus.FAILED, error=error)

    def severity_counts(self) -> dict[Severity, int]:
        counts = {severity: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity] += 1
        return counts


def new_analysis_id() -> str:
    """Generate an analysis id."""
    return f"analysis-{uuid4().hex[:16]}"
