"""Webhook Gateway.

Turns a raw provider webhook into canonical pipeline input:

- authenticate (SignatureValidator)
- parse the provider JSON into a RepositorySource and zero or more CommitEvents
- push events: hand every commit to the CommitTracker
- pull/merge request events: publish a lightweight analysis request directly
- any other event: accepted, no downstream action

``ingest`` never raises for bad input; it returns ``Rejected`` with a reason
the HTTP layer maps to a status code.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

import structlog

from commitguard.events.bus import EventBus
from commitguard.events.schemas import (
    ChangeRequestAnalysisRequest,
    MergeRequestAnalysisRequest,
    PullRequestAnalysisRequest,
)
from commitguard.exceptions import (
    AuthenticationError,
    CommitGuardError,
    PermanentError,
    TransientInfraError,
    ValidationError,
)
from commitguard.models import CommitEvent, Platform, RepositorySource, utcnow
from commitguard.security.signature import SignatureValidator
from commitguard.services.commit_tracker import CommitTracker, TrackResult
from commitguard.services.notifications import NotificationFanout

logger = structlog.get_logger(__name__)

GITHUB_SIGNATURE_HEADER = "x-hub-signature-256"
GITLAB_TOKEN_HEADER = "x-gitlab-token"

PUSH = "push"
PULL_REQUEST = "pull_request"
MERGE_REQUEST = "merge_request"

GITHUB_PR_ACTIONS = frozenset({"opened", "synchronize", "reopened"})
GITLAB_MR_ACTIONS = frozenset({"open", "update", "reopen"})


class RejectReason(str, Enum):
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"


@dataclass(frozen=True)
class Accepted:
    """A webhook that passed authentication and parsing."""
    platform: Platform
    event_type: str
    repository: RepositorySource | None = None
    commits: list[TrackResult] = field(default_factory=list)
    analysis_id: str | None = None
    ignored: bool = False

    @property
    def new_commits(self) -> int:
        return sum(1 for result in self.commits if not result.duplicate)


@dataclass(frozen=True)
class Rejected:
    """A webhook refused before any side effect."""
    reason: RejectReason
    message: str

    def to_error(self) -> CommitGuardError:
        if self.reason == RejectReason.INVALID_SIGNATURE:
            return AuthenticationError(self.message)
        if self.reason == RejectReason.UNSUPPORTED_PLATFORM:
            return PermanentError(self.message, code=self.reason.value)
        return ValidationError(self.message)


IngestResult = Accepted | Rejected


# =============================================================================
# Parsing
# =============================================================================


def normalize_event_type(event_type: str | None) -> str:
    """``Push Hook`` -> ``push``, ``Merge Request Hook`` -> ``merge_request``."""
    if not event_type:
        return ""
    name = event_type.strip().lower()
    if name.endswith(" hook"):
        name = name[: -len(" hook")]
    return name.replace(" ", "_")


def parse_timestamp(value: Any) -> datetime:
    """ISO-8601 timestamp from a provider payload; missing means now."""
    if not value:
        return utcnow()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _require(data: Any, key: str, context: str) -> Any:
    if not isinstance(data, dict) or data.get(key) in (None, ""):
        raise ValidationError(f"Missing {context}.{key}")
    return data[key]


def _paths(values: Any) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(str(path) for path in values if path)


def _parse_commits(commits: Any, repository_id: str) -> list[CommitEvent]:
    if commits is None:
        return []
    if not isinstance(commits, list):
        raise ValidationError("commits must be a list")

    events = []
    for commit in commits:
        commit_id = str(_require(commit, "id", "commits[]"))
        author = commit.get("author") or {}
        events.append(CommitEvent(
            commit_id=commit_id,
            repository_id=repository_id,
            message=commit.get("message") or "",
            author_name=author.get("name") or "",
            author_email=author.get("email") or "",
            timestamp=parse_timestamp(commit.get("timestamp")),
            files_added=_paths(commit.get("added")),
            files_modified=_paths(commit.get("modified")),
            files_removed=_paths(commit.get("removed")),
        ))
    return events


def parse_github_repository(payload: dict[str, Any]) -> RepositorySource:
    repository = _require(payload, "repository", "payload")
    return RepositorySource(
        platform=Platform.GITHUB,
        external_id=str(_require(repository, "id", "repository")),
        name=_require(repository, "name", "repository"),
        full_name=repository.get("full_name"),
        clone_url=repository.get("clone_url") or "",
        url=repository.get("html_url"),
        default_branch=repository.get("default_branch") or repository.get("master_branch") or "main",
    )


def parse_gitlab_repository(payload: dict[str, Any]) -> RepositorySource:
    project = _require(payload, "project", "payload")
    return RepositorySource(
        platform=Platform.GITLAB,
        external_id=str(_require(project, "id", "project")),
        name=_require(project, "name", "project"),
        full_name=project.get("path_with_namespace"),
        clone_url=project.get("git_http_url") or project.get("http_url") or "",
        url=project.get("web_url"),
        default_branch=project.get("default_branch") or "main",
    )


def parse_repository(platform: Platform, payload: dict[str, Any]) -> RepositorySource:
    if platform == Platform.GITHUB:
        return parse_github_repository(payload)
    return parse_gitlab_repository(payload)


def parse_push(platform: Platform, payload: dict[str, Any]) -> tuple[RepositorySource, list[CommitEvent]]:
    """Canonical repository and commits of a push event.

    Raises:
        ValidationError: If a required field is missing or malformed
    """
    repository = parse_repository(platform, payload)
    try:
        commits = _parse_commits(payload.get("commits"), repository.repository_id)
    except (AttributeError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed commit: {e}") from e
    return repository, commits


def parse_pull_request(
    repository: RepositorySource,
    payload: dict[str, Any],
) -> PullRequestAnalysisRequest | None:
    """Analysis request for a GitHub pull_request event, or None for other actions."""
    action = payload.get("action")
    if action not in GITHUB_PR_ACTIONS:
        return None
    pull_request = _require(payload, "pull_request", "payload")
    number = int(_require(pull_request, "number", "pull_request"))
    head = pull_request.get("head") or {}
    head_sha = head.get("sha")
    return PullRequestAnalysisRequest(
        analysis_id=change_request_analysis_id("PR", repository, number, head_sha),
        number=number,
        repository_id=repository.repository_id,
        repository_name=repository.name,
        repository_url=repository.url,
        repository_clone_url=repository.clone_url,
        platform=repository.platform,
        action=action,
        title=pull_request.get("title") or "",
        author_name=(pull_request.get("user") or {}).get("login") or "",
        source_branch=head.get("ref"),
        target_branch=(pull_request.get("base") or {}).get("ref"),
        head_commit_id=head_sha,
    )


def parse_merge_request(
    repository: RepositorySource,
    payload: dict[str, Any],
) -> MergeRequestAnalysisRequest | None:
    """Analysis request for a GitLab merge_request event, or None for other actions."""
    attributes = _require(payload, "object_attributes", "payload")
    action = attributes.get("action")
    if action not in GITLAB_MR_ACTIONS:
        return None
    number = int(_require(attributes, "iid", "object_attributes"))
    head_sha = (attributes.get("last_commit") or {}).get("id")
    user = payload.get("user") or {}
    return MergeRequestAnalysisRequest(
        analysis_id=change_request_analysis_id("MR", repository, number, head_sha),
        number=number,
        repository_id=repository.repository_id,
        repository_name=repository.name,
        repository_url=repository.url,
        repository_clone_url=repository.clone_url,
        platform=repository.platform,
        action=action,
        title=attributes.get("title") or "",
        author_name=user.get("username") or user.get("name") or "",
        source_branch=attributes.get("source_branch"),
        target_branch=attributes.get("target_branch"),
        head_commit_id=head_sha,
    )


def change_request_analysis_id(
    prefix: str,
    repository: RepositorySource,
    number: int,
    head_sha: str | None,
) -> str:
    """Stable id per (repository, PR/MR number, head commit)."""
    suffix = f"-{head_sha[:12]}" if head_sha else ""
    return f"{prefix}-{repository.repository_id}-{number}{suffix}"


# =============================================================================
# Gateway
# =============================================================================


class WebhookGateway:
    """Entry point from the HTTP layer into the pipeline."""

    def __init__(
        self,
        validator: SignatureValidator,
        tracker: CommitTracker,
        bus: EventBus,
        fanout: NotificationFanout | None = None,
    ):
        self.validator = validator
        self._tracker = tracker
        self._bus = bus
        self._fanout = fanout

    async def ingest(
        self,
        platform: Platform | str,
        event_type: str | None,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> IngestResult:
        """Authenticate, parse and dispatch one webhook.

        Args:
            platform: Source platform
            event_type: Provider event header (``push``, ``Push Hook``, ...)
            raw_payload: Request body exactly as received
            headers: Request headers (any case)

        Returns:
            Accepted, or Rejected with the reason

        Raises:
            TransientInfraError: If a pull/merge request could not be published
        """
        try:
            platform = Platform.parse(platform)
        except PermanentError as e:
            return Rejected(RejectReason.UNSUPPORTED_PLATFORM, e.message)

        lowered = {key.lower(): value for key, value in headers.items()}
        header = GITHUB_SIGNATURE_HEADER if platform == Platform.GITHUB else GITLAB_TOKEN_HEADER
        if not self.validator.validate(platform, lowered.get(header), raw_payload):
            return Rejected(RejectReason.INVALID_SIGNATURE, "Webhook signature validation failed")

        if not raw_payload:
            return Rejected(RejectReason.INVALID_PAYLOAD, "Empty payload")
        try:
            payload = json.loads(raw_payload)
        except (UnicodeDecodeError, ValueError):
            return Rejected(RejectReason.INVALID_PAYLOAD, "Invalid JSON payload")
        if not isinstance(payload, dict):
            return Rejected(RejectReason.INVALID_PAYLOAD, "Payload must be a JSON object")

        event = normalize_event_type(event_type)
        try:
            if event == PUSH:
                return await self._ingest_push(platform, event, payload)
            if (platform, event) in ((Platform.GITHUB, PULL_REQUEST), (Platform.GITLAB, MERGE_REQUEST)):
                return await self._ingest_change_request(platform, event, payload)
        except ValidationError as e:
            logger.warning("Rejected webhook payload", platform=platform.value, event_type=event, error=e.message)
            return Rejected(RejectReason.INVALID_PAYLOAD, e.message)

        logger.info("Ignoring unsupported webhook event", platform=platform.value, event_type=event_type)
        return Accepted(platform=platform, event_type=event, ignored=True)

    async def _ingest_push(self, platform: Platform, event: str, payload: dict[str, Any]) -> Accepted:
        repository, commits = parse_push(platform, payload)
        results = await self._tracker.track_push(repository, commits)

        accepted = Accepted(platform=platform, event_type=event, repository=repository, commits=results)
        logger.info(
            "Push webhook processed",
            platform=platform.value,
            repository_id=repository.repository_id,
            commits=len(commits),
            new_commits=accepted.new_commits,
        )
        if self._fanout is not None and accepted.new_commits:
            await self._fanout.on_webhook_received(repository.name, event, accepted.new_commits)
        return accepted

    async def _ingest_change_request(self, platform: Platform, event: str, payload: dict[str, Any]) -> Accepted:
        repository = parse_repository(platform, payload)
        try:
            if platform == Platform.GITHUB:
                request: ChangeRequestAnalysisRequest | None = parse_pull_request(repository, payload)
            else:
                request = parse_merge_request(repository, payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed {event} payload: {e}") from e

        await self._tracker.register_repository(repository)
        if request is None:
            return Accepted(platform=platform, event_type=event, repository=repository, ignored=True)

        if not await self._bus.publish(request.topic, request.partition_key(), request):
            raise TransientInfraError(f"Could not publish {event} analysis request")

        logger.info(
            "Change request queued for analysis",
            platform=platform.value,
            analysis_id=request.analysis_id,
            number=request.number,
        )
        return Accepted(
            platform=platform,
            event_type=event,
            repository=repository,
            analysis_id=request.analysis_id,
        )
