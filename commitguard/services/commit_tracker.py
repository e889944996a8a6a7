"""
Commit Tracker - commit deduplication and lifecycle

Per commit id:
    NEW -> lookup -> existing: reuse, do not republish
                  -> new: persist (PENDING), mark QUEUED, publish analysis
                          request; FAILED on publish failure

Results arriving on ``analysis-results`` close the commit out
(COMPLETED or FAILED). Results for unknown commits are logged and dropped.
There is no retry inside the request path; operators retry FAILED commits
with ``reprocess``.
"""

from dataclasses import dataclass
from typing import Sequence

import structlog

from commitguard.events.bus import EventBus, Record, dead_letter
from commitguard.events.schemas import AnalysisResultMessage, CommitAnalysisRequest, FileContentPayload
from commitguard.events.topics import TOPIC_COMMIT_ANALYSIS
from commitguard.exceptions import ValidationError
from commitguard.models import (
    AnalysisStatus,
    CommitEvent,
    FileChange,
    RepositorySource,
    TrackedCommit,
    new_analysis_id,
)
from commitguard.services.store import Stores
from commitguard.utils.logging import LogContext

logger = structlog.get_logger(__name__)

PUBLISH_FAILED = "Event bus unavailable: analysis request not published"


@dataclass(frozen=True)
class TrackResult:
    """What happened to one commit handed to the tracker."""
    commit_id: str
    analysis_id: str | None
    status: AnalysisStatus
    published: bool
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "commit_id": self.commit_id,
            "analysis_id": self.analysis_id,
            "status": self.status.value,
            "published": self.published,
            "duplicate": self.duplicate,
        }


def build_commit_request(
    commit: TrackedCommit,
    repository: RepositorySource,
    files: Sequence[FileChange] = (),
) -> CommitAnalysisRequest:
    """Analysis request message for a tracked commit."""
    event = commit.event
    return CommitAnalysisRequest(
        commit_id=event.commit_id,
        analysis_id=commit.analysis_id,
        repository_id=repository.repository_id,
        repository_name=repository.name,
        repository_url=repository.url,
        repository_clone_url=repository.clone_url,
        platform=repository.platform,
        message=event.message,
        author_name=event.author_name,
        author_email=event.author_email,
        files_added=",".join(event.files_added),
        files_modified=",".join(event.files_modified),
        files_removed=",".join(event.files_removed),
        files=[FileContentPayload(path=f.path, content=f.content) for f in files],
        timestamp=event.timestamp,
        analysis_status=AnalysisStatus.QUEUED,
    )


class CommitTracker:
    """Owns RepositorySource upserts and the per-commit lifecycle."""

    def __init__(self, stores: Stores, bus: EventBus, group_id: str = "commitguard-tracker"):
        self._stores = stores
        self._bus = bus
        self.group_id = group_id

    async def register_repository(self, repository: RepositorySource) -> RepositorySource:
        """Upsert a repository by (platform, external id)."""
        stored, created = await self._stores.repositories.upsert(repository)
        if created:
            logger.info("Repository registered", repository_id=stored.repository_id, name=stored.name)
        return stored

    async def track(
        self,
        repository: RepositorySource,
        event: CommitEvent,
        files: Sequence[FileChange] = (),
    ) -> TrackResult:
        """Record a commit and dispatch it for analysis exactly once.

        Args:
            repository: Repository the commit belongs to (already registered)
            event: The commit
            files: Inline file contents to carry with the request, if any

        Returns:
            TrackResult; ``duplicate`` is True when the commit was already known
        """
        candidate = TrackedCommit(event=event, analysis_id=new_analysis_id())
        tracked, created = await self._stores.commits.insert_if_absent(candidate)

        if not created:
            logger.info(
                "Duplicate commit ignored",
                commit_id=event.commit_id,
                status=tracked.status.value,
            )
            return TrackResult(
                commit_id=tracked.commit_id,
                analysis_id=tracked.analysis_id,
                status=tracked.status,
                published=False,
                duplicate=True,
            )

        return await self._dispatch(tracked, repository, files)

    async def track_push(
        self,
        repository: RepositorySource,
        events: Sequence[CommitEvent],
        files_by_commit: dict[str, Sequence[FileChange]] | None = None,
    ) -> list[TrackResult]:
        """Register the repository and track each commit of a push."""
        repository = await self.register_repository(repository)
        files_by_commit = files_by_commit or {}
        return [
            await self.track(repository, event, files_by_commit.get(event.commit_id, ()))
            for event in events
        ]

    async def _dispatch(
        self,
        tracked: TrackedCommit,
        repository: RepositorySource,
        files: Sequence[FileChange] = (),
    ) -> TrackResult:
        # QUEUED is stored before the request leaves; a result may arrive before publish returns.
        queued = tracked.advance(AnalysisStatus.QUEUED)
        await self._stores.commits.update(queued)
        request = build_commit_request(tracked, repository, files)
        published = await self._bus.publish(TOPIC_COMMIT_ANALYSIS, request.partition_key(), request)

        if published:
            logger.info("Commit queued for analysis", commit_id=tracked.commit_id, analysis_id=tracked.analysis_id)
            return TrackResult(
                commit_id=queued.commit_id,
                analysis_id=queued.analysis_id,
                status=AnalysisStatus.QUEUED,
                published=True,
            )

        logger.error("Commit dispatch failed", commit_id=tracked.commit_id, analysis_id=tracked.analysis_id)
        failed = await self._stores.commits.update(queued.advance(AnalysisStatus.FAILED, error=PUBLISH_FAILED))
        return TrackResult(
            commit_id=failed.commit_id,
            analysis_id=failed.analysis_id,
            status=failed.status,
            published=False,
        )

    async def handle(self, record: Record) -> None:
        """Subscription handler for ``analysis-results``. Never raises."""
        with LogContext(topic=record.topic, key=record.key):
            decoded = record.decode()
            if not decoded.ok:
                logger.warning("Undecodable analysis result", error=decoded.error)
                await dead_letter(self._bus, record, decoded.error or "decode failed", self.group_id)
                return
            try:
                await self.handle_result(decoded.message)
            except Exception as e:
                logger.exception("Analysis result handling failed", error=str(e))
                await dead_letter(self._bus, record, str(e), self.group_id)

    async def handle_result(self, result: AnalysisResultMessage) -> TrackedCommit | None:
        """Advance a commit from an ``analysis-results`` message.

        Returns:
            The updated commit, or None when the result was dropped
        """
        if not result.commit_id:
            logger.info("Result without commit id ignored", analysis_id=result.analysis_id)
            return None

        tracked = await self._stores.commits.find(result.commit_id)
        if tracked is None:
            logger.warning(
                "Result for unknown commit discarded",
                commit_id=result.commit_id,
                analysis_id=result.analysis_id,
            )
            return None

        if tracked.analysis_id and tracked.analysis_id != result.analysis_id:
            logger.info(
                "Result for superseded analysis ignored",
                commit_id=tracked.commit_id,
                current=tracked.analysis_id,
                received=result.analysis_id,
            )
            return None

        if result.status.is_terminal:
            target = result.status
        else:
            target = AnalysisStatus.ANALYZING

        if not tracked.status.can_transition_to(target):
            logger.debug(
                "Result does not advance commit",
                commit_id=tracked.commit_id,
                status=tracked.status.value,
                result_status=result.status.value,
            )
            return tracked

        updated = tracked.advance(target, error=result.error if target == AnalysisStatus.FAILED else None)
        stored = await self._stores.commits.update(updated)
        logger.info("Commit status updated", commit_id=tracked.commit_id, status=stored.status.value)
        return stored

    async def reprocess(self, commit_id: str, force: bool = False) -> TrackResult:
        """Re-dispatch a FAILED commit under a new analysis id.

        Args:
            commit_id: Commit to retry
            force: Also re-dispatch COMPLETED commits

        Raises:
            ValidationError: If the commit or its repository is unknown, or it is still in flight
        """
        tracked = await self._stores.commits.find(commit_id)
        if tracked is None:
            raise ValidationError(f"Unknown commit: {commit_id}")

        allowed = {AnalysisStatus.FAILED, AnalysisStatus.PENDING}
        if force:
            allowed.add(AnalysisStatus.COMPLETED)
        if tracked.status not in allowed:
            raise ValidationError(
                f"Commit {commit_id} is {tracked.status.value}; only FAILED commits can be reprocessed"
            )

        repository = await self._stores.repositories.find(tracked.event.repository_id)
        if repository is None:
            raise ValidationError(f"Unknown repository: {tracked.event.repository_id}")

        reopened = tracked.reopen(new_analysis_id())
        await self._stores.commits.reopen(reopened)
        logger.info("Reprocessing commit", commit_id=commit_id, analysis_id=reopened.analysis_id)
        return await self._dispatch(reopened, repository)

    async def trigger_analysis(self, repository_id: str) -> str:
        """Analyse a repository's most recent commit; returns the analysis id.

        A commit already in flight keeps its current analysis id.

        Raises:
            ValidationError: If the repository has no tracked commits
        """
        latest = await self._stores.commits.latest_for_repository(repository_id)
        if latest is None:
            raise ValidationError(f"No commits tracked for repository {repository_id}")

        if latest.status in (AnalysisStatus.QUEUED, AnalysisStatus.ANALYZING) and latest.analysis_id:
            return latest.analysis_id

        result = await self.reprocess(latest.commit_id, force=True)
        return result.analysis_id
