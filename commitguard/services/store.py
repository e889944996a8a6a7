"""
Persistence interfaces for repositories, commits and analysis jobs.

All writes are upserts keyed by a natural id (repository id, commit id,
analysis id), so duplicate or concurrent writers converge on one row
without distributed locks:
- repositories: upsert by (platform, external id); later writers may update
  the default branch and URLs
- commits: insert-if-absent by commit id; the first writer wins. Status
  updates only move forward; ``reopen`` is the one way back to PENDING
- analysis jobs: upsert by analysis id, but a stored status never moves
  backwards and a terminal job is never overwritten
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

from commitguard.config import Settings, StoreBackend, get_settings
from commitguard.exceptions import StateTransitionError
from commitguard.models import AnalysisJob, AnalysisStatus, RepositorySource, TrackedCommit

logger = structlog.get_logger(__name__)


class RepositoryStore(Protocol):
    async def upsert(self, repository: RepositorySource) -> tuple[RepositorySource, bool]:
        """Create or update; returns the stored row and whether it was created."""
        ...

    async def find(self, repository_id: str) -> RepositorySource | None: ...


class CommitStore(Protocol):
    async def insert_if_absent(self, commit: TrackedCommit) -> tuple[TrackedCommit, bool]:
        """Insert unless the commit id exists; returns the stored row and whether it was created."""
        ...

    async def find(self, commit_id: str) -> TrackedCommit | None: ...

    async def update(self, commit: TrackedCommit) -> TrackedCommit:
        """Write the lifecycle fields unless that would regress the stored status.

        Returns the row actually stored. Raises KeyError for unknown commits.
        """
        ...

    async def reopen(self, commit: TrackedCommit) -> TrackedCommit:
        """Reset a settled commit (PENDING, COMPLETED or FAILED) for another run.

        Raises:
            KeyError: If the commit is unknown
            StateTransitionError: If the stored commit is QUEUED or ANALYZING
        """
        ...

    async def latest_for_repository(self, repository_id: str) -> TrackedCommit | None: ...


class AnalysisJobStore(Protocol):
    async def save(self, job: AnalysisJob) -> AnalysisJob:
        """Upsert a job; returns the row actually stored."""
        ...

    async def find(self, job_id: str) -> AnalysisJob | None: ...

    async def find_by_commit(self, commit_id: str) -> list[AnalysisJob]: ...


REOPENABLE_STATUSES = (AnalysisStatus.PENDING, AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


def status_may_replace(stored: AnalysisStatus, incoming: AnalysisStatus) -> bool:
    """Whether a row at ``stored`` may be overwritten with ``incoming``."""
    if stored == incoming:
        return not stored.is_terminal
    return stored.can_transition_to(incoming)


def should_replace(stored: AnalysisJob, incoming: AnalysisJob) -> bool:
    """Whether ``incoming`` may overwrite ``stored`` without regressing it."""
    return status_may_replace(stored.status, incoming.status)


# =============================================================================
# In-memory
# =============================================================================


class InMemoryRepositoryStore:
    def __init__(self):
        self._rows: dict[str, RepositorySource] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, repository: RepositorySource) -> tuple[RepositorySource, bool]:
        async with self._lock:
            created = repository.repository_id not in self._rows
            self._rows[repository.repository_id] = repository
            return repository, created

    async def find(self, repository_id: str) -> RepositorySource | None:
        return self._rows.get(repository_id)


class InMemoryCommitStore:
    def __init__(self):
        self._rows: dict[str, TrackedCommit] = {}
        self._lock = asyncio.Lock()

    async def insert_if_absent(self, commit: TrackedCommit) -> tuple[TrackedCommit, bool]:
        async with self._lock:
            existing = self._rows.get(commit.commit_id)
            if existing is not None:
                return existing, False
            self._rows[commit.commit_id] = commit
            return commit, True

    async def find(self, commit_id: str) -> TrackedCommit | None:
        return self._rows.get(commit_id)

    async def update(self, commit: TrackedCommit) -> TrackedCommit:
        async with self._lock:
            stored = self._rows.get(commit.commit_id)
            if stored is None:
                raise KeyError(commit.commit_id)
            if not status_may_replace(stored.status, commit.status):
                logger.debug(
                    "Ignoring stale commit write",
                    commit_id=commit.commit_id,
                    stored=stored.status.value,
                    incoming=commit.status.value,
                )
                return stored
            self._rows[commit.commit_id] = commit
            return commit

    async def reopen(self, commit: TrackedCommit) -> TrackedCommit:
        async with self._lock:
            stored = self._rows.get(commit.commit_id)
            if stored is None:
                raise KeyError(commit.commit_id)
            if stored.status not in REOPENABLE_STATUSES:
                raise StateTransitionError(f"Commit {commit.commit_id} is {stored.status.value}; cannot reopen")
            self._rows[commit.commit_id] = commit
            return commit

    async def latest_for_repository(self, repository_id: str) -> TrackedCommit | None:
        candidates = [c for c in self._rows.values() if c.event.repository_id == repository_id]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.event.timestamp)


class InMemoryAnalysisJobStore:
    def __init__(self):
        self._rows: dict[str, AnalysisJob] = {}
        self._lock = asyncio.Lock()

    async def save(self, job: AnalysisJob) -> AnalysisJob:
        async with self._lock:
            stored = self._rows.get(job.id)
            if stored is not None and not should_replace(stored, job):
                logger.debug(
                    "Ignoring stale job write",
                    analysis_id=job.id,
                    stored=stored.status.value,
                    incoming=job.status.value,
                )
                return stored
            self._rows[job.id] = job
            return job

    async def find(self, job_id: str) -> AnalysisJob | None:
        return self._rows.get(job_id)

    async def find_by_commit(self, commit_id: str) -> list[AnalysisJob]:
        jobs = [job for job in self._rows.values() if job.commit_id == commit_id]
        return sorted(jobs, key=lambda job: job.created_at)


# =============================================================================
# Bundle
# =============================================================================


@dataclass
class Stores:
    """The three stores a pipeline process needs."""
    repositories: RepositoryStore
    commits: CommitStore
    jobs: AnalysisJobStore

    @classmethod
    def in_memory(cls) -> "Stores":
        return cls(
            repositories=InMemoryRepositoryStore(),
            commits=InMemoryCommitStore(),
            jobs=InMemoryAnalysisJobStore(),
        )


def create_stores(settings: Settings | None = None) -> Stores:
    """Build the stores configured by ``store_backend``."""
    settings = settings or get_settings()
    if settings.store_backend == StoreBackend.SUPABASE:
        from commitguard.services.supabase_store import SupabaseClient, supabase_stores

        return supabase_stores(SupabaseClient.from_settings(settings))
    return Stores.in_memory()
