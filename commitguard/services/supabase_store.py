"""Supabase (PostgREST) implementations of the pipeline stores.

Tables: ``repositories`` (pk id), ``commits`` (pk commit_id),
``analysis_jobs`` (pk id). Uniqueness is enforced by the primary keys;
conflict handling is expressed through PostgREST ``Prefer`` resolutions.
"""

import json
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from commitguard.config import Settings, get_settings
from commitguard.exceptions import StateTransitionError, TransientInfraError
from commitguard.models import (
    AnalysisJob,
    AnalysisStatus,
    Category,
    CommitEvent,
    Finding,
    RepositorySource,
    RiskLevel,
    RiskScore,
    Severity,
    TrackedCommit,
)
from commitguard.services.store import REOPENABLE_STATUSES, Stores

logger = structlog.get_logger(__name__)


def _replaceable_statuses(target: AnalysisStatus) -> str:
    """PostgREST list of stored statuses that a write of ``target`` may overwrite."""
    allowed = [
        status.value
        for status in AnalysisStatus
        if status.can_transition_to(target) or (status == target and not status.is_terminal)
    ]
    return "(" + ",".join(allowed) + ")"


class SupabaseClient:
    """Client for Supabase REST API operations."""

    def __init__(self, url: Optional[str] = None, service_key: Optional[str] = None):
        self.url = url
        self.service_key = service_key
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SupabaseClient":
        settings = settings or get_settings()
        return cls(
            url=settings.supabase_url,
            service_key=(
                settings.supabase_service_key.get_secret_value()
                if settings.supabase_service_key
                else None
            ),
        )

    @property
    def is_configured(self) -> bool:
        """Check if Supabase is configured."""
        return bool(self.url and self.service_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.url}/rest/v1",
                headers={
                    "apikey": self.service_key,
                    "Authorization": f"Bearer {self.service_key}",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make a request to Supabase REST API.

        Args:
            path: REST API path (e.g., "/commits?commit_id=eq.abc")
            method: HTTP method
            body: Request body for POST/PATCH
            headers: Additional headers

        Returns:
            {"data": ..., "error": ...}
        """
        if not self.is_configured:
            return {"data": None, "error": "Supabase not configured"}

        client = await self._get_client()

        request_headers = {"Prefer": "return=representation"}
        if headers:
            request_headers.update(headers)

        try:
            response = await client.request(
                method=method,
                url=path,
                json=body if body else None,
                headers=request_headers,
            )
        except httpx.HTTPError as e:
            logger.error("Supabase request error", path=path, error=str(e))
            return {"data": None, "error": str(e)}

        if not response.is_success:
            logger.error(
                "Supabase request failed",
                path=path,
                status=response.status_code,
                error=response.text,
            )
            return {"data": None, "error": response.text}

        data = response.json() if response.text else None
        return {"data": data, "error": None}


def _rows(result: dict[str, Any], operation: str) -> list[dict[str, Any]]:
    if result.get("error"):
        raise TransientInfraError(f"Store {operation} failed: {result['error']}")
    return result.get("data") or []


# =============================================================================
# Row mapping
# =============================================================================


def _commit_to_row(commit: TrackedCommit) -> dict[str, Any]:
    row = commit.event.to_dict()
    row.update({
        "analysis_status": commit.status.value,
        "analysis_id": commit.analysis_id,
        "error": commit.error,
        "updated_at": commit.updated_at.isoformat(),
    })
    return row


def _split(joined: str | None) -> tuple[str, ...]:
    return tuple(p for p in (joined or "").split(",") if p)


def _commit_from_row(row: dict[str, Any]) -> TrackedCommit:
    event = CommitEvent(
        commit_id=row["commit_id"],
        repository_id=row["repository_id"],
        message=row.get("message") or "",
        author_name=row.get("author_name") or "",
        author_email=row.get("author_email") or "",
        timestamp=datetime.fromisoformat(row["timestamp"]),
        files_added=_split(row.get("files_added")),
        files_modified=_split(row.get("files_modified")),
        files_removed=_split(row.get("files_removed")),
    )
    return TrackedCommit(
        event=event,
        status=AnalysisStatus(row["analysis_status"]),
        analysis_id=row.get("analysis_id"),
        error=row.get("error"),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _job_to_row(job: AnalysisJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "commit_id": job.commit_id,
        "repository_id": job.repository_id,
        "status": job.status.value,
        "findings": json.dumps([f.to_dict() for f in job.findings]),
        "risk_score": job.risk_score.value if job.risk_score else None,
        "risk_level": job.risk_score.level.value if job.risk_score else None,
        "error": job.error,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


def _finding_from_dict(data: dict[str, Any]) -> Finding:
    return Finding(
        category=Category(data["category"]),
        rule_id=data["type"],
        severity=Severity(data["severity"]),
        file_path=data["file"],
        line_number=data.get("line") or 0,
        title=data.get("title"),
        description=data.get("description") or "",
        remediation=data.get("remediation") or "",
        reference=data.get("cweId"),
        snippet=data.get("snippet"),
    )


def _job_from_row(row: dict[str, Any]) -> AnalysisJob:
    findings = row.get("findings") or "[]"
    if isinstance(findings, str):
        findings = json.loads(findings)
    risk = None
    if row.get("risk_score") is not None:
        risk = RiskScore(value=row["risk_score"], level=RiskLevel(row["risk_level"]))
    return AnalysisJob(
        id=row["id"],
        commit_id=row["commit_id"],
        repository_id=row["repository_id"],
        status=AnalysisStatus(row["status"]),
        findings=tuple(_finding_from_dict(f) for f in findings),
        risk_score=risk,
        error=row.get("error"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


# =============================================================================
# Stores
# =============================================================================


class SupabaseRepositoryStore:
    def __init__(self, client: SupabaseClient):
        self._client = client

    async def upsert(self, repository: RepositorySource) -> tuple[RepositorySource, bool]:
        existing = await self.find(repository.repository_id)
        _rows(
            await self._client.request(
                "/repositories?on_conflict=id",
                method="POST",
                body=repository.to_dict(),
                headers={"Prefer": "return=representation,resolution=merge-duplicates"},
            ),
            "repository upsert",
        )
        return repository, existing is None

    async def find(self, repository_id: str) -> RepositorySource | None:
        rows = _rows(await self._client.request(f"/repositories?id=eq.{repository_id}"), "repository lookup")
        return RepositorySource.from_dict(rows[0]) if rows else None


class SupabaseCommitStore:
    def __init__(self, client: SupabaseClient):
        self._client = client

    async def insert_if_absent(self, commit: TrackedCommit) -> tuple[TrackedCommit, bool]:
        inserted = _rows(
            await self._client.request(
                "/commits?on_conflict=commit_id",
                method="POST",
                body=_commit_to_row(commit),
                headers={"Prefer": "return=representation,resolution=ignore-duplicates"},
            ),
            "commit insert",
        )
        if inserted:
            return commit, True
        existing = await self.find(commit.commit_id)
        if existing is None:
            raise TransientInfraError(f"Commit {commit.commit_id} neither inserted nor found")
        return existing, False

    async def find(self, commit_id: str) -> TrackedCommit | None:
        rows = _rows(await self._client.request(f"/commits?commit_id=eq.{commit_id}"), "commit lookup")
        return _commit_from_row(rows[0]) if rows else None

    async def update(self, commit: TrackedCommit) -> TrackedCommit:
        statuses = _replaceable_statuses(commit.status)
        if await self._patch_lifecycle(commit, statuses, "commit update"):
            return commit
        stored = await self.find(commit.commit_id)
        if stored is None:
            raise KeyError(commit.commit_id)
        logger.debug(
            "Ignoring stale commit write",
            commit_id=commit.commit_id,
            stored=stored.status.value,
            incoming=commit.status.value,
        )
        return stored

    async def reopen(self, commit: TrackedCommit) -> TrackedCommit:
        statuses = "(" + ",".join(status.value for status in REOPENABLE_STATUSES) + ")"
        if await self._patch_lifecycle(commit, statuses, "commit reopen"):
            return commit
        stored = await self.find(commit.commit_id)
        if stored is None:
            raise KeyError(commit.commit_id)
        raise StateTransitionError(f"Commit {commit.commit_id} is {stored.status.value}; cannot reopen")

    async def _patch_lifecycle(self, commit: TrackedCommit, statuses: str, operation: str) -> list[dict]:
        """PATCH the lifecycle columns of rows whose stored status is in ``statuses``."""
        row = _commit_to_row(commit)
        body = {k: row[k] for k in ("analysis_status", "analysis_id", "error", "updated_at")}
        return _rows(
            await self._client.request(
                f"/commits?commit_id=eq.{commit.commit_id}&analysis_status=in.{statuses}",
                method="PATCH",
                body=body,
            ),
            operation,
        )

    async def latest_for_repository(self, repository_id: str) -> TrackedCommit | None:
        rows = _rows(
            await self._client.request(
                f"/commits?repository_id=eq.{repository_id}&order=timestamp.desc&limit=1"
            ),
            "commit lookup",
        )
        return _commit_from_row(rows[0]) if rows else None


class SupabaseAnalysisJobStore:
    def __init__(self, client: SupabaseClient):
        self._client = client

    async def save(self, job: AnalysisJob) -> AnalysisJob:
        # Stored rows only move forward.
        updated = _rows(
            await self._client.request(
                f"/analysis_jobs?id=eq.{job.id}&status=in.{_replaceable_statuses(job.status)}",
                method="PATCH",
                body=_job_to_row(job),
            ),
            "job update",
        )
        if updated:
            return job

        _rows(
            await self._client.request(
                "/analysis_jobs?on_conflict=id",
                method="POST",
                body=_job_to_row(job),
                headers={"Prefer": "return=representation,resolution=ignore-duplicates"},
            ),
            "job insert",
        )
        stored = await self.find(job.id)
        return stored or job

    async def find(self, job_id: str) -> AnalysisJob | None:
        rows = _rows(await self._client.request(f"/analysis_jobs?id=eq.{job_id}"), "job lookup")
        return _job_from_row(rows[0]) if rows else None

    async def find_by_commit(self, commit_id: str) -> list[AnalysisJob]:
        rows = _rows(
            await self._client.request(f"/analysis_jobs?commit_id=eq.{commit_id}&order=created_at.asc"),
            "job lookup",
        )
        return [_job_from_row(row) for row in rows]


def supabase_stores(client: SupabaseClient) -> Stores:
    return Stores(
        repositories=SupabaseRepositoryStore(client),
        commits=SupabaseCommitStore(client),
        jobs=SupabaseAnalysisJobStore(client),
    )
