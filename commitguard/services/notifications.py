"""Notification fan-out.

Publishes tiered, human-readable events on the ``notifications`` topic.
Delivery is best effort: every method logs and swallows its own errors so
a notification problem never fails the pipeline stage that triggered it.
"""

from enum import Enum

import structlog

from commitguard.events.bus import EventBus
from commitguard.events.schemas import NotificationMessage
from commitguard.events.topics import TOPIC_NOTIFICATIONS
from commitguard.models import AnalysisJob, AnalysisStatus, Severity

logger = structlog.get_logger(__name__)


class NotificationType(str, Enum):
    ANALYSIS_COMPLETE = "analysis_complete"
    ANALYSIS_FAILED = "analysis_failed"
    SECURITY_ALERT = "security_alert"
    WEBHOOK_RECEIVED = "webhook_received"


def repository_label(repository_url: str | None, fallback: str = "") -> str:
    """Last path segment of a repository URL (``.git`` suffix dropped)."""
    if not repository_url:
        return fallback
    name = repository_url.rstrip("/").rsplit("/", 1)[-1]
    return name.removesuffix(".git") or fallback


def completion_severity(counts: dict[Severity, int]) -> str:
    """Severity label for an ANALYSIS_COMPLETE notification."""
    if counts[Severity.CRITICAL] > 0:
        return "high"
    if counts[Severity.HIGH] > 0:
        return "medium"
    if sum(counts.values()) > 0:
        return "low"
    return "success"


def priority_for(severity: Severity | None) -> str:
    if severity in (Severity.CRITICAL, Severity.HIGH):
        return "high"
    return "medium"


class NotificationFanout:
    """Turns terminal jobs (and received webhooks) into notification messages."""

    def __init__(self, bus: EventBus):
        self._bus = bus

    def build_for_job(
        self,
        job: AnalysisJob,
        repository_url: str | None = None,
        repository_name: str = "",
    ) -> list[NotificationMessage]:
        """Notifications a terminal job should produce."""
        repository = repository_label(repository_url, repository_name or job.repository_id)

        if job.status == AnalysisStatus.FAILED:
            return [NotificationMessage(
                type=NotificationType.ANALYSIS_FAILED.value,
                title="Security Analysis Failed",
                message=f"Analysis failed for commit {job.commit_id}: {job.error or 'unknown error'}",
                severity="error",
                priority="high",
                repository=repository,
                analysis_id=job.id,
                commit_id=job.commit_id,
            )]

        counts = job.severity_counts()
        worst = next((s for s in Severity if counts[s] > 0), None)
        messages = [NotificationMessage(
            type=NotificationType.ANALYSIS_COMPLETE.value,
            title="Security Analysis Complete",
            message=f"Analysis completed for commit {job.commit_id} - {len(job.findings)} issues found",
            severity=completion_severity(counts),
            priority=priority_for(worst),
            repository=repository,
            analysis_id=job.id,
            commit_id=job.commit_id,
        )]

        if counts[Severity.CRITICAL] > 0:
            rule_ids = sorted({f.rule_id for f in job.findings if f.severity == Severity.CRITICAL})
            messages.append(NotificationMessage(
                type=NotificationType.SECURITY_ALERT.value,
                title="Security Alert",
                message=(
                    f"CRITICAL severity {', '.join(rule_ids)} found in {repository} "
                    f"({counts[Severity.CRITICAL]} occurrence(s))"
                ),
                severity=Severity.CRITICAL.value,
                priority=priority_for(Severity.CRITICAL),
                repository=repository,
                analysis_id=job.id,
                commit_id=job.commit_id,
            ))
        return messages

    async def on_job_terminal(
        self,
        job: AnalysisJob,
        repository_url: str | None = None,
        repository_name: str = "",
    ) -> int:
        """Publish notifications for a terminal job.

        Returns:
            Number of notifications published; 0 on any failure
        """
        try:
            if not job.status.is_terminal:
                logger.warning("Notification requested for non-terminal job", analysis_id=job.id)
                return 0
            published = 0
            for message in self.build_for_job(job, repository_url, repository_name):
                if await self._bus.publish(TOPIC_NOTIFICATIONS, message.partition_key(), message):
                    published += 1
            return published
        except Exception as e:
            logger.error("Failed to send notification", analysis_id=job.id, error=str(e))
            return 0

    async def on_webhook_received(self, repository_name: str, event_type: str, commit_count: int) -> None:
        """Announce an accepted webhook."""
        try:
            message = NotificationMessage(
                type=NotificationType.WEBHOOK_RECEIVED.value,
                title="Webhook Received",
                message=f"{commit_count} new commit(s) received from {repository_name}",
                severity="info",
                priority="medium",
                repository=repository_name,
            )
            await self._bus.publish(TOPIC_NOTIFICATIONS, message.partition_key(), message)
        except Exception as e:
            logger.error("Failed to send notification", event_type=event_type, error=str(e))
