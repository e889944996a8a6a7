"""Pipeline services: commit tracking, analysis, risk scoring and notifications."""

from commitguard.services.commit_tracker import CommitTracker, TrackResult
from commitguard.services.notifications import NotificationFanout, NotificationType
from commitguard.services.orchestrator import AnalysisOrchestrator
from commitguard.services.risk import (
    ComplianceRollup,
    ResultAggregator,
    build_rollup,
    calculate_risk_score,
    risk_level_for,
    score_findings,
)
from commitguard.services.store import Stores, create_stores
from commitguard.services.worker_pool import Task, TaskOutcome, WorkerPool

__all__ = [
    "AnalysisOrchestrator",
    "CommitTracker",
    "ComplianceRollup",
    "NotificationFanout",
    "NotificationType",
    "ResultAggregator",
    "Stores",
    "Task",
    "TaskOutcome",
    "TrackResult",
    "WorkerPool",
    "build_rollup",
    "calculate_risk_score",
    "create_stores",
    "risk_level_for",
    "score_findings",
]
