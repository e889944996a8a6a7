"""
Analysis Orchestrator

Consumes analysis requests and drives one AnalysisJob per analysis id:

    decode -> (terminal already? re-emit stored result)
           -> job ANALYZING
           -> materialize file contents (inline, else checkout cache)
           -> scan every eligible file with every engine on the worker pool
           -> ResultAggregator (findings + risk, COMPLETED)
           -> publish analysis-results, notify

Any failure while handling one message marks its job FAILED with the error
text, publishes a FAILED result, copies the raw message to the dead-letter
topic and returns, so the next message on the partition is processed.
"""

from functools import partial
from typing import Sequence

import structlog

from commitguard.engines import ComplianceRecord, Engine, ScanResult, configured_engines
from commitguard.events.bus import EventBus, Record, dead_letter
from commitguard.events.metrics import MetricsRecorder, get_metrics_registry
from commitguard.events.schemas import (
    AnalysisResultMessage,
    ChangeRequestAnalysisRequest,
    CommitAnalysisRequest,
    FindingPayload,
    ResultSummary,
)
from commitguard.events.topics import TOPIC_ANALYSIS_RESULTS
from commitguard.exceptions import ValidationError
from commitguard.models import AnalysisJob, AnalysisStatus, Category, FileChange
from commitguard.services.checkout import RepositoryCheckout
from commitguard.services.notifications import NotificationFanout
from commitguard.services.risk import ResultAggregator, build_rollup, summarize
from commitguard.services.store import Stores
from commitguard.services.worker_pool import Task, WorkerPool
from commitguard.utils.logging import LogContext, log_operation

logger = structlog.get_logger(__name__)

AnalysisRequest = CommitAnalysisRequest | ChangeRequestAnalysisRequest


def analysis_id_for(request: AnalysisRequest) -> str:
    """Analysis id of a request; commits published without one get a stable id."""
    if request.analysis_id:
        return request.analysis_id
    return f"analysis-{request.commit_id}"


class AnalysisOrchestrator:
    """Runs the rule engines for analysis requests and publishes results."""

    def __init__(
        self,
        stores: Stores,
        bus: EventBus,
        engines: Sequence[Engine] | None = None,
        pool: WorkerPool | None = None,
        checkout: RepositoryCheckout | None = None,
        fanout: NotificationFanout | None = None,
        group_id: str = "commitguard-analyzers",
        metrics: MetricsRecorder | None = None,
    ):
        self._stores = stores
        self._bus = bus
        self._engines = list(engines) if engines is not None else configured_engines()
        self._pool = pool or WorkerPool(size=4)
        self._checkout = checkout
        self._fanout = fanout or NotificationFanout(bus)
        self._aggregator = ResultAggregator(stores.jobs)
        self._metrics = metrics or get_metrics_registry()
        self.group_id = group_id

    # =========================================================================
    # Bus entry point
    # =========================================================================

    async def handle(self, record: Record) -> None:
        """Subscription handler for the analysis-request topics. Never raises."""
        with LogContext(topic=record.topic, key=record.key):
            decoded = record.decode()
            if not decoded.ok:
                logger.warning("Undecodable analysis request", error=decoded.error)
                self._metrics.record_error(record.topic, decoded.error or "decode failed")
                await self._dead_letter(record, decoded.error or "decode failed")
                return

            try:
                await self.process(decoded.message)
            except Exception as e:
                logger.exception("Analysis request failed", error=str(e))
                await self._dead_letter(record, str(e))

    async def process(self, request: AnalysisRequest) -> AnalysisJob:
        """Analyse one decoded request and return the terminal job."""
        if isinstance(request, CommitAnalysisRequest):
            return await self.analyze_commit(request)
        if isinstance(request, ChangeRequestAnalysisRequest):
            return await self.analyze_change_request(request)
        raise ValidationError(f"Not an analysis request: {type(request).__name__}")

    # =========================================================================
    # Commits
    # =========================================================================

    async def analyze_commit(self, request: CommitAnalysisRequest) -> AnalysisJob:
        """Scan a commit's changed files.

        Redelivered requests whose job is already terminal re-emit the stored
        result instead of scanning again.
        """
        analysis_id = analysis_id_for(request)
        with LogContext(analysis_id=analysis_id, commit_id=request.commit_id):
            job = await self._start_job(analysis_id, request.commit_id, request.repository_id)
            if job.status.is_terminal:
                await self._publish_result(job, request)
                return job

            try:
                files = await self._materialize(request)
                results = await self.scan(files)
                job = await self._aggregator.aggregate(
                    job.id,
                    results[Category.SECURITY].findings,
                    results[Category.QUALITY].findings,
                    results[Category.COMPLIANCE].findings,
                )
            except Exception as e:
                await self._fail(job, request, str(e))
                raise

            records = results[Category.COMPLIANCE].records
            await self._publish_result(job, request, records)
            await self._fanout.on_job_terminal(job, request.repository_url, request.repository_name)
            return job

    async def _materialize(self, request: CommitAnalysisRequest) -> list[FileChange]:
        if request.files:
            return [FileChange(path=f.path, content=f.content) for f in request.files]

        paths = list(request.changed_paths)
        if not paths:
            return []
        if self._checkout is None or not request.repository_clone_url:
            logger.info("No file contents available, scanning nothing", paths=len(paths))
            return []

        return await self._checkout.read_files(
            request.repository_id,
            request.repository_clone_url,
            request.commit_id,
            paths,
        )

    async def scan(self, files: Sequence[FileChange]) -> dict[Category, ScanResult]:
        """Run every engine over every file on the worker pool.

        Raises:
            RuntimeError: If any engine failed on any file
        """
        tasks = [
            Task(task_id=f"{engine.category.value}:{change.path}", fn=partial(engine.scan_file, change))
            for engine in self._engines
            for change in files
        ]
        with log_operation("scan", logger, files=len(files), engines=len(self._engines)) as op:
            outcomes = await self._pool.run(tasks)

            failed = [outcome for outcome in outcomes if not outcome.ok]
            if failed:
                first = failed[0]
                raise RuntimeError(f"Scan failed for {first.task_id}: {first.error}")

            results = {category: ScanResult(category=category) for category in Category}
            for outcome in outcomes:
                results[outcome.value.category].merge(outcome.value)
            op["findings"] = sum(len(r.findings) for r in results.values())
        return results

    # =========================================================================
    # Pull / merge requests
    # =========================================================================

    async def analyze_change_request(self, request: ChangeRequestAnalysisRequest) -> AnalysisJob:
        """Record a pull/merge request analysis.

        These requests carry no file diff, so the job completes without findings.
        """
        with LogContext(analysis_id=request.analysis_id):
            job = await self._start_job(
                request.analysis_id,
                request.head_commit_id or "",
                request.repository_id,
            )
            if not job.status.is_terminal:
                job = await self._aggregator.aggregate(job.id, (), (), ())
            await self._publish_result(job, request)
            return job

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _start_job(self, analysis_id: str, commit_id: str, repository_id: str) -> AnalysisJob:
        job = await self._stores.jobs.find(analysis_id)
        if job is None:
            job = await self._stores.jobs.save(AnalysisJob.new(commit_id, repository_id, job_id=analysis_id))
        if job.status.is_terminal:
            logger.info("Analysis already finished, re-emitting result", status=job.status.value)
            return job
        if job.status != AnalysisStatus.ANALYZING:
            job = await self._stores.jobs.save(job.transition(AnalysisStatus.ANALYZING))
        logger.info("Analysis started", repository_id=repository_id)
        return job

    async def _fail(self, job: AnalysisJob, request: CommitAnalysisRequest, error: str) -> AnalysisJob:
        current = await self._stores.jobs.find(job.id) or job
        if not current.status.is_terminal:
            current = await self._stores.jobs.save(current.fail(error))
        logger.error("Analysis failed", analysis_id=job.id, error=error)
        await self._publish_result(current, request)
        await self._fanout.on_job_terminal(current, request.repository_url, request.repository_name)
        return current

    async def _publish_result(
        self,
        job: AnalysisJob,
        request: AnalysisRequest,
        records: Sequence[ComplianceRecord] = (),
    ) -> bool:
        message = self.build_result(job, request, records)
        published = await self._bus.publish(TOPIC_ANALYSIS_RESULTS, message.partition_key(), message)
        if not published:
            logger.error("Failed to publish analysis result", analysis_id=job.id)
        return published

    @staticmethod
    def build_result(
        job: AnalysisJob,
        request: AnalysisRequest,
        records: Sequence[ComplianceRecord] = (),
    ) -> AnalysisResultMessage:
        """Result message for a terminal job."""
        commit_id = request.commit_id if isinstance(request, CommitAnalysisRequest) else None
        return AnalysisResultMessage(
            analysis_id=job.id,
            commit_id=commit_id,
            repository_id=job.repository_id,
            repository_name=request.repository_name,
            repository_url=request.repository_url,
            status=job.status,
            findings=[FindingPayload.from_finding(f) for f in job.findings],
            summary=ResultSummary(**summarize(job)),
            compliance=build_rollup(job.findings, records).to_dict(),
            error=job.error,
        )

    async def _dead_letter(self, record: Record, error: str) -> None:
        await dead_letter(self._bus, record, error, self.group_id)
