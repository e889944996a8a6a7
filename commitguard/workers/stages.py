"""
Pipeline wiring and stage runners.

Each logical stage joins its own consumer group:
- analyzer: analysis-request topics -> AnalysisOrchestrator
- tracker: analysis-results -> CommitTracker

Run one or more stages per process; scale a stage by starting more
processes with the same group id.
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import structlog

from commitguard.config import Settings, get_settings
from commitguard.engines import configured_engines
from commitguard.events.bus import EventBus, create_event_bus
from commitguard.events.topics import ANALYSIS_REQUEST_TOPICS, TOPIC_ANALYSIS_RESULTS
from commitguard.services.checkout import RepositoryCheckout
from commitguard.services.commit_tracker import CommitTracker
from commitguard.services.notifications import NotificationFanout
from commitguard.services.orchestrator import AnalysisOrchestrator
from commitguard.services.store import Stores, create_stores
from commitguard.services.worker_pool import WorkerPool

logger = structlog.get_logger(__name__)


@dataclass
class Pipeline:
    """Every collaborator a CommitGuard process needs, built once."""
    settings: Settings
    bus: EventBus
    stores: Stores
    tracker: CommitTracker
    orchestrator: AnalysisOrchestrator
    fanout: NotificationFanout


def build_pipeline(
    settings: Settings | None = None,
    bus: EventBus | None = None,
    stores: Stores | None = None,
) -> Pipeline:
    """Wire the pipeline from settings; ``bus``/``stores`` override the configured backends."""
    settings = settings or get_settings()
    bus = bus or create_event_bus(settings)
    stores = stores or create_stores(settings)
    fanout = NotificationFanout(bus)

    orchestrator = AnalysisOrchestrator(
        stores=stores,
        bus=bus,
        engines=configured_engines(settings.scan_extensions),
        pool=WorkerPool(size=settings.scan_pool_size),
        checkout=RepositoryCheckout.from_settings(settings) if settings.checkout_enabled else None,
        fanout=fanout,
        group_id=settings.analyzer_group_id,
    )
    tracker = CommitTracker(stores, bus, group_id=settings.tracker_group_id)
    return Pipeline(
        settings=settings,
        bus=bus,
        stores=stores,
        tracker=tracker,
        orchestrator=orchestrator,
        fanout=fanout,
    )


async def attach_analyzer(pipeline: Pipeline) -> None:
    await pipeline.bus.subscribe(
        list(ANALYSIS_REQUEST_TOPICS),
        pipeline.settings.analyzer_group_id,
        pipeline.orchestrator.handle,
    )


async def attach_tracker(pipeline: Pipeline) -> None:
    await pipeline.bus.subscribe(
        TOPIC_ANALYSIS_RESULTS,
        pipeline.settings.tracker_group_id,
        pipeline.tracker.handle,
    )


STAGES: dict[str, Callable[[Pipeline], Awaitable[None]]] = {
    "analyzer": attach_analyzer,
    "tracker": attach_tracker,
}


async def run_stages(stage_names: Sequence[str], settings: Settings | None = None) -> None:
    """Run the named stages until SIGINT/SIGTERM.

    Raises:
        ValueError: If a stage name is unknown
    """
    unknown = [name for name in stage_names if name not in STAGES]
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(unknown)}")

    pipeline = build_pipeline(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    await pipeline.bus.start()
    try:
        for name in stage_names:
            await STAGES[name](pipeline)
        logger.info("Stages running", stages=list(stage_names))
        await stop.wait()
    finally:
        logger.info("Stopping stages", stages=list(stage_names))
        await pipeline.bus.stop()
