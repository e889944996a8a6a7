"""Command-line entry point for CommitGuard."""

import argparse
import asyncio
import json
import sys

import structlog

from commitguard.config import get_settings
from commitguard.exceptions import CommitGuardError
from commitguard.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def serve(host: str | None, port: int | None) -> int:
    """Run the webhook API under uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "commitguard.api.server:app",
        host=host or settings.server_host,
        port=port or settings.server_port,
        log_config=None,
    )
    return 0


def worker(stage: str) -> int:
    """Run one stage (or all) until interrupted."""
    from commitguard.workers.stages import STAGES, run_stages

    stages = list(STAGES) if stage == "all" else [stage]
    asyncio.run(run_stages(stages))
    return 0


def topics(action: str, replication_factor: int | None) -> int:
    """Create, list or script the pipeline topics."""
    from commitguard.events.topics import generate_topic_creation_script

    if action == "script":
        print(generate_topic_creation_script(replication_factor))
        return 0

    from commitguard.events.admin import TopicAdmin

    admin = TopicAdmin()
    if action == "create":
        results = admin.create_topics()
        for name, ok in results.items():
            print(f"{name}: {'ok' if ok else 'FAILED'}")
        return 0 if all(results.values()) else 1

    existing = admin.list_topics()
    for name, partitions in sorted(existing.items()):
        print(f"{name}: {partitions} partition(s)")
    missing = admin.missing_topics()
    if missing:
        print(f"missing: {', '.join(missing)}")
        return 1
    return 0


async def _with_pipeline(operation):
    from commitguard.workers.stages import build_pipeline

    pipeline = build_pipeline()
    await pipeline.bus.start()
    try:
        return await operation(pipeline)
    finally:
        await pipeline.bus.stop()


def reprocess(commit_id: str) -> int:
    """Re-dispatch a FAILED commit."""
    try:
        result = asyncio.run(_with_pipeline(lambda p: p.tracker.reprocess(commit_id)))
    except CommitGuardError as e:
        logger.error("Reprocess failed", commit_id=commit_id, error=e.message)
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.published else 1


def trigger(repository_id: str) -> int:
    """Analyse a repository's latest commit and print the analysis id."""
    try:
        analysis_id = asyncio.run(_with_pipeline(lambda p: p.tracker.trigger_analysis(repository_id)))
    except CommitGuardError as e:
        logger.error("Trigger failed", repository_id=repository_id, error=e.message)
        return 1
    print(analysis_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commitguard",
        description="Commit security analysis pipeline",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the webhook API")
    serve_parser.add_argument("--host", help="Bind address (default: SERVER_HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: SERVER_PORT)")

    worker_parser = subparsers.add_parser("worker", help="Run pipeline stage consumers")
    worker_parser.add_argument("stage", choices=["analyzer", "tracker", "all"])

    topics_parser = subparsers.add_parser("topics", help="Manage Kafka topics")
    topics_parser.add_argument("action", choices=["create", "list", "script"])
    topics_parser.add_argument(
        "--replication-factor",
        type=int,
        help="Replication factor for the generated rpk script",
    )

    reprocess_parser = subparsers.add_parser("reprocess", help="Retry a FAILED commit")
    reprocess_parser.add_argument("commit_id")

    trigger_parser = subparsers.add_parser("trigger", help="Analyse a repository's latest commit")
    trigger_parser.add_argument("repository_id")

    return parser


def cli(argv: list[str] | None = None) -> int:
    """Command-line interface."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    if args.command == "serve":
        return serve(args.host, args.port)
    if args.command == "worker":
        return worker(args.stage)
    if args.command == "topics":
        return topics(args.action, args.replication_factor)
    if args.command == "reprocess":
        return reprocess(args.commit_id)
    return trigger(args.repository_id)


if __name__ == "__main__":
    sys.exit(cli())
