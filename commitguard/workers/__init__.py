"""Stage workers that consume pipeline topics."""

from commitguard.workers.stages import (
    STAGES,
    Pipeline,
    attach_analyzer,
    attach_tracker,
    build_pipeline,
    run_stages,
)

__all__ = [
    "STAGES",
    "Pipeline",
    "attach_analyzer",
    "attach_tracker",
    "build_pipeline",
    "run_stages",
]
