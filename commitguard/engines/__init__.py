"""Rule engines, selected by category.

Adding an engine means adding a rule table and an entry in ``ENGINES``;
the orchestrator iterates this registry and needs no change.
"""

from typing import Iterable

from commitguard.engines.base import (
    ComplianceRecord,
    ComplianceStatus,
    Engine,
    Rule,
    ScanMode,
    ScanResult,
)
from commitguard.engines.compliance import COMPLIANCE_ENGINE, ComplianceReport
from commitguard.engines.quality import QUALITY_ENGINE
from commitguard.engines.security import SECURITY_ENGINE
from commitguard.models import Category

ENGINES: dict[Category, Engine] = {
    Category.SECURITY: SECURITY_ENGINE,
    Category.QUALITY: QUALITY_ENGINE,
    Category.COMPLIANCE: COMPLIANCE_ENGINE,
}


def get_engine(category: Category | str) -> Engine:
    """Look up the engine for a category."""
    return ENGINES[Category(category)]


def configured_engines(extensions: Iterable[str] | None = None) -> list[Engine]:
    """All engines, restricted to ``extensions`` when given, else to the default allow-list."""
    if extensions is None:
        return list(ENGINES.values())
    return [engine.with_extensions(extensions) for engine in ENGINES.values()]


__all__ = [
    "ComplianceRecord",
    "ComplianceReport",
    "ComplianceStatus",
    "ENGINES",
    "Engine",
    "Rule",
    "ScanMode",
    "ScanResult",
    "configured_engines",
    "get_engine",
]
