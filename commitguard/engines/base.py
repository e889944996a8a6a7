"""Rule engine core.

An ``Engine`` is a category plus an ordered rule table plus an evaluation
mode. Security and quality engines evaluate every non-empty line against
every rule; the compliance engine evaluates each rule once against the
whole file. Engines hold no mutable state, so one instance can scan many
files concurrently.
"""

import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable

from commitguard.config import DEFAULT_SCAN_EXTENSIONS
from commitguard.models import Category, FileChange, Finding, Severity


class ScanMode(str, Enum):
    """How an engine applies its rules to a file."""
    LINE = "line"
    FILE = "file"


class ComplianceStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    VIOLATION = "VIOLATION"


@dataclass(frozen=True)
class Rule:
    """One detection rule."""
    id: str
    severity: Severity
    pattern: re.Pattern
    title: str
    description: str
    remediation: str
    reference: str | None = None

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


@dataclass(frozen=True)
class ComplianceRecord:
    """Outcome of one compliance rule against one file."""
    rule_id: str
    description: str
    severity: Severity
    file_path: str
    status: ComplianceStatus
    recommendation: str

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "description": self.description,
            "severity": self.severity.value,
            "file": self.file_path,
            "status": self.status.value,
            "recommendation": self.recommendation,
        }


@dataclass
class ScanResult:
    """Findings (and compliance records) from one engine run."""
    category: Category
    findings: list[Finding] = field(default_factory=list)
    records: list[ComplianceRecord] = field(default_factory=list)
    files_scanned: int = 0
    files_skipped: int = 0

    def merge(self, other: "ScanResult") -> "ScanResult":
        self.findings.extend(other.findings)
        self.records.extend(other.records)
        self.files_scanned += other.files_scanned
        self.files_skipped += other.files_skipped
        return self


FileCheck = Callable[[FileChange], list[Finding]]

FileInput = FileChange | tuple[str, str]


def _as_change(item: FileInput) -> FileChange:
    if isinstance(item, FileChange):
        return item
    path, content = item
    return FileChange(path=path, content=content)


@dataclass(frozen=True)
class Engine:
    """A rule scanner for one category."""
    category: Category
    rules: tuple[Rule, ...]
    mode: ScanMode = ScanMode.LINE
    checks: tuple[FileCheck, ...] = ()
    extensions: frozenset[str] | None = frozenset(DEFAULT_SCAN_EXTENSIONS)

    def with_extensions(self, extensions: Iterable[str] | None) -> "Engine":
        """Copy of this engine restricted to ``extensions`` (None = every file)."""
        if extensions is None:
            return replace(self, extensions=None)
        return replace(self, extensions=frozenset(ext.lower() for ext in extensions))

    def is_eligible(self, path: str) -> bool:
        if self.extensions is None:
            return True
        return os.path.splitext(path)[1].lower() in self.extensions

    def scan(self, file_changes: Iterable[FileInput]) -> list[Finding]:
        """Scan files and return the findings in file, line, rule order.

        Args:
            file_changes: ``FileChange`` objects or ``(path, content)`` pairs

        Returns:
            Findings for every rule hit; ineligible files are skipped
        """
        return self.scan_detailed(file_changes).findings

    def scan_detailed(self, file_changes: Iterable[FileInput]) -> ScanResult:
        result = ScanResult(category=self.category)
        for item in file_changes:
            result.merge(self.scan_file(_as_change(item)))
        return result

    def scan_file(self, change: FileChange) -> ScanResult:
        """Scan a single file."""
        if not self.is_eligible(change.path) or change.content is None:
            return ScanResult(category=self.category, files_skipped=1)

        if self.mode == ScanMode.FILE:
            result = self._scan_whole_file(change)
        else:
            result = ScanResult(category=self.category, findings=self._scan_lines(change))

        for check in self.checks:
            result.findings.extend(check(change))
        result.files_scanned = 1
        return result

    def _scan_lines(self, change: FileChange) -> list[Finding]:
        findings = []
        for number, line in enumerate(change.content.split("\n"), start=1):
            if not line.strip():
                continue
            for rule in self.rules:
                if rule.matches(line):
                    findings.append(self._finding(rule, change.path, number, line.strip()))
        return findings

    def _scan_whole_file(self, change: FileChange) -> ScanResult:
        result = ScanResult(category=self.category)
        for rule in self.rules:
            violated = rule.matches(change.content)
            result.records.append(ComplianceRecord(
                rule_id=rule.id,
                description=rule.title,
                severity=rule.severity,
                file_path=change.path,
                status=ComplianceStatus.VIOLATION if violated else ComplianceStatus.COMPLIANT,
                recommendation=rule.remediation,
            ))
            if violated:
                result.findings.append(self._finding(rule, change.path, 0, None))
        return result

    def _finding(self, rule: Rule, path: str, line: int, snippet: str | None) -> Finding:
        return Finding(
            category=self.category,
            rule_id=rule.id,
            severity=rule.severity,
            file_path=path,
            line_number=line,
            title=rule.title,
            description=rule.description,
            remediation=rule.remediation,
            reference=rule.reference,
            snippet=snippet[:200] if snippet else None,
        )
