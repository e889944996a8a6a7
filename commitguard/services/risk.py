"""
Risk Scorer and Result Aggregator

Combines engine findings into a job's composite risk:
- Per-severity tier contributions with diminishing returns and a ceiling
- A 20% penalty when any CRITICAL finding is present
- Score capped at 100, mapped to LOW / MEDIUM / HIGH / CRITICAL

Also derives compliance rollups (OWASP Top 10 categories, regulatory
frameworks, banking risk weights). Rollups are views over a job's findings
and are never stored on their own.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import structlog

from commitguard.engines import ComplianceRecord, ComplianceReport
from commitguard.exceptions import ValidationError
from commitguard.models import (
    AnalysisJob,
    AnalysisStatus,
    Category,
    Finding,
    RiskLevel,
    RiskScore,
    Severity,
)
from commitguard.services.store import AnalysisJobStore

logger = structlog.get_logger(__name__)

CRITICAL_PENALTY = 1.2
MAX_SCORE = 100


# =============================================================================
# Score
# =============================================================================


def tier_contributions(critical: int, high: int, medium: int, low: int) -> dict[Severity, float]:
    """Raw contribution of each severity tier before summing.

    Each tier grows quickly for the first few findings and saturates at its
    ceiling (critical 50, high 30, medium 15, low 8).
    """
    return {
        Severity.CRITICAL: min(50.0, critical * 20 + critical ** 1.5 * 5) if critical > 0 else 0.0,
        Severity.HIGH: min(30.0, high * 12 + math.sqrt(high) * 3) if high > 0 else 0.0,
        Severity.MEDIUM: min(15.0, medium * 6 + math.log(medium + 1) * 2) if medium > 0 else 0.0,
        Severity.LOW: min(8.0, low * 2 + math.log(low + 1)) if low > 0 else 0.0,
    }


def calculate_risk_score(critical: int, high: int, medium: int, low: int) -> int:
    """Composite 0-100 score from severity counts.

    Non-decreasing in every count.
    """
    if min(critical, high, medium, low) < 0:
        raise ValueError("Severity counts cannot be negative")

    total = int(sum(tier_contributions(critical, high, medium, low).values()))
    if critical > 0:
        total = int(total * CRITICAL_PENALTY)
    return min(MAX_SCORE, total)


def risk_level_for(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def count_severities(findings: Iterable[Finding]) -> dict[Severity, int]:
    counts = {severity: 0 for severity in Severity}
    for finding in findings:
        counts[finding.severity] += 1
    return counts


def score_findings(findings: Sequence[Finding]) -> RiskScore:
    """RiskScore for a set of findings."""
    counts = count_severities(findings)
    value = calculate_risk_score(
        counts[Severity.CRITICAL],
        counts[Severity.HIGH],
        counts[Severity.MEDIUM],
        counts[Severity.LOW],
    )
    return RiskScore(value=value, level=risk_level_for(value))


def summarize(job: AnalysisJob) -> dict[str, Any]:
    """Severity counts and risk for the results topic; counts sum to the total."""
    counts = count_severities(job.findings)
    risk = job.risk_score or score_findings(job.findings)
    return {
        "total_findings": len(job.findings),
        "critical_count": counts[Severity.CRITICAL],
        "high_count": counts[Severity.HIGH],
        "medium_count": counts[Severity.MEDIUM],
        "low_count": counts[Severity.LOW],
        "risk_score": risk.value,
        "risk_level": risk.level.value,
    }


# =============================================================================
# Compliance rollups
# =============================================================================

OWASP_CATEGORIES: dict[str, str] = {
    "sql_injection": "A03:2021 - Injection",
    "xss_vulnerability": "A03:2021 - Injection",
    "hardcoded_secret": "A07:2021 - Identification and Authentication Failures",
    "weak_crypto": "A02:2021 - Cryptographic Failures",
    "insecure_random": "A02:2021 - Cryptographic Failures",
    "debug_info": "A09:2021 - Security Logging and Monitoring Failures",
}

REGULATORY_FRAMEWORKS: dict[str, tuple[str, ...]] = {
    "PCI_DSS": ("sql_injection", "xss_vulnerability"),
    "SOX": ("hardcoded_secret", "debug_info"),
    "GDPR": ("hardcoded_secret", "weak_crypto"),
}

BANKING_RISK_WEIGHTS: dict[str, int] = {
    "hardcoded_secret": 10,
    "sql_injection": 9,
    "weak_crypto": 8,
    "xss_vulnerability": 7,
    "insecure_random": 5,
    "debug_info": 2,
}

BANKING_IMPACT: dict[str, str] = {
    "hardcoded_secret": "Data breach, regulatory fines, customer trust loss",
    "sql_injection": "Database compromise, financial data exposure",
    "weak_crypto": "Data decryption, compliance violations",
    "xss_vulnerability": "Customer data theft, session hijacking",
    "insecure_random": "Predictable tokens, authentication bypass",
    "debug_info": "Information disclosure, system intelligence gathering",
}

# Banking control areas and the rule ids that count against them
BANKING_CONTROLS: dict[str, tuple[tuple[str, ...], int]] = {
    "pci_dss": (("sql_injection", "xss_vulnerability"), 10),
    "data_protection": (("hardcoded_secret", "debug_info"), 15),
    "cryptographic": (("weak_crypto", "insecure_random"), 20),
}


def remediation_priority(weight: int) -> str:
    if weight >= 8:
        return "HIGH"
    if weight >= 5:
        return "MEDIUM"
    return "LOW"


@dataclass
class ComplianceRollup:
    """Derived compliance view over one job's findings."""
    owasp: dict[str, int] = field(default_factory=dict)
    frameworks: dict[str, dict[str, Any]] = field(default_factory=dict)
    banking_risk_score: int = 0
    banking_controls: dict[str, int] = field(default_factory=dict)
    banking_status: str = "COMPLIANT"
    remediation_priorities: list[dict[str, Any]] = field(default_factory=list)
    report: ComplianceReport | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "owasp_top10": self.owasp,
            "frameworks": self.frameworks,
            "banking_risk_score": self.banking_risk_score,
            "banking_controls": self.banking_controls,
            "banking_status": self.banking_status,
            "remediation_priorities": self.remediation_priorities,
        }
        if self.report is not None:
            data["report"] = self.report.to_dict()
        return data


def build_rollup(
    findings: Sequence[Finding],
    records: Sequence[ComplianceRecord] = (),
) -> ComplianceRollup:
    """Map security findings onto OWASP, regulatory and banking views."""
    security = [f for f in findings if f.category == Category.SECURITY]
    rule_counts: dict[str, int] = {}
    for finding in security:
        rule_counts[finding.rule_id] = rule_counts.get(finding.rule_id, 0) + 1

    owasp = {category: 0 for category in dict.fromkeys(OWASP_CATEGORIES.values())}
    for rule_id, count in rule_counts.items():
        if rule_id in OWASP_CATEGORIES:
            owasp[OWASP_CATEGORIES[rule_id]] += count

    frameworks = {}
    for framework, rule_ids in REGULATORY_FRAMEWORKS.items():
        count = sum(rule_counts.get(rule_id, 0) for rule_id in rule_ids)
        frameworks[framework] = {
            "findings": count,
            "status": "NON_COMPLIANT" if count else "COMPLIANT",
        }

    present = [rule_id for rule_id in BANKING_RISK_WEIGHTS if rule_counts.get(rule_id)]
    banking_risk = min(MAX_SCORE, sum(BANKING_RISK_WEIGHTS[rule_id] for rule_id in present))

    controls = {}
    for control, (rule_ids, penalty) in BANKING_CONTROLS.items():
        issues = sum(rule_counts.get(rule_id, 0) for rule_id in rule_ids)
        controls[control] = max(0, 100 - issues * penalty)
    overall = int(sum(controls.values()) / len(controls))
    if overall >= 80:
        banking_status = "COMPLIANT"
    elif overall >= 60:
        banking_status = "NEEDS_IMPROVEMENT"
    else:
        banking_status = "NON_COMPLIANT"

    priorities = sorted(
        (
            {
                "vulnerability_type": rule_id,
                "occurrences": rule_counts[rule_id],
                "risk_weight": BANKING_RISK_WEIGHTS[rule_id],
                "priority": remediation_priority(BANKING_RISK_WEIGHTS[rule_id]),
                "impact": BANKING_IMPACT[rule_id],
            }
            for rule_id in present
        ),
        key=lambda item: item["risk_weight"],
        reverse=True,
    )

    return ComplianceRollup(
        owasp=owasp,
        frameworks=frameworks,
        banking_risk_score=banking_risk,
        banking_controls={**controls, "overall": overall},
        banking_status=banking_status,
        remediation_priorities=priorities,
        report=ComplianceReport(records=list(records)) if records else None,
    )


# =============================================================================
# Aggregator
# =============================================================================


class ResultAggregator:
    """Attaches findings and risk to an AnalysisJob and persists it.

    Re-aggregating a job that is already terminal returns the stored job
    unchanged, so redelivered requests never duplicate findings.
    """

    def __init__(self, jobs: AnalysisJobStore):
        self._jobs = jobs

    async def aggregate(
        self,
        job_id: str,
        security_findings: Sequence[Finding],
        quality_findings: Sequence[Finding],
        compliance_findings: Sequence[Finding],
    ) -> AnalysisJob:
        """Complete a job with the findings of the three engines.

        Args:
            job_id: Analysis id of a stored, non-terminal job
            security_findings: Findings from the security engine
            quality_findings: Findings from the quality engine
            compliance_findings: Findings from the compliance engine

        Returns:
            The stored job (COMPLETED, or whatever terminal state it already had)

        Raises:
            ValidationError: If no job with ``job_id`` exists
        """
        job = await self._jobs.find(job_id)
        if job is None:
            raise ValidationError(f"Unknown analysis id: {job_id}")
        if job.status.is_terminal:
            logger.info("Job already terminal, skipping aggregation", analysis_id=job_id, status=job.status.value)
            return job

        findings = tuple(security_findings) + tuple(quality_findings) + tuple(compliance_findings)
        risk = score_findings(findings)
        completed = job.transition(AnalysisStatus.COMPLETED, findings=findings, risk_score=risk)
        stored = await self._jobs.save(completed)

        logger.info(
            "Analysis aggregated",
            analysis_id=job_id,
            findings=len(findings),
            risk_score=risk.value,
            risk_level=risk.level.value,
        )
        return stored
