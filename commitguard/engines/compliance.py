"""Regulatory compliance rule table and report.

Each rule is a keyword alternation evaluated once per file. A hit yields a
VIOLATION record plus a file-scoped finding (line 0); a miss yields a
COMPLIANT record.
"""

import re
from dataclasses import dataclass, field

from commitguard.engines.base import ComplianceRecord, ComplianceStatus, Engine, Rule, ScanMode
from commitguard.models import Category, Severity

COMPLIANCE_RULES: tuple[Rule, ...] = (
    Rule(
        id="PCI-DSS-1",
        severity=Severity.CRITICAL,
        pattern=re.compile(r"(?i)(credit_card|card_number|cvv|pan)"),
        title="Protect cardholder data",
        description="Cardholder data identifiers found; PCI DSS requires protection of stored cardholder data.",
        remediation="Implement encryption for cardholder data storage and transmission",
        reference="PCI-DSS",
    ),
    Rule(
        id="GDPR-1",
        severity=Severity.HIGH,
        pattern=re.compile(r"(?i)(email|phone|address|ssn|personal_id)"),
        title="Personal data protection",
        description="Personal data fields found; GDPR requires lawful and secure processing.",
        remediation="Ensure personal data is processed lawfully and securely",
        reference="GDPR",
    ),
    Rule(
        id="HIPAA-1",
        severity=Severity.HIGH,
        pattern=re.compile(r"(?i)(medical_record|patient_id|health_info)"),
        title="Protected health information",
        description="Protected health information fields found; HIPAA requires access controls.",
        remediation="Implement access controls and audit trails for health information",
        reference="HIPAA",
    ),
    Rule(
        id="SOX-1",
        severity=Severity.MEDIUM,
        pattern=re.compile(r"(?i)(financial_record|audit_trail|transaction)"),
        title="Financial data integrity",
        description="Financial records handled; SOX requires integrity of financial data.",
        remediation="Maintain proper audit trails for financial transactions",
        reference="SOX",
    ),
    Rule(
        id="OWASP-1",
        severity=Severity.MEDIUM,
        pattern=re.compile(r"(?i)(password|authentication|authorization)"),
        title="Secure coding practices",
        description="Authentication-related code found; review against OWASP secure coding practices.",
        remediation="Follow OWASP secure coding guidelines",
        reference="OWASP",
    ),
)

COMPLIANCE_ENGINE = Engine(
    category=Category.COMPLIANCE,
    rules=COMPLIANCE_RULES,
    mode=ScanMode.FILE,
)


@dataclass
class ComplianceReport:
    """Multi-framework compliance summary over a set of records."""
    records: list[ComplianceRecord] = field(default_factory=list)
    framework: str = "Multi-Framework"

    @property
    def violations(self) -> list[str]:
        return [
            f"{r.rule_id}: {r.description} in file {r.file_path}"
            for r in self.records
            if r.status == ComplianceStatus.VIOLATION
        ]

    @property
    def recommendations(self) -> list[str]:
        seen: list[str] = []
        for r in self.records:
            if r.status == ComplianceStatus.VIOLATION and r.recommendation not in seen:
                seen.append(r.recommendation)
        return seen

    @property
    def compliance_percentage(self) -> float | None:
        if not self.records:
            return None
        compliant = sum(1 for r in self.records if r.status == ComplianceStatus.COMPLIANT)
        return compliant / len(self.records) * 100

    @property
    def overall_score(self) -> str:
        percentage = self.compliance_percentage
        if percentage is None:
            return "N/A"
        if percentage >= 90:
            return "EXCELLENT"
        if percentage >= 75:
            return "GOOD"
        if percentage >= 50:
            return "FAIR"
        return "POOR"

    def to_dict(self) -> dict:
        percentage = self.compliance_percentage
        return {
            "framework": self.framework,
            "overall_score": self.overall_score,
            "compliance_percentage": round(percentage, 2) if percentage is not None else None,
            "violations": self.violations,
            "recommendations": self.recommendations,
            "rules": [r.to_dict() for r in self.records],
        }
