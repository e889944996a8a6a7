"""Security rule table.

Line-oriented pattern rules for common vulnerability classes, each tagged
with its CWE id.
"""

import re

from commitguard.engines.base import Engine, Rule
from commitguard.models import Category, Severity

SECURITY_RULES: tuple[Rule, ...] = (
    Rule(
        id="hardcoded_secret",
        severity=Severity.CRITICAL,
        pattern=re.compile(r"""(?i)(password|secret|key|token)\s*=\s*["'][^"']+["']"""),
        title="Hardcoded credentials detected",
        description=(
            "Hardcoded credentials found in source code. This poses a security risk "
            "as credentials should be stored securely."
        ),
        remediation="Store credentials in environment variables or secure credential management systems.",
        reference="CWE-798",
    ),
    Rule(
        id="sql_injection",
        severity=Severity.HIGH,
        pattern=re.compile(r"(?i)(select|insert|update|delete).*\+.*"),
        title="Potential SQL injection vulnerability",
        description=(
            "Potential SQL injection vulnerability detected. User input may be "
            "directly concatenated into SQL queries."
        ),
        remediation="Use parameterized queries or prepared statements to prevent SQL injection.",
        reference="CWE-89",
    ),
    Rule(
        id="xss_vulnerability",
        severity=Severity.HIGH,
        pattern=re.compile(r"(?i)innerHTML\s*=\s*[^;]*\+"),
        title="Potential XSS vulnerability",
        description=(
            "Potential Cross-Site Scripting (XSS) vulnerability. User input may be "
            "directly inserted into DOM."
        ),
        remediation="Sanitize user input and use safe DOM manipulation methods.",
        reference="CWE-79",
    ),
    Rule(
        id="weak_crypto",
        severity=Severity.MEDIUM,
        pattern=re.compile(r"(?i)(md5|sha1)"),
        title="Weak cryptographic algorithm",
        description=(
            "Weak cryptographic algorithm detected. Consider using stronger algorithms "
            "like SHA-256 or bcrypt."
        ),
        remediation="Use strong cryptographic algorithms like SHA-256, SHA-3, or bcrypt for hashing.",
        reference="CWE-327",
    ),
    Rule(
        id="insecure_random",
        severity=Severity.MEDIUM,
        pattern=re.compile(r"(?i)math\.random\(\)"),
        title="Insecure random number generation",
        description=(
            "Insecure random number generation. Use cryptographically secure random "
            "generators for security-sensitive operations."
        ),
        remediation="Use SecureRandom or equivalent cryptographically secure random number generators.",
        reference="CWE-330",
    ),
    Rule(
        id="debug_info",
        severity=Severity.LOW,
        pattern=re.compile(r"(?i)(console\.log|print|debug)\s*\("),
        title="Debug information exposure",
        description="Debug information exposure. Remove debug statements before production deployment.",
        remediation="Remove debug statements and use proper logging frameworks with appropriate log levels.",
        reference="CWE-209",
    ),
)

SECURITY_ENGINE = Engine(category=Category.SECURITY, rules=SECURITY_RULES)
