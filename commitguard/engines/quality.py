"""Code quality rule table and cyclomatic-complexity heuristic."""

import re

from commitguard.engines.base import Engine, Rule
from commitguard.models import Category, FileChange, Finding, Severity

COMPLEXITY_THRESHOLD = 10

QUALITY_RULES: tuple[Rule, ...] = (
    Rule(
        id="magic_number",
        severity=Severity.LOW,
        pattern=re.compile(r"\b\d{2,}\b(?!\s*[)\]}])"),
        title="Magic number detected, consider using named constants",
        description="Magic numbers make code less readable and maintainable.",
        remediation="Replace magic numbers with named constants or configuration.",
    ),
    Rule(
        id="todo_comment",
        severity=Severity.LOW,
        pattern=re.compile(r"(?i)(todo|fixme|hack)\s*:"),
        title="TODO comment found, consider addressing before production",
        description="TODO comments indicate incomplete or temporary code.",
        remediation="Complete the TODO item or create a proper issue tracker entry.",
    ),
    Rule(
        id="empty_catch",
        severity=Severity.HIGH,
        pattern=re.compile(r"catch\s*\([^)]*\)\s*\{\s*\}"),
        title="Empty catch block detected",
        description="Empty catch blocks suppress exceptions and can hide errors.",
        remediation="Add proper error handling or logging in the catch block.",
    ),
    Rule(
        id="unused_import",
        severity=Severity.LOW,
        pattern=re.compile(r"^import\s+[^;]+;\s*$"),
        title="Potentially unused import",
        description="Unused imports clutter the code and may indicate dead code.",
        remediation="Remove unused imports to clean up the code.",
    ),
    Rule(
        id="long_parameter_list",
        severity=Severity.MEDIUM,
        pattern=re.compile(r"\([^)]*,\s*[^)]*,\s*[^)]*,\s*[^)]*,\s*[^)]*,"),
        title="Method has too many parameters",
        description="Methods with many parameters are difficult to use and understand.",
        remediation="Consider using a parameter object or breaking down the method.",
    ),
)

_METHOD_START = re.compile(r"\b(public|private|protected)\b.*\([^)]*\).*\{")
_BRANCH = re.compile(r"\b(if|else|while|for|switch|case|catch)\b|&&|\|\|")


def check_method_complexity(change: FileChange) -> list[Finding]:
    """Flag methods whose branch count exceeds the threshold.

    The counter restarts at 1 on every method signature line and grows by one
    per line containing a branching keyword. When a closing brace is reached
    with the counter above the threshold, one HIGH finding is emitted at the
    method's first line and tracking stops until the next signature.
    """
    findings = []
    complexity = 0
    method_start = -1

    for number, raw in enumerate(change.content.split("\n"), start=1):
        line = raw.strip()

        if _METHOD_START.search(line):
            method_start = number
            complexity = 1

        if _BRANCH.search(line):
            complexity += 1

        if "}" in line and method_start != -1 and complexity > COMPLEXITY_THRESHOLD:
            findings.append(Finding(
                category=Category.QUALITY,
                rule_id="high_complexity",
                severity=Severity.HIGH,
                file_path=change.path,
                line_number=method_start,
                title="High cyclomatic complexity",
                description=(
                    f"Method has cyclomatic complexity of {complexity} "
                    f"(threshold: {COMPLEXITY_THRESHOLD})"
                ),
                remediation="Break down the method into smaller, more focused methods",
                snippet=f"Method complexity: {complexity}",
            ))
            method_start = -1
            complexity = 0

    return findings


QUALITY_ENGINE = Engine(
    category=Category.QUALITY,
    rules=QUALITY_RULES,
    checks=(check_method_complexity,),
)
