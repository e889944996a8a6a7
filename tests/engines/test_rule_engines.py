"""Tests for the security, quality and compliance rule engines."""

import pytest

CLEAN_SOURCE = "def add(a, b):\n    return a + b\n"


class TestSecurityEngine:
    """Tests for the security rule table."""

    def test_hardcoded_secret(self, mock_env_vars):
        """Test a hardcoded password yields one CRITICAL CWE-798 finding."""
        from commitguard.engines import get_engine
        from commitguard.models import Category, Severity

        findings = get_engine(Category.SECURITY).scan([("Config.java", 'password = "hardcoded123";')])

        assert len(findings) == 1
        finding = findings[0]
        assert finding.rule_id == "hardcoded_secret"
        assert finding.severity == Severity.CRITICAL
        assert finding.reference == "CWE-798"
        assert finding.line_number == 1
        assert finding.file_path == "Config.java"

    def test_sql_injection(self, mock_env_vars):
        """Test string-concatenated SQL yields one HIGH CWE-89 finding."""
        from commitguard.engines import get_engine
        from commitguard.models import Category, Severity

        source = 'SELECT * FROM users WHERE id = " + userId'
        findings = get_engine(Category.SECURITY).scan([("Dao.java", source)])

        assert len(findings) == 1
        assert findings[0].rule_id == "sql_injection"
        assert findings[0].severity == Severity.HIGH
        assert findings[0].reference == "CWE-89"

    def test_line_may_trigger_several_rules(self, mock_env_vars):
        """Test distinct rules on one line each produce a finding."""
        from commitguard.engines import get_engine
        from commitguard.models import Category

        findings = get_engine(Category.SECURITY).scan([("app.js", "console.log(md5(value));")])

        assert {f.rule_id for f in findings} == {"weak_crypto", "debug_info"}
        assert all(f.line_number == 1 for f in findings)

    def test_line_numbers_skip_nothing(self, mock_env_vars):
        """Test blank lines are skipped but still counted."""
        from commitguard.engines import get_engine
        from commitguard.models import Category

        source = "const a = 1;\n\n\nconst r = Math.random();\n"
        findings = get_engine(Category.SECURITY).scan([("rand.js", source)])

        assert [(f.rule_id, f.line_number) for f in findings] == [("insecure_random", 4)]

    def test_snippet_is_trimmed(self, mock_env_vars):
        """Test snippets are stripped and capped at 200 characters."""
        from commitguard.engines import get_engine
        from commitguard.models import Category

        line = '    token = "' + "x" * 300 + '"'
        findings = get_engine(Category.SECURITY).scan([("Long.java", line)])

        assert findings[0].snippet.startswith("token")
        assert len(findings[0].snippet) == 200


class TestQualityEngine:
    """Tests for the quality rules and complexity heuristic."""

    def test_todo_and_magic_number(self, mock_env_vars):
        """Test line rules fire on their own lines."""
        from commitguard.engines import get_engine
        from commitguard.models import Category

        source = "// TODO: remove\nint retries = 42;\n"
        findings = get_engine(Category.QUALITY).scan([("Retry.java", source)])

        assert [(f.rule_id, f.line_number) for f in findings] == [
            ("todo_comment", 1),
            ("magic_number", 2),
        ]

    def test_empty_catch_is_high(self, mock_env_vars):
        """Test an empty catch block is a HIGH finding."""
        from commitguard.engines import get_engine
        from commitguard.models import Category, Severity

        findings = get_engine(Category.QUALITY).scan([("Io.java", "} catch (IOException e) {}")])

        assert [f.rule_id for f in findings] == ["empty_catch"]
        assert findings[0].severity == Severity.HIGH

    def test_complex_method_flagged(self, mock_env_vars):
        """Test a method with more than ten branches yields high_complexity."""
        from commitguard.engines import get_engine
        from commitguard.models import Category, Severity

        branches = "\n".join(f"    if (x == {i}) y++;" for i in range(10))
        source = f"public int route(int x) {{\n{branches}\n    return y;\n}}\n"
        findings = get_engine(Category.QUALITY).scan([("Router.java", source)])

        complexity = [f for f in findings if f.rule_id == "high_complexity"]
        assert len(complexity) == 1
        assert complexity[0].severity == Severity.HIGH
        assert complexity[0].line_number == 1
        assert complexity[0].description == "Method has cyclomatic complexity of 11 (threshold: 10)"

    def test_simple_method_not_flagged(self, mock_env_vars):
        """Test a short method stays under the threshold."""
        from commitguard.engines.quality import check_method_complexity
        from commitguard.models import FileChange

        source = "public int abs(int x) {\n    if (x < 0) return -x;\n    return x;\n}\n"

        assert check_method_complexity(FileChange("Abs.java", source)) == []

    def test_keywords_inside_identifiers_not_counted(self, mock_env_vars):
        """Test branch keywords only count as whole words."""
        from commitguard.engines.quality import check_method_complexity
        from commitguard.models import FileChange

        body = "\n".join("    format(elsewhere, iframe, forecast);" for _ in range(12))
        source = f"public void draw() {{\n{body}\n}}\n"

        assert check_method_complexity(FileChange("Draw.java", source)) == []


class TestComplianceEngine:
    """Tests for whole-file compliance rules."""

    def test_violation_and_compliant_records(self, mock_env_vars):
        """Test every rule yields a record and violations yield line-0 findings."""
        from commitguard.engines import ComplianceStatus, get_engine
        from commitguard.models import Category

        source = "card_number = request.get('card')\n"
        result = get_engine(Category.COMPLIANCE).scan_detailed([("pay.py", source)])

        assert [f.rule_id for f in result.findings] == ["PCI-DSS-1"]
        assert result.findings[0].line_number == 0
        assert len(result.records) == 5
        statuses = {r.rule_id: r.status for r in result.records}
        assert statuses["PCI-DSS-1"] == ComplianceStatus.VIOLATION
        assert statuses["HIPAA-1"] == ComplianceStatus.COMPLIANT

    def test_report_scores(self, mock_env_vars):
        """Test report percentage and label."""
        from commitguard.engines import ComplianceReport, get_engine
        from commitguard.models import Category

        result = get_engine(Category.COMPLIANCE).scan_detailed([("pay.py", "card_number = 1\n")])
        report = ComplianceReport(records=result.records)

        assert report.compliance_percentage == pytest.approx(80.0)
        assert report.overall_score == "GOOD"
        assert len(report.violations) == 1
        assert report.to_dict()["compliance_percentage"] == 80.0

    def test_empty_report(self, mock_env_vars):
        """Test a report with no records is N/A."""
        from commitguard.engines import ComplianceReport

        report = ComplianceReport()

        assert report.overall_score == "N/A"
        assert report.compliance_percentage is None


class TestEngineRegistry:
    """Tests shared by every engine."""

    def test_clean_file_has_no_findings(self, mock_env_vars):
        """Test a clean file yields zero findings from all three engines."""
        from commitguard.engines import configured_engines

        for engine in configured_engines():
            assert engine.scan([("clean.py", CLEAN_SOURCE)]) == []

    def test_ineligible_extension_skipped(self, mock_env_vars):
        """Test files outside the allow-list are skipped without error."""
        from commitguard.config import DEFAULT_SCAN_EXTENSIONS
        from commitguard.engines import configured_engines

        for engine in configured_engines(DEFAULT_SCAN_EXTENSIONS):
            result = engine.scan_detailed([("notes.txt", 'password = "hunter22"')])
            assert result.findings == []
            assert result.files_skipped == 1

    def test_module_engines_apply_default_allow_list(self, mock_env_vars):
        """Test engines used directly skip files outside the default allow-list."""
        from commitguard.engines import COMPLIANCE_ENGINE, QUALITY_ENGINE, SECURITY_ENGINE

        for engine in (SECURITY_ENGINE, QUALITY_ENGINE, COMPLIANCE_ENGINE):
            result = engine.scan_detailed([("notes.txt", 'password = "hunter22"')])
            assert result.findings == []
            assert result.files_skipped == 1

    def test_unrestricted_engine_scans_every_file(self, mock_env_vars):
        """Test with_extensions(None) opts an engine out of the allow-list."""
        from commitguard.engines import SECURITY_ENGINE

        findings = SECURITY_ENGINE.with_extensions(None).scan([("notes.txt", 'password = "hunter22";')])

        assert [f.rule_id for f in findings] == ["hardcoded_secret"]

    def test_extension_match_is_case_insensitive(self, mock_env_vars):
        """Test upper-case extensions are eligible."""
        from commitguard.engines import get_engine
        from commitguard.models import Category

        engine = get_engine(Category.SECURITY).with_extensions([".java"])

        assert engine.is_eligible("Main.JAVA") is True
        assert engine.is_eligible("main.py") is False

    def test_accepts_file_changes(self, mock_env_vars):
        """Test scan accepts FileChange objects as well as tuples."""
        from commitguard.engines import get_engine
        from commitguard.models import Category, FileChange

        findings = get_engine(Category.SECURITY).scan([FileChange("a.js", "el.innerHTML = '<b>' + name;")])

        assert [f.rule_id for f in findings] == ["xss_vulnerability"]
