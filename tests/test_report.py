"""
Tests for the Review Report
===========================
"""

from dataclasses import replace

import pytest

from review_fakes import make_validated
from runners.review.aggregator import AggregationStats
from runners.review.models import (
    BuiltinAgent,
    ChecklistItem,
    ChecklistResult,
    IssueCategory,
    Severity,
    ValidationStatus,
)
from runners.review.report import (
    ReviewMetadata,
    RiskLevel,
    calculate_metrics,
    determine_risk_level,
    format_markdown,
    generate_report,
    generate_summary,
)


class TestDetermineRiskLevel:
    """Test determine_risk_level()."""

    def test_no_issues_is_low(self):
        assert determine_risk_level([]) is RiskLevel.LOW

    def test_any_critical_is_high(self):
        issue = make_validated(severity=Severity.CRITICAL, category=IssueCategory.STYLE)
        assert determine_risk_level([issue]) is RiskLevel.HIGH

    def test_security_with_error_is_high(self):
        issues = [
            make_validated("SEC-001", severity=Severity.WARNING, category=IssueCategory.SECURITY),
            make_validated("LOG-002", severity=Severity.ERROR, category=IssueCategory.LOGIC),
        ]
        assert determine_risk_level(issues) is RiskLevel.HIGH

    def test_three_errors_is_high(self):
        issues = [
            make_validated(f"LOG-00{i}", severity=Severity.ERROR, category=IssueCategory.LOGIC)
            for i in range(3)
        ]
        assert determine_risk_level(issues) is RiskLevel.HIGH

    def test_single_error_is_medium(self):
        issue = make_validated(severity=Severity.ERROR, category=IssueCategory.LOGIC)
        assert determine_risk_level([issue]) is RiskLevel.MEDIUM

    def test_many_minor_issues_is_medium(self):
        issues = [
            make_validated(f"STY-00{i}", severity=Severity.SUGGESTION, category=IssueCategory.STYLE)
            for i in range(6)
        ]
        assert determine_risk_level(issues) is RiskLevel.MEDIUM

    def test_few_warnings_is_low(self):
        issues = [
            make_validated(f"PER-00{i}", severity=Severity.WARNING, category=IssueCategory.PERFORMANCE)
            for i in range(5)
        ]
        assert determine_risk_level(issues) is RiskLevel.LOW

    def test_validator_downgrade_lowers_risk(self):
        issue = replace(
            make_validated(severity=Severity.CRITICAL, category=IssueCategory.LOGIC),
            revised_severity=Severity.WARNING,
        )
        assert determine_risk_level([issue]) is RiskLevel.LOW


class TestCalculateMetrics:
    """Test calculate_metrics()."""

    def test_status_counts_use_all_verdicts(self):
        all_validated = [
            make_validated("SEC-001", ValidationStatus.CONFIRMED),
            make_validated("SEC-002", ValidationStatus.REJECTED),
            make_validated("SEC-003", ValidationStatus.UNCERTAIN),
            make_validated("SEC-004", ValidationStatus.UNVALIDATED),
            make_validated("SEC-005", ValidationStatus.CONFIRMED),
        ]
        reported = [all_validated[0], all_validated[4]]

        metrics = calculate_metrics(all_validated, reported, total_scanned=7)

        assert metrics.total_scanned == 7
        assert metrics.confirmed == 2
        assert metrics.rejected == 1
        assert metrics.uncertain == 1
        assert metrics.unvalidated == 1
        assert metrics.by_severity[Severity.ERROR] == 2
        assert metrics.by_severity[Severity.CRITICAL] == 0
        assert metrics.by_category[IssueCategory.SECURITY] == 2

    def test_to_dict_uses_wire_values(self):
        metrics = calculate_metrics([], [], total_scanned=0)
        data = metrics.to_dict()
        assert data["by_severity"] == {
            "critical": 0,
            "error": 0,
            "warning": 0,
            "suggestion": 0,
        }
        assert set(data["by_category"]) == {c.value for c in IssueCategory}


class TestGenerateReport:
    """Test generate_report() and generate_summary()."""

    def test_summary_lists_counts_and_risk(self):
        issues = [
            make_validated("SEC-001", severity=Severity.ERROR),
            make_validated("STY-002", severity=Severity.SUGGESTION, category=IssueCategory.STYLE),
        ]
        summary = generate_summary(issues)
        assert "1 error, 1 suggestion" in summary
        assert "HIGH" in summary

    def test_empty_summary(self):
        summary = generate_summary([])
        assert "No significant issues" in summary
        assert "LOW" in summary

    def test_report_fields(self):
        issues = [make_validated(severity=Severity.CRITICAL)]
        metrics = calculate_metrics(issues, issues, total_scanned=1)
        metadata = ReviewMetadata(
            review_time_ms=1500,
            tokens_used=120,
            agents_used=[BuiltinAgent.SECURITY_REVIEWER],
        )

        report = generate_report(issues, [], metrics, metadata)

        assert report.risk_level is RiskLevel.HIGH
        assert report.issues == issues
        assert report.metadata.tokens_used == 120
        assert report.aggregation == AggregationStats()

        data = report.to_dict()
        assert data["risk_level"] == "high"
        assert data["metadata"]["agents_used"] == ["security-reviewer"]
        assert data["issues"][0]["id"] == "SEC-001"


class TestFormatMarkdown:
    """Test format_markdown()."""

    @pytest.fixture
    def report(self):
        issues = [
            make_validated("SEC-001", severity=Severity.CRITICAL, final_confidence=0.95),
            make_validated("LOG-002", severity=Severity.WARNING, line_start=40, line_end=41),
            make_validated("PER-003", severity=Severity.SUGGESTION, line_start=80, line_end=81),
        ]
        checklist = [
            ChecklistItem(
                id="sec-1",
                category=IssueCategory.SECURITY,
                question="Is user input sanitized?",
                result=ChecklistResult.FAIL,
                details="Raw SQL in handler",
            ),
            ChecklistItem(
                id="sec-2",
                category=IssueCategory.SECURITY,
                question="Are secrets kept out of code?",
                result=ChecklistResult.PASS,
            ),
        ]
        metrics = calculate_metrics(issues, issues, total_scanned=4)
        metadata = ReviewMetadata(
            review_time_ms=2500,
            tokens_used=300,
            agents_used=[BuiltinAgent.SECURITY_REVIEWER, BuiltinAgent.LOGIC_REVIEWER],
        )
        return generate_report(issues, checklist, metrics, metadata)

    def test_sections(self, report):
        markdown = format_markdown(report)

        assert markdown.startswith("## Code Review")
        assert "`src/app.py:10` SQL injection in handler (confirmed, 95%)" in markdown
        assert "1/2 checks passed or not applicable" in markdown
        assert "Is user input sanitized? - Raw SQL in handler" in markdown
        assert "Scanned: 4 | Confirmed: 3" in markdown
        assert "Agents: security-reviewer, logic-reviewer | Tokens: 300 | Time: 2.5s" in markdown

    def test_max_issues_truncates(self, report):
        markdown = format_markdown(report, max_issues=1)

        assert "src/app.py:40" not in markdown
        assert "...and 2 more" in markdown

    def test_empty_report(self):
        report = generate_report([], [], calculate_metrics([], [], 0))
        markdown = format_markdown(report)

        assert "### Issues" not in markdown
        assert "### Checklist" not in markdown
        assert "Agents: none" in markdown
