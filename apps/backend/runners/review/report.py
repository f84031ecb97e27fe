"""
Review Report
=============

Final report for a streaming review run: aggregated issues and checklist,
metrics, overall risk level and a markdown summary.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .aggregator import AggregationStats, group_by_severity
from .models import (
    AgentRef,
    ChecklistItem,
    ChecklistResult,
    IssueCategory,
    Severity,
    ValidatedIssue,
    ValidationStatus,
    agent_name,
)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


RISK_EMOJI: dict[RiskLevel, str] = {
    RiskLevel.HIGH: "🔴",
    RiskLevel.MEDIUM: "🟡",
    RiskLevel.LOW: "🟢",
}

SEVERITY_EMOJI: dict[Severity, str] = {
    Severity.CRITICAL: "🔴",
    Severity.ERROR: "🟠",
    Severity.WARNING: "🟡",
    Severity.SUGGESTION: "🔵",
}


@dataclass
class ReviewMetrics:
    total_scanned: int = 0
    confirmed: int = 0
    rejected: int = 0
    uncertain: int = 0
    unvalidated: int = 0
    by_severity: dict[Severity, int] = field(
        default_factory=lambda: {s: 0 for s in Severity}
    )
    by_category: dict[IssueCategory, int] = field(
        default_factory=lambda: {c: 0 for c in IssueCategory}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_scanned": self.total_scanned,
            "confirmed": self.confirmed,
            "rejected": self.rejected,
            "uncertain": self.uncertain,
            "unvalidated": self.unvalidated,
            "by_severity": {k.value: v for k, v in self.by_severity.items()},
            "by_category": {k.value: v for k, v in self.by_category.items()},
        }


@dataclass
class ReviewMetadata:
    review_time_ms: int = 0
    tokens_used: int = 0
    agents_used: list[AgentRef] = field(default_factory=list)
    failed_agents: list[AgentRef] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "review_time_ms": self.review_time_ms,
            "tokens_used": self.tokens_used,
            "agents_used": [agent_name(a) for a in self.agents_used],
            "failed_agents": [agent_name(a) for a in self.failed_agents],
        }


@dataclass
class ReviewReport:
    summary: str
    risk_level: RiskLevel
    issues: list[ValidatedIssue]
    checklist: list[ChecklistItem]
    metrics: ReviewMetrics
    metadata: ReviewMetadata
    aggregation: AggregationStats = field(default_factory=AggregationStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "risk_level": self.risk_level.value,
            "issues": [i.to_dict() for i in self.issues],
            "checklist": [c.to_dict() for c in self.checklist],
            "metrics": self.metrics.to_dict(),
            "metadata": self.metadata.to_dict(),
            "aggregation": self.aggregation.to_dict(),
        }


def calculate_metrics(
    all_validated: Sequence[ValidatedIssue],
    reported_issues: Sequence[ValidatedIssue],
    total_scanned: int,
) -> ReviewMetrics:
    """
    Args:
        all_validated: Every verdict produced in the run, before filtering
        reported_issues: Issues that made it into the final report
        total_scanned: Number of issues reported by agents
    """
    metrics = ReviewMetrics(total_scanned=total_scanned)
    for issue in all_validated:
        if issue.validation_status is ValidationStatus.CONFIRMED:
            metrics.confirmed += 1
        elif issue.validation_status is ValidationStatus.REJECTED:
            metrics.rejected += 1
        elif issue.validation_status is ValidationStatus.UNCERTAIN:
            metrics.uncertain += 1
        elif issue.validation_status is ValidationStatus.UNVALIDATED:
            metrics.unvalidated += 1
    for issue in reported_issues:
        metrics.by_severity[issue.effective_severity] += 1
        metrics.by_category[issue.category] += 1
    return metrics


def determine_risk_level(issues: Sequence[ValidatedIssue]) -> RiskLevel:
    critical = sum(1 for i in issues if i.effective_severity is Severity.CRITICAL)
    errors = sum(1 for i in issues if i.effective_severity is Severity.ERROR)
    security = sum(1 for i in issues if i.category is IssueCategory.SECURITY)

    if critical > 0:
        return RiskLevel.HIGH
    if security > 0 and errors > 0:
        return RiskLevel.HIGH
    if errors > 2:
        return RiskLevel.HIGH
    if errors > 0:
        return RiskLevel.MEDIUM
    if len(issues) > 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def generate_summary(issues: Sequence[ValidatedIssue]) -> str:
    parts = []
    if not issues:
        parts.append("No significant issues found in this review.")
    else:
        by_severity = group_by_severity(issues)
        counts = [
            f"{len(by_severity[severity])} {severity.value}"
            for severity in Severity
            if by_severity[severity]
        ]
        parts.append(f"**Issues Found**: {', '.join(counts)}")

    risk = determine_risk_level(issues)
    parts.append(f"**Risk Level**: {RISK_EMOJI[risk]} {risk.value.upper()}")
    return "\n\n".join(parts)


def generate_report(
    issues: Sequence[ValidatedIssue],
    checklist: Sequence[ChecklistItem],
    metrics: ReviewMetrics,
    metadata: ReviewMetadata | None = None,
    aggregation: AggregationStats | None = None,
) -> ReviewReport:
    return ReviewReport(
        summary=generate_summary(issues),
        risk_level=determine_risk_level(issues),
        issues=list(issues),
        checklist=list(checklist),
        metrics=metrics,
        metadata=metadata or ReviewMetadata(),
        aggregation=aggregation or AggregationStats(),
    )


def format_markdown(report: ReviewReport, max_issues: int | None = None) -> str:
    """Render a report as markdown for a PR comment or terminal."""
    lines = ["## Code Review", "", report.summary, ""]

    if report.issues:
        lines.append("### Issues")
        shown = report.issues if max_issues is None else report.issues[:max_issues]
        for issue in shown:
            severity = issue.effective_severity
            lines.append(
                f"- {SEVERITY_EMOJI[severity]} **[{severity.value}]** "
                f"`{issue.file}:{issue.line_start}` {issue.title} "
                f"({issue.validation_status.value}, {issue.final_confidence:.0%})"
            )
            lines.append(f"  {issue.effective_description}")
            if issue.issue.suggestion:
                lines.append(f"  Suggestion: {issue.issue.suggestion}")
        if max_issues is not None and len(report.issues) > max_issues:
            lines.append(f"- ...and {len(report.issues) - max_issues} more")
        lines.append("")

    failed = [c for c in report.checklist if c.result is ChecklistResult.FAIL]
    if report.checklist:
        lines.append("### Checklist")
        lines.append(
            f"{len(report.checklist) - len(failed)}/{len(report.checklist)} checks passed or not applicable"
        )
        for item in failed:
            detail = f" - {item.details}" if item.details else ""
            lines.append(f"- ❌ {item.question or item.id}{detail}")
        lines.append("")

    m = report.metrics
    lines.append("---")
    lines.append(
        f"Scanned: {m.total_scanned} | Confirmed: {m.confirmed} | "
        f"Rejected: {m.rejected} | Uncertain: {m.uncertain}"
    )
    meta = report.metadata
    lines.append(
        f"Agents: {', '.join(agent_name(a) for a in meta.agents_used) or 'none'} | "
        f"Tokens: {meta.tokens_used} | Time: {meta.review_time_ms / 1000:.1f}s"
    )
    return "\n".join(lines)
