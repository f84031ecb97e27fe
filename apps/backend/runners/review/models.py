"""
Streaming Review Data Models
============================

Records exchanged between the stages of a streaming review run:
raw issues reported by specialist agents, their validated counterparts,
checklist items and run-scoped collector statistics.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Issue severity, most severe first."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"


# Lower rank sorts first
SEVERITY_ORDER: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.ERROR: 1,
    Severity.WARNING: 2,
    Severity.SUGGESTION: 3,
}


class IssueCategory(str, Enum):
    """Issue categories, one per specialist focus area."""

    SECURITY = "security"
    LOGIC = "logic"
    PERFORMANCE = "performance"
    STYLE = "style"
    MAINTAINABILITY = "maintainability"


class ValidationStatus(str, Enum):
    """Outcome of the second-pass validation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    UNCERTAIN = "uncertain"
    UNVALIDATED = "unvalidated"  # Validation skipped for the run


class ChecklistResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NA = "na"


class SymbolType(str, Enum):
    DEFINITION = "definition"
    REFERENCE = "reference"


class ValidationStrategy(str, Enum):
    """When a source agent's issues are handed to the validator."""

    IMMEDIATE = "immediate"
    BATCH_ON_AGENT_COMPLETE = "batch-on-agent-complete"


class ReportStatus(str, Enum):
    ACCEPTED = "accepted"
    ERROR = "error"
    DUPLICATE = "duplicate"


# =============================================================================
# Agent identity
# =============================================================================


class BuiltinAgent(str, Enum):
    """Specialist agents shipped with the review pipeline."""

    SECURITY_REVIEWER = "security-reviewer"
    LOGIC_REVIEWER = "logic-reviewer"
    STYLE_REVIEWER = "style-reviewer"
    PERFORMANCE_REVIEWER = "performance-reviewer"
    VALIDATOR = "validator"
    FIX_VERIFIER = "fix-verifier"


@dataclass(frozen=True)
class CustomAgent:
    """A user-defined specialist, identified by its free-form id."""

    id: str

    def __str__(self) -> str:
        return self.id


AgentRef = BuiltinAgent | CustomAgent


def agent_name(agent: AgentRef) -> str:
    """Wire name of an agent."""
    if isinstance(agent, BuiltinAgent):
        return agent.value
    return agent.id


def parse_agent(name: str | AgentRef) -> AgentRef:
    """Map a wire name to a builtin agent when it names one, else a custom agent."""
    if isinstance(name, (BuiltinAgent, CustomAgent)):
        return name
    try:
        return BuiltinAgent(name)
    except ValueError:
        return CustomAgent(name)


def agent_prefix(agent: AgentRef) -> str:
    """
    Three-letter upper-case prefix used in issue ids.

    security-reviewer -> SEC, logic-reviewer -> LOG, fix-verifier -> FIX
    """
    name = agent_name(agent)
    if name.endswith("-reviewer"):
        name = name[: -len("-reviewer")]
    return name[:3].upper()


# Fallback verdicts keep this share of the reported confidence
FALLBACK_CONFIDENCE_FACTOR = 0.5


def _clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# =============================================================================
# Issues
# =============================================================================


@dataclass(frozen=True)
class IssueReport:
    """Payload an agent submits through the report_issue tool (no id yet)."""

    file: str
    line_start: int
    line_end: int
    severity: Severity
    category: IssueCategory
    title: str
    description: str
    confidence: float
    suggestion: str | None = None
    code_snippet: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IssueReport:
        return cls(
            file=data["file"],
            line_start=int(data["line_start"]),
            line_end=int(data["line_end"]),
            severity=Severity(data["severity"]),
            category=IssueCategory(data["category"]),
            title=data["title"],
            description=data["description"],
            confidence=float(data["confidence"]),
            suggestion=data.get("suggestion"),
            code_snippet=data.get("code_snippet"),
        )


@dataclass(frozen=True)
class RawIssue:
    """An issue as reported by a specialist agent, after id assignment."""

    id: str
    file: str
    line_start: int
    line_end: int
    category: IssueCategory
    severity: Severity
    title: str
    description: str
    confidence: float
    source_agent: AgentRef
    suggestion: str | None = None
    code_snippet: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", _clamp_confidence(self.confidence))

    @classmethod
    def from_report(
        cls, issue_id: str, report: IssueReport, source_agent: AgentRef
    ) -> RawIssue:
        return cls(
            id=issue_id,
            file=report.file,
            line_start=report.line_start,
            line_end=report.line_end,
            category=report.category,
            severity=report.severity,
            title=report.title,
            description=report.description,
            confidence=report.confidence,
            source_agent=source_agent,
            suggestion=report.suggestion,
            code_snippet=report.code_snippet,
        )

    def fingerprint_key(self) -> tuple[str, int, int, str, str]:
        """Identity key an external state manager can track across runs."""
        return (
            self.file,
            self.line_start,
            self.line_end,
            self.category.value,
            self.title,
        )

    def fingerprint(self) -> str:
        raw = "|".join(str(part) for part in self.fingerprint_key())
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file": self.file,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "category": self.category.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion,
            "code_snippet": self.code_snippet,
            "confidence": self.confidence,
            "source_agent": agent_name(self.source_agent),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawIssue:
        return cls(
            id=data["id"],
            file=data["file"],
            line_start=int(data["line_start"]),
            line_end=int(data["line_end"]),
            category=IssueCategory(data["category"]),
            severity=Severity(data["severity"]),
            title=data["title"],
            description=data["description"],
            confidence=float(data["confidence"]),
            source_agent=parse_agent(data["source_agent"]),
            suggestion=data.get("suggestion"),
            code_snippet=data.get("code_snippet"),
        )


@dataclass
class SymbolLookup:
    """A symbol the validator looked up while grounding its verdict."""

    name: str
    type: SymbolType = SymbolType.REFERENCE
    locations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "locations": list(self.locations),
        }


@dataclass
class GroundingEvidence:
    """The inspection trail behind a validation verdict."""

    checked_files: list[str] = field(default_factory=list)
    checked_symbols: list[SymbolLookup] = field(default_factory=list)
    related_context: str = ""
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_files": list(self.checked_files),
            "checked_symbols": [s.to_dict() for s in self.checked_symbols],
            "related_context": self.related_context,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroundingEvidence:
        symbols = []
        for sym in data.get("checked_symbols", []):
            if isinstance(sym, str):
                symbols.append(SymbolLookup(name=sym))
            else:
                symbols.append(
                    SymbolLookup(
                        name=sym["name"],
                        type=SymbolType(sym.get("type", "reference")),
                        locations=list(sym.get("locations", [])),
                    )
                )
        return cls(
            checked_files=list(data.get("checked_files", [])),
            checked_symbols=symbols,
            related_context=data.get("related_context", ""),
            reasoning=data.get("reasoning", ""),
        )


@dataclass(frozen=True)
class ValidatedIssue:
    """
    A raw issue plus the validator's verdict.

    Raw fields are exposed as read-only properties so consumers can treat
    a ValidatedIssue as a RawIssue with extra fields.
    """

    issue: RawIssue
    validation_status: ValidationStatus
    final_confidence: float
    grounding_evidence: GroundingEvidence = field(default_factory=GroundingEvidence)
    rejection_reason: str | None = None
    revised_description: str | None = None
    revised_severity: Severity | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "final_confidence", _clamp_confidence(self.final_confidence)
        )

    @classmethod
    def fallback(
        cls,
        issue: RawIssue,
        reasoning: str,
        confidence: float | None = None,
    ) -> ValidatedIssue:
        """Uncertain substitute used whenever validation cannot complete."""
        return cls(
            issue=issue,
            validation_status=ValidationStatus.UNCERTAIN,
            final_confidence=(
                issue.confidence * FALLBACK_CONFIDENCE_FACTOR
                if confidence is None
                else confidence
            ),
            grounding_evidence=GroundingEvidence(reasoning=reasoning),
        )

    # Raw issue passthrough

    @property
    def id(self) -> str:
        return self.issue.id

    @property
    def file(self) -> str:
        return self.issue.file

    @property
    def line_start(self) -> int:
        return self.issue.line_start

    @property
    def line_end(self) -> int:
        return self.issue.line_end

    @property
    def category(self) -> IssueCategory:
        return self.issue.category

    @property
    def severity(self) -> Severity:
        return self.issue.severity

    @property
    def title(self) -> str:
        return self.issue.title

    @property
    def description(self) -> str:
        return self.issue.description

    @property
    def confidence(self) -> float:
        return self.issue.confidence

    @property
    def source_agent(self) -> AgentRef:
        return self.issue.source_agent

    @property
    def effective_severity(self) -> Severity:
        return self.revised_severity or self.issue.severity

    @property
    def effective_description(self) -> str:
        return self.revised_description or self.issue.description

    def to_dict(self) -> dict[str, Any]:
        data = self.issue.to_dict()
        data.update(
            {
                "validation_status": self.validation_status.value,
                "grounding_evidence": self.grounding_evidence.to_dict(),
                "final_confidence": self.final_confidence,
                "rejection_reason": self.rejection_reason,
                "revised_description": self.revised_description,
                "revised_severity": (
                    self.revised_severity.value if self.revised_severity else None
                ),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidatedIssue:
        revised = data.get("revised_severity")
        return cls(
            issue=RawIssue.from_dict(data),
            validation_status=ValidationStatus(data["validation_status"]),
            final_confidence=float(data["final_confidence"]),
            grounding_evidence=GroundingEvidence.from_dict(
                data.get("grounding_evidence") or {}
            ),
            rejection_reason=data.get("rejection_reason"),
            revised_description=data.get("revised_description"),
            revised_severity=Severity(revised) if revised else None,
        )


# =============================================================================
# Checklist
# =============================================================================


@dataclass
class ChecklistItem:
    """One yes/no review question answered by an agent."""

    id: str
    category: IssueCategory
    question: str
    result: ChecklistResult
    details: str | None = None
    related_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "question": self.question,
            "result": self.result.value,
            "details": self.details,
            "related_issues": list(self.related_issues),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChecklistItem:
        """Raises ValueError/KeyError on an unknown category, result or missing field."""
        return cls(
            id=data["id"],
            category=IssueCategory(data["category"]),
            question=data.get("question", ""),
            result=ChecklistResult(data["result"]),
            details=data.get("details"),
            related_issues=list(data.get("related_issues") or []),
        )


# =============================================================================
# Collector bookkeeping
# =============================================================================


@dataclass
class CollectorStats:
    """Run-scoped counters owned by the issue collector."""

    total_reported: int = 0
    validated: int = 0
    validation_pending: int = 0
    tokens_used: int = 0
    deduplicated: int = 0

    def copy(self) -> CollectorStats:
        return replace(self)

    def to_dict(self) -> dict[str, int]:
        return {
            "total_reported": self.total_reported,
            "validated": self.validated,
            "validation_pending": self.validation_pending,
            "tokens_used": self.tokens_used,
            "deduplicated": self.deduplicated,
        }


@dataclass
class ReportResult:
    """Acknowledgement returned to an agent for each reported issue."""

    status: ReportStatus
    message: str
    issue_id: str | None = None
    duplicate_of: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.issue_id:
            data["issue_id"] = self.issue_id
        if self.duplicate_of:
            data["duplicate_of"] = self.duplicate_of
        return data
