"""
Pydantic Models for Structured AI Inputs and Outputs
=====================================================

Schemas for everything that crosses the LLM boundary in a streaming review:
the report_issue tool payload sent by specialist agents and the JSON
verdicts returned by the validator and deduplication oracles.

Usage:
    from .pydantic_models import ValidationResponse

    data = extract_json(result_text)
    verdict = ValidationResponse.model_validate(data)
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

SeverityLiteral = Literal["critical", "error", "warning", "suggestion"]
CategoryLiteral = Literal[
    "security", "logic", "performance", "style", "maintainability"
]

# =============================================================================
# report_issue tool input
# =============================================================================


class ReportIssueInput(BaseModel):
    """Arguments a specialist agent passes to the report_issue tool."""

    file: str = Field(min_length=1, description="File path relative to repo root")
    line_start: int = Field(ge=0, description="First line of the issue")
    line_end: int = Field(ge=0, description="Last line of the issue (inclusive)")
    severity: SeverityLiteral = Field(description="Issue severity level")
    category: CategoryLiteral = Field(description="Issue category")
    title: str = Field(min_length=1, description="Brief issue title")
    description: str = Field(description="Detailed explanation of the issue")
    suggestion: str | None = Field(None, description="How to fix this issue")
    code_snippet: str | None = Field(
        None, description="Relevant code excerpt showing the problem"
    )
    confidence: float = Field(
        ge=0.0, le=1.0, description="Reporter confidence that the issue is real"
    )

    @model_validator(mode="after")
    def _check_line_range(self) -> ReportIssueInput:
        if self.line_end < self.line_start:
            raise ValueError(
                f"line_end ({self.line_end}) must be >= line_start ({self.line_start})"
            )
        return self


class ChecklistItemInput(BaseModel):
    """Shape check for a checklist item emitted by an agent."""

    id: str = Field(min_length=1)
    category: CategoryLiteral
    question: str = ""
    result: Literal["pass", "fail", "na"]
    details: str | None = None
    related_issues: list[str] = Field(default_factory=list)


# =============================================================================
# Validator verdict
# =============================================================================


class SymbolLookupResponse(BaseModel):
    name: str
    type: Literal["definition", "reference"] = "reference"
    locations: list[str] = Field(default_factory=list)


class GroundingEvidenceResponse(BaseModel):
    """Evidence the validator gathered while checking the issue."""

    checked_files: list[str] = Field(default_factory=list)
    checked_symbols: list[SymbolLookupResponse] = Field(default_factory=list)
    related_context: str = ""
    reasoning: str = ""

    @field_validator("checked_symbols", mode="before")
    @classmethod
    def _coerce_symbols(cls, value: object) -> object:
        # Validators often return bare symbol names
        if not isinstance(value, list):
            return value
        return [{"name": v} if isinstance(v, str) else v for v in value]


class ValidationResponse(BaseModel):
    """Verdict returned by the validation oracle for one issue."""

    validation_status: Literal["confirmed", "rejected", "uncertain"] = Field(
        description="Whether the issue is real"
    )
    final_confidence: float = Field(
        description="Validator confidence in the verdict (0.0-1.0)"
    )
    grounding_evidence: GroundingEvidenceResponse = Field(
        default_factory=GroundingEvidenceResponse
    )
    rejection_reason: str | None = None
    revised_description: str | None = None
    revised_severity: SeverityLiteral | None = None

    @field_validator("final_confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"final_confidence must be a number, got {value!r}")
        confidence = float(value)
        # Accept percentages (0-100)
        if confidence > 1.0:
            confidence = confidence / 100.0
        return max(0.0, min(1.0, confidence))


# =============================================================================
# Deduplication verdicts
# =============================================================================


class DuplicateCheckResponse(BaseModel):
    """Realtime gate verdict for one new issue against existing candidates."""

    is_duplicate: bool = Field(description="Whether the new issue duplicates one")
    duplicate_of_id: str | None = Field(
        None, description="ID of the existing issue it duplicates"
    )
    reason: str | None = Field(None, description="Short explanation")


class DuplicateGroup(BaseModel):
    kept_id: str = Field(description="ID of the representative issue to keep")
    duplicate_ids: list[str] = Field(
        default_factory=list, description="IDs that duplicate the kept issue"
    )
    reason: str = ""


class BatchDeduplicationResponse(BaseModel):
    """Grouping returned by the batch deduplication oracle."""

    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
