"""
Issue Aggregator
================

Pure filter, location dedup, sort and checklist merge over the final set of
validated issues for a run. Output order is deterministic for a given input.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .models import (
    SEVERITY_ORDER,
    ChecklistItem,
    ChecklistResult,
    IssueCategory,
    Severity,
    ValidatedIssue,
    ValidationStatus,
)
from .pydantic_models import ChecklistItemInput

logger = logging.getLogger(__name__)


class SortBy(str, Enum):
    SEVERITY = "severity"
    CONFIDENCE = "confidence"
    FILE = "file"
    CATEGORY = "category"


# A failing answer always wins a checklist merge
CHECKLIST_RESULT_PRIORITY: dict[ChecklistResult, int] = {
    ChecklistResult.FAIL: 2,
    ChecklistResult.PASS: 1,
    ChecklistResult.NA: 0,
}


@dataclass
class AggregationOptions:
    include_rejected: bool = False
    include_uncertain: bool = True
    min_confidence: float = 0.0
    sort_by: SortBy = SortBy.SEVERITY
    dedupe_by_location: bool = True


@dataclass
class AggregationStats:
    total_input: int = 0
    after_filter: int = 0
    after_dedup: int = 0
    duplicates_removed: int = 0
    rejected_filtered: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_input": self.total_input,
            "after_filter": self.after_filter,
            "after_dedup": self.after_dedup,
            "duplicates_removed": self.duplicates_removed,
            "rejected_filtered": self.rejected_filtered,
        }


@dataclass
class AggregationResult:
    issues: list[ValidatedIssue] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)
    stats: AggregationStats = field(default_factory=AggregationStats)


# =============================================================================
# Filtering
# =============================================================================


def filter_issues(
    issues: Iterable[ValidatedIssue], options: AggregationOptions
) -> list[ValidatedIssue]:
    """Drop issues excluded by status or below the confidence floor."""
    kept = []
    for issue in issues:
        status = issue.validation_status
        if status is ValidationStatus.REJECTED and not options.include_rejected:
            continue
        if status is ValidationStatus.UNCERTAIN and not options.include_uncertain:
            continue
        if issue.final_confidence < options.min_confidence:
            continue
        kept.append(issue)
    return kept


def _location_key(issue: ValidatedIssue) -> str:
    return f"{issue.file}:{issue.line_start}-{issue.line_end}"


def _prefer(candidate: ValidatedIssue, current: ValidatedIssue) -> bool:
    """Whether candidate should replace current at the same location."""
    if candidate.final_confidence != current.final_confidence:
        return candidate.final_confidence > current.final_confidence
    candidate_confirmed = candidate.validation_status is ValidationStatus.CONFIRMED
    current_confirmed = current.validation_status is ValidationStatus.CONFIRMED
    if candidate_confirmed != current_confirmed:
        return candidate_confirmed
    return _severity_rank(candidate) < _severity_rank(current)


def dedupe_by_location(issues: Sequence[ValidatedIssue]) -> list[ValidatedIssue]:
    """Collapse issues reported on the identical file and line range."""
    by_location: dict[str, ValidatedIssue] = {}
    for issue in issues:
        key = _location_key(issue)
        current = by_location.get(key)
        if current is None or _prefer(issue, current):
            by_location[key] = issue
    return list(by_location.values())


# =============================================================================
# Sorting
# =============================================================================


def _severity_rank(issue: ValidatedIssue) -> int:
    # Validator revisions take precedence over the reported severity
    return SEVERITY_ORDER[issue.effective_severity]


_SORT_KEYS: dict[SortBy, Callable[[ValidatedIssue], tuple]] = {
    SortBy.SEVERITY: lambda i: (_severity_rank(i), -i.final_confidence, i.id),
    SortBy.CONFIDENCE: lambda i: (-i.final_confidence, _severity_rank(i), i.id),
    SortBy.FILE: lambda i: (i.file, i.line_start, i.id),
    SortBy.CATEGORY: lambda i: (i.category.value, _severity_rank(i), i.id),
}


def sort_issues(
    issues: Iterable[ValidatedIssue], sort_by: SortBy = SortBy.SEVERITY
) -> list[ValidatedIssue]:
    """Sort issues; ties always end on issue id so the order is total."""
    try:
        key = _SORT_KEYS[SortBy(sort_by)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown sort order: {sort_by}") from None
    return sorted(issues, key=key)


# =============================================================================
# Checklist merge
# =============================================================================


def _coerce_checklist_item(item: ChecklistItem | Mapping[str, Any]) -> ChecklistItem | None:
    if isinstance(item, ChecklistItem):
        return item
    try:
        data = ChecklistItemInput.model_validate(dict(item))
    except (ValidationError, TypeError, ValueError) as e:
        logger.warning(f"[Aggregator] Dropping malformed checklist item: {e}")
        return None
    return ChecklistItem(
        id=data.id,
        category=IssueCategory(data.category),
        question=data.question,
        result=ChecklistResult(data.result),
        details=data.details,
        related_issues=list(data.related_issues),
    )


def merge_checklists(
    items: Iterable[ChecklistItem | Mapping[str, Any]],
) -> list[ChecklistItem]:
    """
    Merge checklist items from all agents, one entry per id.

    fail > pass > na; related issues are unioned in first-seen order and
    the first non-empty details win. Sorted by category, then id.
    """
    merged: dict[str, ChecklistItem] = {}
    for raw_item in items:
        item = _coerce_checklist_item(raw_item)
        if item is None:
            continue

        existing = merged.get(item.id)
        if existing is None:
            merged[item.id] = ChecklistItem(
                id=item.id,
                category=item.category,
                question=item.question,
                result=item.result,
                details=item.details,
                related_issues=list(dict.fromkeys(item.related_issues)),
            )
            continue

        if CHECKLIST_RESULT_PRIORITY[item.result] > CHECKLIST_RESULT_PRIORITY[existing.result]:
            existing.result = item.result
        if not existing.details and item.details:
            existing.details = item.details
        if not existing.question and item.question:
            existing.question = item.question
        for issue_id in item.related_issues:
            if issue_id not in existing.related_issues:
                existing.related_issues.append(issue_id)

    return sorted(merged.values(), key=lambda c: (c.category.value, c.id))


# =============================================================================
# Aggregate
# =============================================================================


def aggregate(
    issues: Sequence[ValidatedIssue],
    checklists: Iterable[ChecklistItem | Mapping[str, Any]] = (),
    options: AggregationOptions | None = None,
) -> AggregationResult:
    """Filter, dedupe and sort issues and merge checklists."""
    options = options or AggregationOptions()

    filtered = filter_issues(issues, options)
    rejected_filtered = (
        0
        if options.include_rejected
        else sum(1 for i in issues if i.validation_status is ValidationStatus.REJECTED)
    )

    deduplicated = dedupe_by_location(filtered) if options.dedupe_by_location else filtered
    sorted_issues = sort_issues(deduplicated, options.sort_by)
    checklist = merge_checklists(checklists)

    stats = AggregationStats(
        total_input=len(issues),
        after_filter=len(filtered),
        after_dedup=len(deduplicated),
        duplicates_removed=len(filtered) - len(deduplicated),
        rejected_filtered=rejected_filtered,
    )
    logger.debug(f"[Aggregator] {stats.to_dict()}")

    return AggregationResult(issues=sorted_issues, checklist=checklist, stats=stats)


# =============================================================================
# Grouping helpers
# =============================================================================


def group_by_category(
    issues: Iterable[ValidatedIssue],
) -> dict[IssueCategory, list[ValidatedIssue]]:
    groups: dict[IssueCategory, list[ValidatedIssue]] = {c: [] for c in IssueCategory}
    for issue in issues:
        groups[issue.category].append(issue)
    return groups


def group_by_file(issues: Iterable[ValidatedIssue]) -> dict[str, list[ValidatedIssue]]:
    groups: dict[str, list[ValidatedIssue]] = {}
    for issue in issues:
        groups.setdefault(issue.file, []).append(issue)
    return groups


def group_by_severity(
    issues: Iterable[ValidatedIssue],
) -> dict[Severity, list[ValidatedIssue]]:
    groups: dict[Severity, list[ValidatedIssue]] = {s: [] for s in Severity}
    for issue in issues:
        groups[issue.effective_severity].append(issue)
    return groups
