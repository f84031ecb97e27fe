"""
Prompt Manager
==============

Centralized prompt template management for streaming review validation
and deduplication.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .models import IssueCategory, RawIssue, ValidatedIssue, agent_name
from .pydantic_models import ValidationResponse


@dataclass(frozen=True)
class ValidationPromptConfig:
    """What a validator checks for one category, and when it should reject."""

    category: IssueCategory
    validation_focus: tuple[str, ...]
    rejection_criteria: tuple[str, ...]


VALIDATION_PROMPT_CONFIGS: dict[IssueCategory, ValidationPromptConfig] = {
    IssueCategory.STYLE: ValidationPromptConfig(
        category=IssueCategory.STYLE,
        validation_focus=(
            "Check if the reported style matches existing project patterns",
            "Verify naming conventions are consistent with existing code",
            "Confirm code organization follows project conventions",
            "Check if formatting rules match project configuration",
        ),
        rejection_criteria=(
            "The problematic style is already widely used in the project (3+ instances)",
            "No clear project standards define this style",
            "Suggested changes are inconsistent with existing project code style",
            "Pure personal preference without objective quality issues",
        ),
    ),
    IssueCategory.SECURITY: ValidationPromptConfig(
        category=IssueCategory.SECURITY,
        validation_focus=(
            "Verify if input data has been validated/sanitized",
            "Check if security middleware or protective measures exist",
            "Confirm if problematic code can be triggered from untrusted sources",
            "Verify if sensitive operations have access controls",
        ),
        rejection_criteria=(
            "Input has been validated/sanitized upstream",
            "Security middleware handles this type of issue",
            "Code path cannot be triggered from untrusted sources",
            "Problematic code only executes in trusted environments",
        ),
    ),
    IssueCategory.LOGIC: ValidationPromptConfig(
        category=IssueCategory.LOGIC,
        validation_focus=(
            "Verify if reported boundary conditions can actually occur",
            "Check if error handling covers this scenario",
            "Confirm if test cases cover this logic",
            "Verify if business constraints make the problem impossible",
        ),
        rejection_criteria=(
            "Test cases exist that verify this behavior is correct",
            "Error handling already exists at higher levels",
            "Business constraints prevent reported boundary conditions",
            "Type system already guarantees this issue cannot occur",
        ),
    ),
    IssueCategory.PERFORMANCE: ValidationPromptConfig(
        category=IssueCategory.PERFORMANCE,
        validation_focus=(
            "Verify actual call frequency of the code",
            "CRITICAL: Read and analyze the ACTUAL COST of called methods/functions",
            "Calculate total impact: frequency x per-call cost",
            "Check if caching/memoization/singleton patterns exist",
            "Verify if code is on a hot path (render loop, event handler)",
        ),
        rejection_criteria=(
            "Called method is O(1) or very cheap (singleton accessor, dict lookup, property access)",
            "Event emission with negligible listener overhead",
            "Code is rarely executed (cold path)",
            "Caching/memoization/debounce already exists",
            "High frequency but low per-call cost = negligible total impact",
            "Premature optimization without bottleneck evidence",
        ),
    ),
    IssueCategory.MAINTAINABILITY: ValidationPromptConfig(
        category=IssueCategory.MAINTAINABILITY,
        validation_focus=(
            "Evaluate if code complexity exceeds necessity",
            "Check if similar patterns exist in the project",
            "Verify refactoring suggestions follow project conventions",
        ),
        rejection_criteria=(
            "Code complexity matches problem complexity",
            "Similar patterns are widely used in the project",
            "Refactoring suggestions conflict with existing project architecture",
        ),
    ),
}


VALIDATION_JSON_FORMAT = """```json
{
  "validation_status": "confirmed" | "rejected" | "uncertain",
  "final_confidence": 0.0-1.0,
  "grounding_evidence": {
    "checked_files": ["path/to/file"],
    "checked_symbols": [{"name": "symbol", "type": "definition" | "reference", "locations": ["file:line"]}],
    "related_context": "What surrounding code you looked at",
    "reasoning": "Why you reached this verdict"
  },
  "rejection_reason": "Required if rejected",
  "revised_description": "Optional corrected description",
  "revised_severity": "critical" | "error" | "warning" | "suggestion"
}
```"""


class PromptManager:
    """Manages the prompt templates used by validation and deduplication."""

    def __init__(self, prompts_dir: Path | None = None):
        """
        Initialize PromptManager.

        Args:
            prompts_dir: Optional directory containing custom prompt files
        """
        self.prompts_dir = prompts_dir or (Path(__file__).parent / "prompts")

    # =========================================================================
    # Validation
    # =========================================================================

    def get_base_validation_prompt(self) -> str:
        """Get the shared validator framing."""
        prompt_file = self.prompts_dir / "validator.md"
        if prompt_file.exists():
            return prompt_file.read_text(encoding="utf-8")
        return self._get_default_base_validation_prompt()

    def _get_default_base_validation_prompt(self) -> str:
        return f"""# Issue Validator

You are a skeptical senior engineer verifying an issue another reviewer
reported. Reviewers produce false positives; your job is to ground the
issue in the actual code before it reaches the final report.

Use the Read, Grep and Glob tools to inspect the reported location, the
callers and callees of the code involved, and any tests that exercise it.
Do not trust the reporter's description of the code; read it yourself.

Verdicts:
- **confirmed**: the code has the problem as described
- **rejected**: the problem does not exist or is mitigated elsewhere
- **uncertain**: you could not gather enough evidence either way

If the issue is real but described or rated inaccurately, confirm it and
provide revised_description and/or revised_severity.

Output format:
{VALIDATION_JSON_FORMAT}
"""

    def get_validation_system_prompt(
        self,
        category: IssueCategory,
        project_rules: str | None = None,
    ) -> str:
        """Combine the base framing with the category rubric and project rules."""
        config = VALIDATION_PROMPT_CONFIGS[category]
        focus = "\n".join(f"- {item}" for item in config.validation_focus)
        rejection = "\n".join(f"- {item}" for item in config.rejection_criteria)

        sections = [
            self.get_base_validation_prompt(),
            f"## {category.value.title()} Validation Focus\n\n{focus}",
            f"## Reject the issue when\n\n{rejection}",
        ]

        if project_rules:
            sections.append(
                "## Project-Specific Review Guidelines\n\n"
                "> These rules are explicitly defined by the project team and take "
                "precedence over project conventions.\n"
                "> If an issue violates these rules, it should be **confirmed** even "
                "if similar patterns exist in the codebase.\n\n"
                f"{project_rules}"
            )

        return "\n\n".join(sections)

    def _format_issue(self, issue: RawIssue) -> str:
        lines = [
            f"**Issue ID**: {issue.id}",
            f"**File**: {issue.file}",
            f"**Lines**: {issue.line_start}-{issue.line_end}",
            f"**Category**: {issue.category.value}",
            f"**Severity**: {issue.severity.value}",
            f"**Title**: {issue.title}",
            f"**Description**: {issue.description}",
        ]
        if issue.suggestion:
            lines.append(f"**Suggestion**: {issue.suggestion}")
        if issue.code_snippet:
            lines.append(f"**Code Snippet**:\n```\n{issue.code_snippet}\n```")
        return "\n".join(lines)

    def get_validation_prompt(self, issue: RawIssue) -> str:
        """Get the user prompt asking for a verdict on one issue."""
        return f"""Please validate the following issue:

{self._format_issue(issue)}
**Initial Confidence**: {issue.confidence}
**Source Agent**: {agent_name(issue.source_agent)}

Please verify this issue by:
1. Reading the actual code at {issue.file}:{issue.line_start}-{issue.line_end}
2. Checking for any mitigating factors (error handling, tests, etc.)
3. Making a validation decision

After your analysis, output ONLY the JSON result in a markdown code block."""

    def get_challenge_prompt(
        self,
        issue: RawIssue,
        previous: ValidationResponse,
        before_previous: ValidationResponse | None = None,
    ) -> str:
        """
        Ask the validator to re-examine its last verdict.

        When the last two rounds disagree the prompt points out the change
        of mind and asks for a final answer.
        """
        location = f"{issue.file}:{issue.line_start}-{issue.line_end}"
        changed_mind = (
            before_previous is not None
            and before_previous.validation_status != previous.validation_status
        )

        if changed_mind:
            challenge = f"""I noticed you changed your verdict:
- Earlier verdict: **{before_previous.validation_status}**
- Latest verdict: **{previous.validation_status}**

**You changed your mind. Are you sure about this answer now?**

Please take one more careful look:
1. Re-read the code at {location}
2. Weigh the reasoning behind both verdicts
3. Give your final, definite verdict"""
        else:
            challenge = f"""Your previous verdict on this issue was: **{previous.validation_status}**

Reasoning: {previous.grounding_evidence.reasoning}

**Please examine the code again carefully and confirm your verdict. Are you sure?**

Re-check:
1. Re-read the code at {location}
2. Consider whether any context was missed
3. Confirm whether your verdict is correct

If your verdict changes, explain why. If it stays the same, explain why you are certain."""

        return f"""About this issue:

{self._format_issue(issue)}

{challenge}

Output the JSON result:
{VALIDATION_JSON_FORMAT}"""

    # =========================================================================
    # Deduplication
    # =========================================================================

    def _format_dedup_issue(self, issue: RawIssue) -> str:
        lines = [
            f"- **Agent**: {agent_name(issue.source_agent)}",
            f"- **Category**: {issue.category.value}",
            f"- **Severity**: {issue.severity.value}",
            f"- **Lines**: {issue.line_start}-{issue.line_end}",
            f"- **Title**: {issue.title}",
            f"- **Description**: {issue.description}",
        ]
        if issue.code_snippet:
            lines.append(f"- **Code**:\n```\n{issue.code_snippet}\n```")
        return "\n".join(lines)

    def get_duplicate_check_prompt(
        self, new_issue: RawIssue, existing: Sequence[RawIssue]
    ) -> str:
        """Ask whether a new issue duplicates any of the existing ones."""
        existing_list = "\n\n".join(
            f"### Existing Issue {idx + 1} (ID: {issue.id})\n"
            f"{self._format_dedup_issue(issue)}"
            for idx, issue in enumerate(existing)
        )

        return f"""You are a code review deduplication expert. Determine if the NEW issue is a duplicate of any EXISTING issue.

Two issues are duplicates if they:
1. Point to the **same root cause** in the code
2. Would be **fixed by the same code change**
3. Describe the **same problem** (even if from different perspectives like "performance" vs "logic")

Two issues are NOT duplicates if they:
1. Are about different code locations (even if similar type)
2. Would require separate fixes
3. Describe genuinely different problems

## EXISTING ISSUES (already accepted)

{existing_list}

## NEW ISSUE (to check)

{self._format_dedup_issue(new_issue)}

## Task
Determine if the NEW issue duplicates any EXISTING issue.

Output JSON only:
```json
{{
  "is_duplicate": true/false,
  "duplicate_of_id": "existing-issue-id or null",
  "reason": "Brief explanation"
}}
```"""

    def get_batch_dedup_prompt(self, issues: Sequence[ValidatedIssue]) -> str:
        """Ask the model to group semantic duplicates across a finished issue list."""
        summaries = [
            {
                "index": idx,
                "id": issue.id,
                "file": issue.file,
                "lines": f"{issue.line_start}-{issue.line_end}",
                "category": issue.category.value,
                "severity": issue.severity.value,
                "title": issue.title,
                "description": issue.description,
                "validation_status": issue.validation_status.value,
                "confidence": issue.final_confidence,
            }
            for idx, issue in enumerate(issues)
        ]

        return f"""You are an expert code reviewer tasked with deduplicating code review issues.

Two issues are considered duplicates if they:
1. **Point to the same root cause** (even if in different locations)
2. **Describe the same problem** (even if worded differently)
3. **Would be fixed by the same code change**

Two issues are NOT duplicates if they:
1. Are the same type of issue but in different locations (e.g., two different SQL injection vulnerabilities)
2. Are related but describe different aspects of a problem
3. Would require separate fixes

**Issues to analyze**:
{json.dumps(summaries, indent=2)}

For each group of duplicates, keep the issue with the highest confidence
and the clearest description.

Output JSON only:
```json
{{
  "duplicate_groups": [
    {{
      "kept_id": "id of the issue to keep",
      "duplicate_ids": ["ids of issues that duplicate it"],
      "reason": "Brief explanation"
    }}
  ]
}}
```

If there are no duplicates, return an empty duplicate_groups array."""
