"""
Issue Validator
===============

Second-pass grounding for issues reported by specialist agents. Each issue
gets an independent LLM investigation with read-only repository tools and a
category-specific rubric for rejecting false positives.

In challenge mode the validator is asked to re-examine its verdict until two
consecutive rounds agree. A validator that keeps changing its mind yields an
"uncertain" verdict with elevated confidence, since indecision usually means
there is something worth a human look.

Parse failures never raise: the issue degrades to "uncertain" at half its
reported confidence.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from core.simple_client import READ_ONLY_TOOLS
from pydantic import ValidationError

from .concurrency import run_with_concurrency
from .config import DEFAULT_BATCH_CONCURRENCY, ReviewPipelineConfig
from .errors import ResponseParseError
from .json_utils import extract_json
from .models import (
    GroundingEvidence,
    RawIssue,
    Severity,
    SymbolLookup,
    SymbolType,
    ValidatedIssue,
    ValidationStatus,
)
from .oracle import OracleResponse, ReviewOracle
from .prompt_manager import PromptManager
from .pydantic_models import ValidationResponse

logger = logging.getLogger(__name__)

MAX_CHALLENGE_ROUNDS = 5

# Confidence assigned when the validator never settles on a verdict
INCONSISTENT_VERDICT_CONFIDENCE = 0.7

# Below these reported confidences an issue can be rejected without an LLM call
CONFIDENCE_THRESHOLDS: dict[Severity, float] = {
    Severity.CRITICAL: 0.2,
    Severity.ERROR: 0.4,
    Severity.WARNING: 0.5,
    Severity.SUGGESTION: 0.7,
}

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ValidationOutcome:
    issue: ValidatedIssue
    tokens_used: int = 0


@dataclass
class BatchValidationOutcome:
    issues: list[ValidatedIssue]
    tokens_used: int = 0


def should_auto_reject(issue: RawIssue) -> bool:
    """Whether an issue's reported confidence is below its severity's threshold."""
    return issue.confidence < CONFIDENCE_THRESHOLDS[issue.severity]


class IssueValidator:
    """
    Validates raw issues against the repository using an LLM oracle.

    Usage:
        validator = IssueValidator(oracle, repo_path=Path("."))
        outcome = await validator.validate(issue)
        print(outcome.issue.validation_status)
    """

    def __init__(
        self,
        oracle: ReviewOracle,
        repo_path: Path | None = None,
        model: str = "sonnet",
        max_turns: int = 30,
        challenge_mode: bool = True,
        auto_reject_low_confidence: bool = False,
        project_rules: str | None = None,
        prompt_manager: PromptManager | None = None,
    ):
        self.oracle = oracle
        self.repo_path = repo_path or Path.cwd()
        self.model = model
        self.max_turns = max_turns
        self.challenge_mode = challenge_mode
        self.auto_reject_low_confidence = auto_reject_low_confidence
        self.project_rules = project_rules
        self.prompt_manager = prompt_manager or PromptManager()

    @classmethod
    def from_config(
        cls,
        oracle: ReviewOracle,
        config: ReviewPipelineConfig,
        prompt_manager: PromptManager | None = None,
    ) -> IssueValidator:
        return cls(
            oracle=oracle,
            repo_path=config.repo_path,
            model=config.validator_model,
            max_turns=config.validator_max_turns,
            challenge_mode=config.challenge_mode,
            auto_reject_low_confidence=config.auto_reject_low_confidence,
            project_rules=config.project_rules,
            prompt_manager=prompt_manager,
        )

    async def validate(self, issue: RawIssue) -> ValidationOutcome:
        """
        Validate one issue.

        Oracle exceptions propagate to the caller; unparseable answers do not.
        """
        if self.auto_reject_low_confidence and should_auto_reject(issue):
            threshold = CONFIDENCE_THRESHOLDS[issue.severity]
            logger.debug(
                f"[Validator] Auto-rejecting {issue.id}: confidence "
                f"{issue.confidence:.2f} < {threshold:.2f} for {issue.severity.value}"
            )
            reason = (
                f"Reported confidence {issue.confidence:.2f} is below the "
                f"{threshold:.2f} threshold for {issue.severity.value} issues"
            )
            return ValidationOutcome(
                issue=ValidatedIssue(
                    issue=issue,
                    validation_status=ValidationStatus.REJECTED,
                    final_confidence=issue.confidence,
                    grounding_evidence=GroundingEvidence(reasoning=reason),
                    rejection_reason=reason,
                )
            )

        if self.challenge_mode:
            return await self._validate_with_challenge(issue)
        return await self._validate_once(issue)

    async def _run_query(self, issue: RawIssue, prompt: str) -> OracleResponse:
        system_prompt = self.prompt_manager.get_validation_system_prompt(
            issue.category, self.project_rules
        )
        response = await self.oracle.query(
            prompt,
            system_prompt=system_prompt,
            model=self.model,
            allowed_tools=READ_ONLY_TOOLS,
            max_turns=self.max_turns,
            cwd=self.repo_path,
        )
        if not response.text.strip():
            logger.error(f"[Validator] Issue {issue.id} returned empty result")
        return response

    def _parse_response(self, issue: RawIssue, text: str) -> ValidationResponse | None:
        try:
            return ValidationResponse.model_validate(extract_json(text))
        except (ResponseParseError, ValidationError, TypeError) as e:
            excerpt = text[:200].replace("\n", " ")
            logger.warning(
                f"[Validator] Could not parse verdict for {issue.id}: {e} "
                f"(response excerpt: {excerpt!r})"
            )
            return None

    async def _validate_once(self, issue: RawIssue) -> ValidationOutcome:
        response = await self._run_query(
            issue, self.prompt_manager.get_validation_prompt(issue)
        )
        verdict = self._parse_response(issue, response.text)
        if verdict is None:
            return ValidationOutcome(
                issue=ValidatedIssue.fallback(
                    issue, "Validation failed: Unable to parse result"
                ),
                tokens_used=response.tokens_used,
            )
        return ValidationOutcome(
            issue=self._to_validated_issue(verdict, issue),
            tokens_used=response.tokens_used,
        )

    async def _validate_with_challenge(self, issue: RawIssue) -> ValidationOutcome:
        tokens_used = 0
        verdicts: list[ValidationResponse] = []

        logger.debug(f"[Validator] Issue {issue.id}: Round 1 - Initial validation")
        response = await self._run_query(
            issue, self.prompt_manager.get_validation_prompt(issue)
        )
        tokens_used += response.tokens_used

        first = self._parse_response(issue, response.text)
        if first is None:
            return ValidationOutcome(
                issue=ValidatedIssue.fallback(
                    issue, "Validation failed: Unable to parse round 1 result"
                ),
                tokens_used=tokens_used,
            )
        verdicts.append(first)

        for round_number in range(2, MAX_CHALLENGE_ROUNDS + 1):
            previous = verdicts[-1]
            before_previous = verdicts[-2] if len(verdicts) >= 2 else None

            logger.debug(
                f"[Validator] Issue {issue.id}: Round {round_number} - Challenge "
                f"(previous: {previous.validation_status})"
            )
            prompt = self.prompt_manager.get_challenge_prompt(
                issue, previous, before_previous
            )
            response = await self._run_query(issue, prompt)
            tokens_used += response.tokens_used

            current = self._parse_response(issue, response.text)
            if current is None:
                return ValidationOutcome(
                    issue=self._to_validated_issue(
                        previous,
                        issue,
                        note=(
                            f"Round {round_number} result could not be parsed, "
                            f"using round {round_number - 1} result"
                        ),
                    ),
                    tokens_used=tokens_used,
                )
            verdicts.append(current)

            if current.validation_status == previous.validation_status:
                logger.debug(
                    f"[Validator] Issue {issue.id}: Rounds {round_number - 1} & "
                    f"{round_number} agree ({current.validation_status})"
                )
                return ValidationOutcome(
                    issue=self._to_validated_issue(
                        current, issue, note="Two consecutive rounds agree"
                    ),
                    tokens_used=tokens_used,
                )

        logger.info(
            f"[Validator] Issue {issue.id}: verdict never stabilized across "
            f"{MAX_CHALLENGE_ROUNDS} rounds, marking uncertain"
        )
        return ValidationOutcome(
            issue=ValidatedIssue.fallback(
                issue,
                self._inconsistent_reasoning(verdicts),
                confidence=INCONSISTENT_VERDICT_CONFIDENCE,
            ),
            tokens_used=tokens_used,
        )

    def _inconsistent_reasoning(self, verdicts: Sequence[ValidationResponse]) -> str:
        lines = []
        for index, verdict in enumerate(verdicts, start=1):
            reasoning = verdict.grounding_evidence.reasoning
            if len(reasoning) > 100:
                reasoning = reasoning[:100] + "..."
            lines.append(f"Round {index} ({verdict.validation_status}): {reasoning}")
        return "Validator verdict was inconsistent, manual review suggested:\n" + "\n".join(
            lines
        )

    def _to_validated_issue(
        self,
        verdict: ValidationResponse,
        issue: RawIssue,
        note: str | None = None,
    ) -> ValidatedIssue:
        evidence = verdict.grounding_evidence
        reasoning = f"{evidence.reasoning} [{note}]" if note else evidence.reasoning
        return ValidatedIssue(
            issue=issue,
            validation_status=ValidationStatus(verdict.validation_status),
            final_confidence=verdict.final_confidence,
            grounding_evidence=GroundingEvidence(
                checked_files=list(evidence.checked_files),
                checked_symbols=[
                    SymbolLookup(
                        name=sym.name,
                        type=SymbolType(sym.type),
                        locations=list(sym.locations),
                    )
                    for sym in evidence.checked_symbols
                ],
                related_context=evidence.related_context,
                reasoning=reasoning,
            ),
            rejection_reason=verdict.rejection_reason,
            revised_description=verdict.revised_description,
            revised_severity=(
                Severity(verdict.revised_severity) if verdict.revised_severity else None
            ),
        )

    async def validate_batch(
        self,
        issues: Sequence[RawIssue],
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
        on_progress: ProgressCallback | None = None,
    ) -> BatchValidationOutcome:
        """
        Validate many issues with a bounded worker pool.

        One issue failing produces an uncertain fallback for that issue only.
        Output order matches input order.

        Args:
            issues: Issues to validate
            concurrency: Maximum simultaneous validations
            on_progress: Called as (completed, total, issue_id) after each issue
        """
        if not issues:
            return BatchValidationOutcome(issues=[], tokens_used=0)

        total = len(issues)
        completed = 0
        logger.info(
            f"[Validator] Validating {total} issues with concurrency pool (max {concurrency})"
        )

        def make_task(issue: RawIssue):
            async def task() -> ValidationOutcome:
                nonlocal completed
                try:
                    return await self.validate(issue)
                finally:
                    completed += 1
                    if on_progress is not None:
                        try:
                            on_progress(completed, total, issue.id)
                        except Exception as e:
                            logger.warning(f"[Validator] Progress callback failed: {e}")

            return task

        outcomes = await run_with_concurrency(
            [make_task(issue) for issue in issues], concurrency
        )

        validated: list[ValidatedIssue] = []
        tokens_used = 0
        for issue, outcome in zip(issues, outcomes):
            if outcome.ok and outcome.value is not None:
                validated.append(outcome.value.issue)
                tokens_used += outcome.value.tokens_used
            else:
                logger.error(
                    f"[Validator] Validation of {issue.id} failed: {outcome.error}"
                )
                validated.append(
                    ValidatedIssue.fallback(
                        issue, f"Validation error: {outcome.error}"
                    )
                )

        return BatchValidationOutcome(issues=validated, tokens_used=tokens_used)
