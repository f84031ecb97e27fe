"""
Realtime Duplicate Gate
=======================

Decides, as issues stream in from specialist agents, whether a new issue
duplicates one already accepted in the same run.

A cheap rule-based pre-filter runs first:
1. No accepted issue in the same file -> accept, no LLM call
2. No accepted issue in the same file with an overlapping line range -> accept
3. Otherwise ask the duplicate oracle about each overlapping candidate

Oracle failures fail open: the new issue is accepted rather than dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from .errors import ResponseParseError
from .json_utils import extract_json
from .models import RawIssue
from .oracle import ReviewOracle
from .prompt_manager import PromptManager
from .pydantic_models import DuplicateCheckResponse

logger = logging.getLogger(__name__)

# Duplicate checks are short classification calls
DEFAULT_DEDUP_MODEL = "haiku"

DeduplicatedCallback = Callable[[RawIssue, RawIssue, str], None]


def lines_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Inclusive range overlap; touching endpoints count."""
    return a_start <= b_end and b_start <= a_end


@dataclass
class DuplicateVerdict:
    """Duplicate oracle answer for one (new, existing) pair."""

    is_duplicate: bool
    duplicate_of_id: str | None = None
    reason: str = ""
    tokens_used: int = 0


class DuplicateChecker(Protocol):
    async def is_duplicate(
        self, candidate: RawIssue, existing: RawIssue
    ) -> DuplicateVerdict: ...


class LLMDuplicateChecker:
    """
    Semantic duplicate check backed by a ReviewOracle.

    Oracle exceptions propagate; an unparseable or schema-mismatched answer
    is reported as not-a-duplicate.
    """

    def __init__(
        self,
        oracle: ReviewOracle,
        model: str = DEFAULT_DEDUP_MODEL,
        prompt_manager: PromptManager | None = None,
    ):
        self.oracle = oracle
        self.model = model
        self.prompt_manager = prompt_manager or PromptManager()

    async def is_duplicate(
        self, candidate: RawIssue, existing: RawIssue
    ) -> DuplicateVerdict:
        prompt = self.prompt_manager.get_duplicate_check_prompt(candidate, [existing])
        response = await self.oracle.query(prompt, model=self.model)

        try:
            parsed = DuplicateCheckResponse.model_validate(extract_json(response.text))
        except (ResponseParseError, ValidationError) as e:
            logger.warning(
                f"[RealtimeDedup] Unparseable duplicate check for {candidate.id}, "
                f"treating as not duplicate: {e}"
            )
            return DuplicateVerdict(
                is_duplicate=False, tokens_used=response.tokens_used
            )

        return DuplicateVerdict(
            is_duplicate=parsed.is_duplicate,
            duplicate_of_id=parsed.duplicate_of_id,
            reason=parsed.reason or "",
            tokens_used=response.tokens_used,
        )


@dataclass
class DeduplicationCheckResult:
    """Outcome of gating one issue."""

    is_duplicate: bool
    duplicate_of: str | None = None
    reason: str | None = None
    used_llm: bool = False
    tokens_used: int = 0


@dataclass
class DeduplicationRecord:
    rejected_id: str
    kept_id: str
    reason: str


@dataclass
class RealtimeDedupStats:
    accepted: int = 0
    deduplicated: int = 0
    tokens_used: int = 0
    llm_checks: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "accepted": self.accepted,
            "deduplicated": self.deduplicated,
            "tokens_used": self.tokens_used,
            "llm_checks": self.llm_checks,
        }


class RealtimeDeduplicator:
    """
    Streaming duplicate gate with a file-keyed index of accepted issues.

    Checks run one at a time under a lock so two concurrent reports for
    the same region cannot both pass before either is indexed.

    Usage:
        gate = RealtimeDeduplicator(LLMDuplicateChecker(oracle))
        result = await gate.check_and_add(issue)
        if result.is_duplicate:
            ...
    """

    def __init__(
        self,
        checker: DuplicateChecker,
        on_deduplicated: DeduplicatedCallback | None = None,
    ):
        self.checker = checker
        self.on_deduplicated = on_deduplicated
        self.records: list[DeduplicationRecord] = []
        self._accepted_by_file: dict[str, list[RawIssue]] = {}
        self._stats = RealtimeDedupStats()
        self._lock = asyncio.Lock()

    async def check_and_add(self, issue: RawIssue) -> DeduplicationCheckResult:
        """Gate one issue; accepted issues are added to the index."""
        async with self._lock:
            same_file = self._accepted_by_file.get(issue.file, [])
            if not same_file:
                return self._accept(issue)

            overlapping = [
                existing
                for existing in same_file
                if lines_overlap(
                    issue.line_start,
                    issue.line_end,
                    existing.line_start,
                    existing.line_end,
                )
            ]
            if not overlapping:
                return self._accept(issue)

            tokens_used = 0
            for candidate in overlapping:
                self._stats.llm_checks += 1
                try:
                    verdict = await self.checker.is_duplicate(issue, candidate)
                except Exception as e:
                    logger.warning(
                        f"[RealtimeDedup] Duplicate check {issue.id} vs {candidate.id} "
                        f"failed, accepting: {e}"
                    )
                    continue

                tokens_used += verdict.tokens_used
                self._stats.tokens_used += verdict.tokens_used

                if not verdict.is_duplicate:
                    continue
                if verdict.duplicate_of_id and verdict.duplicate_of_id != candidate.id:
                    logger.warning(
                        f"[RealtimeDedup] Oracle named unknown issue "
                        f"{verdict.duplicate_of_id!r} for {issue.id}, treating as not duplicate"
                    )
                    continue

                reason = verdict.reason or "Semantic duplicate"
                self._reject(issue, candidate, reason)
                return DeduplicationCheckResult(
                    is_duplicate=True,
                    duplicate_of=candidate.id,
                    reason=reason,
                    used_llm=True,
                    tokens_used=tokens_used,
                )

            result = self._accept(issue)
            result.used_llm = True
            result.tokens_used = tokens_used
            return result

    def _accept(self, issue: RawIssue) -> DeduplicationCheckResult:
        self._accepted_by_file.setdefault(issue.file, []).append(issue)
        self._stats.accepted += 1
        return DeduplicationCheckResult(is_duplicate=False)

    def _reject(self, issue: RawIssue, kept: RawIssue, reason: str) -> None:
        self._stats.deduplicated += 1
        self.records.append(
            DeduplicationRecord(rejected_id=issue.id, kept_id=kept.id, reason=reason)
        )
        logger.info(
            f"[RealtimeDedup] {issue.id} duplicates {kept.id}: {reason}"
        )
        if self.on_deduplicated is not None:
            try:
                self.on_deduplicated(issue, kept, reason)
            except Exception as e:
                logger.warning(f"[RealtimeDedup] on_deduplicated callback failed: {e}")

    def get_accepted_issues(self) -> list[RawIssue]:
        return [issue for issues in self._accepted_by_file.values() for issue in issues]

    def get_stats(self) -> RealtimeDedupStats:
        return RealtimeDedupStats(**self._stats.to_dict())

    def reset(self) -> None:
        """Clear the accepted index between runs."""
        self._accepted_by_file.clear()
        self.records.clear()
        self._stats = RealtimeDedupStats()
