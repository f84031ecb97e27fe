"""
Batch Issue Deduplicator
========================

Groups semantic duplicates across a finished list of validated issues in a
single LLM call. This is the non-streaming alternative to the realtime gate;
a run uses one or the other, never both.

Fails open: if the call or its parsing fails, the input comes back unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import ValidationError

from .errors import ResponseParseError
from .json_utils import extract_json
from .models import ValidatedIssue
from .oracle import ReviewOracle
from .prompt_manager import PromptManager
from .pydantic_models import BatchDeduplicationResponse, DuplicateGroup

logger = logging.getLogger(__name__)


@dataclass
class DeduplicationResult:
    unique_issues: list[ValidatedIssue]
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def removed_count(self) -> int:
        return sum(len(group.duplicate_ids) for group in self.duplicate_groups)


class IssueDeduplicator:
    """
    Usage:
        deduplicator = IssueDeduplicator(oracle)
        result = await deduplicator.deduplicate(issues)
    """

    def __init__(
        self,
        oracle: ReviewOracle,
        model: str = "haiku",
        prompt_manager: PromptManager | None = None,
    ):
        self.oracle = oracle
        self.model = model
        self.prompt_manager = prompt_manager or PromptManager()

    async def deduplicate(self, issues: Sequence[ValidatedIssue]) -> DeduplicationResult:
        issues = list(issues)
        if len(issues) <= 1:
            return DeduplicationResult(unique_issues=issues)

        logger.info(f"[Deduplicator] Checking {len(issues)} issues for duplicates")
        prompt = self.prompt_manager.get_batch_dedup_prompt(issues)

        try:
            response = await self.oracle.query(prompt, model=self.model)
        except Exception as e:
            logger.error(f"[Deduplicator] Failed to deduplicate: {e}")
            return DeduplicationResult(unique_issues=issues)

        try:
            parsed = BatchDeduplicationResponse.model_validate(
                extract_json(response.text)
            )
        except (ResponseParseError, ValidationError) as e:
            logger.warning(f"[Deduplicator] Could not parse grouping, keeping all: {e}")
            return DeduplicationResult(
                unique_issues=issues, tokens_used=response.tokens_used
            )

        result = self._apply_groups(issues, parsed.duplicate_groups)
        result.tokens_used = response.tokens_used
        logger.info(
            f"[Deduplicator] Found {len(result.duplicate_groups)} duplicate groups, "
            f"reduced from {len(issues)} to {len(result.unique_issues)} issues"
        )
        return result

    def _apply_groups(
        self,
        issues: list[ValidatedIssue],
        groups: Sequence[DuplicateGroup],
    ) -> DeduplicationResult:
        known_ids = {issue.id for issue in issues}
        removed: set[str] = set()
        kept: set[str] = set()
        valid_groups: list[DuplicateGroup] = []

        for group in groups:
            if group.kept_id not in known_ids or group.kept_id in removed:
                logger.warning(
                    f"[Deduplicator] Skipping group with unknown or removed kept_id {group.kept_id!r}"
                )
                continue

            duplicate_ids = []
            for dup_id in group.duplicate_ids:
                if dup_id not in known_ids or dup_id == group.kept_id:
                    logger.debug(f"[Deduplicator] Dropping invalid duplicate id {dup_id!r}")
                    continue
                if dup_id in removed or dup_id in kept:
                    continue
                duplicate_ids.append(dup_id)

            if not duplicate_ids:
                continue
            removed.update(duplicate_ids)
            kept.add(group.kept_id)
            valid_groups.append(
                DuplicateGroup(
                    kept_id=group.kept_id,
                    duplicate_ids=duplicate_ids,
                    reason=group.reason,
                )
            )

        return DeduplicationResult(
            unique_issues=[issue for issue in issues if issue.id not in removed],
            duplicate_groups=valid_groups,
        )
