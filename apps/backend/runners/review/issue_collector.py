"""
Issue Collector
===============

The coordination point every concurrently running specialist agent reports
into during a streaming review run. Owns id assignment, the optional
realtime duplicate gate, the bounded validation pool and all run-scoped
statistics.

Reporting never waits on validation: an issue is stored, handed to the
validation pool, and acknowledged immediately. wait_for_validations() is the
join barrier the pipeline calls once every agent has finished.

A collector is constructed per run and passed to each agent task; call
reset() to reuse one across runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from core.sentry import capture_exception
from pydantic import ValidationError

from .concurrency import BoundedTaskQueue
from .config import ReviewPipelineConfig
from .errors import InvalidReportError
from .models import (
    AgentRef,
    CollectorStats,
    GroundingEvidence,
    IssueReport,
    RawIssue,
    ReportResult,
    ReportStatus,
    ValidatedIssue,
    ValidationStatus,
    ValidationStrategy,
    agent_name,
    agent_prefix,
    parse_agent,
)
from .pydantic_models import ReportIssueInput
from .realtime_deduplicator import RealtimeDeduplicator
from .validator import IssueValidator

logger = logging.getLogger(__name__)


class CollectorObserver:
    """
    Receives collector notifications. Override the hooks you need.

    Hooks are called synchronously at defined points in the pipeline. They
    must not block; exceptions they raise are logged and ignored.
    """

    def on_issue_received(self, issue: RawIssue) -> None:
        pass

    def on_issue_validated(self, issue: ValidatedIssue) -> None:
        pass

    def on_deduplicated(self, rejected: RawIssue, kept: RawIssue, reason: str) -> None:
        pass

    def on_status(self, message: str) -> None:
        pass


class IssueCollector:
    """
    Collects, gates and validates issues reported by specialist agents.

    Usage:
        collector = IssueCollector(validator, config, deduplicator=gate)
        result = await collector.report_issue(payload, BuiltinAgent.LOGIC_REVIEWER)
        ...
        await collector.wait_for_validations()
        issues = collector.get_validated_issues()
    """

    def __init__(
        self,
        validator: IssueValidator | None,
        config: ReviewPipelineConfig,
        deduplicator: RealtimeDeduplicator | None = None,
        observers: Iterable[CollectorObserver] = (),
    ):
        self.validator = validator
        self.config = config
        self.deduplicator = deduplicator
        self.observers: list[CollectorObserver] = list(observers)

        if deduplicator is not None and deduplicator.on_deduplicated is None:
            deduplicator.on_deduplicated = self._notify_deduplicated

        self._queue = BoundedTaskQueue(config.max_concurrent_validations)
        self._raw_issues: dict[str, RawIssue] = {}
        self._validated_issues: dict[str, ValidatedIssue] = {}
        self._batch_buffers: dict[AgentRef, list[RawIssue]] = {}
        self._in_flight: set[asyncio.Future[None]] = set()
        self._id_counter = 0
        self._generation = 0
        self._stats = CollectorStats()

    @property
    def validation_enabled(self) -> bool:
        return not self.config.skip_validation and self.validator is not None

    @property
    def peak_active_validations(self) -> int:
        return self._queue.peak_active

    def add_observer(self, observer: CollectorObserver) -> None:
        self.observers.append(observer)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def report_issue(
        self,
        report: IssueReport | Mapping[str, Any],
        source_agent: AgentRef | str,
    ) -> ReportResult:
        """
        Handle one report_issue call from a specialist agent.

        Runs the duplicate gate when one is configured, then accepts the
        issue without waiting for validation.
        """
        agent = parse_agent(source_agent)
        try:
            parsed = self._coerce_report(report)
        except InvalidReportError as e:
            logger.warning(
                f"[Collector] Rejected malformed report from {agent_name(agent)}: {e}"
            )
            return ReportResult(
                status=ReportStatus.ERROR, message=f"Invalid issue report: {e}"
            )

        if self.deduplicator is None:
            return self.report(parsed, agent)

        self._stats.total_reported += 1
        issue = RawIssue.from_report(self._next_issue_id(agent), parsed, agent)

        generation = self._generation
        check = await self.deduplicator.check_and_add(issue)
        if generation != self._generation:
            # reset() ran while the gate was deciding
            return ReportResult(
                status=ReportStatus.ERROR,
                message="Collector was reset while the report was in progress",
            )

        self._stats.tokens_used += check.tokens_used
        if check.is_duplicate:
            self._stats.deduplicated += 1
            logger.debug(
                f"[Collector] {issue.id} dropped as duplicate of {check.duplicate_of}"
            )
            return ReportResult(
                status=ReportStatus.DUPLICATE,
                issue_id=issue.id,
                duplicate_of=check.duplicate_of,
                message=f"Duplicate of {check.duplicate_of}: {check.reason}",
            )

        return self._accept(issue)

    def report(self, report: IssueReport, source_agent: AgentRef | str) -> ReportResult:
        """Accept an issue synchronously, bypassing the duplicate gate."""
        agent = parse_agent(source_agent)
        self._stats.total_reported += 1
        issue = RawIssue.from_report(self._next_issue_id(agent), report, agent)
        return self._accept(issue)

    def _coerce_report(self, report: IssueReport | Mapping[str, Any]) -> IssueReport:
        if isinstance(report, IssueReport):
            return report
        try:
            data = ReportIssueInput.model_validate(dict(report))
        except (ValidationError, TypeError, ValueError) as e:
            raise InvalidReportError(str(e)) from e
        return IssueReport.from_dict(data.model_dump())

    def _next_issue_id(self, agent: AgentRef) -> str:
        self._id_counter += 1
        return f"{agent_prefix(agent)}-{self._id_counter:03d}"

    def _accept(self, issue: RawIssue) -> ReportResult:
        self._raw_issues[issue.id] = issue
        logger.debug(f"[Collector] Issue reported: {issue.id} - {issue.title}")
        self._notify("on_issue_received", issue)

        if not self.validation_enabled:
            validated = ValidatedIssue(
                issue=issue,
                validation_status=ValidationStatus.UNVALIDATED,
                final_confidence=issue.confidence,
                grounding_evidence=GroundingEvidence(reasoning="Validation skipped"),
            )
            self._validated_issues[issue.id] = validated
            self._stats.validated += 1
            self._notify("on_issue_validated", validated)
            message = "Issue recorded (validation skipped)"
        elif (
            self.config.strategy_for(issue.source_agent)
            is ValidationStrategy.BATCH_ON_AGENT_COMPLETE
        ):
            self._batch_buffers.setdefault(issue.source_agent, []).append(issue)
            self._stats.validation_pending += 1
            message = "Issue accepted, waiting for batch validation"
        else:
            self._stats.validation_pending += 1
            self._enqueue(issue)
            message = "Issue accepted, validating"

        self._notify("on_status", f"Received issue: {issue.title}")
        return ReportResult(
            status=ReportStatus.ACCEPTED, issue_id=issue.id, message=message
        )

    # =========================================================================
    # Validation
    # =========================================================================

    def _enqueue(self, issue: RawIssue) -> asyncio.Future[None]:
        future = self._queue.submit(lambda: self._validate_issue(issue))
        self._in_flight.add(future)
        future.add_done_callback(self._in_flight.discard)
        return future

    async def _validate_issue(self, issue: RawIssue) -> None:
        """Validate one issue. Never raises except on cancellation."""
        assert self.validator is not None
        generation = self._generation
        tokens_used = 0
        try:
            outcome = await self.validator.validate(issue)
            validated = outcome.issue
            tokens_used = outcome.tokens_used
        except asyncio.CancelledError:
            if generation == self._generation:
                self._stats.validation_pending -= 1
            raise
        except Exception as e:
            logger.error(
                f"[Collector] Validation failed for {issue.id}: {e}", exc_info=True
            )
            capture_exception(e, issue_id=issue.id, file=issue.file)
            validated = ValidatedIssue.fallback(issue, f"Validation error: {e}")

        if generation != self._generation:
            return
        self._stats.validation_pending -= 1
        self._record_validated(validated, tokens_used)

    def _record_validated(self, validated: ValidatedIssue, tokens_used: int) -> None:
        if validated.id in self._validated_issues:
            logger.warning(f"[Collector] Ignoring second verdict for {validated.id}")
            return
        self._validated_issues[validated.id] = validated
        self._stats.validated += 1
        self._stats.tokens_used += tokens_used
        logger.debug(
            f"[Collector] Validated {validated.id}: {validated.validation_status.value} "
            f"({validated.final_confidence:.2f})"
        )
        self._notify("on_issue_validated", validated)

    async def flush_agent_issues(self, agent: AgentRef | str) -> None:
        """
        Validate issues buffered for an agent that batches on completion.

        Buffered issues share the run's validation pool, so the global
        concurrency cap still applies.
        """
        agent = parse_agent(agent)
        buffered = self._batch_buffers.pop(agent, [])
        if not buffered:
            return

        logger.info(
            f"[Collector] Flushing {len(buffered)} buffered issues from {agent_name(agent)}"
        )
        self._notify(
            "on_status",
            f"Validating {len(buffered)} issues from {agent_name(agent)}",
        )
        futures = [self._enqueue(issue) for issue in buffered]
        await asyncio.gather(*futures, return_exceptions=True)

    async def wait_for_validations(self) -> None:
        """
        Resolve once every accepted issue has a verdict.

        Flushes any still-buffered batch issues first. Individual validation
        failures become uncertain verdicts, so this never hangs on them.
        """
        for agent in list(self._batch_buffers):
            buffered = self._batch_buffers.pop(agent, [])
            for issue in buffered:
                self._enqueue(issue)

        while self._in_flight:
            logger.debug(
                f"[Collector] Waiting for {len(self._in_flight)} validations"
            )
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # =========================================================================
    # Results
    # =========================================================================

    def get_validated_issues(self) -> list[ValidatedIssue]:
        """Validated issues in report order."""
        return [
            self._validated_issues[issue_id]
            for issue_id in self._raw_issues
            if issue_id in self._validated_issues
        ]

    def get_raw_issues(self) -> list[RawIssue]:
        return list(self._raw_issues.values())

    def get_stats(self) -> CollectorStats:
        return self._stats.copy()

    def reset(self) -> None:
        """Clear all state so the collector can serve another run."""
        self._generation += 1
        self._queue.clear()
        self._raw_issues.clear()
        self._validated_issues.clear()
        self._batch_buffers.clear()
        self._in_flight.clear()
        self._id_counter = 0
        self._stats = CollectorStats()
        if self.deduplicator is not None:
            self.deduplicator.reset()

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            callback = getattr(observer, hook, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception as e:
                logger.warning(
                    f"[Collector] Observer {type(observer).__name__}.{hook} failed: {e}"
                )

    def _notify_deduplicated(self, rejected: RawIssue, kept: RawIssue, reason: str) -> None:
        self._notify("on_deduplicated", rejected, kept, reason)
