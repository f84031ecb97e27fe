"""
Streaming Review Pipeline
=========================

Runs a set of specialist review agents concurrently against one collector,
then joins on validation, aggregates and builds the final report.

Each agent is an async callable that receives an AgentSession. The session
is the agent's only handle into the run: it reports issues through it while
it works and adds its checklist answers when done.

Usage:
    pipeline = StreamingReviewPipeline(config, ClaudeOracle())
    result = await pipeline.run({
        BuiltinAgent.SECURITY_REVIEWER: run_security_agent,
        BuiltinAgent.LOGIC_REVIEWER: run_logic_agent,
    })
    print(format_markdown(result.report))
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from core.sentry import capture_exception, init_sentry
from structlog.contextvars import bound_contextvars

from .aggregator import AggregationOptions, aggregate
from .config import ReviewPipelineConfig
from .deduplicator import DeduplicationResult, IssueDeduplicator
from .issue_collector import CollectorObserver, IssueCollector
from .models import (
    AgentRef,
    ChecklistItem,
    CollectorStats,
    IssueReport,
    ReportResult,
    ReportStatus,
    ValidatedIssue,
    agent_name,
    parse_agent,
)
from .oracle import ReviewOracle
from .prompt_manager import PromptManager
from .realtime_deduplicator import LLMDuplicateChecker, RealtimeDeduplicator
from .report import ReviewMetadata, ReviewReport, calculate_metrics, generate_report
from .report_tool import create_report_issue_server
from .validator import IssueValidator

logger = structlog.get_logger(__name__)


class AgentSession:
    """Handle one specialist agent uses to talk to the run's collector."""

    def __init__(self, agent: AgentRef, collector: IssueCollector):
        self.agent = agent
        self.collector = collector
        self.checklist: list[ChecklistItem | Mapping[str, Any]] = []
        self.issues_accepted = 0
        self.issues_rejected = 0

    @property
    def name(self) -> str:
        return agent_name(self.agent)

    async def report_issue(
        self, report: IssueReport | Mapping[str, Any]
    ) -> ReportResult:
        result = await self.collector.report_issue(report, self.agent)
        if result.status is ReportStatus.ACCEPTED:
            self.issues_accepted += 1
        else:
            self.issues_rejected += 1
        return result

    def add_checklist_items(
        self, items: Iterable[ChecklistItem | Mapping[str, Any]]
    ) -> None:
        self.checklist.extend(items)

    def create_mcp_server(self) -> Any:
        """In-process MCP server exposing report_issue for this agent."""
        return create_report_issue_server(self.collector, self.agent)


AgentRunner = Callable[[AgentSession], Awaitable[None]]


@dataclass
class ReviewRunResult:
    run_id: str
    report: ReviewReport
    validated_issues: list[ValidatedIssue]
    stats: CollectorStats
    failed_agents: list[AgentRef] = field(default_factory=list)
    batch_dedup: DeduplicationResult | None = None

    @property
    def success(self) -> bool:
        return not self.failed_agents


class StreamingReviewPipeline:
    """
    One streaming review run per call to run().

    Realtime dedup and batch dedup are alternatives: when the realtime gate
    is enabled the batch pass is skipped.
    """

    def __init__(
        self,
        config: ReviewPipelineConfig,
        oracle: ReviewOracle,
        observers: Iterable[CollectorObserver] = (),
        aggregation_options: AggregationOptions | None = None,
        prompt_manager: PromptManager | None = None,
    ):
        self.config = config
        self.oracle = oracle
        self.observers = list(observers)
        self.aggregation_options = aggregation_options or AggregationOptions()
        self.prompt_manager = prompt_manager or PromptManager()
        init_sentry()

    def create_collector(self) -> IssueCollector:
        validator = None
        if not self.config.skip_validation:
            validator = IssueValidator.from_config(
                self.oracle, self.config, prompt_manager=self.prompt_manager
            )

        gate = None
        if self.config.realtime_dedup:
            gate = RealtimeDeduplicator(
                LLMDuplicateChecker(
                    self.oracle,
                    model=self.config.dedup_model,
                    prompt_manager=self.prompt_manager,
                )
            )

        return IssueCollector(
            validator, self.config, deduplicator=gate, observers=self.observers
        )

    async def run(self, agents: Mapping[AgentRef | str, AgentRunner]) -> ReviewRunResult:
        run_id = uuid.uuid4().hex[:12]
        with bound_contextvars(run_id=run_id):
            if self.config.run_timeout_seconds:
                return await asyncio.wait_for(
                    self._run(run_id, agents), timeout=self.config.run_timeout_seconds
                )
            return await self._run(run_id, agents)

    async def _run(
        self, run_id: str, agents: Mapping[AgentRef | str, AgentRunner]
    ) -> ReviewRunResult:
        start = time.monotonic()
        collector = self.create_collector()
        sessions = {
            parse_agent(agent): (AgentSession(parse_agent(agent), collector), runner)
            for agent, runner in agents.items()
        }

        logger.info(
            "Starting review run",
            agents=[agent_name(a) for a in sessions],
            validation=collector.validation_enabled,
            realtime_dedup=self.config.realtime_dedup,
        )

        outcomes = await asyncio.gather(
            *(self._run_agent(session, runner) for session, runner in sessions.values()),
            return_exceptions=True,
        )
        failed_agents = [
            agent
            for agent, outcome in zip(sessions, outcomes)
            if outcome is not True
        ]

        await collector.wait_for_validations()
        validated = collector.get_validated_issues()
        stats = collector.get_stats()
        tokens_used = stats.tokens_used
        if collector.deduplicator is not None:
            logger.info(
                "Realtime dedup finished",
                accepted=len(collector.deduplicator.get_accepted_issues()),
                deduplicated=stats.deduplicated,
            )

        batch_result = None
        issues = validated
        if self.config.batch_dedup:
            if collector.deduplicator is not None:
                logger.warning("Batch dedup skipped: realtime dedup already ran")
            else:
                deduplicator = IssueDeduplicator(
                    self.oracle,
                    model=self.config.dedup_model,
                    prompt_manager=self.prompt_manager,
                )
                batch_result = await deduplicator.deduplicate(validated)
                issues = batch_result.unique_issues
                tokens_used += batch_result.tokens_used

        checklist = [item for session, _ in sessions.values() for item in session.checklist]
        aggregation = aggregate(issues, checklist, self.aggregation_options)

        metrics = calculate_metrics(validated, aggregation.issues, stats.total_reported)
        metadata = ReviewMetadata(
            review_time_ms=int((time.monotonic() - start) * 1000),
            tokens_used=tokens_used,
            agents_used=list(sessions),
            failed_agents=failed_agents,
        )
        report = generate_report(
            aggregation.issues, aggregation.checklist, metrics, metadata, aggregation.stats
        )

        logger.info(
            "Review run complete",
            reported=stats.total_reported,
            deduplicated=stats.deduplicated,
            final_issues=len(report.issues),
            risk_level=report.risk_level.value,
            tokens_used=tokens_used,
            failed_agents=[agent_name(a) for a in failed_agents],
        )

        return ReviewRunResult(
            run_id=run_id,
            report=report,
            validated_issues=validated,
            stats=stats,
            failed_agents=failed_agents,
            batch_dedup=batch_result,
        )

    async def _run_agent(self, session: AgentSession, runner: AgentRunner) -> bool:
        """
        Run one agent with retries. Returns True on success.

        Issues the agent reported before failing are kept. Its buffered
        issues are flushed for validation whether or not it succeeded.
        """
        attempts = self.config.max_agent_retries + 1
        succeeded = False
        with bound_contextvars(agent=session.name):
            for attempt in range(1, attempts + 1):
                session.checklist.clear()
                try:
                    await runner(session)
                    succeeded = True
                    break
                except Exception as e:
                    logger.warning(
                        "Agent failed",
                        attempt=attempt,
                        max_attempts=attempts,
                        error=str(e),
                    )
                    if attempt == attempts:
                        capture_exception(e, agent=session.name)
                    else:
                        await asyncio.sleep(
                            self.config.agent_retry_delay_seconds * attempt
                        )

            await session.collector.flush_agent_issues(session.agent)

            logger.info(
                "Agent finished",
                succeeded=succeeded,
                accepted=session.issues_accepted,
                rejected=session.issues_rejected,
            )
        return succeeded
