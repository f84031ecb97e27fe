"""
Tests for the Streaming Review Pipeline
=======================================

End-to-end runs with scripted agents and a scripted oracle: concurrent
agents, validation, both dedup modes, agent retries and run timeouts.
"""

import asyncio
import json
import re
from dataclasses import replace

import pytest
from structlog.testing import capture_logs

from review_fakes import ScriptedOracle, dedup_json, report_payload, verdict_json
from runners.review.issue_collector import CollectorObserver
from runners.review.models import (
    BuiltinAgent,
    ChecklistResult,
    ReportStatus,
    ValidationStatus,
)
from runners.review.pipeline import AgentSession, StreamingReviewPipeline
from runners.review.report import RiskLevel

_EXISTING_ID = re.compile(r"\(ID: (\S+)\)")
_TITLE = re.compile(r"\*\*Title\*\*: (.+)")


def routing_oracle(rejected_titles=(), duplicate=True, batch_groups=None):
    """
    Oracle answering validation, duplicate-check and batch-dedup prompts.

    Validation confirms everything except issues whose title is listed in
    rejected_titles.
    """

    def answer(prompt):
        if "deduplication expert" in prompt:
            existing = _EXISTING_ID.search(prompt).group(1)
            if duplicate:
                return dedup_json(True, existing, "Same query")
            return dedup_json(False)
        if "deduplicating code review issues" in prompt:
            return json.dumps({"duplicate_groups": batch_groups or []})
        title = _TITLE.search(prompt).group(1).strip()
        if title in rejected_titles:
            return verdict_json("rejected", 0.85, "Input is sanitized upstream")
        return verdict_json("confirmed", 0.9)

    return ScriptedOracle(handler=answer)


def reporting_agent(*payloads, checklist=()):
    async def run(session: AgentSession):
        for payload in payloads:
            await session.report_issue(payload)
            await asyncio.sleep(0)
        session.add_checklist_items(checklist)

    return run


SQL_INJECTION = report_payload()
HARDCODED_PASSWORD = report_payload(
    file="src/auth.py",
    line_start=5,
    line_end=5,
    severity="critical",
    title="Hardcoded password",
    description="Admin password committed in source",
    confidence=0.95,
)
UNCHECKED_INPUT = report_payload(
    category="logic",
    severity="warning",
    title="Unchecked input",
    description="Handler trusts the request body",
    confidence=0.6,
)
OFF_BY_ONE = report_payload(
    file="src/calc.py",
    line_start=20,
    line_end=22,
    category="logic",
    severity="warning",
    title="Off by one",
    description="Loop skips the last element",
)


# ============================================================================
# Full runs
# ============================================================================


class TestFullRun:
    """Test complete runs with the realtime gate off."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, review_config):
        oracle = routing_oracle(rejected_titles={"Off by one"})
        pipeline = StreamingReviewPipeline(review_config, oracle)

        result = await pipeline.run(
            {
                BuiltinAgent.SECURITY_REVIEWER: reporting_agent(
                    SQL_INJECTION,
                    HARDCODED_PASSWORD,
                    checklist=[
                        {
                            "id": "sec-1",
                            "category": "security",
                            "question": "Is user input sanitized?",
                            "result": "fail",
                        }
                    ],
                ),
                BuiltinAgent.LOGIC_REVIEWER: reporting_agent(
                    UNCHECKED_INPUT,
                    OFF_BY_ONE,
                    checklist=[
                        {
                            "id": "sec-1",
                            "category": "security",
                            "question": "Is user input sanitized?",
                            "result": "pass",
                        }
                    ],
                ),
            }
        )

        assert result.success
        assert len(result.run_id) == 12
        assert len(result.validated_issues) == 4
        assert len(oracle.calls) == 4

        report = result.report
        # Rejected issue filtered; the two reports on src/app.py:10-12 collapse
        assert [i.title for i in report.issues] == [
            "Hardcoded password",
            "SQL injection in handler",
        ]
        assert report.risk_level is RiskLevel.HIGH
        assert [c.result for c in report.checklist] == [ChecklistResult.FAIL]

        assert report.metrics.total_scanned == 4
        assert report.metrics.confirmed == 3
        assert report.metrics.rejected == 1
        assert report.aggregation.rejected_filtered == 1
        assert report.aggregation.duplicates_removed == 1

        assert report.metadata.tokens_used == 40
        assert report.metadata.agents_used == [
            BuiltinAgent.SECURITY_REVIEWER,
            BuiltinAgent.LOGIC_REVIEWER,
        ]
        assert report.metadata.failed_agents == []
        assert result.batch_dedup is None

    @pytest.mark.asyncio
    async def test_agents_named_by_string(self, review_config):
        pipeline = StreamingReviewPipeline(review_config, routing_oracle())

        result = await pipeline.run({"security-reviewer": reporting_agent(SQL_INJECTION)})

        assert result.report.metadata.agents_used == [BuiltinAgent.SECURITY_REVIEWER]
        assert result.validated_issues[0].id == "SEC-001"

    @pytest.mark.asyncio
    async def test_no_agents(self, review_config):
        result = await StreamingReviewPipeline(review_config, routing_oracle()).run({})

        assert result.success
        assert result.report.issues == []
        assert result.report.risk_level is RiskLevel.LOW

    @pytest.mark.asyncio
    async def test_style_issues_validated_when_agent_finishes(self, review_config):
        oracle = routing_oracle()
        pipeline = StreamingReviewPipeline(review_config, oracle)

        result = await pipeline.run(
            {
                BuiltinAgent.STYLE_REVIEWER: reporting_agent(
                    report_payload(category="style", severity="suggestion", title="Long line"),
                )
            }
        )

        assert result.validated_issues[0].validation_status is ValidationStatus.CONFIRMED
        assert result.stats.validation_pending == 0

    @pytest.mark.asyncio
    async def test_observers_see_run(self, review_config):
        seen = []

        class Recorder(CollectorObserver):
            def on_issue_validated(self, issue):
                seen.append(issue.id)

        pipeline = StreamingReviewPipeline(
            review_config, routing_oracle(), observers=[Recorder()]
        )
        await pipeline.run({BuiltinAgent.SECURITY_REVIEWER: reporting_agent(SQL_INJECTION)})

        assert seen == ["SEC-001"]

    @pytest.mark.asyncio
    async def test_skip_validation(self, review_config):
        oracle = routing_oracle()
        config = replace(review_config, skip_validation=True)

        result = await StreamingReviewPipeline(config, oracle).run(
            {BuiltinAgent.LOGIC_REVIEWER: reporting_agent(UNCHECKED_INPUT, OFF_BY_ONE)}
        )

        assert oracle.calls == []
        assert all(
            i.validation_status is ValidationStatus.UNVALIDATED
            for i in result.validated_issues
        )
        assert result.report.metrics.unvalidated == 2
        assert len(result.report.issues) == 2


# ============================================================================
# Deduplication modes
# ============================================================================


class TestDeduplicationModes:
    """Realtime gate and batch dedup are alternatives."""

    @pytest.mark.asyncio
    async def test_realtime_gate_drops_duplicate(self, review_config):
        oracle = routing_oracle()
        config = replace(review_config, realtime_dedup=True, batch_dedup=True)
        first_reported = asyncio.Event()

        async def security(session):
            await session.report_issue(SQL_INJECTION)
            first_reported.set()

        async def logic(session):
            await first_reported.wait()
            result = await session.report_issue(UNCHECKED_INPUT)
            assert result.status is ReportStatus.DUPLICATE

        with capture_logs() as logs:
            result = await StreamingReviewPipeline(config, oracle).run(
                {BuiltinAgent.SECURITY_REVIEWER: security, BuiltinAgent.LOGIC_REVIEWER: logic}
            )

        assert result.success
        assert result.stats.total_reported == 2
        assert result.stats.deduplicated == 1
        gate_log = next(e for e in logs if e["event"] == "Realtime dedup finished")
        assert gate_log["accepted"] == 1
        assert gate_log["deduplicated"] == 1
        assert [i.id for i in result.validated_issues] == ["SEC-001"]
        assert result.report.metrics.total_scanned == 2
        # One validation plus one duplicate check; batch dedup skipped
        assert len(oracle.calls) == 2
        assert result.batch_dedup is None
        assert result.report.metadata.tokens_used == 20

    @pytest.mark.asyncio
    async def test_batch_dedup_when_gate_off(self, review_config):
        oracle = routing_oracle(
            batch_groups=[
                {"kept_id": "SEC-001", "duplicate_ids": ["SEC-002"], "reason": "same"}
            ]
        )
        config = replace(review_config, batch_dedup=True)

        result = await StreamingReviewPipeline(config, oracle).run(
            {
                BuiltinAgent.SECURITY_REVIEWER: reporting_agent(
                    SQL_INJECTION, report_payload(line_start=30, line_end=31)
                )
            }
        )

        assert result.batch_dedup is not None
        assert result.batch_dedup.removed_count == 1
        assert [i.id for i in result.report.issues] == ["SEC-001"]
        # Every verdict is still counted
        assert len(result.validated_issues) == 2
        assert result.report.metrics.confirmed == 2
        assert result.report.metadata.tokens_used == 30

    @pytest.mark.asyncio
    async def test_no_dedup(self, review_config):
        oracle = routing_oracle()

        result = await StreamingReviewPipeline(review_config, oracle).run(
            {
                BuiltinAgent.SECURITY_REVIEWER: reporting_agent(
                    SQL_INJECTION, report_payload(line_start=30, line_end=31)
                )
            }
        )

        assert len(oracle.calls) == 2
        assert len(result.report.issues) == 2


# ============================================================================
# Agent failures
# ============================================================================


class TestAgentFailures:
    """Test retries and failure isolation."""

    @pytest.mark.asyncio
    async def test_failing_agent_does_not_affect_siblings(self, review_config):
        config = replace(review_config, max_agent_retries=1)
        attempts = []

        async def broken(session):
            attempts.append(1)
            await session.report_issue(OFF_BY_ONE)
            raise RuntimeError("agent crashed")

        result = await StreamingReviewPipeline(config, routing_oracle()).run(
            {
                BuiltinAgent.SECURITY_REVIEWER: reporting_agent(HARDCODED_PASSWORD),
                BuiltinAgent.LOGIC_REVIEWER: broken,
            }
        )

        assert len(attempts) == 2
        assert not result.success
        assert result.failed_agents == [BuiltinAgent.LOGIC_REVIEWER]
        assert result.report.metadata.failed_agents == [BuiltinAgent.LOGIC_REVIEWER]
        # Issues reported before the crash are kept and validated
        titles = [i.title for i in result.validated_issues]
        assert titles.count("Hardcoded password") == 1
        assert titles.count("Off by one") == 2
        assert result.stats.validation_pending == 0

    @pytest.mark.asyncio
    async def test_retry_succeeds(self, review_config):
        calls = []

        async def flaky(session):
            calls.append(1)
            if len(calls) == 1:
                session.add_checklist_items(
                    [{"id": "log-1", "category": "logic", "question": "Q?", "result": "fail"}]
                )
                raise RuntimeError("transient")
            session.add_checklist_items(
                [{"id": "log-2", "category": "logic", "question": "Q?", "result": "pass"}]
            )

        result = await StreamingReviewPipeline(review_config, routing_oracle()).run(
            {BuiltinAgent.LOGIC_REVIEWER: flaky}
        )

        assert len(calls) == 2
        assert result.success
        # Only the successful attempt's checklist counts
        assert [c.id for c in result.report.checklist] == ["log-2"]

    @pytest.mark.asyncio
    async def test_no_retries(self, review_config):
        config = replace(review_config, max_agent_retries=0)
        calls = []

        async def broken(session):
            calls.append(1)
            raise ValueError("bad")

        result = await StreamingReviewPipeline(config, routing_oracle()).run(
            {BuiltinAgent.PERFORMANCE_REVIEWER: broken}
        )

        assert calls == [1]
        assert result.failed_agents == [BuiltinAgent.PERFORMANCE_REVIEWER]

    @pytest.mark.asyncio
    async def test_run_timeout(self, review_config):
        config = replace(review_config, run_timeout_seconds=0.05)

        async def stuck(session):
            await asyncio.sleep(5)

        with pytest.raises(asyncio.TimeoutError):
            await StreamingReviewPipeline(config, routing_oracle()).run(
                {BuiltinAgent.LOGIC_REVIEWER: stuck}
            )


class TestAgentSession:
    """Test AgentSession bookkeeping."""

    @pytest.mark.asyncio
    async def test_counts_accepted_and_rejected(self, review_config):
        pipeline = StreamingReviewPipeline(review_config, routing_oracle())
        collector = pipeline.create_collector()
        session = AgentSession(BuiltinAgent.SECURITY_REVIEWER, collector)

        await session.report_issue(SQL_INJECTION)
        await session.report_issue(report_payload(confidence=7))

        assert session.issues_accepted == 1
        assert session.issues_rejected == 1
        assert session.name == "security-reviewer"
        await collector.wait_for_validations()

    def test_create_collector_follows_config(self, review_config):
        oracle = routing_oracle()

        gated = StreamingReviewPipeline(
            replace(review_config, realtime_dedup=True), oracle
        ).create_collector()
        plain = StreamingReviewPipeline(
            replace(review_config, skip_validation=True), oracle
        ).create_collector()

        assert gated.deduplicator is not None
        assert gated.validation_enabled
        assert plain.deduplicator is None
        assert not plain.validation_enabled

    def test_session_mcp_server(self, review_config):
        collector = StreamingReviewPipeline(review_config, routing_oracle()).create_collector()
        session = AgentSession(BuiltinAgent.LOGIC_REVIEWER, collector)

        server = session.create_mcp_server()

        assert server["name"] == "review"


class TestPackageExports:
    def test_lazy_exports(self):
        import runners.review as review

        assert review.StreamingReviewPipeline is StreamingReviewPipeline
        with pytest.raises(AttributeError):
            review.NotAThing
