"""
report_issue Tool
=================

In-process MCP tool specialist agents call to stream issues into the
collector while they work.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from claude_agent_sdk import create_sdk_mcp_server, tool

from .models import AgentRef, ReportResult, ReportStatus
from .pydantic_models import ReportIssueInput

if TYPE_CHECKING:
    from .issue_collector import IssueCollector

logger = logging.getLogger(__name__)

REPORT_ISSUE_SERVER_NAME = "review"
REPORT_ISSUE_TOOL_NAME = "report_issue"

# Name the model sees once the tool is mounted on the MCP server
REPORT_ISSUE_ALLOWED_TOOL = f"mcp__{REPORT_ISSUE_SERVER_NAME}__{REPORT_ISSUE_TOOL_NAME}"

REPORT_ISSUE_TOOL_DESCRIPTION = (
    "Report a code issue found during review. Call this once per issue, as soon "
    "as you find it; do not batch issues up for the end. The issue is validated "
    "in the background, so keep reviewing after each call."
)

REPORT_ISSUE_INPUT_SCHEMA: dict[str, Any] = ReportIssueInput.model_json_schema()

ReportIssueHandler = Callable[[dict[str, Any]], Awaitable[ReportResult]]


def create_report_issue_handler(
    collector: IssueCollector, agent: AgentRef
) -> ReportIssueHandler:
    """Bind the collector to one agent's identity."""

    async def handle(args: dict[str, Any]) -> ReportResult:
        return await collector.report_issue(args, agent)

    return handle


def format_tool_result(result: ReportResult) -> dict[str, Any]:
    """Render a ReportResult as an MCP tool response."""
    if result.status is ReportStatus.ACCEPTED:
        text = f"Issue {result.issue_id} accepted. {result.message}"
    elif result.status is ReportStatus.DUPLICATE:
        text = (
            f"Issue not recorded: it duplicates {result.duplicate_of}. "
            "Continue reviewing other code."
        )
    else:
        text = f"Error: {result.message}"

    response: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if result.status is ReportStatus.ERROR:
        response["is_error"] = True
    return response


def create_report_issue_server(collector: IssueCollector, agent: AgentRef) -> Any:
    """
    Build an in-process MCP server exposing report_issue for one agent.

    Pass the result as mcp_servers={REPORT_ISSUE_SERVER_NAME: server} and
    add REPORT_ISSUE_ALLOWED_TOOL to the agent's allowed tools.
    """
    handler = create_report_issue_handler(collector, agent)

    @tool(REPORT_ISSUE_TOOL_NAME, REPORT_ISSUE_TOOL_DESCRIPTION, REPORT_ISSUE_INPUT_SCHEMA)
    async def report_issue(args: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await handler(args)
        except Exception as e:
            logger.error(f"[ReportTool] report_issue failed: {e}", exc_info=True)
            result = ReportResult(status=ReportStatus.ERROR, message=str(e))
        return format_tool_result(result)

    return create_sdk_mcp_server(
        name=REPORT_ISSUE_SERVER_NAME, version="1.0.0", tools=[report_issue]
    )
