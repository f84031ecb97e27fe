#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures
=========================================

Provides common fixtures for the streaming review test suite.
"""

import sys
from pathlib import Path

import pytest

# Add apps/backend directory to path for imports
_backend_dir = Path(__file__).parent.parent / "apps" / "backend"
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

from runners.review.config import ReviewPipelineConfig  # noqa: E402
from runners.review.models import IssueCategory, Severity  # noqa: E402
from review_fakes import ScriptedOracle, make_raw_issue, verdict_json  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_review_env(monkeypatch):
    """Keep REVIEW_* and Sentry settings from the developer's shell out of tests."""
    for name in [
        "SENTRY_DSN",
        "REVIEW_SKIP_VALIDATION",
        "REVIEW_REALTIME_DEDUP",
        "REVIEW_BATCH_DEDUP",
        "REVIEW_MAX_CONCURRENT_VALIDATIONS",
        "REVIEW_BATCH_CONCURRENCY",
        "REVIEW_VALIDATION_MODEL",
        "REVIEW_DEDUP_MODEL",
        "REVIEW_VALIDATOR_MAX_TURNS",
        "REVIEW_CHALLENGE_MODE",
        "REVIEW_AUTO_REJECT",
        "REVIEW_BATCH_AGENTS",
        "REVIEW_PROJECT_RULES_FILE",
        "REVIEW_MAX_AGENT_RETRIES",
        "REVIEW_RUN_TIMEOUT_SECONDS",
        "REVIEW_REPO_PATH",
        "ANTHROPIC_DEFAULT_HAIKU_MODEL",
        "ANTHROPIC_DEFAULT_SONNET_MODEL",
        "ANTHROPIC_DEFAULT_OPUS_MODEL",
    ]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def review_config(tmp_path) -> ReviewPipelineConfig:
    """Single-pass validation, no realtime gate, no retries delay."""
    return ReviewPipelineConfig(
        repo_path=tmp_path,
        realtime_dedup=False,
        challenge_mode=False,
        agent_retry_delay_seconds=0.0,
    )


@pytest.fixture
def confirming_oracle() -> ScriptedOracle:
    """Oracle that confirms every issue it is asked about."""
    return ScriptedOracle(default=verdict_json("confirmed", 0.9))


@pytest.fixture
def sample_issue():
    return make_raw_issue()


@pytest.fixture
def style_issue():
    return make_raw_issue(
        issue_id="STY-002",
        file="src/util.py",
        line_start=3,
        line_end=3,
        category=IssueCategory.STYLE,
        severity=Severity.SUGGESTION,
        title="Inconsistent naming",
        description="camelCase function name in a snake_case module",
        confidence=0.9,
    )
