"""
Streaming Review Configuration
==============================

Run-level settings for the streaming review pipeline, with defaults and
REVIEW_* environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from phase_config import REVIEW_PHASE_MODELS, get_review_phase_model

from .models import AgentRef, BuiltinAgent, ValidationStrategy, parse_agent

logger = logging.getLogger(__name__)

# Validation pool size shared by all agents in a run
DEFAULT_MAX_CONCURRENT_VALIDATIONS = 3

# Batch validation worker count
DEFAULT_BATCH_CONCURRENCY = 5

# Validator agent turn budget (reads + greps + final answer)
DEFAULT_VALIDATOR_MAX_TURNS = 30

MAX_AGENT_RETRIES = 2
AGENT_RETRY_DELAY_SECONDS = 2.0

# Style findings are cheap to batch; everything else validates as it arrives
DEFAULT_VALIDATION_STRATEGIES: dict[AgentRef, ValidationStrategy] = {
    BuiltinAgent.STYLE_REVIEWER: ValidationStrategy.BATCH_ON_AGENT_COMPLETE,
}

_TRUE_VALUES = ("true", "1", "yes")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.lower() in _TRUE_VALUES


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default
    if parsed < minimum:
        logger.warning(f"{name} must be >= {minimum}, using default {default}")
        return default
    return parsed


def _env_float(name: str, default: float | None) -> float | None:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default


@dataclass
class ReviewPipelineConfig:
    """Configuration for one streaming review run."""

    repo_path: Path = field(default_factory=Path.cwd)
    skip_validation: bool = False
    realtime_dedup: bool = True
    batch_dedup: bool = False
    max_concurrent_validations: int = DEFAULT_MAX_CONCURRENT_VALIDATIONS
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY
    validator_model: str = REVIEW_PHASE_MODELS["validation"]
    dedup_model: str = REVIEW_PHASE_MODELS["dedup"]
    validator_max_turns: int = DEFAULT_VALIDATOR_MAX_TURNS
    challenge_mode: bool = True
    auto_reject_low_confidence: bool = False
    validation_strategies: dict[AgentRef, ValidationStrategy] = field(
        default_factory=dict
    )
    project_rules: str | None = None
    max_agent_retries: int = MAX_AGENT_RETRIES
    agent_retry_delay_seconds: float = AGENT_RETRY_DELAY_SECONDS
    run_timeout_seconds: float | None = None
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.max_concurrent_validations < 1:
            raise ValueError("max_concurrent_validations must be >= 1")
        if self.batch_concurrency < 1:
            raise ValueError("batch_concurrency must be >= 1")
        self.repo_path = Path(self.repo_path)

    def strategy_for(self, agent: AgentRef) -> ValidationStrategy:
        """Validation strategy for an agent: explicit override, then default."""
        if agent in self.validation_strategies:
            return self.validation_strategies[agent]
        return DEFAULT_VALIDATION_STRATEGIES.get(agent, ValidationStrategy.IMMEDIATE)

    @classmethod
    def from_env(
        cls, repo_path: Path | None = None, env_file: Path | None = None
    ) -> ReviewPipelineConfig:
        """
        Create config from environment variables.

        Loads `.env` from env_file (or the current directory) first; values
        already set in the environment win.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        strategies: dict[AgentRef, ValidationStrategy] = {}
        # REVIEW_BATCH_AGENTS=style-reviewer,my-custom-agent
        for name in os.environ.get("REVIEW_BATCH_AGENTS", "").split(","):
            if name.strip():
                strategies[parse_agent(name.strip())] = (
                    ValidationStrategy.BATCH_ON_AGENT_COMPLETE
                )

        rules_path = os.environ.get("REVIEW_PROJECT_RULES_FILE")
        project_rules = None
        if rules_path and Path(rules_path).is_file():
            project_rules = Path(rules_path).read_text(encoding="utf-8")

        return cls(
            repo_path=repo_path or Path(os.environ.get("REVIEW_REPO_PATH", ".")),
            skip_validation=_env_bool("REVIEW_SKIP_VALIDATION", False),
            realtime_dedup=_env_bool("REVIEW_REALTIME_DEDUP", True),
            batch_dedup=_env_bool("REVIEW_BATCH_DEDUP", False),
            max_concurrent_validations=_env_int(
                "REVIEW_MAX_CONCURRENT_VALIDATIONS", DEFAULT_MAX_CONCURRENT_VALIDATIONS
            ),
            batch_concurrency=_env_int(
                "REVIEW_BATCH_CONCURRENCY", DEFAULT_BATCH_CONCURRENCY
            ),
            validator_model=get_review_phase_model("validation"),
            dedup_model=get_review_phase_model("dedup"),
            validator_max_turns=_env_int(
                "REVIEW_VALIDATOR_MAX_TURNS", DEFAULT_VALIDATOR_MAX_TURNS
            ),
            challenge_mode=_env_bool("REVIEW_CHALLENGE_MODE", True),
            auto_reject_low_confidence=_env_bool("REVIEW_AUTO_REJECT", False),
            validation_strategies=strategies,
            project_rules=project_rules,
            max_agent_retries=_env_int(
                "REVIEW_MAX_AGENT_RETRIES", MAX_AGENT_RETRIES, minimum=0
            ),
            run_timeout_seconds=_env_float("REVIEW_RUN_TIMEOUT_SECONDS", None),
            verbose=_env_bool("DEBUG", False),
        )
