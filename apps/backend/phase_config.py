"""
Phase Configuration Module
===========================

Model and thinking level configuration for the review pipeline's LLM phases.
"""

import logging
import os

logger = logging.getLogger(__name__)

# Model shorthand to full model ID mapping
MODEL_ID_MAP: dict[str, str] = {
    "opus": "claude-opus-4-5-20251101",
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
}

# Shorthand -> environment variable that overrides its model ID
MODEL_ENV_OVERRIDES: dict[str, str] = {
    "haiku": "ANTHROPIC_DEFAULT_HAIKU_MODEL",
    "sonnet": "ANTHROPIC_DEFAULT_SONNET_MODEL",
    "opus": "ANTHROPIC_DEFAULT_OPUS_MODEL",
}

# Thinking level to budget tokens mapping (None = no extended thinking)
THINKING_BUDGET_MAP: dict[str, int | None] = {
    "none": None,
    "low": 1024,
    "medium": 4096,
    "high": 16384,
    "ultrathink": 65536,
}

# Default model per review phase. Validation grounds issues against the
# repository; dedup only compares two short issue descriptions.
REVIEW_PHASE_MODELS: dict[str, str] = {
    "validation": "sonnet",
    "dedup": "haiku",
}


def resolve_model_id(model: str) -> str:
    """
    Resolve a model shorthand (haiku, sonnet, opus) to a full model ID.
    If the model is already a full ID, return it unchanged.

    Priority:
    1. Environment variable override (ANTHROPIC_DEFAULT_*_MODEL)
    2. Hardcoded MODEL_ID_MAP
    3. Pass through unchanged (assume full model ID)
    """
    if model in MODEL_ID_MAP:
        env_value = os.environ.get(MODEL_ENV_OVERRIDES[model])
        if env_value:
            return env_value
        return MODEL_ID_MAP[model]

    return model


def get_thinking_budget(thinking_level: str) -> int | None:
    """
    Get the thinking budget for a thinking level.

    Args:
        thinking_level: Thinking level (none, low, medium, high, ultrathink)

    Returns:
        Token budget or None for no extended thinking
    """
    if thinking_level not in THINKING_BUDGET_MAP:
        valid_levels = ", ".join(THINKING_BUDGET_MAP.keys())
        logger.warning(
            f"Invalid thinking_level '{thinking_level}'. Valid values: {valid_levels}. "
            f"Defaulting to 'medium'."
        )
        return THINKING_BUDGET_MAP["medium"]

    return THINKING_BUDGET_MAP[thinking_level]


def get_review_phase_model(phase: str) -> str:
    """
    Default model shorthand for a review phase.

    REVIEW_<PHASE>_MODEL in the environment overrides the default.
    """
    env_value = os.environ.get(f"REVIEW_{phase.upper()}_MODEL")
    if env_value:
        return env_value
    if phase not in REVIEW_PHASE_MODELS:
        raise ValueError(f"Unknown review phase: {phase}")
    return REVIEW_PHASE_MODELS[phase]
