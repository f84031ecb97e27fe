"""
Simple Claude SDK Client Factory
================================

Factory for creating minimal Claude SDK clients for single-purpose review
operations like issue validation and duplicate detection.

These clients don't need hooks or full permission configurations.

Example usage:
    from core.simple_client import create_simple_client

    # For duplicate checks (text-only, no tools)
    client = create_simple_client(model="claude-haiku-4-5-20251001")

    # For issue validation (read tools, multi-turn)
    client = create_simple_client(
        model=model,
        allowed_tools=["Read", "Grep", "Glob"],
        cwd=repo_path,
        max_turns=30,
    )
"""

import logging
import os
from pathlib import Path
from typing import Any

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient
from phase_config import get_thinking_budget

logger = logging.getLogger(__name__)

# Read-only tools a validator may use to ground its verdict
READ_ONLY_TOOLS: list[str] = ["Read", "Grep", "Glob"]


def create_simple_client(
    model: str = "claude-haiku-4-5-20251001",
    system_prompt: str | None = None,
    cwd: Path | None = None,
    allowed_tools: list[str] | None = None,
    max_turns: int = 1,
    thinking_level: str = "none",
    max_thinking_tokens: int | None = None,
    mcp_servers: dict[str, Any] | None = None,
) -> ClaudeSDKClient:
    """
    Create a minimal Claude SDK client for review operations.

    Args:
        model: Claude model to use (defaults to Haiku for fast/cheap operations)
        system_prompt: Optional custom system prompt (for specialized tasks)
        cwd: Working directory for file operations (optional)
        allowed_tools: Tools the model may call (default: none, text-only)
        max_turns: Maximum conversation turns (default: 1 for single-turn)
        thinking_level: Thinking level used when max_thinking_tokens is None
        max_thinking_tokens: Override thinking budget
        mcp_servers: In-process MCP servers to expose (e.g. report_issue)

    Returns:
        Configured ClaudeSDKClient
    """
    if max_thinking_tokens is None:
        max_thinking_tokens = get_thinking_budget(thinking_level)

    # Note: SDK bundles its own CLI, so no cli_path detection needed
    options_kwargs: dict[str, Any] = {
        "model": model,
        "system_prompt": system_prompt,
        "allowed_tools": list(allowed_tools or []),
        "max_turns": max_turns,
        "cwd": str(cwd.resolve()) if cwd else None,
        "permission_mode": "bypassPermissions",
    }

    if mcp_servers:
        options_kwargs["mcp_servers"] = mcp_servers

    # Only add max_thinking_tokens if not None (Haiku doesn't support extended thinking)
    if max_thinking_tokens is not None:
        options_kwargs["max_thinking_tokens"] = max_thinking_tokens

    # Optional: Allow CLI path override via environment variable
    env_cli_path = os.environ.get("CLAUDE_CLI_PATH")
    if env_cli_path and Path(env_cli_path).is_file():
        options_kwargs["cli_path"] = env_cli_path
        logger.info(f"Using CLAUDE_CLI_PATH override: {env_cli_path}")

    return ClaudeSDKClient(options=ClaudeAgentOptions(**options_kwargs))
