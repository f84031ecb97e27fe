"""
LLM Oracle Adapter
==================

The single boundary between the review pipeline and the LLM. Everything
upstream depends only on the ReviewOracle protocol, so tests and
alternative providers can supply their own implementation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from core.simple_client import create_simple_client
from phase_config import resolve_model_id

from .errors import OracleError

logger = logging.getLogger(__name__)


@dataclass
class OracleResponse:
    """Final text of an LLM call plus the tokens it consumed."""

    text: str
    tokens_used: int = 0


class ReviewOracle(Protocol):
    """An async LLM call returning text and token usage."""

    async def query(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        model: str | None = None,
        allowed_tools: Sequence[str] = (),
        max_turns: int = 1,
        cwd: Path | None = None,
    ) -> OracleResponse: ...


def _usage_tokens(usage: Any) -> int:
    if not usage:
        return 0
    if isinstance(usage, dict):
        return int(usage.get("input_tokens", 0) or 0) + int(
            usage.get("output_tokens", 0) or 0
        )
    return int(getattr(usage, "input_tokens", 0) or 0) + int(
        getattr(usage, "output_tokens", 0) or 0
    )


class ClaudeOracle:
    """
    ReviewOracle backed by the Claude Agent SDK.

    Usage:
        oracle = ClaudeOracle(default_model="sonnet")
        response = await oracle.query(prompt, allowed_tools=["Read"], cwd=repo)
    """

    def __init__(self, default_model: str = "sonnet", thinking_level: str = "none"):
        self.default_model = default_model
        self.thinking_level = thinking_level

    async def query(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        model: str | None = None,
        allowed_tools: Sequence[str] = (),
        max_turns: int = 1,
        cwd: Path | None = None,
    ) -> OracleResponse:
        client = create_simple_client(
            model=resolve_model_id(model or self.default_model),
            system_prompt=system_prompt,
            cwd=cwd,
            allowed_tools=list(allowed_tools),
            max_turns=max_turns,
            thinking_level=self.thinking_level,
        )

        assistant_text = ""
        result_text = ""
        tokens_used = 0
        error_subtype: str | None = None

        async with client:
            await client.query(prompt)
            async for msg in client.receive_response():
                msg_type = type(msg).__name__

                if msg_type == "AssistantMessage":
                    for content in msg.content:
                        if hasattr(content, "text"):
                            assistant_text += content.text

                elif msg_type == "ResultMessage":
                    tokens_used = _usage_tokens(getattr(msg, "usage", None))
                    if getattr(msg, "is_error", False):
                        error_subtype = getattr(msg, "subtype", "error")
                    result_text = getattr(msg, "result", None) or ""

        if error_subtype and not result_text:
            raise OracleError(f"LLM call ended with: {error_subtype}")

        text = result_text or assistant_text
        if not text.strip():
            logger.warning("[Oracle] LLM call returned an empty result")
        return OracleResponse(text=text, tokens_used=tokens_used)
