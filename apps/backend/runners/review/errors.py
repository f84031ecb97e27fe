"""Exceptions raised inside the streaming review pipeline."""

from __future__ import annotations


class ReviewPipelineError(Exception):
    """Base class for review pipeline errors."""


class OracleError(ReviewPipelineError):
    """An LLM call failed or ended without a usable result."""


class ResponseParseError(ReviewPipelineError):
    """No well-formed JSON object could be extracted from an oracle response."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text

    @property
    def excerpt(self) -> str:
        return self.text[:200]


class InvalidReportError(ReviewPipelineError):
    """An inbound issue report failed schema validation."""
