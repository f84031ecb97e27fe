"""
Streaming Review Pipeline
=========================

Collects issues streamed by concurrently running specialist review agents,
gates duplicates, validates each issue in a bounded pool and aggregates the
results into one report.

Uses lazy imports so the data model can be used without loading the
Claude Agent SDK.
"""

from __future__ import annotations

# Lazy import mapping - classes are loaded on first access
_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AggregationOptions": (".aggregator", "AggregationOptions"),
    "ClaudeOracle": (".oracle", "ClaudeOracle"),
    "IssueCollector": (".issue_collector", "IssueCollector"),
    "IssueDeduplicator": (".deduplicator", "IssueDeduplicator"),
    "IssueValidator": (".validator", "IssueValidator"),
    "RealtimeDeduplicator": (".realtime_deduplicator", "RealtimeDeduplicator"),
    "ReviewPipelineConfig": (".config", "ReviewPipelineConfig"),
    "StreamingReviewPipeline": (".pipeline", "StreamingReviewPipeline"),
    "aggregate": (".aggregator", "aggregate"),
    "format_markdown": (".report", "format_markdown"),
    "run_with_concurrency": (".concurrency", "run_with_concurrency"),
}

__all__ = [
    "AggregationOptions",
    "ClaudeOracle",
    "IssueCollector",
    "IssueDeduplicator",
    "IssueValidator",
    "RealtimeDeduplicator",
    "ReviewPipelineConfig",
    "StreamingReviewPipeline",
    "aggregate",
    "format_markdown",
    "run_with_concurrency",
]

# Cache for lazily loaded attributes
_loaded: dict[str, object] = {}


def __getattr__(name: str) -> object:
    """Lazy import handler - loads classes on first access."""
    if name in _LAZY_IMPORTS:
        if name not in _loaded:
            module_name, attr_name = _LAZY_IMPORTS[name]
            import importlib

            module = importlib.import_module(module_name, __name__)
            _loaded[name] = getattr(module, attr_name)
        return _loaded[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
