"""
Streaming Review Backend
========================

Concurrent AI code review pipeline: specialist agents stream issues into a
shared collector, each issue is gated for duplicates and independently
validated, and the results are merged into one report.

This package provides:
- runners.review: collector, validator, deduplicators, aggregator, pipeline
- core.simple_client: Claude Agent SDK client factory
- core.sentry: optional error tracking

See DESIGN.md for the module layout.
"""

__version__ = "0.1.0"
__author__ = "Streaming Review Team"
