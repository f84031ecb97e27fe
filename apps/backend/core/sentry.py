"""
Sentry Error Tracking
=====================

Optional error reporting for review runs. Nothing is sent unless SENTRY_DSN
is set.

Environment:
- SENTRY_DSN: enables reporting
- SENTRY_TRACES_SAMPLE_RATE: trace sample rate in [0, 1] (default 0.1)
- SENTRY_ENVIRONMENT: environment tag (default "development")

Home-directory usernames are stripped from paths in every event, and the
event's user block is emptied before sending.
"""

from __future__ import annotations

import logging
import os
import re
from importlib.metadata import PackageNotFoundError, version
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

DISTRIBUTION_NAME = "streaming-review"

_sentry_initialized = False
_sentry_enabled = False

DEFAULT_TRACE_SAMPLE_RATE = 0.1

# (pattern, replacement) pairs applied in order
_HOME_DIR_PATTERNS = (
    (re.compile(r"(/Users/)[^/]+(?=/|$)"), r"\1***"),
    (re.compile(r"([A-Za-z]:\\Users\\)[^\\]+(?=\\|$)"), r"\1***"),
    (re.compile(r"(/home/)[^/]+(?=/|$)"), r"\1***"),
)


def _get_version() -> str:
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "0.0.0"


def _mask_user_paths(text: str) -> str:
    """Replace the username segment of macOS, Windows and Linux home paths."""
    if not text:
        return text
    for pattern, replacement in _HOME_DIR_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _mask_object_paths(obj: Any, _depth: int = 0) -> Any:
    if _depth > 50:
        return obj
    if isinstance(obj, str):
        return _mask_user_paths(obj)
    if isinstance(obj, list):
        return [_mask_object_paths(item, _depth + 1) for item in obj]
    if isinstance(obj, dict):
        return {key: _mask_object_paths(value, _depth + 1) for key, value in obj.items()}
    return obj


def _before_send(event: dict, hint: dict) -> dict | None:
    if not _sentry_enabled:
        return None

    for exception in event.get("exception", {}).get("values", []):
        for frame in exception.get("stacktrace", {}).get("frames", []):
            for key in ("filename", "abs_path"):
                if key in frame:
                    frame[key] = _mask_user_paths(frame[key])
        if "value" in exception:
            exception["value"] = _mask_user_paths(exception["value"])

    for key in ("message", "tags", "contexts", "extra"):
        if key in event:
            event[key] = _mask_object_paths(event[key])

    if "user" in event:
        event["user"] = {}

    return event


def init_sentry(component: str = "review-pipeline") -> bool:
    """
    Initialize Sentry once per process.

    Returns:
        True if Sentry is enabled, False otherwise
    """
    global _sentry_initialized, _sentry_enabled

    if _sentry_initialized:
        return _sentry_enabled
    _sentry_initialized = True

    dsn = os.environ.get("SENTRY_DSN", "")
    if not dsn:
        logger.debug("[Sentry] No SENTRY_DSN configured - error reporting disabled")
        return False

    release = f"{DISTRIBUTION_NAME}@{_get_version()}"
    traces_sample_rate = DEFAULT_TRACE_SAMPLE_RATE
    try:
        env_rate = os.environ.get("SENTRY_TRACES_SAMPLE_RATE")
        if env_rate and 0 <= float(env_rate) <= 1:
            traces_sample_rate = float(env_rate)
    except ValueError:
        logger.warning("[Sentry] Invalid SENTRY_TRACES_SAMPLE_RATE, using default")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=os.environ.get("SENTRY_ENVIRONMENT", "development"),
            release=release,
            traces_sample_rate=traces_sample_rate,
            before_send=_before_send,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ],
            send_default_pii=False,
        )
    except Exception as e:
        logger.warning(f"[Sentry] Failed to initialize - invalid DSN configuration: {e}")
        return False

    sentry_sdk.set_tag("component", component)
    _sentry_enabled = True
    logger.info(f"[Sentry] Initialized (component: {component}, release: {release})")
    return True


def capture_exception(error: BaseException, **kwargs: Any) -> None:
    """
    Send an exception to Sentry with extra context.

    Safe to call when Sentry is not initialized.
    """
    if not _sentry_enabled:
        logger.debug(f"[Sentry] Not enabled, exception not captured: {error}")
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in kwargs.items():
                scope.set_extra(key, _mask_object_paths(value))
            sentry_sdk.capture_exception(error)
    except Exception as e:
        logger.error(f"[Sentry] Failed to capture exception: {e}")


def is_enabled() -> bool:
    return _sentry_enabled
