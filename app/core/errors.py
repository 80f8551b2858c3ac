"""
Unified error capture with Sentry integration.

Provides centralized exception capture with:
- Sentry error tracking (when a DSN is configured)
- Structured logging with request context enrichment
- Custom fingerprinting for error grouping
- ErrorHandler, which reports and suppresses a failure (db_utils.degradable
  wraps it in a SAVEPOINT for session reads)

Usage:
    # Capture an exception
    capture_exception(exc, context={"contract": "0xabc"})

    # Degrade an optional part of a response
    with ErrorHandler("rarity_facets", context={"contract": contract}) as handler:
        facets = builder.build(contract)
    if handler.failed:
        facets = EMPTY_FACETS
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
import logging
import os

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.core.context import get_request_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "init_sentry",
    "capture_exception",
    "ErrorHandler",
]

_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.1,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Args:
        dsn: Sentry DSN (from project settings)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)
        release: Release version (defaults to GIT_COMMIT_SHA)

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    if not release:
        release = os.environ.get("GIT_COMMIT_SHA")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR,
                ),
            ],
            ignore_errors=[
                KeyboardInterrupt,
                SystemExit,
            ],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info(
        "Sentry initialized",
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        release=release,
    )
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop health check noise and tag events with the request id."""
    if "request" in event:
        url = event["request"].get("url", "")
        if "/health" in url:
            return None

    request_id = get_request_id()
    if request_id:
        event.setdefault("tags", {})["request_id"] = request_id

    return event


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"contract": "0xabc"})
        level: Severity level (debug, info, warning, error, fatal)
        fingerprint: Custom grouping fingerprint for Sentry
        tags: Additional tags for filtering in Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.error)
    log_func("Exception captured", exc_info=exc, **enriched_context)

    if not _sentry_initialized:
        return None

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in enriched_context.items():
                if value is not None:
                    scope.set_extra(key, value)

            if tags:
                for key, value in tags.items():
                    scope.set_tag(key, value)

            if fingerprint:
                scope.fingerprint = fingerprint

            scope.level = level
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Failed to send exception to Sentry", error=str(e))
        return None


class ErrorHandler:
    """
    Context manager that reports and suppresses a failure.

    Wraps the optional parts of a response (rarity facets, floor and volume
    figures) so their failure is reported but never fails the request.

    Usage:
        with ErrorHandler("collection_floor", context={"contract": contract}) as handler:
            floor = stats.floor_price(...)
        if handler.failed:
            floor = None
    """

    def __init__(self, operation: str, context: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.context = context or {}
        self.event_id: Optional[str] = None
        self.failed: bool = False

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False

        self.failed = True
        self.event_id = capture_exception(
            exc_val,
            context={"operation": self.operation, **self.context},
            level="warning",
            fingerprint=[self.operation, type(exc_val).__name__],
        )
        return True
