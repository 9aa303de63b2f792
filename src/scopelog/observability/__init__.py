"""Observability module for scopelog.

Provides the package's structured diagnostic logging and scope
statistics.

Example:
    from scopelog.observability import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(scope="Loader.load"):
        logger.warning("Slow load", duration_ms=1500)

Statistics Example:
    from scopelog.observability import ScopeStats

    # Create and inject via DI
    stats = ScopeStats()
    tracker = ScopeTracker(stats=stats)

    summary = stats.get_summary("Loader.load")
    print(f"p95: {summary.p95_duration_ms:.1f}ms")
"""

from scopelog.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    StructuredLoggerAdapter,
    TrackerLogHandler,
    configure_logging,
    get_logger,
    reset_logging,
)
from scopelog.observability.stats import (
    ScopeStats,
    ScopeStatsSummary,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "StructuredLoggerAdapter",
    "TrackerLogHandler",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "ScopeStats",
    "ScopeStatsSummary",
]
