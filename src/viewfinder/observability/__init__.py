"""Observability for viewfinder-core.

Structured logging and pipeline statistics.

Example:
    from viewfinder.observability import AnalysisStats, LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(bracket_id="a1b2"):
        logger.info("Shot captured", ev_index=-2)

    stats = AnalysisStats()
    stats.record_frame(duration_ms=3.4)
    print(stats.get_summary().avg_duration_ms)
"""

from viewfinder.observability.logging import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from viewfinder.observability.stats import (
    AnalysisStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "ROOT_LOGGER_NAME",
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "AnalysisStats",
    "StatsSummary",
]
