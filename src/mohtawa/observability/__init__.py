"""Mohtawa observability module.

Structured JSON logs via structlog. Run and job identifiers are bound through
``structlog.contextvars`` so every event emitted while a run executes carries
its ``run_id``.

Usage:
    from mohtawa.observability import get_logger

    logger = get_logger(__name__)
    logger.info("run_started", run_id=run_id)
"""

from __future__ import annotations

from mohtawa.observability.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
    "init_observability",
]

_OBSERVABILITY_INITIALIZED = False


def init_observability() -> None:
    """Initialize logging for the process (idempotent).

    This is intentionally *not* executed on import so `mohtawa` can be used as a
    library without mutating global logging configuration.
    """
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    from mohtawa.config import settings

    configure_logging(settings.log_level)
    _OBSERVABILITY_INITIALIZED = True
