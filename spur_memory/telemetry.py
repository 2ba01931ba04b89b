"""
Structured logging for the memory graph engine.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog


_CONFIGURED = False


def configure_logging(level: int = logging.INFO, json_output: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Safe to call more than once; only the first call takes effect.

    Args:
        level: stdlib log level for the root handler
        json_output: render JSON lines (False gives the console renderer)
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.basicConfig(level=level, format="%(message)s")

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str) -> Any:
    """Get a bound structlog logger, configuring defaults on first use."""
    configure_logging()
    return structlog.get_logger(name)


logger = get_logger(__name__)


def log_step(
    graph_id: str,
    step_name: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log one engine step with timing.

    Args:
        graph_id: Graph instance identifier
        step_name: Name of the step (e.g., "ingest", "decay", "prune")
        ms: Duration in milliseconds
        extra: Optional extra fields to log
    """
    logger.info("step_executed", graph_id=graph_id, step=step_name, duration_ms=round(ms, 3), **(extra or {}))


@contextmanager
def timed_step(graph_id: str, step_name: str, extra: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
    """
    Time a block and log it via log_step.

    The yielded dict can be filled with result fields before the block ends.
    """
    fields: Dict[str, Any] = dict(extra or {})
    start = time.perf_counter()
    try:
        yield fields
    finally:
        log_step(graph_id, step_name, (time.perf_counter() - start) * 1000, fields)
