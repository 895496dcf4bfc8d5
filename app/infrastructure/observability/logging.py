"""
Structured logging for the task manager backend.

JSON lines on stdout. Context that belongs to a unit of work (an HTTP request,
a socket session, a queue job) is bound with `bind_log_context` and merged
into every entry logged while that work is in progress.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

_NOISY_LOGGERS = ("httpx", "uvicorn.access", "socketio", "engineio")


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog over stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_log_context(**values: Any) -> None:
    """Attach values to every log entry emitted by the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_log_context(*keys: str) -> None:
    """Drop the named context values, or all of them when no names are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    """Log a dependency probe from the readiness endpoint."""
    logger = get_logger("health")
    fields = {"service": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.debug("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    logger = get_logger("http")
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }

    if status_code >= 500:
        logger.error("HTTP request failed", **fields)
    elif status_code >= 400:
        logger.warning("HTTP request rejected", **fields)
    else:
        logger.info("HTTP request completed", **fields)
