"""
Structured logging configuration using structlog.

- JSON output in production, pretty console output in debug mode
- Request-scoped context (``request_id``) merged from contextvars
"""

import logging
import sys
from typing import List

import structlog
from structlog.typing import Processor


def configure_logging(debug: bool = False, json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure structlog for the application.

    Call this once at application startup, before any logging.
    """
    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if debug or not json_output:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=debug)]
    else:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    # Reset handlers so reconfiguration in tests does not duplicate output
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from callsteer.logging import get_logger

        log = get_logger(__name__)
        log.info("session_created", session_id=session.id)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind context variables included in all subsequent logs of this request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear request-scoped context bound via ``bind_context``."""
    structlog.contextvars.clear_contextvars()
