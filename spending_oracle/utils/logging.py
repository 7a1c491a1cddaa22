"""
Structured logging configuration using structlog.

Amounts in this service are uint256 integers; JSON output renders any int
beyond the 2**53 float range as a string so log pipelines keep every digit.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

# Largest integer a float (and most JSON consumers) represents exactly
MAX_SAFE_INTEGER = 2**53 - 1


def stringify_large_ints(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ints outside the float-safe range as decimal strings."""
    for key, value in event_dict.items():
        if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_SAFE_INTEGER:
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool | None = None, **static_context: Any) -> None:
    """
    Configure structured logging for the oracle.

    Console output when attached to a terminal, JSON lines otherwise
    (or as forced by `json_output`). `static_context` (e.g. module address,
    chain id) is attached to every line for the life of the process.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output is None:
        json_output = not sys.stderr.isatty()

    if json_output:
        processors = shared_processors + [
            stringify_large_ints,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if static_context:
        structlog.contextvars.bind_contextvars(**static_context)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Logger bound to `module=name` when a name is given."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(module=name)
    return logger


class LoggerMixin:
    """Gives a class a `log` property bound to its class name."""

    @property
    def log(self) -> structlog.BoundLogger:
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Context manager adding keys (e.g. sub_account) to every log line in scope."""
    return structlog.contextvars.bound_contextvars(**kwargs)


def cycle_context(trigger: str, block: int) -> structlog.contextvars.bound_contextvars:
    """Tag every line of one reconciliation cycle with its trigger and head block."""
    return log_context(trigger=trigger, head_block=block)
