"""Logging infrastructure.

Structured logging for the tree engine and its CLI:
- JSONL format with OpenTelemetry trace correlation
- Automatic context injection (command, model, scope, ...)
- QueueHandler + QueueListener for non-blocking I/O
- Lazy evaluation for debug detail

Basic usage:
    import logging
    from nested_tree.infra.logging import get_lazy_logger, set_log_context

    logger = logging.getLogger(__name__)
    set_log_context(command="fix")
    logger.info("Repair started")  # includes command

    lazy_logger = get_lazy_logger(__name__)
    lazy_logger.debug(lambda: f"rows: {expensive_dump()}")  # only runs at DEBUG
"""

from nested_tree.infra.logging.config import (
    configure_logging,
    setup_logging,
    shutdown,
)
from nested_tree.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    remove_from_log_context,
    set_log_context,
)
from nested_tree.infra.logging.formatters import JSONFormatter
from nested_tree.infra.logging.lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
