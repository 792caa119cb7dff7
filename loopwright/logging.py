"""Structured logging setup shared by the CLI and the runtime."""

import logging
import sys

import structlog

from loopwright.config import Config, get_config


def _renderer(fmt: str):
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(config: Config | None = None, verbose: bool = False) -> None:
    """Install the structlog pipeline.

    Logs always go to stderr so they never interleave with the agent's
    streamed output on stdout. ``verbose`` forces DEBUG regardless of the
    configured level.
    """
    config = config or get_config()
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(config.logging.format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Return a structlog logger, named after the calling module when given."""
    return structlog.get_logger(name) if name else structlog.get_logger()


def preview(text: str | None, limit: int = 200) -> str:
    """Shorten long payloads for log fields."""
    value = text or ""
    if len(value) <= limit:
        return value
    return value[:limit] + f"... (truncated, {len(value)} chars)"
