"""Structured logging for the watcher: structlog over stdlib logging.

Every event emitted inside a poll cycle carries a ``cycle`` field bound
through cycle_context(). Telegram bot tokens are masked before rendering,
since aiohttp errors echo the request URL and the token is part of it.
"""

import logging
import os
import re
from contextlib import AbstractContextManager
from typing import Any

import structlog

REDACTED = "***"

# https://api.telegram.org/bot<id>:<secret>/sendMessage
_BOT_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
_SECRET_KEYS = frozenset({"bot_token", "token"})


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask bot tokens in secret-named fields and inside any string value."""
    for key, value in event_dict.items():
        if key in _SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "bot" in value:
            event_dict[key] = _BOT_TOKEN_RE.sub(f"bot{REDACTED}", value)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog with JSON or console rendering.

    Args:
        log_level: Root level name; unknown names fall back to INFO.
        log_format: "json" or "console". When None, the LOG_FORMAT
            environment variable decides (default "console").
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # ccxt and aiohttp are chatty at DEBUG
    for noisy in ("ccxt", "aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def cycle_context(cycle: int) -> AbstractContextManager[None]:
    """Bind the poll cycle number to every event logged inside the block.

    The binding also reaches worker threads started with asyncio.to_thread,
    which copies the current context.
    """
    return structlog.contextvars.bound_contextvars(cycle=cycle)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
