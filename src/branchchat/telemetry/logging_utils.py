"""Logging helpers for conversation correlation."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

LOG_FORMAT = "%(asctime)s %(name)s - %(levelname)s - %(conversation_id)s - %(message)s"

_conversation_id_ctx: ContextVar[str | None] = ContextVar("conversation_id", default=None)


def get_conversation_id() -> str | None:
    """Return the current conversation id if set."""
    return _conversation_id_ctx.get()


def set_conversation_id(conversation_id: str | None) -> None:
    """Set the current conversation id."""
    _conversation_id_ctx.set(conversation_id)


class ConversationContextFilter(logging.Filter):
    """Attach the current conversation id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject conversation_id into the log record."""
        record.conversation_id = get_conversation_id() or "-"
        return True


def install_conversation_log_filter(handlers: Iterable[logging.Handler] | None = None) -> None:
    """Install conversation filters on handlers.

    Args:
        handlers: Optional iterable of handlers. Defaults to the root logger's handlers.
    """
    targets = list(handlers) if handlers is not None else list(logging.getLogger().handlers)
    for handler in targets:
        if any(isinstance(flt, ConversationContextFilter) for flt in handler.filters):
            continue
        handler.addFilter(ConversationContextFilter())


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger with a correlated stream handler."""
    logger = logging.getLogger("branchchat")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    install_conversation_log_filter(logger.handlers)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger
