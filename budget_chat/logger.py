"""Logging setup for budget-chat.

Several conversations can stream at once, so every record is stamped with the
conversation it was logged for (``%(conversation)s``). Code that works on one
conversation wraps itself in ``conversation_context(conversation_id)``; records
logged outside any conversation show ``-``.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Union

__all__ = ["setup_logger", "get_logger", "conversation_context", "current_conversation",
           "ConversationFilter"]

DEFAULT_LOG_FILE = Path("~/.budget-chat/logs/chat.log").expanduser()
CONSOLE_FORMAT = "[%(levelname).1s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s <%(conversation)s>: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3
NO_CONVERSATION = "-"

# Chatty at INFO; only their warnings and errors reach our handlers.
QUIET_LOGGERS = ("litellm", "LiteLLM", "httpx")

_conversation: contextvars.ContextVar[str] = contextvars.ContextVar(
    "budget_chat_conversation", default=NO_CONVERSATION)


@contextlib.contextmanager
def conversation_context(conversation_id: str) -> Iterator[None]:
    """Attribute records logged inside the block to ``conversation_id``."""
    token = _conversation.set(conversation_id)
    try:
        yield
    finally:
        _conversation.reset(token)


def current_conversation() -> str:
    return _conversation.get()


class ConversationFilter(logging.Filter):
    """Stamp each record with the conversation it was logged for."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "conversation"):
            record.conversation = _conversation.get()
        return True


def setup_logger(
    name: str = "budget_chat",
    verbose: bool = False,
    log_file: Union[str, Path, bool, None] = None,
) -> logging.Logger:
    """Configure and return the package logger.

    Args:
        name: Logger name; ``budget_chat`` configures every module below it.
        verbose: ``True`` sends DEBUG to the console; otherwise only warnings
            and errors are printed there, so they don't break up the chat.
        log_file: File logging target.
            - ``None`` or ``True``: use ``~/.budget-chat/logs/chat.log``
            - ``False``: disable file logging
            - ``str``/``Path``: use a custom log file path
    """
    logger = logging.getLogger(name)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    logger.addHandler(_console_handler(verbose))

    log_path = _resolve_log_path(log_file)
    if log_path is not None:
        logger.addHandler(_file_handler(log_path, verbose))

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name without changing its configuration."""
    return logging.getLogger(name)


def _console_handler(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handler.addFilter(ConversationFilter())
    return handler


def _file_handler(path: Path, verbose: bool) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES,
                                  backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
    # Session transitions are logged at INFO; keep them in the file.
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    handler.addFilter(ConversationFilter())
    return handler


def _resolve_log_path(log_file: Union[str, Path, bool, None]) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
