"""Tests for logger setup."""

import asyncio
import logging
from logging.handlers import RotatingFileHandler

import pytest

from budget_chat.logger import (DEFAULT_LOG_FILE, NO_CONVERSATION, ConversationFilter,
                                _resolve_log_path, conversation_context, current_conversation,
                                get_logger, setup_logger)

LOGGER_NAME = "budget_chat_logger_test"


@pytest.fixture
def cleanup():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _handler_levels(logger):
    return {type(h).__name__: h.level for h in logger.handlers}


def test_quiet_console_without_file(cleanup):
    logger = setup_logger(LOGGER_NAME, verbose=False, log_file=False)
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.WARNING
    assert logger.level == logging.INFO
    assert logger.propagate is False


def test_verbose_file_logging(cleanup, tmp_path):
    log_path = tmp_path / "logs" / "chat.log"
    logger = setup_logger(LOGGER_NAME, verbose=True, log_file=log_path)
    levels = _handler_levels(logger)
    assert levels["RotatingFileHandler"] == logging.DEBUG
    assert levels["StreamHandler"] == logging.DEBUG

    logger.debug("streaming fragment %d", 3)
    for handler in logger.handlers:
        handler.flush()
    content = log_path.read_text(encoding="utf-8")
    assert "streaming fragment 3" in content
    assert LOGGER_NAME in content


def test_setup_twice_does_not_duplicate_handlers(cleanup, tmp_path):
    setup_logger(LOGGER_NAME, log_file=tmp_path / "a.log")
    logger = setup_logger(LOGGER_NAME, log_file=tmp_path / "b.log")
    files = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(logger.handlers) == 2
    assert len(files) == 1
    assert files[0].baseFilename.endswith("b.log")


def test_third_party_loggers_quieted(cleanup):
    setup_logger(LOGGER_NAME, log_file=False)
    assert logging.getLogger("litellm").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


@pytest.mark.parametrize("value,expected", [
    (None, DEFAULT_LOG_FILE),
    (True, DEFAULT_LOG_FILE),
    (False, None),
])
def test_resolve_log_path(value, expected):
    assert _resolve_log_path(value) == expected


def test_resolve_custom_path(tmp_path):
    assert _resolve_log_path(str(tmp_path / "x.log")) == tmp_path / "x.log"


def test_get_logger_leaves_configuration_alone():
    logger = get_logger("budget_chat.some_module")
    assert logger.name == "budget_chat.some_module"


def test_records_carry_conversation_id(cleanup, tmp_path):
    log_path = tmp_path / "chat.log"
    logger = setup_logger(LOGGER_NAME, verbose=True, log_file=log_path)
    with conversation_context("c42"):
        logger.info("inside")
    logger.info("outside")
    for handler in logger.handlers:
        handler.flush()
    content = log_path.read_text(encoding="utf-8")
    assert "<c42>: inside" in content
    assert f"<{NO_CONVERSATION}>: outside" in content


def test_conversation_context_nests_and_resets():
    assert current_conversation() == NO_CONVERSATION
    with conversation_context("outer"):
        with conversation_context("inner"):
            assert current_conversation() == "inner"
        assert current_conversation() == "outer"
    assert current_conversation() == NO_CONVERSATION


def test_filter_keeps_explicit_conversation():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    record.conversation = "given"
    with conversation_context("ambient"):
        assert ConversationFilter().filter(record) is True
    assert record.conversation == "given"


@pytest.mark.asyncio
async def test_concurrent_tasks_keep_their_own_conversation():
    seen = {}

    async def work(conversation_id):
        with conversation_context(conversation_id):
            await asyncio.sleep(0.01)
            seen[conversation_id] = current_conversation()

    await asyncio.gather(work("a"), work("b"))
    assert seen == {"a": "a", "b": "b"}
