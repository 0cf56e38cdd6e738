"""Tests for logger configuration."""
import logging

from cart_assistant.analytics.logger import LOGGER_NAME, SecretFilter, configure_logging, setup_logger
from cart_assistant.utils.config import Settings


def make_record(msg, *args):
    return logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, msg, args, None)


def test_secrets_are_masked():
    record = make_record("calling with key %s", "sk-live-123456")

    SecretFilter(["sk-live-123456"]).filter(record)

    assert record.getMessage() == "calling with key ***"


def test_short_and_empty_secrets_are_ignored():
    record = make_record("cart abc updated")

    SecretFilter(["abc", "", None]).filter(record)

    assert record.getMessage() == "cart abc updated"


def test_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "app.log"
    logger = setup_logger(name="cart_assistant.test_file", log_file=str(log_file), log_level="debug")
    try:
        logger.debug("proposal created")
        for handler in logger.handlers:
            handler.flush()
        assert "proposal created" in log_file.read_text()
        assert logger.level == logging.DEBUG
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()


def test_configure_logging_from_settings():
    settings = Settings(_env_file=None, gemini_api_key="gemini-key-abcdef", log_file="", log_level="WARNING")
    logger = configure_logging(settings)
    try:
        assert logger.name == LOGGER_NAME
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert "gemini-key-abcdef" in logger.handlers[0].filters[0].secrets
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
