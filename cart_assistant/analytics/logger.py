"""Logging setup for the cart assistant.

One named logger is shared across the package. Handlers are attached once at
process start by ``configure_logging``; until then records propagate to the
root logger, which keeps pytest's caplog working.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

LOGGER_NAME = "cart_assistant"
CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
REDACTED = "***"

# Chatty client libraries; their request lines can carry credentials
NOISY_LOGGERS = ("httpx", "httpcore")


class SecretFilter(logging.Filter):
    """Masks configured secrets in formatted log messages."""

    def __init__(self, secrets: Iterable[Optional[str]] = ()):
        super().__init__()
        # Very short values would mask unrelated text
        self.secrets = sorted({s for s in secrets if s and len(s) >= 6}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, REDACTED)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logger(
    name: str = LOGGER_NAME,
    log_file: Optional[str] = None,
    log_level: str = "INFO",
    secrets: Iterable[Optional[str]] = (),
) -> logging.Logger:
    """Attach console (and optional file) handlers to the named logger."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    redact = SecretFilter(secrets)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console_handler.addFilter(redact)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(redact)
        logger.addHandler(file_handler)

    return logger


def configure_logging(settings) -> logging.Logger:
    """Configure the application logger from a Settings object.

    Called once at process start (see ``AssistantContainer.start``).
    """
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return setup_logger(
        log_file=settings.log_file,
        log_level=settings.log_level,
        secrets=(settings.gemini_api_key, settings.proposal_secret, settings.analytics_secret),
    )


logger = logging.getLogger(LOGGER_NAME)
