"""Logging configuration for the hasync daemon.

Every handler installed here carries a `SecretRedactor`, so certificates
and pairing PINs never reach a log sink in full, whichever module logged
them.
"""

import logging
import re
from pathlib import Path

from hasync.config import Config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Certificates are 64 hex chars; PINs are 6 digits standing alone
_CERTIFICATE_RE = re.compile(r"\b[0-9a-fA-F]{64}\b")
_PIN_RE = re.compile(r"(?<![\d.:-])\b\d{6}\b(?![\d.:-])")

_logger: logging.Logger | None = None


def redact(message: str) -> str:
    """Mask certificates (keeping an 8 char prefix) and 6 digit PINs."""
    message = _CERTIFICATE_RE.sub(lambda m: m.group(0)[:8] + "...", message)
    return _PIN_RE.sub("******", message)


class SecretRedactor(logging.Filter):
    """Rewrite a record's message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def _make_handler(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(SecretRedactor())
    return handler


def setup_logging(config: Config) -> logging.Logger:
    """Configure the `hasync` logger once.

    Later calls return the already configured logger unchanged.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger("hasync")
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_make_handler(logging.FileHandler(log_path)))

    logger.addHandler(_make_handler(logging.StreamHandler()))
    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers:
            handler.close()
        _logger.handlers.clear()
        _logger.propagate = True
        _logger = None
