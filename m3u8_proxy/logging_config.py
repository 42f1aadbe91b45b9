"""Logging setup with optional redaction of proxied URLs."""

import logging
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Everything after scheme://host is hidden from logs outside dev mode
URL_PATTERN = re.compile(r"(https?://[^/\s?#\"']+)[^\s\"']*", re.IGNORECASE)


def redact_urls(text: str) -> str:
    """Keep only scheme and host of every URL in ``text``."""
    return URL_PATTERN.sub(r"\1/...", text)


class UrlRedactingFormatter(logging.Formatter):
    """Formatter that strips paths and query strings from URLs in log output."""

    def format(self, record: logging.LogRecord) -> str:
        return redact_urls(super().format(record))


def configure_logging(level: str = "info", redact: bool = True) -> None:
    """
    Configure the root logger once for the process.

    Args:
        level: Log level name
        redact: Hide stream URLs (disabled in dev mode)
    """
    handler = logging.StreamHandler()
    formatter_class = UrlRedactingFormatter if redact else logging.Formatter
    handler.setFormatter(formatter_class(LOG_FORMAT))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
    )
