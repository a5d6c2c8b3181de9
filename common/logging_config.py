import logging
import os
import re
import sys
from typing import Iterable, Optional, TextIO

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class SensitiveDataFilter(logging.Filter):
    """Mask room secrets and shorten peer keys and topics in log records."""

    PATTERNS = [
        (re.compile(r"(room=)('[^']*'|\S+)", re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(peer_key=)([0-9a-f]{16})[0-9a-f]+', re.IGNORECASE), r'\1\2...'),
        (re.compile(r'(topic=)([0-9a-f]{8})[0-9a-f]+', re.IGNORECASE), r'\1\2...'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        return True

    @classmethod
    def mask(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Set up logging for one top-level package.

    Log lines go to stderr by default so they do not interleave with chat
    output and the prompt on stdout. Calling it again only changes the level.

    Args:
        component_name: Name of the top-level package (e.g., 'transfer', 'chat', 'cli')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or WARNING
        stream: Output stream, sys.stderr when omitted

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'WARNING')
    level = getattr(logging, log_level.upper(), logging.WARNING)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(SensitiveDataFilter())

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def setup_components(components: Iterable[str], log_level: Optional[str] = None) -> None:
    """
    Configure several top-level packages with the same level.

    The CLI drives code from every package, so each package root gets its
    own handler rather than relying on propagation to the root logger.
    """
    for component in components:
        setup_logging(component, log_level=log_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically __name__)."""
    return logging.getLogger(name)
