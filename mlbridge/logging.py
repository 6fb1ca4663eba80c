"""Logging from config and env.

Levels (inclusive):
- ERROR: a bridge pass or a single pull request failed
- WARNING: retries, degraded output and other non-critical issues
- INFO: one line per emitted mail, published webrev and pass summary
- DEBUG: per-item decisions (skipped, ignored, already bridged)

Configure via config.yaml (logging.level, logging.format) or env (LOGGING_LEVEL, LOGGING_FORMAT).
"""

import logging
from typing import Any

from mlbridge.config import LoggingConfig

# Supported levels only (DEBUG, INFO, WARNING, ERROR)
LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: str) -> int:
    """Map level name to logging constant.

    Falls back to INFO if unknown.
    """
    return LEVELS.get(level.upper().strip(), logging.INFO)


class BridgeLogging:
    """Configures root logger from LoggingConfig (YAML + env LOGGING_*)."""

    def __init__(self, config: LoggingConfig) -> None:
        """Store logging config (level and format)."""
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT

    def setup(self) -> None:
        """Apply level and format to the root logger."""
        logging.basicConfig(
            level=self._level,
            format=self._format,
            force=True,
        )

    def get_logger(self, name: str) -> logging.Logger:
        """Return a logger with the given name (uses root config)."""
        return logging.getLogger(name)


class PRLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with ``PR #<id>:`` for the pull request being bridged."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"PR #{self.extra['pr_id']}: {msg}", kwargs


def pr_logger(log: logging.Logger, pr_id: str) -> PRLogAdapter:
    """Wrap ``log`` so messages carry the pull request id."""
    return PRLogAdapter(log, {"pr_id": pr_id})
