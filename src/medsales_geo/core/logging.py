"""Loguru logging configuration for the geocoding CLI and workers.

Stderr carries human-readable lines by default, or loguru's serialized JSON
records when ``json_logs`` is set (for log shippers in long-running
deployments). A ``log_dir`` adds a rotating plain-text file alongside.
"""

import sys
from pathlib import Path

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | {message}"
_LOG_FILE = "medsales-geo.log"


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, json_logs: bool = False) -> None:
    """Replace Loguru's sinks with the geocoding service's.

    Args:
        log_level: Minimum log level to emit (case-insensitive).
        log_dir: Optional directory for log files.  When set, a rotating
            file sink is added (rotated every 24 hours, retained 7 days).
        json_logs: Emit one JSON object per record on stderr instead of
            formatted text.
    """
    level = log_level.upper()
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_LOG_FORMAT)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / _LOG_FILE,
            level=level,
            format=_LOG_FORMAT,
            rotation="24h",
            retention="7 days",
        )
