"""
Simple logging module for the mapping engine.

All components log to console (stdout) with colored, structured output.

Usage:
    from shared.logger import get_logger

    logger = get_logger("mapping_engine.runtime")

    logger.info("Message here")
"""

import logging
import sys
from typing import Optional

from shared.config import config

# Global cache of loggers
_loggers = {}


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        # Color a copy so other handlers still see the plain level name
        original = record.levelname
        if original in self.COLORS:
            record.levelname = f"{self.COLORS[original]}{original}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _configured_level() -> int:
    level = logging.getLevelName(config.log_level)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a logger that outputs colored, structured logs to console.

    Args:
        name: Logger name (typically the dotted component name)
        level: Logging level (default: ``config.log_level``)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    effective = level if level is not None else _configured_level()

    logger = logging.getLogger(name)
    logger.setLevel(effective)
    logger.propagate = False

    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(effective)

    formatter = ColoredFormatter(
        fmt='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    _loggers[name] = logger
    return logger
