"""
Logging configuration for the risk engine.

Provides structured logging for production monitoring and debugging.
"""

import logging
import sys
from typing import Optional


def get_logger(name: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (defaults to 'risk_engine')
        level: Optional level name overriding the default INFO

    Returns:
        Configured logger instance
    """
    logger_name = name or "risk_engine"
    logger = logging.getLogger(logger_name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    if level:
        logger.setLevel(level)

    return logger


# Default logger instance
logger = get_logger()
