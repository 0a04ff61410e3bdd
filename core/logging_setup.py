"""
Core Module - Logging setup.

One stdout handler on the root logger, JSON lines or plain text.
"""

import json
import logging
import sys
from typing import Optional


NOISY_LOGGERS = ("aiohttp", "httpx", "httpcore", "anthropic", "urllib3")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    service_name: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        service_name: Name of the returned logger

    Returns:
        Configured service logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    return logging.getLogger(service_name or "agro_market")
