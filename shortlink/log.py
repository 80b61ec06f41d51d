"""Logging setup shared by the API process and the ingestion consumer."""

import logging

from shortlink.config import Settings

__all__ = ["LOGGER_NAME", "setup_logging"]

LOGGER_NAME = "shortlink"


def setup_logging(settings: Settings) -> logging.Logger:
    """Attach one stream handler to the package logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger
