"""Application logger for the settlement service.

Service modules log through children of the ``keeper`` logger; uvicorn,
SQLAlchemy and httpx are configured separately in ``logging_config``.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER = "keeper"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stdout handler to the ``keeper`` logger and set its level.

    Safe to call more than once: the level is updated, the handler is not
    added twice.  An unknown level name falls back to INFO.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    # Records stop here so uvicorn's root handlers don't print them twice.
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a service module, e.g. ``keeper.app.services.retry.coordinator``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
