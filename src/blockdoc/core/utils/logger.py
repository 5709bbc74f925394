"""Central logging configuration"""

import logging
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-level logger, applying a basic config if none is set up."""
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    return logger


def set_level(level: str) -> None:
    """Set the level of the package loggers from a name such as 'DEBUG'."""
    logging.getLogger("blockdoc").setLevel(level.upper())
