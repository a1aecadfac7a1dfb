import logging
import sys
from typing import Optional

APP_LOGGER = "SceneRegen"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO", logger_name: str = APP_LOGGER) -> logging.Logger:
    """
    Configures and returns the application logger.
    Idempotent: repeated calls only adjust the level.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """Application logger, or a child of it (`SceneRegen.<component>`)."""
    if not component:
        return logging.getLogger(APP_LOGGER)
    return logging.getLogger(f"{APP_LOGGER}.{component}")
