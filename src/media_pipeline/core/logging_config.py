"""Centralized logging configuration for the media pipeline."""

import os
import sys
import logging
from typing import Optional, Union

ROOT_LOGGER_NAME = "media-pipeline"

LOG_FORMATS = {
    "structured": (
        "%(asctime)s | %(name)s | %(levelname)-8s | "
        "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
    ),
    "simple": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# Set by set_log_level (the CLI --debug flag); wins over LOG_LEVEL.
_level_override: Optional[int] = None


def resolve_level(level: Union[str, int, None] = None) -> int:
    """Explicit level, then the process-wide override, then LOG_LEVEL, then INFO."""
    if isinstance(level, int):
        return level
    if level:
        return getattr(logging, level.upper(), logging.INFO)
    if _level_override is not None:
        return _level_override
    return getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Setup a stdout logger configured from the environment.

    The handler is attached once per logger; the level is applied when the
    logger is first configured or when ``level`` is given explicitly.

    Args:
        name: Logger name (defaults to "media-pipeline")
        level: Log level override (defaults to env var or INFO)
        format_type: Logging format ("structured" or "simple")

    Environment Variables:
        LOG_LEVEL: Set logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_FORMAT: Set format type ("structured" or "simple"), overrides format_type
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(resolve_level(level))
        format_name = os.getenv("LOG_FORMAT", format_type).lower()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                LOG_FORMATS.get(format_name, LOG_FORMATS["simple"]),
                datefmt="%Y-%m-%d %H:%M:%S" if format_name == "structured" else None,
            )
        )
        logger.addHandler(handler)
    elif level:
        logger.setLevel(resolve_level(level))

    logger.propagate = False
    return logger


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """
    Get a logger for a pipeline component.

    Args:
        component: Component name, e.g. "storage" or "processor.video".
            The logger is named "media-pipeline.<component>".
    """
    if not component:
        return setup_logger(ROOT_LOGGER_NAME)
    if component.startswith(ROOT_LOGGER_NAME):
        return setup_logger(component)
    return setup_logger(f"{ROOT_LOGGER_NAME}.{component}")


def set_log_level(level: Union[str, int, None]) -> None:
    """Apply a level to every pipeline logger, including ones created later."""
    global _level_override
    _level_override = resolve_level(level) if level is not None else None
    effective = resolve_level()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(effective)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(f"{ROOT_LOGGER_NAME}."):
            logging.getLogger(name).setLevel(effective)


logger = setup_logger()
