"""
Logger Configuration Module

All compartsim modules log through children of the ``compartsim`` logger,
obtained with ``get_logger(__name__)``. Handlers are attached only to the
project logger; the ``logging`` section of config.yaml (level, file) is
applied by ``configure_from_config``.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

PROJECT_LOGGER = "compartsim"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logger(
    name: str = PROJECT_LOGGER,
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None
) -> logging.Logger:
    """
    Set up and configure a logger.

    Existing handlers of the logger are replaced, so calling this again
    (e.g. from the CLI after the import-time default) reconfigures rather
    than duplicates output.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a log file receiving every record
        log_format: Optional custom log format string

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format or DEFAULT_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_level(level))
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        # the file sees DEBUG even when the console is quieter
        logger.setLevel(logging.DEBUG)

    return logger


def configure_from_config(config, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the project logger from the ``logging`` section of a ConfigManager.

    Args:
        config: Loaded ConfigManager
        level: Overrides ``logging.level`` when given

    Returns:
        The project logger
    """
    return setup_logger(
        PROJECT_LOGGER,
        level=level or config.get('logging.level', 'INFO'),
        log_file=config.get('logging.file'),
        log_format=config.get('logging.format'),
    )


def get_logger(name: str = PROJECT_LOGGER) -> logging.Logger:
    """
    Get a logger, configuring it on first use outside the project tree.

    Loggers below the project logger (``compartsim.*``) propagate to it and
    never receive handlers of their own.
    """
    logger = logging.getLogger(name)
    if name == PROJECT_LOGGER or name.startswith(PROJECT_LOGGER + "."):
        return logger
    if not logger.handlers:
        return setup_logger(name)
    return logger


class LoggerContext:
    """Context manager for temporarily changing log level."""

    def __init__(self, logger: logging.Logger, level: str):
        self.logger = logger
        self.new_level = _level(level)
        self.original_level = logger.level
        self._handler_levels = []

    def __enter__(self) -> logging.Logger:
        self._handler_levels = [(h, h.level) for h in self.logger.handlers]
        self.logger.setLevel(self.new_level)
        for handler, _ in self._handler_levels:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(max(handler.level, self.new_level))
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.setLevel(self.original_level)
        for handler, level in self._handler_levels:
            handler.setLevel(level)


# Default project logger
project_logger = setup_logger()
