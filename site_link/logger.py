"""
Logging helpers for site_link.

The library only logs through ``logging.getLogger(__name__)`` and never
configures handlers itself; ``setup_logger`` is for interactive use.
"""

import logging


def setup_logger(
    name: str = "site_link",
    log_level: str = "INFO"
) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Args:
        name: Logger name
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing stream handlers to avoid duplicates
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler):
            logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

    return logger
