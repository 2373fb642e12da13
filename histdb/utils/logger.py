"""
histdb Utils - Logger setup.

The daemon logs to a rotating file and to stderr; CLI commands log to
stderr only, so shell hooks stay quiet unless something is wrong.
Command text is only ever logged at DEBUG.
"""

from __future__ import annotations

import sys

from loguru import logger

from histdb.utils.log_config import LogConfig, load_log_config

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process} | "
    "{name}:{function}:{line} - {message}"
)

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def setup_logger(
    verbose: bool = False,
    level: str | None = None,
    config: LogConfig | None = None,
    to_file: bool = True,
) -> LogConfig:
    """
    Replace the loguru sinks with the histdb ones.

    Args:
        verbose: Send DEBUG and above to stderr
        level: The ``log_level`` setting
        config: Explicit settings, bypassing ``HISTDB_LOG_*`` (for testing)
        to_file: Add the rotating file sink (daemon only)

    Returns:
        The LogConfig in effect.
    """
    logger.remove()
    config = config or load_log_config(level)

    if to_file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.log_path,
            level=config.file_level,
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression=config.compression,
            enqueue=True,
        )

    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else config.console_level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )
    return config
