"""
Logging Setup

Applies the configured logging level and format for the process.
"""

import logging

from config import MonitoringSettings


def configure_logging(settings: MonitoringSettings) -> None:
    """
    Configure the root logger from monitoring settings.

    Unknown level names fall back to INFO with a warning.
    """
    level = logging.getLevelName(settings.log_level.upper())
    invalid_level = not isinstance(level, int)
    logging.basicConfig(
        level=logging.INFO if invalid_level else level,
        format=settings.log_format,
    )
    if invalid_level:
        logging.getLogger(__name__).warning(
            f"Unknown log level '{settings.log_level}', using INFO"
        )
