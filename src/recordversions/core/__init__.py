"""Core recordversions utilities.

This module exports core utilities for use throughout the library.
"""

from recordversions.core.config import Settings, get_settings
from recordversions.core.logging import (
    LoggingContext,
    configure_logging,
    get_logger,
)

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "LoggingContext",
]
