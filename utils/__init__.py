"""
Utilities Module

Helpers shared across the package:
- Logging configuration for the process
"""

from .logging_setup import configure_logging

__all__ = [
    'configure_logging',
]
