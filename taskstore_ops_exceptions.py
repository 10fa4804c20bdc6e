"""
Task Store Operations Exceptions

This module defines the exception root for the taskstore_ops package
so that callers can separate configuration faults from connectivity faults.
"""

from typing import Iterable


class TaskStoreOpsError(Exception):
    """Base exception for all taskstore_ops errors"""
    pass


class ConfigurationError(TaskStoreOpsError):
    """Raised when configuration is invalid or missing"""
    pass


class FatalConfigurationError(ConfigurationError):
    """
    Raised when the store connection cannot even be attempted.

    Carries the names of the settings that are missing so the supervisor
    can report them before terminating the process.
    """

    def __init__(self, missing_settings: Iterable[str], message: str = ""):
        self.missing_settings = list(missing_settings)
        if not message:
            message = f"Missing required settings: {', '.join(self.missing_settings)}"
        super().__init__(message)

