"""
Exception types shared across the notice scheduler.
"""

from typing import Optional


class NoticeSchedulerError(Exception):
    """Base class for notice scheduler errors."""
    pass


class ConfigurationError(NoticeSchedulerError):
    """Raised when a required configuration value is missing, empty or malformed."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ContractViolation(NoticeSchedulerError):
    """Raised when the runner or the scheduler is used outside its contract."""
    pass
