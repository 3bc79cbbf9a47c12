"""
Exception types raised or reported by the job keeper.
"""

from typing import Optional


class JobKeeperError(Exception):
    """Base class for job keeper errors."""
    pass


class ConfigurationError(JobKeeperError):
    """Raised at construction when the keeper cannot be set up."""
    pass


class StorageError(JobKeeperError):
    """A durable storage operation failed."""

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.cause = cause


class DuplicateJobError(StorageError):
    """A job record with the same name already exists."""

    def __init__(self, name: str, cause: Optional[BaseException] = None):
        super().__init__("create", f"job '{name}' already exists", cause)
        self.name = name
