"""Exception taxonomy for the feed manager.

Errors are grouped by how the job and scheduling core reacts to them:

- CONFIGURATION: terminal for the current chain, needs an operator to
  reconfigure (missing pinned deployment, missing agency id).
- CONTENT: terminal for the current feed version (blocking validation errors).
- TRANSIENT: a collaborator failed (storage listing, fetch, deploy trigger);
  the next scheduled firing retries naturally.
- UNEXPECTED: anything else raised inside a job.

Jobs raise these internally. They never escape a job boundary; the job
converts them into a failed status.
"""

from enum import Enum, auto
from typing import Any, Dict, Optional

from feedmanager.cli.exit_codes import ExitCode


class ErrorCategory(Enum):
    """Categories of errors for handling decisions."""

    CONFIGURATION = auto()
    CONTENT = auto()
    TRANSIENT = auto()
    UNEXPECTED = auto()


class FeedManagerError(Exception):
    """Base exception for the feed manager.

    Attributes:
        message: Error message (shown to operators as the job status message)
        category: Error category
        exit_code: Exit code used when the error reaches the CLI
        details: Optional dictionary of additional error details
    """

    category: ErrorCategory = ErrorCategory.UNEXPECTED
    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(FeedManagerError):
    """Missing or inconsistent configuration."""

    category = ErrorCategory.CONFIGURATION
    exit_code = ExitCode.CONFIGURATION_ERROR


class ContentError(FeedManagerError):
    """The feed version content prevents the operation."""

    category = ErrorCategory.CONTENT
    exit_code = ExitCode.CONTENT_ERROR


class TransientCollaboratorError(FeedManagerError):
    """An external collaborator failed or rejected the request."""

    category = ErrorCategory.TRANSIENT
    exit_code = ExitCode.NETWORK_ERROR


class StorageUnavailableError(TransientCollaboratorError):
    """Object storage could not be listed or written."""

    exit_code = ExitCode.STORAGE_ERROR


class NotFoundError(FeedManagerError):
    """A requested record does not exist."""

    category = ErrorCategory.CONFIGURATION
    exit_code = ExitCode.NOT_FOUND


def categorize(exception: BaseException) -> ErrorCategory:
    """Get the error category for any exception."""
    if isinstance(exception, FeedManagerError):
        return exception.category
    return ErrorCategory.UNEXPECTED
