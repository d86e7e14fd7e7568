"""Job status types.

The status object is the only surface through which job outcomes are
reported: the API layer polls it, and parent jobs read their children's.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Optional

from feedmanager.errors import ErrorCategory


class JobState(Enum):
    """State of a job.

    States follow the lifecycle:
    PENDING → RUNNING → (SUCCEEDED | FAILED | CANCELLED)
    """

    PENDING = auto()
    RUNNING = auto()
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class JobType(Enum):
    """Kinds of jobs run by the feed manager."""

    PROCESS_FEED = "process_feed"
    FETCH_FEED = "fetch_feed"
    VALIDATE_FEED = "validate_feed"
    AUTO_PUBLISH_FEED = "auto_publish_feed"
    AUTO_DEPLOY_FEED = "auto_deploy_feed"


@dataclass
class JobStatus:
    """Observable status of a job.

    Attributes:
        state: Lifecycle state
        error: Whether the job failed
        message: Human-readable status message shown to operators
        percent_complete: Progress estimate (0-100)
        started_at: When the job started running
        completed_at: When the job reached a terminal state
        exception_type: Name of the exception class for unexpected failures
        category: Error category for failed jobs
        details: Additional status details
    """

    state: JobState = JobState.PENDING
    error: bool = False
    message: str = "Waiting to begin job..."
    percent_complete: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    exception_type: Optional[str] = None
    category: Optional[ErrorCategory] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.state.is_terminal

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def start(self) -> None:
        self.state = JobState.RUNNING
        self.started_at = datetime.utcnow()
        self.message = "Job started..."

    def update(self, message: str, percent_complete: Optional[float] = None) -> None:
        """Update progress without changing state."""
        self.message = message
        if percent_complete is not None:
            self.percent_complete = percent_complete

    def fail(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNEXPECTED,
        exception: Optional[BaseException] = None,
    ) -> None:
        """Mark the job as failed. The first failure message wins."""
        if self.state == JobState.FAILED:
            return
        self.state = JobState.FAILED
        self.error = True
        self.message = message
        self.category = category
        self.percent_complete = 100.0
        self.completed_at = datetime.utcnow()
        if exception is not None:
            self.exception_type = type(exception).__name__

    def complete(self, message: str = "Job complete!") -> None:
        """Mark the job as succeeded unless it already reached a terminal state."""
        if self.state.is_terminal:
            return
        self.state = JobState.SUCCEEDED
        self.error = False
        self.message = message
        self.percent_complete = 100.0
        self.completed_at = datetime.utcnow()

    def cancel(self, message: str) -> None:
        if self.state.is_terminal:
            return
        self.state = JobState.CANCELLED
        self.message = message
        self.completed_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.name.lower(),
            "error": self.error,
            "message": self.message,
            "percent_complete": self.percent_complete,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "exception_type": self.exception_type,
            "category": self.category.name.lower() if self.category else None,
            "details": self.details,
        }
