"""Base class for monitorable jobs with lifecycle hooks.

A job is a unit of asynchronous work with an observable status and an
ordered list of subjobs it owns. ``run()`` is the only entry point and it
never raises: every failure ends up in ``status``. Task cancellation is the
one exception that passes through, after the status is marked CANCELLED.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import uuid4

from feedmanager.errors import ErrorCategory, FeedManagerError, categorize
from feedmanager.events import Event, EventBus, EventType
from feedmanager.jobs.status import JobState, JobStatus, JobType

logger = logging.getLogger(__name__)


class MonitorableJob(ABC):
    """Abstract base class for feed manager jobs.

    The base class provides:

    - Status lifecycle (RUNNING on entry, SUCCEEDED/FAILED/CANCELLED on exit)
    - Conversion of every exception into a failed status
    - Lifecycle hooks (on_start, on_complete, on_error)
    - Event emission for job state changes
    - Ownership of an ordered subjob list

    Subclasses must implement ``job_logic``. To fail with a specific message,
    either raise a ``FeedManagerError`` or call ``self.fail(...)`` and return.

    Example:
        class ValidateFeedJob(MonitorableJob):
            async def job_logic(self) -> None:
                result = self.validator.validate(path)
                if result.has_blocking_errors:
                    raise ContentError("Feed has blocking errors.")
    """

    def __init__(
        self,
        job_type: JobType,
        name: Optional[str] = None,
        owner: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        """Initialize the job.

        Args:
            job_type: Kind of job
            name: Display name (defaults to the job type value)
            owner: Acting identity, recorded for attribution only
            event_bus: Bus for lifecycle events (events are not emitted if None)
        """
        self.job_id = str(uuid4())
        self.job_type = job_type
        self.name = name or job_type.value
        self.owner = owner
        self.status = JobStatus()
        self.parent: Optional["MonitorableJob"] = None
        self._subjobs: List["MonitorableJob"] = []
        self._event_bus = event_bus

    @abstractmethod
    async def job_logic(self) -> None:
        """The job's work. Raise or call ``fail`` to report failure."""
        pass

    @property
    def subjobs(self) -> List["MonitorableJob"]:
        """Subjobs in the order they were appended."""
        return list(self._subjobs)

    @property
    def last_subjob(self) -> Optional["MonitorableJob"]:
        """The last appended subjob, or None if none was appended."""
        return self._subjobs[-1] if self._subjobs else None

    @property
    def root(self) -> "MonitorableJob":
        job = self
        while job.parent is not None:
            job = job.parent
        return job

    def add_subjob(self, job: "MonitorableJob") -> "MonitorableJob":
        """Append a subjob owned by this job. Returns the subjob."""
        job.parent = self
        if job._event_bus is None:
            job._event_bus = self._event_bus
        self._subjobs.append(job)
        return job

    def fail(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        """Mark this job as failed with an operator-facing message."""
        if category is None:
            category = categorize(exception) if exception is not None else ErrorCategory.UNEXPECTED
        self.status.fail(message, category=category, exception=exception)

    async def run(self) -> JobStatus:
        """Run the job with full lifecycle management.

        Returns:
            The job's terminal status
        """
        self.status.start()
        logger.debug(f"Starting job {self.name} ({self.job_id})")
        await self._emit_event(EventType.JOB_STARTED)

        try:
            await self.on_start()
            await self.job_logic()
        except asyncio.CancelledError:
            # Record the cancellation, then let it propagate
            self.status.cancel("Job cancelled.")
            logger.warning(f"Job {self.name} ({self.job_id}) cancelled")
            raise
        except FeedManagerError as e:
            self.fail(e.message, exception=e)
            if e.details:
                self.status.details.update(e.details)
        except Exception as e:
            logger.exception(f"Unexpected error in job {self.name} ({self.job_id})")
            self.fail(f"An unexpected error occurred: {e}", exception=e)

        if self.status.state == JobState.FAILED:
            self.status.details.setdefault("category", self.status.category.name.lower())
            logger.error(f"Job {self.name} ({self.job_id}) failed: {self.status.message}")
            await self._safe_hook(self.on_error)
            await self._emit_event(EventType.JOB_FAILED)
        else:
            self.status.complete()
            logger.info(f"Job {self.name} ({self.job_id}) finished: {self.status.message}")
            await self._safe_hook(self.on_complete)
            await self._emit_event(EventType.JOB_COMPLETE)

        return self.status

    # Lifecycle hooks

    async def on_start(self) -> None:
        """Called before ``job_logic``. Exceptions here fail the job."""
        pass

    async def on_complete(self) -> None:
        """Called after the job succeeded."""
        pass

    async def on_error(self) -> None:
        """Called after the job failed."""
        pass

    async def _safe_hook(self, hook: Any) -> None:
        try:
            await hook()
        except Exception:
            logger.exception(f"Lifecycle hook failed for job {self.name} ({self.job_id})")

    async def _emit_event(self, event_type: EventType) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(
            event_type=event_type,
            payload=self.to_dict(include_subjobs=False),
            correlation_id=self.root.job_id,
            source=self.name,
        ))

    def to_dict(self, include_subjobs: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "job_id": self.job_id,
            "job_type": self.job_type.value,
            "name": self.name,
            "owner": self.owner,
            "status": self.status.to_dict(),
        }
        if include_subjobs:
            data["subjobs"] = [job.to_dict() for job in self._subjobs]
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.job_id!r}, state={self.status.state.name})"
