"""Validation job: runs the validator and stores its summary on the version."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from feedmanager.database.models import utcnow
from feedmanager.database.repositories import FeedVersionRepository
from feedmanager.errors import NotFoundError
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobType
from feedmanager.services.context import JobContext
from feedmanager.services.validator import ValidationResult

logger = logging.getLogger(__name__)


class ValidateFeedJob(MonitorableJob):
    """Validate a feed version.

    Validation errors do not fail this job; they are recorded on the version
    for the publish and deploy stages to act on.
    """

    def __init__(
        self,
        context: JobContext,
        feed_version_id: str,
        owner: Optional[str] = None,
    ) -> None:
        super().__init__(JobType.VALIDATE_FEED, owner=owner, event_bus=context.event_bus)
        self.context = context
        self.feed_version_id = feed_version_id
        self.result: Optional[ValidationResult] = None

    async def job_logic(self) -> None:
        with self.context.session_factory() as session:
            version = FeedVersionRepository(session).get_by_id(self.feed_version_id)
        if version is None or not version.file_path:
            raise NotFoundError(f"Feed version {self.feed_version_id} does not exist.")

        self.status.update("Validating feed...", 20.0)
        result = await asyncio.to_thread(self.context.validator.validate, Path(version.file_path))

        with self.context.session_factory() as session:
            FeedVersionRepository(session).update(
                self.feed_version_id,
                validated_at=utcnow(),
                blocking_error_count=result.blocking_error_count,
                gtfs_plus_blocking_error_count=result.gtfs_plus_blocking_error_count,
                high_severity_error_count=result.high_severity_error_count,
                last_calendar_date=result.last_calendar_date,
                validation_errors=result.errors,
            )

        self.result = result
        self.status.details.update({
            "blocking_error_count": result.blocking_error_count,
            "high_severity_error_count": result.high_severity_error_count,
        })
        logger.info(
            f"Validated feed version {self.feed_version_id}: "
            f"{result.blocking_error_count} blocking errors"
        )
