"""Auto-publish job: submits a clean feed version to the external publisher."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from feedmanager.database.models import utcnow
from feedmanager.database.repositories import (
    ExternalPropertyRepository,
    FeedSourceRepository,
    FeedVersionRepository,
)
from feedmanager.errors import ConfigurationError, ContentError, NotFoundError
from feedmanager.events import Event, EventType
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobType
from feedmanager.services.context import JobContext

logger = logging.getLogger(__name__)

MISSING_AGENCY_ID = (
    "Could not publish this feed version because the feed source has no external agency id."
)
BLOCKING_ERRORS = "Could not publish this feed version because it contains blocking errors."
GTFS_PLUS_BLOCKING_ERRORS = (
    "Could not publish this feed version because it contains GTFS+ blocking errors."
)


class AutoPublishJob(MonitorableJob):
    """Publish the latest (or given) version of a feed source.

    ``sent_to_external_publisher`` is committed before the job reports
    success, so anyone re-reading the version after completion sees it.
    """

    def __init__(
        self,
        context: JobContext,
        feed_source_id: str,
        owner: Optional[str] = None,
        feed_version_id: Optional[str] = None,
    ) -> None:
        super().__init__(JobType.AUTO_PUBLISH_FEED, owner=owner, event_bus=context.event_bus)
        self.context = context
        self.feed_source_id = feed_source_id
        self.feed_version_id = feed_version_id

    async def job_logic(self) -> None:
        publisher_config = self.context.config.publisher

        with self.context.session_factory() as session:
            feed_source = FeedSourceRepository(session).get_by_id(self.feed_source_id)
            if feed_source is None:
                raise NotFoundError(f"Feed source {self.feed_source_id} does not exist.")

            agency_id = ExternalPropertyRepository(session).get_value(
                self.feed_source_id,
                publisher_config.resource_type,
                publisher_config.agency_property,
            )
            versions = FeedVersionRepository(session)
            if self.feed_version_id:
                version = versions.get_by_id(self.feed_version_id)
            else:
                version = versions.get_latest(self.feed_source_id)

        if agency_id is None:
            raise ConfigurationError(MISSING_AGENCY_ID)
        if version is None:
            raise NotFoundError(f"Feed source {self.feed_source_id} has no feed version to publish.")

        if version.blocking_error_count > 0:
            raise ContentError(BLOCKING_ERRORS)
        if version.gtfs_plus_blocking_error_count > 0:
            raise ContentError(GTFS_PLUS_BLOCKING_ERRORS)

        if self.context.publisher is None:
            raise ConfigurationError("External publishing is not configured.")

        self.status.update(f"Publishing feed for agency {agency_id}...", 50.0)
        await asyncio.to_thread(
            self.context.publisher.submit,
            agency_id,
            Path(version.file_path),
            self.owner,
        )

        with self.context.session_factory() as session:
            FeedVersionRepository(session).update(version.id, sent_to_external_publisher=utcnow())

        logger.info(f"Feed version {version.id} sent to external publisher as {agency_id}")
        if self._event_bus is not None:
            await self._event_bus.publish(Event(
                event_type=EventType.FEED_PUBLISHED,
                payload={"feed_version_id": version.id, "agency_id": agency_id},
                correlation_id=self.root.job_id,
                source=self.name,
            ))
