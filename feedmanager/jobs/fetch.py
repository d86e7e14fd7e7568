"""Fetch job: downloads a feed and records a new feed version when it changed."""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional, Tuple
from uuid import uuid4

import httpx

from feedmanager.database.models import utcnow
from feedmanager.database.repositories import FeedSourceRepository, FeedVersionRepository
from feedmanager.errors import ConfigurationError, NotFoundError, TransientCollaboratorError
from feedmanager.events import Event, EventType
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobType
from feedmanager.services.context import JobContext

logger = logging.getLogger(__name__)

FEED_NOT_CHANGED = "Feed has not changed."


class FetchFeedJob(MonitorableJob):
    """Retrieve a feed and store it as a new version.

    The feed is downloaded from the feed source's URL, or read from
    ``source_file`` for manual uploads. If its MD5 hash equals the latest
    version's hash, the job succeeds without creating a version.

    After a successful run, ``feed_version_id`` holds the new version's id
    (None when the feed had not changed).
    """

    def __init__(
        self,
        context: JobContext,
        feed_source_id: str,
        owner: Optional[str] = None,
        source_file: Optional[Path] = None,
    ) -> None:
        super().__init__(JobType.FETCH_FEED, owner=owner, event_bus=context.event_bus)
        self.context = context
        self.feed_source_id = feed_source_id
        self.source_file = source_file
        self.feed_version_id: Optional[str] = None

    async def job_logic(self) -> None:
        with self.context.session_factory() as session:
            feed_source = FeedSourceRepository(session).get_by_id(self.feed_source_id)
        if feed_source is None:
            raise NotFoundError(f"Feed source {self.feed_source_id} does not exist.")

        self.status.update("Retrieving feed...", 10.0)
        if self.source_file is not None:
            content = await asyncio.to_thread(self.source_file.read_bytes)
        else:
            if not feed_source.url:
                raise ConfigurationError("Feed source has no URL to fetch from.")
            content = await self._download(feed_source.url)

        digest = hashlib.md5(content).hexdigest()

        stored = await asyncio.to_thread(self._store_version, content, digest)
        if stored is None:
            logger.info(f"Feed source {self.feed_source_id} unchanged (hash {digest})")
            self.status.complete(FEED_NOT_CHANGED)
            return

        version_id, version_number = stored
        self.feed_version_id = version_id
        self.status.details["feed_version_id"] = version_id
        logger.info(f"Created version {version_number} of feed source {self.feed_source_id}")

        if self._event_bus is not None:
            await self._event_bus.publish(Event(
                event_type=EventType.FEED_VERSION_CREATED,
                payload={"feed_source_id": self.feed_source_id, "feed_version_id": version_id},
                correlation_id=self.root.job_id,
                source=self.name,
            ))

    def _store_version(self, content: bytes, digest: str) -> Optional[Tuple[str, int]]:
        """Write the feed file and create its version record.

        Returns:
            The new version's id and number, or None if the hash is unchanged
        """
        with self.context.session_factory() as session:
            versions = FeedVersionRepository(session)
            latest = versions.get_latest(self.feed_source_id)
            FeedSourceRepository(session).update(self.feed_source_id, last_fetched=utcnow())

            if latest is not None and latest.hash == digest:
                return None

            version_id = str(uuid4())
            feed_dir = self.context.config.feeds_dir / self.feed_source_id
            feed_dir.mkdir(parents=True, exist_ok=True)
            file_path = feed_dir / f"{version_id}.zip"
            file_path.write_bytes(content)

            version = versions.create(
                id=version_id,
                feed_source_id=self.feed_source_id,
                version=versions.next_version_number(self.feed_source_id),
                namespace=uuid4().hex,
                hash=digest,
                file_path=str(file_path),
                file_size=len(content),
            )
            return version_id, version.version

    async def _download(self, url: str) -> bytes:
        try:
            async with self.context.http_client() as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientCollaboratorError(
                f"Could not fetch feed: server responded with HTTP {e.response.status_code}.",
                details={"url": url},
            ) from e
        except httpx.HTTPError as e:
            raise TransientCollaboratorError(
                f"Could not fetch feed: {e}",
                details={"url": url},
            ) from e
        return response.content
