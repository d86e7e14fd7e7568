"""Completion poller for the external publishing pipeline.

The external pipeline signals that it finished an agency's feed by writing
a marker object whose etag changes on every republish. The updater keeps
the last etag seen per agency and, on each tick, marks pending feed versions
of that agency as processed exactly once per observed etag change.

The etag only tells us that *something* changed; if an agency was
republished several times between two ticks, only the latest state is
observed.
"""

import asyncio
import logging
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from feedmanager.database.connection import SessionFactory
from feedmanager.database.models import utcnow
from feedmanager.database.repositories import ExternalPropertyRepository, FeedVersionRepository
from feedmanager.errors import StorageUnavailableError
from feedmanager.events import Event, EventBus, EventType
from feedmanager.services.storage import CompletedFeedRetriever

logger = logging.getLogger(__name__)


class FeedUpdater:
    """Detects externally completed publishes by etag change."""

    JOB_ID = "feed-updater"

    def __init__(
        self,
        retriever: CompletedFeedRetriever,
        session_factory: SessionFactory,
        resource_type: str = "MTC",
        property_name: str = "AgencyId",
        clock: Callable[[], datetime] = utcnow,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._retriever = retriever
        self._session_factory = session_factory
        self._resource_type = resource_type
        self._property_name = property_name
        self._clock = clock
        self._event_bus = event_bus
        self._etags: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def last_etags(self) -> Mapping[str, str]:
        """Read-only view of the last etag seen per agency."""
        return MappingProxyType(self._etags)

    def register(self, scheduler, interval_seconds: int) -> None:
        """Run ``tick`` periodically on a started FeedScheduler."""
        scheduler.add_interval_job(self.JOB_ID, self.tick, interval_seconds)

    async def tick(self) -> None:
        """Timer callback."""
        try:
            updated = await self.check_for_updated_feeds()
        except Exception:
            logger.exception("Feed updater tick failed")
            return
        if updated:
            logger.info(f"Detected {len(updated)} externally completed feeds: {sorted(updated)}")

    async def check_for_updated_feeds(self) -> Dict[str, str]:
        """Process completion markers whose etag changed since the last tick.

        Ticks never overlap. If storage cannot be listed, nothing changes
        and no completions are reported.

        Returns:
            Agency id to etag for every completion newly detected on this tick
        """
        async with self._lock:
            try:
                markers = await asyncio.to_thread(self._retriever.retrieve_completed_feeds)
            except StorageUnavailableError as e:
                logger.error(f"Could not check for completed feeds: {e}")
                return {}

            updated: Dict[str, str] = {}
            for marker in markers:
                agency_id = marker.agency_id
                if self._etags.get(agency_id) == marker.etag:
                    continue

                try:
                    namespaces = await asyncio.to_thread(self._mark_processed, agency_id)
                except SQLAlchemyError:
                    # Leave the etag unrecorded so the next tick retries this agency
                    logger.exception(f"Could not record completion for agency {agency_id}")
                    continue

                self._etags[agency_id] = marker.etag
                updated[agency_id] = marker.etag
                await self._publish(agency_id, marker.etag, namespaces)

            return updated

    def _mark_processed(self, agency_id: str) -> List[str]:
        """Mark the newest pending version of each matching feed source.

        When several versions of one feed source are pending, only the one
        sent most recently is marked; older ones are left as they are.

        Returns:
            Namespaces of the versions marked
        """
        processed_at = self._clock()
        namespaces: List[str] = []

        with self._session_factory() as session:
            feed_source_ids = ExternalPropertyRepository(session).find_feed_source_ids(
                self._resource_type, self._property_name, agency_id
            )
            if not feed_source_ids:
                logger.warning(f"No feed source has {self._property_name}={agency_id}")
                return namespaces

            versions = FeedVersionRepository(session)
            seen: set = set()
            for version in versions.get_awaiting_external_processing(feed_source_ids):
                if version.feed_source_id in seen:
                    continue
                seen.add(version.feed_source_id)
                versions.mark_processed(version.id, processed_at)
                namespaces.append(version.namespace)
                logger.info(
                    f"Feed version {version.id} (namespace {version.namespace}) "
                    f"processed externally for agency {agency_id}"
                )

        return namespaces

    async def _publish(self, agency_id: str, etag: str, namespaces: List[str]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(
            event_type=EventType.FEED_PROCESSED_EXTERNALLY,
            payload={"agency_id": agency_id, "etag": etag, "namespaces": namespaces},
            source=self.JOB_ID,
        ))
