"""Tests for the external publishing completion poller."""

import threading
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from feedmanager.errors import StorageUnavailableError
from feedmanager.events import EventType
from feedmanager.scheduler.feed_updater import FeedUpdater
from feedmanager.services.storage import CompletionMarker

TEST_AGENCY = "TEST_AGENCY"
PROCESSED_AT = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def retriever() -> MagicMock:
    mock = MagicMock()
    mock.retrieve_completed_feeds.return_value = []
    return mock


@pytest.fixture
def updater(retriever, session_factory, event_bus) -> FeedUpdater:
    return FeedUpdater(
        retriever,
        session_factory,
        clock=lambda: PROCESSED_AT,
        event_bus=event_bus,
    )


@pytest.fixture
def feed_source(records):
    feed_source = records.feed_source(records.project())
    records.agency_id(feed_source, TEST_AGENCY)
    return feed_source


def marker(agency_id: str, etag: str) -> CompletionMarker:
    return CompletionMarker(key=f"test-completed/{agency_id}", etag=etag)


class TestCompletionMarker:
    """Tests for agency id extraction."""

    def test_agency_id_is_last_segment(self) -> None:
        """Test the agency id is the key's last path segment."""
        assert CompletionMarker("test-completed/TEST_AGENCY", "e").agency_id == "TEST_AGENCY"
        assert CompletionMarker("a/b/agencyA", "e").agency_id == "agencyA"
        assert CompletionMarker("agencyA", "e").agency_id == "agencyA"


class TestFeedUpdater:
    """Tests for etag change detection."""

    @pytest.mark.asyncio
    async def test_detects_completion_once(self, updater, retriever, records, feed_source) -> None:
        """Test a completion is reported once per etag change."""
        version = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 30))

        assert await updater.check_for_updated_feeds() == {}

        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "test-etag")]
        assert await updater.check_for_updated_feeds() == {TEST_AGENCY: "test-etag"}
        assert records.get_version(version.id).processed_by_external_publisher == PROCESSED_AT

        updater._clock = lambda: datetime(2024, 6, 1)
        assert await updater.check_for_updated_feeds() == {}
        assert records.get_version(version.id).processed_by_external_publisher == PROCESSED_AT
        assert dict(updater.last_etags) == {TEST_AGENCY: "test-etag"}

    @pytest.mark.asyncio
    async def test_new_etag_marks_new_version(self, updater, retriever, records, feed_source) -> None:
        """Test a republish marks the version sent after the previous completion."""
        first = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 1))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag-1")]
        await updater.check_for_updated_feeds()

        second = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 2))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag-2")]
        updated = await updater.check_for_updated_feeds()

        assert updated == {TEST_AGENCY: "etag-2"}
        assert records.get_version(first.id).processed_by_external_publisher == PROCESSED_AT
        assert records.get_version(second.id).processed_by_external_publisher == PROCESSED_AT

    @pytest.mark.asyncio
    async def test_only_newest_pending_version_marked(self, updater, retriever, records, feed_source) -> None:
        """Test only the most recently sent pending version of a feed source is marked."""
        older = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 1))
        newer = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 2))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag")]

        await updater.check_for_updated_feeds()

        assert records.get_version(newer.id).processed_by_external_publisher == PROCESSED_AT
        assert records.get_version(older.id).processed_by_external_publisher is None

    @pytest.mark.asyncio
    async def test_unsent_version_not_marked(self, updater, retriever, records, feed_source) -> None:
        """Test versions never sent to the publisher are left alone."""
        version = records.feed_version(feed_source)
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag")]

        await updater.check_for_updated_feeds()

        assert records.get_version(version.id).processed_by_external_publisher is None

    @pytest.mark.asyncio
    async def test_unmatched_agency_consumes_etag(self, updater, retriever) -> None:
        """Test a marker with no matching feed source is still recorded."""
        retriever.retrieve_completed_feeds.return_value = [marker("agencyA", "test-etag")]

        assert await updater.check_for_updated_feeds() == {"agencyA": "test-etag"}
        assert await updater.check_for_updated_feeds() == {}

    @pytest.mark.asyncio
    async def test_storage_unavailable(self, updater, retriever) -> None:
        """Test a listing failure reports nothing and keeps state."""
        retriever.retrieve_completed_feeds.side_effect = StorageUnavailableError("listing failed")

        assert await updater.check_for_updated_feeds() == {}
        assert dict(updater.last_etags) == {}

    @pytest.mark.asyncio
    async def test_database_error_leaves_etag_unrecorded(
        self, updater, retriever, records, feed_source
    ) -> None:
        """Test an agency whose completion cannot be stored is retried next tick."""
        version = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 1))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag")]

        with patch.object(
            updater, "_mark_processed", side_effect=OperationalError("UPDATE", {}, Exception("locked"))
        ):
            assert await updater.check_for_updated_feeds() == {}
        assert TEST_AGENCY not in updater.last_etags

        assert await updater.check_for_updated_feeds() == {TEST_AGENCY: "etag"}
        assert records.get_version(version.id).processed_by_external_publisher == PROCESSED_AT

    @pytest.mark.asyncio
    async def test_publishes_event(self, updater, retriever, records, feed_source, event_bus) -> None:
        """Test detected completions are published with the marked namespaces."""
        version = records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 1))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag")]

        await updater.check_for_updated_feeds()

        events = event_bus.get_history(EventType.FEED_PROCESSED_EXTERNALLY)
        assert len(events) == 1
        assert events[0].payload == {
            "agency_id": TEST_AGENCY,
            "etag": "etag",
            "namespaces": [version.namespace],
        }

    @pytest.mark.asyncio
    async def test_marks_processed_off_event_loop(
        self, retriever, session_factory, records, feed_source
    ) -> None:
        """Test database writes for a completion run in a worker thread."""
        records.feed_version(feed_source, sent_to_external_publisher=datetime(2024, 4, 1))
        retriever.retrieve_completed_feeds.return_value = [marker(TEST_AGENCY, "etag")]
        threads = []

        def recording_factory():
            threads.append(threading.get_ident())
            return session_factory()

        updater = FeedUpdater(retriever, recording_factory, clock=lambda: PROCESSED_AT)

        assert await updater.check_for_updated_feeds() == {TEST_AGENCY: "etag"}
        assert threads
        assert threading.get_ident() not in threads

    def test_last_etags_is_read_only(self, updater) -> None:
        """Test the etag map cannot be modified from outside."""
        with pytest.raises(TypeError):
            updater.last_etags["x"] = "y"


class TestFeedUpdaterTimer:
    """Tests for the periodic tick."""

    @pytest.mark.asyncio
    async def test_tick_never_raises(self, updater, retriever) -> None:
        """Test an unexpected failure is logged, not raised."""
        retriever.retrieve_completed_feeds.side_effect = RuntimeError("boom")
        await updater.tick()

    def test_register(self, updater) -> None:
        """Test the tick is registered as an interval job."""
        scheduler = MagicMock()

        updater.register(scheduler, 300)

        scheduler.add_interval_job.assert_called_once_with(FeedUpdater.JOB_ID, updater.tick, 300)
