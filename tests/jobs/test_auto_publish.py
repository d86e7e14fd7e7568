"""Tests for the auto-publish job."""

from pathlib import Path

import pytest

from feedmanager.errors import ErrorCategory
from feedmanager.jobs.auto_deploy import AutoDeployFeedJob
from feedmanager.jobs.auto_publish import (
    BLOCKING_ERRORS,
    GTFS_PLUS_BLOCKING_ERRORS,
    MISSING_AGENCY_ID,
    AutoPublishJob,
)
from feedmanager.jobs.process_feed import build_feed_chain
from feedmanager.services.publisher import PublishRejectedError

TEST_AGENCY = "TEST_AGENCY"


@pytest.fixture
def publishing_context(context):
    context.config.publisher.enabled = True
    return context


@pytest.fixture
def feed_source(records):
    project = records.project()
    feed_source = records.feed_source(project)
    records.agency_id(feed_source, TEST_AGENCY)
    return feed_source


class TestAutoPublishJob:
    """Tests for AutoPublishJob decisions."""

    @pytest.mark.asyncio
    async def test_fail_on_blocking_errors(self, publishing_context, records, feed_source, publisher) -> None:
        """Test a version with blocking errors is not published."""
        version = records.feed_version(feed_source, blocking_error_count=1, file_path="/tmp/feed.zip")

        job = AutoPublishJob(publishing_context, feed_source.id, owner="user-1")
        status = await job.run()

        assert status.error is True
        assert status.message == "Could not publish this feed version because it contains blocking errors."
        assert status.category == ErrorCategory.CONTENT
        publisher.submit.assert_not_called()
        assert records.get_version(version.id).sent_to_external_publisher is None

    @pytest.mark.asyncio
    async def test_fail_on_gtfs_plus_blocking_errors(self, publishing_context, records, feed_source) -> None:
        """Test GTFS+ blocking errors are reported separately."""
        records.feed_version(feed_source, gtfs_plus_blocking_error_count=3, file_path="/tmp/feed.zip")

        status = await AutoPublishJob(publishing_context, feed_source.id).run()

        assert status.error is True
        assert status.message == GTFS_PLUS_BLOCKING_ERRORS

    @pytest.mark.asyncio
    async def test_blocking_errors_checked_first(self, publishing_context, records, feed_source) -> None:
        """Test blocking errors take precedence over GTFS+ errors."""
        records.feed_version(
            feed_source,
            blocking_error_count=1,
            gtfs_plus_blocking_error_count=1,
            file_path="/tmp/feed.zip",
        )

        status = await AutoPublishJob(publishing_context, feed_source.id).run()

        assert status.message == BLOCKING_ERRORS

    @pytest.mark.asyncio
    async def test_fail_without_agency_id(self, publishing_context, records) -> None:
        """Test a feed source without the external agency property cannot be published."""
        feed_source = records.feed_source(records.project())
        records.feed_version(feed_source, file_path="/tmp/feed.zip")

        status = await AutoPublishJob(publishing_context, feed_source.id).run()

        assert status.error is True
        assert status.message == MISSING_AGENCY_ID
        assert status.category == ErrorCategory.CONFIGURATION

    @pytest.mark.asyncio
    async def test_publish_clean_version(self, publishing_context, records, feed_source, publisher) -> None:
        """Test a clean version is submitted and marked as sent before success."""
        version = records.feed_version(feed_source, file_path="/tmp/feed.zip")

        status = await AutoPublishJob(publishing_context, feed_source.id, owner="user-1").run()

        assert status.error is False
        assert status.message == "Job complete!"
        publisher.submit.assert_called_once_with(TEST_AGENCY, Path("/tmp/feed.zip"), "user-1")
        assert records.get_version(version.id).sent_to_external_publisher is not None

    @pytest.mark.asyncio
    async def test_publishes_latest_version(self, publishing_context, records, feed_source) -> None:
        """Test the latest version is the one published by default."""
        old = records.feed_version(feed_source, file_path="/tmp/old.zip")
        new = records.feed_version(feed_source, file_path="/tmp/new.zip")

        await AutoPublishJob(publishing_context, feed_source.id).run()

        assert records.get_version(new.id).sent_to_external_publisher is not None
        assert records.get_version(old.id).sent_to_external_publisher is None

    @pytest.mark.asyncio
    async def test_rejected_submission_records_nothing(
        self, publishing_context, records, feed_source, publisher
    ) -> None:
        """Test a rejected submission fails without writing the timestamp."""
        publisher.submit.side_effect = PublishRejectedError("External publisher rejected the feed submission.")
        version = records.feed_version(feed_source, file_path="/tmp/feed.zip")

        status = await AutoPublishJob(publishing_context, feed_source.id).run()

        assert status.error is True
        assert status.category == ErrorCategory.TRANSIENT
        assert records.get_version(version.id).sent_to_external_publisher is None


class TestPublishStage:
    """Tests for the publish stage of the processing chain."""

    @pytest.mark.asyncio
    async def test_chain_publishes_new_version(self, publishing_context, feed_source, gtfs_zip, publisher) -> None:
        """Test the chain runs fetch, validate and publish."""
        chain = build_feed_chain(publishing_context, feed_source.id, source_file=gtfs_zip)
        await chain.run()

        assert [job.name for job in chain.subjobs] == ["fetch_feed", "validate_feed", "auto_publish_feed"]
        assert isinstance(chain.last_subjob, AutoPublishJob)
        assert chain.status.error is False
        publisher.submit.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_agency_id_ends_chain(
        self, publishing_context, records, gtfs_zip, publisher, deploy_target
    ) -> None:
        """Test a missing agency id fails the publish stage and skips deploy."""
        server = records.server()
        project = records.project()
        deployment = records.deployment(project, server)
        records.update_project(project, auto_deploy=True, pinned_deployment_id=deployment.id)
        feed_source = records.feed_source(project, deployable=True)

        chain = build_feed_chain(publishing_context, feed_source.id, source_file=gtfs_zip)
        await chain.run()

        assert [job.name for job in chain.subjobs] == ["fetch_feed", "validate_feed", "auto_publish_feed"]
        assert chain.last_subjob.status.error is True
        assert chain.last_subjob.status.message == MISSING_AGENCY_ID
        assert chain.status.error is True
        assert chain.status.message == MISSING_AGENCY_ID
        assert not any(isinstance(job, AutoDeployFeedJob) for job in chain.subjobs)
        publisher.submit.assert_not_called()
        deploy_target.trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_publish_stage_absent_when_disabled(self, context, feed_source, gtfs_zip) -> None:
        """Test no publish subjob is created when publishing is disabled."""
        chain = build_feed_chain(context, feed_source.id, source_file=gtfs_zip)
        await chain.run()

        assert not any(isinstance(job, AutoPublishJob) for job in chain.subjobs)
