"""Builds the fetch → validate → [publish] → [deploy] chain for one feed source."""

from datetime import date
from pathlib import Path
from typing import Optional

from feedmanager.database.repositories import FeedSourceRepository, ProjectRepository
from feedmanager.jobs.auto_deploy import AutoDeployFeedJob, should_auto_deploy
from feedmanager.jobs.auto_publish import AutoPublishJob
from feedmanager.jobs.chain import JobChain, Stage
from feedmanager.jobs.fetch import FetchFeedJob
from feedmanager.jobs.status import JobType
from feedmanager.jobs.validate import ValidateFeedJob
from feedmanager.services.context import JobContext


def fetched_version_id(chain: JobChain) -> Optional[str]:
    """Id of the version created by the chain's fetch stage, if any."""
    for job in chain.subjobs:
        if isinstance(job, FetchFeedJob):
            return job.feed_version_id
    return None


def build_feed_chain(
    context: JobContext,
    feed_source_id: str,
    owner: Optional[str] = None,
    source_file: Optional[Path] = None,
    today: Optional[date] = None,
) -> JobChain:
    """Build the root job processing a new version of a feed source.

    Args:
        context: Job collaborators
        feed_source_id: Feed source to process
        owner: Acting identity for attribution
        source_file: Process an uploaded file instead of downloading
        today: Reference date for the out-of-date check

    Returns:
        The root job; call ``run()`` to execute it
    """

    def has_new_version(chain: JobChain) -> bool:
        return fetched_version_id(chain) is not None

    def can_publish(chain: JobChain) -> bool:
        return has_new_version(chain) and context.publishing_enabled

    def can_deploy(chain: JobChain) -> bool:
        if not has_new_version(chain):
            return False
        with context.session_factory() as session:
            feed_source = FeedSourceRepository(session).get_by_id(feed_source_id)
            project = (
                ProjectRepository(session).get_by_id(feed_source.project_id)
                if feed_source else None
            )
        return should_auto_deploy(feed_source, project)

    stages = [
        Stage(
            "fetch",
            lambda chain: FetchFeedJob(context, feed_source_id, owner=owner, source_file=source_file),
        ),
        Stage(
            "validate",
            lambda chain: ValidateFeedJob(context, fetched_version_id(chain), owner=owner),
            guard=has_new_version,
        ),
        Stage(
            "publish",
            lambda chain: AutoPublishJob(
                context, feed_source_id, owner=owner, feed_version_id=fetched_version_id(chain)
            ),
            guard=can_publish,
        ),
        Stage(
            "deploy",
            lambda chain: AutoDeployFeedJob(
                context,
                feed_source_id,
                owner=owner,
                feed_version_id=fetched_version_id(chain),
                today=today,
            ),
            guard=can_deploy,
        ),
    ]

    return JobChain(
        stages,
        job_type=JobType.PROCESS_FEED,
        name=f"process_feed:{feed_source_id}",
        owner=owner,
        event_bus=context.event_bus,
    )
