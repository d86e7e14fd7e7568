"""Job core: monitorable jobs, guard-gated chains and the feed processing jobs."""

from feedmanager.jobs.auto_deploy import AutoDeployFeedJob, should_auto_deploy
from feedmanager.jobs.auto_publish import AutoPublishJob
from feedmanager.jobs.chain import ChainOutcome, JobChain, Stage, StageOutcome
from feedmanager.jobs.fetch import FetchFeedJob
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.process_feed import build_feed_chain, fetched_version_id
from feedmanager.jobs.status import JobState, JobStatus, JobType
from feedmanager.jobs.validate import ValidateFeedJob

__all__ = [
    "AutoDeployFeedJob",
    "AutoPublishJob",
    "ChainOutcome",
    "FetchFeedJob",
    "JobChain",
    "JobState",
    "JobStatus",
    "JobType",
    "MonitorableJob",
    "Stage",
    "StageOutcome",
    "ValidateFeedJob",
    "build_feed_chain",
    "fetched_version_id",
    "should_auto_deploy",
]
