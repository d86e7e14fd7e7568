"""Recurring fetch scheduling and external completion polling."""

from feedmanager.scheduler.feed_scheduler import SCHEDULER_OWNER, FeedScheduler
from feedmanager.scheduler.feed_updater import FeedUpdater

__all__ = ["SCHEDULER_OWNER", "FeedScheduler", "FeedUpdater"]
