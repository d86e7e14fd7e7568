"""Per-feed-source recurring fetch scheduler.

The FeedScheduler owns one APScheduler interval job per auto-fetchable
feed source. Each firing builds and runs a fresh processing chain for that
feed source. The configuration owner must call ``schedule`` whenever a feed
source is created or updated and ``unschedule`` when it is deleted; the
scheduler never polls for configuration drift.

Timers live in memory only: ``schedule_all`` re-arms them from the
database at process start.
"""

import logging
import threading
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.job import Job as APJob
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from feedmanager.database.models import FeedSource, FetchIntervalUnit
from feedmanager.database.repositories import FeedSourceRepository
from feedmanager.jobs.chain import JobChain
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.process_feed import build_feed_chain
from feedmanager.jobs.status import JobType
from feedmanager.services.context import JobContext

logger = logging.getLogger(__name__)

SCHEDULER_OWNER = "scheduler"

ChainBuilder = Callable[..., JobChain]


def _timer_id(feed_source_id: str) -> str:
    return f"fetch:{feed_source_id}"


class FeedScheduler:
    """Recurring fetch timers keyed by feed source id.

    Example:
        scheduler = FeedScheduler(context)
        await scheduler.start()
        scheduler.schedule_all()

        # after a feed source update
        scheduler.schedule(feed_source)
    """

    def __init__(
        self,
        context: JobContext,
        chain_builder: ChainBuilder = build_feed_chain,
    ) -> None:
        """Initialize the scheduler.

        Args:
            context: Collaborators handed to every chain
            chain_builder: Builds the root job for a feed source
        """
        self._context = context
        self._config = context.config.scheduler
        self._chain_builder = chain_builder
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._timers: Dict[str, APJob] = {}
        self._lock = threading.Lock()
        self._history: Deque[MonitorableJob] = deque(maxlen=self._config.history_size)
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running

    @property
    def scheduled_feed_source_ids(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    async def start(self) -> None:
        """Start APScheduler. Must be called from within the event loop."""
        if self._running:
            logger.warning("Feed scheduler already running")
            return

        logger.info("Starting feed scheduler...")
        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()
        self._running = True
        logger.info("Feed scheduler started")

    async def shutdown(self) -> None:
        """Cancel all timers and stop APScheduler.

        Chains already running are not aborted.
        """
        if not self._running:
            return

        logger.info("Stopping feed scheduler...")
        with self._lock:
            for feed_source_id in list(self._timers):
                self._cancel(feed_source_id)

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Feed scheduler stopped")

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        executors = {"default": AsyncIOExecutor()}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # One firing per feed source at a time
            "misfire_grace_time": self._config.misfire_grace_time,
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_job_executed(event: Any) -> None:
            logger.debug(f"Timer {event.job_id} fired")

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Timer {event.job_id} raised: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Timer {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    # Timer management

    def schedule(self, feed_source: FeedSource) -> bool:
        """Replace the fetch timer of a feed source.

        Any existing timer is cancelled first. A new one is armed only if
        the feed source is auto-fetchable.

        Returns:
            True if a timer is armed after the call
        """
        with self._lock:
            self._cancel(feed_source.id)

            if not feed_source.is_auto_fetchable:
                logger.debug(f"Feed source {feed_source.id} is not auto-fetchable, no timer armed")
                return False

            if not self._scheduler:
                logger.warning(f"Feed scheduler not started, cannot schedule {feed_source.id}")
                return False

            unit = FetchIntervalUnit(feed_source.fetch_interval_unit)
            trigger = IntervalTrigger(
                seconds=int(feed_source.fetch_frequency.total_seconds()), timezone="UTC"
            )
            self._timers[feed_source.id] = self._scheduler.add_job(
                func=self._fire,
                trigger=trigger,
                id=_timer_id(feed_source.id),
                name=f"Fetch {feed_source.name}",
                args=[feed_source.id],
                replace_existing=True,
            )

        logger.info(
            f"Scheduled feed source {feed_source.id} every "
            f"{feed_source.fetch_interval} {unit.value}"
        )
        return True

    def unschedule(self, feed_source_id: str) -> bool:
        """Cancel the fetch timer of a feed source. No-op if there is none.

        Returns:
            True if a timer was cancelled
        """
        with self._lock:
            cancelled = self._cancel(feed_source_id)
        if cancelled:
            logger.info(f"Unscheduled feed source {feed_source_id}")
        return cancelled

    def schedule_all(self) -> int:
        """Arm timers for every auto-fetchable feed source.

        Returns:
            Number of timers armed
        """
        with self._context.session_factory() as session:
            feed_sources = FeedSourceRepository(session).get_auto_fetchable()

        armed = sum(1 for feed_source in feed_sources if self.schedule(feed_source))
        logger.info(f"Armed {armed} feed fetch timers")
        return armed

    def scheduled_count(self, feed_source_id: str) -> int:
        """Number of APScheduler jobs installed for a feed source (0 or 1)."""
        if not self._scheduler:
            return 0
        timer_id = _timer_id(feed_source_id)
        return sum(1 for job in self._scheduler.get_jobs() if job.id == timer_id)

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        seconds: int,
    ) -> None:
        """Run ``func`` every ``seconds`` on the shared scheduler."""
        if not self._scheduler:
            raise RuntimeError("Feed scheduler not started")
        self._scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds, timezone="UTC"),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        logger.info(f"Added interval job {job_id} every {seconds}s")

    def _cancel(self, feed_source_id: str) -> bool:
        """Remove a timer. Caller holds the lock."""
        timer = self._timers.pop(feed_source_id, None)
        if timer is None:
            return False
        try:
            timer.remove()
        except JobLookupError:
            # Already gone from APScheduler (e.g. after shutdown)
            pass
        return True

    # Execution

    async def _fire(self, feed_source_id: str) -> None:
        """Timer callback. Never raises, so the timer survives any failure."""
        await self.run_now(feed_source_id, owner=SCHEDULER_OWNER)

    async def run_now(
        self,
        feed_source_id: str,
        owner: Optional[str] = None,
        **chain_kwargs: Any,
    ) -> MonitorableJob:
        """Build and run a processing chain for a feed source immediately.

        Returns:
            The root job, in a terminal state
        """
        try:
            root = self._chain_builder(self._context, feed_source_id, owner=owner, **chain_kwargs)
        except Exception as e:
            logger.exception(f"Could not build processing chain for feed source {feed_source_id}")
            root = JobChain(
                [],
                job_type=JobType.PROCESS_FEED,
                name=f"process_feed:{feed_source_id}",
                owner=owner,
            )
            root.fail(f"Could not start processing feed source {feed_source_id}: {e}", exception=e)
            self._history.append(root)
            return root

        self._history.append(root)
        await root.run()
        return root

    # Root job history

    def get_history(self, limit: Optional[int] = None) -> List[MonitorableJob]:
        """Get root jobs, newest first."""
        jobs = list(reversed(self._history))
        return jobs[:limit] if limit is not None else jobs

    def get_job(self, job_id: str) -> Optional[MonitorableJob]:
        """Find a root job or any of its subjobs by id."""
        pending = list(self._history)
        while pending:
            job = pending.pop()
            if job.job_id == job_id:
                return job
            pending.extend(job.subjobs)
        return None

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        timers: List[Dict[str, Any]] = []
        with self._lock:
            for feed_source_id, timer in self._timers.items():
                next_run = getattr(timer, "next_run_time", None)
                timers.append({
                    "feed_source_id": feed_source_id,
                    "name": timer.name,
                    "next_run": next_run.isoformat() if next_run else None,
                })

        return {
            "running": self._running,
            "timers": timers,
            "history_size": len(self._history),
        }
