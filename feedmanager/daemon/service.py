"""Main daemon service for the feed manager.

This module provides:
- Service lifecycle management (start/stop)
- Signal handling for graceful shutdown
- Wiring of the FeedScheduler and the FeedUpdater on one event loop
"""

import asyncio
import logging
import signal
from typing import Optional

from feedmanager.config import FeedManagerConfig
from feedmanager.database.connection import create_tables, get_session_maker, make_session_factory
from feedmanager.scheduler.feed_scheduler import FeedScheduler
from feedmanager.scheduler.feed_updater import FeedUpdater
from feedmanager.services.context import JobContext
from feedmanager.services.storage import CompletedFeedRetriever, S3CompletedFeedRetriever

logger = logging.getLogger(__name__)


def build_job_context(config: FeedManagerConfig) -> JobContext:
    """Build the collaborators for a process from configuration."""
    create_tables(config)
    return JobContext(
        config=config,
        session_factory=make_session_factory(get_session_maker(config)),
    )


class FeedManagerDaemon:
    """Long-running feed manager process.

    The daemon owns the FeedScheduler and, when publishing is enabled, the
    FeedUpdater. All timers share one APScheduler instance and event loop.

    Example:
        daemon = FeedManagerDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: FeedManagerConfig,
        context: Optional[JobContext] = None,
        retriever: Optional[CompletedFeedRetriever] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Feed manager configuration
            context: Job collaborators (built from config if None)
            retriever: Completion marker source (S3 from config if None)
        """
        self._config = config
        self._context = context
        self._retriever = retriever
        self._scheduler: Optional[FeedScheduler] = None
        self._updater: Optional[FeedUpdater] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the scheduler, arm fetch timers and register the updater."""
        logger.info("Starting feed manager daemon...")

        if self._context is None:
            self._context = build_job_context(self._config)

        self._scheduler = FeedScheduler(self._context)
        await self._scheduler.start()

        if self._config.scheduler.enabled and self._config.scheduler.auto_fetch_on_start:
            self._scheduler.schedule_all()

        publisher = self._config.publisher
        if publisher.enabled:
            retriever = self._retriever or S3CompletedFeedRetriever(
                bucket=publisher.bucket,
                prefix=publisher.completed_prefix,
                endpoint_url=publisher.endpoint_url,
                region=publisher.region,
            )
            self._updater = FeedUpdater(
                retriever,
                self._context.session_factory,
                resource_type=publisher.resource_type,
                property_name=publisher.agency_property,
                event_bus=self._context.event_bus,
            )
            self._updater.register(self._scheduler, self._config.scheduler.updater_interval_seconds)
            logger.info("Feed updater registered")

        self._running = True
        logger.info("Feed manager daemon started successfully")

    async def stop(self) -> None:
        """Cancel all timers and stop the scheduler."""
        logger.info("Stopping feed manager daemon...")
        self._running = False

        if self._scheduler:
            try:
                await self._scheduler.shutdown()
                logger.info("Feed scheduler stopped")
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        logger.info("Feed manager daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Optional[FeedScheduler]:
        """The feed scheduler, or None if not started."""
        return self._scheduler

    @property
    def updater(self) -> Optional[FeedUpdater]:
        """The feed updater, or None if publishing is disabled."""
        return self._updater


async def run_daemon(config: FeedManagerConfig) -> None:
    """Run the daemon with signal handling until SIGTERM or SIGINT."""
    daemon = FeedManagerDaemon(config)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
