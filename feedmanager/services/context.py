"""Collaborators handed to jobs.

Jobs never reach for global state: everything they need to talk to the
database or the outside world arrives through a ``JobContext``.
"""

from dataclasses import dataclass, field
from typing import Optional

import httpx

from feedmanager.config import FeedManagerConfig
from feedmanager.database.connection import SessionFactory
from feedmanager.events import EventBus
from feedmanager.services.deployer import DeployTarget, HttpDeployTarget
from feedmanager.services.publisher import ExternalPublisher, S3ExternalPublisher
from feedmanager.services.validator import GtfsZipValidator, Validator


@dataclass
class JobContext:
    """Shared collaborators for one process.

    Attributes:
        config: Feed manager configuration
        session_factory: Transactional session factory
        validator: Feed validator
        deploy_target: Deployment trigger
        publisher: External publisher (None when publishing is disabled)
        event_bus: Bus for job lifecycle events
        http_transport: Optional httpx transport used by fetch jobs
    """

    config: FeedManagerConfig
    session_factory: SessionFactory
    validator: Validator = field(default_factory=GtfsZipValidator)
    deploy_target: Optional[DeployTarget] = None
    publisher: Optional[ExternalPublisher] = None
    event_bus: EventBus = field(default_factory=EventBus)
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    def __post_init__(self) -> None:
        if self.deploy_target is None:
            self.deploy_target = HttpDeployTarget(timeout=self.config.deploy.timeout)
        if self.publisher is None and self.config.publisher.enabled:
            self.publisher = S3ExternalPublisher(
                bucket=self.config.publisher.bucket,
                endpoint_url=self.config.publisher.endpoint_url,
                region=self.config.publisher.region,
            )

    @property
    def publishing_enabled(self) -> bool:
        return self.config.publisher.enabled and self.publisher is not None

    def http_client(self) -> httpx.AsyncClient:
        """Create an HTTP client configured for feed downloads."""
        return httpx.AsyncClient(
            timeout=self.config.fetch.timeout,
            follow_redirects=self.config.fetch.follow_redirects,
            headers={"User-Agent": self.config.fetch.user_agent},
            transport=self.http_transport,
        )
