"""Auto-deploy job: redeploys a project's pinned deployment after a new feed version."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from feedmanager.database.models import FeedSource, FeedVersion, Project, utcnow
from feedmanager.database.repositories import (
    DeploymentRepository,
    FeedSourceRepository,
    FeedVersionRepository,
    OtpServerRepository,
    ProjectRepository,
)
from feedmanager.errors import (
    ConfigurationError,
    ContentError,
    NotFoundError,
    TransientCollaboratorError,
)
from feedmanager.events import Event, EventType
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobType
from feedmanager.services.context import JobContext
from feedmanager.services.deployer import DeployOutcome

logger = logging.getLogger(__name__)

PINNED_DEPLOYMENT_MISSING = "Pinned deployment does not exist. Cancelling auto-deploy."
CRITICAL_ERRORS = "Feed version has critical errors or is out of date. Cancelling auto-deploy."
NO_DEPLOY_TARGET = "Pinned deployment has no deployment target. Cancelling auto-deploy."
DEPLOY_REJECTED = "Deployment target rejected auto-deploy. Cancelling auto-deploy."


def should_auto_deploy(feed_source: Optional[FeedSource], project: Optional[Project]) -> bool:
    """Whether an auto-deploy job should be created at all."""
    if feed_source is None or project is None:
        return False
    return bool(feed_source.deployable) and bool(project.auto_deploy)


class AutoDeployFeedJob(MonitorableJob):
    """Trigger a redeploy of the project's pinned deployment.

    The deployment target is the server of the pinned deployment's latest
    deploy summary.
    """

    def __init__(
        self,
        context: JobContext,
        feed_source_id: str,
        owner: Optional[str] = None,
        feed_version_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> None:
        super().__init__(JobType.AUTO_DEPLOY_FEED, owner=owner, event_bus=context.event_bus)
        self.context = context
        self.feed_source_id = feed_source_id
        self.feed_version_id = feed_version_id
        self._today = today

    async def job_logic(self) -> None:
        with self.context.session_factory() as session:
            versions = FeedVersionRepository(session)
            if self.feed_version_id:
                version = versions.get_by_id(self.feed_version_id)
            else:
                version = versions.get_latest(self.feed_source_id)
            if version is None:
                raise NotFoundError(f"Feed source {self.feed_source_id} has no feed version to deploy.")

            project = self._get_project(session, version.feed_source_id)
            deployment = DeploymentRepository(session).get_by_id(project.pinned_deployment_id)
            if deployment is None:
                raise ConfigurationError(PINNED_DEPLOYMENT_MISSING)

            if self._is_critical(version):
                raise ContentError(CRITICAL_ERRORS)

            summary = deployment.latest()
            server = OtpServerRepository(session).get_by_id(summary.get("server_id") if summary else None)
            if server is None:
                raise ConfigurationError(NO_DEPLOY_TARGET)

        self.status.update(f"Deploying to {server.name}...", 50.0)
        outcome = await self.context.deploy_target.trigger(server, deployment)
        if outcome != DeployOutcome.ACCEPTED:
            raise TransientCollaboratorError(DEPLOY_REJECTED, details={"server_id": server.id})

        with self.context.session_factory() as session:
            DeploymentRepository(session).append_summary(deployment.id, {
                "server_id": server.id,
                "started_at": utcnow().isoformat(),
                "feed_version_id": version.id,
                "triggered_by": self.owner,
            })

        logger.info(f"Auto-deploy of {deployment.id} triggered on server {server.id}")
        if self._event_bus is not None:
            await self._event_bus.publish(Event(
                event_type=EventType.DEPLOY_TRIGGERED,
                payload={"deployment_id": deployment.id, "server_id": server.id},
                correlation_id=self.root.job_id,
                source=self.name,
            ))

    def _get_project(self, session: Session, feed_source_id: str) -> Project:
        feed_source = FeedSourceRepository(session).get_by_id(feed_source_id)
        project = ProjectRepository(session).get_by_id(feed_source.project_id) if feed_source else None
        if project is None:
            raise NotFoundError(f"Project for feed source {feed_source_id} does not exist.")
        return project

    def _is_critical(self, version: FeedVersion) -> bool:
        if version.blocking_error_count > 0 or version.high_severity_error_count > 0:
            return True
        if version.last_calendar_date is None:
            return False
        return version.last_calendar_date < (self._today or date.today())
