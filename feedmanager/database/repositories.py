"""Database repositories for the feed manager.

Each repository wraps one session and provides the lookups the job core
needs. Cross-record references (feed source to project, deployment to
project) are resolved here, by id, never through ORM back-references.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from feedmanager.database.models import (
    Deployment,
    ExternalFeedSourceProperty,
    FeedSource,
    FeedVersion,
    OtpServer,
    Project,
    RetrievalMethod,
)


class ProjectRepository:
    """Repository for project records."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, project_id: str) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def get_all(self) -> List[Project]:
        return list(self.session.scalars(select(Project).order_by(Project.name)))

    def create(self, **kwargs: Any) -> Project:
        project = Project(**kwargs)
        self.session.add(project)
        self.session.flush()
        return project

    def update(self, project_id: str, **kwargs: Any) -> Optional[Project]:
        project = self.get_by_id(project_id)
        if project is None:
            return None
        for key, value in kwargs.items():
            if hasattr(project, key):
                setattr(project, key, value)
        self.session.flush()
        return project


class FeedSourceRepository:
    """Repository for feed source records."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, feed_source_id: str) -> Optional[FeedSource]:
        return self.session.get(FeedSource, feed_source_id)

    def get_all(self) -> List[FeedSource]:
        return list(self.session.scalars(select(FeedSource).order_by(FeedSource.name)))

    def get_by_project(self, project_id: str) -> List[FeedSource]:
        return list(self.session.scalars(
            select(FeedSource).where(FeedSource.project_id == project_id)
        ))

    def get_auto_fetchable(self) -> List[FeedSource]:
        """Get feed sources that should have a fetch timer."""
        stmt = (
            select(FeedSource)
            .where(
                FeedSource.retrieval_method == RetrievalMethod.AUTOMATIC,
                FeedSource.url.isnot(None),
                FeedSource.fetch_interval > 0,
            )
        )
        return [fs for fs in self.session.scalars(stmt) if fs.is_auto_fetchable]

    def create(self, **kwargs: Any) -> FeedSource:
        feed_source = FeedSource(**kwargs)
        self.session.add(feed_source)
        self.session.flush()
        return feed_source

    def update(self, feed_source_id: str, **kwargs: Any) -> Optional[FeedSource]:
        feed_source = self.get_by_id(feed_source_id)
        if feed_source is None:
            return None
        for key, value in kwargs.items():
            if hasattr(feed_source, key):
                setattr(feed_source, key, value)
        self.session.flush()
        return feed_source

    def delete(self, feed_source_id: str) -> bool:
        feed_source = self.get_by_id(feed_source_id)
        if feed_source is None:
            return False
        self.session.delete(feed_source)
        self.session.flush()
        return True


class ExternalPropertyRepository:
    """Repository for external feed source properties."""

    def __init__(self, session: Session):
        self.session = session

    def get_value(
        self,
        feed_source_id: str,
        resource_type: str,
        name: str,
    ) -> Optional[str]:
        """
        Get the value of a property, or None if absent or blank.
        """
        prop = self.session.get(
            ExternalFeedSourceProperty,
            ExternalFeedSourceProperty.make_id(feed_source_id, resource_type, name),
        )
        if prop is None or not prop.value:
            return None
        return prop.value

    def set_value(
        self,
        feed_source_id: str,
        resource_type: str,
        name: str,
        value: Optional[str],
    ) -> ExternalFeedSourceProperty:
        """Create or replace a property value."""
        prop_id = ExternalFeedSourceProperty.make_id(feed_source_id, resource_type, name)
        prop = self.session.get(ExternalFeedSourceProperty, prop_id)
        if prop is None:
            prop = ExternalFeedSourceProperty(
                id=prop_id,
                feed_source_id=feed_source_id,
                resource_type=resource_type,
                name=name,
            )
            self.session.add(prop)
        prop.value = value
        self.session.flush()
        return prop

    def find_feed_source_ids(self, resource_type: str, name: str, value: str) -> List[str]:
        """Get ids of feed sources whose property equals ``value``."""
        stmt = select(ExternalFeedSourceProperty.feed_source_id).where(
            ExternalFeedSourceProperty.resource_type == resource_type,
            ExternalFeedSourceProperty.name == name,
            ExternalFeedSourceProperty.value == value,
        )
        return list(self.session.scalars(stmt))


class FeedVersionRepository:
    """Repository for feed version records."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, version_id: str) -> Optional[FeedVersion]:
        return self.session.get(FeedVersion, version_id)

    def get_latest(self, feed_source_id: str) -> Optional[FeedVersion]:
        """Get the most recent version of a feed source."""
        stmt = (
            select(FeedVersion)
            .where(FeedVersion.feed_source_id == feed_source_id)
            .order_by(desc(FeedVersion.version))
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def get_by_feed_source(self, feed_source_id: str, limit: int = 50) -> List[FeedVersion]:
        stmt = (
            select(FeedVersion)
            .where(FeedVersion.feed_source_id == feed_source_id)
            .order_by(desc(FeedVersion.version))
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def next_version_number(self, feed_source_id: str) -> int:
        current = self.session.scalar(
            select(func.max(FeedVersion.version)).where(
                FeedVersion.feed_source_id == feed_source_id
            )
        )
        return (current or 0) + 1

    def create(self, **kwargs: Any) -> FeedVersion:
        version = FeedVersion(**kwargs)
        self.session.add(version)
        self.session.flush()
        return version

    def update(self, version_id: str, **kwargs: Any) -> Optional[FeedVersion]:
        version = self.get_by_id(version_id)
        if version is None:
            return None
        for key, value in kwargs.items():
            if hasattr(version, key):
                setattr(version, key, value)
        self.session.flush()
        return version

    def get_awaiting_external_processing(
        self,
        feed_source_ids: Iterable[str],
    ) -> List[FeedVersion]:
        """
        Get versions sent to the external publisher but not yet processed.

        Results are ordered newest-sent first.
        """
        ids = list(feed_source_ids)
        if not ids:
            return []
        stmt = (
            select(FeedVersion)
            .where(
                FeedVersion.feed_source_id.in_(ids),
                FeedVersion.sent_to_external_publisher.isnot(None),
                FeedVersion.processed_by_external_publisher.is_(None),
            )
            .order_by(desc(FeedVersion.sent_to_external_publisher), desc(FeedVersion.version))
        )
        return list(self.session.scalars(stmt))

    def mark_processed(self, version_id: str, processed_at: datetime) -> Optional[FeedVersion]:
        return self.update(version_id, processed_by_external_publisher=processed_at)


class DeploymentRepository:
    """Repository for deployment records."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, deployment_id: Optional[str]) -> Optional[Deployment]:
        if not deployment_id:
            return None
        return self.session.get(Deployment, deployment_id)

    def create(self, **kwargs: Any) -> Deployment:
        deployment = Deployment(**kwargs)
        self.session.add(deployment)
        self.session.flush()
        return deployment

    def append_summary(self, deployment_id: str, summary: Dict[str, Any]) -> Optional[Deployment]:
        """Append a deploy summary, making it the latest."""
        deployment = self.get_by_id(deployment_id)
        if deployment is None:
            return None
        # Reassign so the JSON column is flagged dirty
        deployment.deploy_job_summaries = [*deployment.deploy_job_summaries, summary]
        self.session.flush()
        return deployment


class OtpServerRepository:
    """Repository for deployment target servers."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, server_id: Optional[str]) -> Optional[OtpServer]:
        if not server_id:
            return None
        return self.session.get(OtpServer, server_id)

    def create(self, **kwargs: Any) -> OtpServer:
        server = OtpServer(**kwargs)
        self.session.add(server)
        self.session.flush()
        return server
