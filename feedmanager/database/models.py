"""
SQLAlchemy models for the feed manager database.

Records reference each other only through explicit id columns
(``project_id``, ``feed_source_id``, ``pinned_deployment_id``); lookups go
through the repositories rather than ORM back-references.
"""

import enum
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class RetrievalMethod(str, enum.Enum):
    """How new versions of a feed source are obtained."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


class FetchIntervalUnit(str, enum.Enum):
    """Unit of a feed source's fetch interval."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    def to_timedelta(self, amount: int) -> timedelta:
        return timedelta(**{self.value: amount})


class Project(Base):
    """A group of feed sources managed together, typically one agency."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    auto_deploy: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pinned_deployment_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "auto_deploy": self.auto_deploy,
            "pinned_deployment_id": self.pinned_deployment_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class FeedSource(Base):
    """
    Configuration for one agency's feed ingestion.

    A fetch timer exists for a feed source exactly when it is
    auto-fetchable: automatic retrieval, a URL, and a positive interval.
    """

    __tablename__ = "feed_sources"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    retrieval_method: Mapped[RetrievalMethod] = mapped_column(
        Enum(RetrievalMethod), default=RetrievalMethod.MANUAL, nullable=False
    )
    fetch_interval: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    fetch_interval_unit: Mapped[FetchIntervalUnit] = mapped_column(
        Enum(FetchIntervalUnit), default=FetchIntervalUnit.DAYS, nullable=False
    )
    deployable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_fetched: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def is_auto_fetchable(self) -> bool:
        """Whether this feed source should have a recurring fetch timer."""
        return (
            self.retrieval_method == RetrievalMethod.AUTOMATIC
            and bool(self.url)
            and (self.fetch_interval or 0) > 0
        )

    @property
    def fetch_frequency(self) -> timedelta:
        """The fetch interval as a timedelta."""
        return FetchIntervalUnit(self.fetch_interval_unit).to_timedelta(self.fetch_interval)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "retrieval_method": RetrievalMethod(self.retrieval_method).value,
            "fetch_interval": self.fetch_interval,
            "fetch_interval_unit": FetchIntervalUnit(self.fetch_interval_unit).value,
            "deployable": self.deployable,
            "url": self.url,
            "last_fetched": _iso(self.last_fetched),
        }


class ExternalFeedSourceProperty(Base):
    """
    Key/value attached to a feed source for an external system.

    The id is derived from its parts so that each (feed source, resource
    type, name) triple holds at most one value.
    """

    __tablename__ = "external_feed_source_properties"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    feed_source_id: Mapped[str] = mapped_column(
        String, ForeignKey("feed_sources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_external_property_lookup", "resource_type", "name", "value"),
    )

    @staticmethod
    def make_id(feed_source_id: str, resource_type: str, name: str) -> str:
        return f"{feed_source_id}_{resource_type}_{name}"


class FeedVersion(Base):
    """
    One ingested snapshot of a feed.

    Created by a fetch, summarised by validation, marked as sent by
    auto-publish and as processed once the external publisher finishes.
    """

    __tablename__ = "feed_versions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    feed_source_id: Mapped[str] = mapped_column(
        String, ForeignKey("feed_sources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    namespace: Mapped[str] = mapped_column(String, nullable=False)
    hash: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    file_path: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    retrieved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Validation summary
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    blocking_error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gtfs_plus_blocking_error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    high_severity_error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_calendar_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    validation_errors: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    # External publishing
    sent_to_external_publisher: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    processed_by_external_publisher: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    __table_args__ = (
        Index("idx_feed_versions_source_version", "feed_source_id", "version"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feed_source_id": self.feed_source_id,
            "version": self.version,
            "namespace": self.namespace,
            "hash": self.hash,
            "file_size": self.file_size,
            "retrieved_at": _iso(self.retrieved_at),
            "validated_at": _iso(self.validated_at),
            "blocking_error_count": self.blocking_error_count,
            "gtfs_plus_blocking_error_count": self.gtfs_plus_blocking_error_count,
            "high_severity_error_count": self.high_severity_error_count,
            "last_calendar_date": (
                self.last_calendar_date.isoformat() if self.last_calendar_date else None
            ),
            "sent_to_external_publisher": _iso(self.sent_to_external_publisher),
            "processed_by_external_publisher": _iso(self.processed_by_external_publisher),
        }


class Deployment(Base):
    """
    A deployable bundle of feed versions for a project.

    ``deploy_job_summaries`` is an ordered list of dicts, each with at least a
    ``server_id``; the last entry is the latest deployment.
    """

    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, default="", nullable=False)
    deploy_job_summaries: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def latest(self) -> Optional[Dict[str, Any]]:
        """Get the latest deploy summary, if any."""
        if not self.deploy_job_summaries:
            return None
        return self.deploy_job_summaries[-1]


class OtpServer(Base):
    """A deployment target server."""

    __tablename__ = "otp_servers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    internal_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
