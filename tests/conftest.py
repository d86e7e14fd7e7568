"""Shared fixtures: in-memory database, job context and record builders."""

import zipfile
from datetime import date
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from feedmanager.config import FeedManagerConfig
from feedmanager.database.connection import make_session_factory
from feedmanager.database.models import (
    Base,
    Deployment,
    FeedSource,
    FeedVersion,
    OtpServer,
    Project,
    RetrievalMethod,
)
from feedmanager.database.repositories import (
    DeploymentRepository,
    ExternalPropertyRepository,
    FeedSourceRepository,
    FeedVersionRepository,
    OtpServerRepository,
    ProjectRepository,
)
from feedmanager.events import EventBus
from feedmanager.services.context import JobContext
from feedmanager.services.deployer import DeployOutcome
from feedmanager.services.validator import ValidationResult

GTFS_TABLES = {
    "agency.txt": "agency_id,agency_name,agency_url,agency_timezone\nA,Agency,http://a.example,UTC\n",
    "stops.txt": "stop_id,stop_name,stop_lat,stop_lon\nS1,Stop,0,0\n",
    "routes.txt": "route_id,agency_id,route_short_name,route_type\nR1,A,1,3\n",
    "trips.txt": "route_id,service_id,trip_id\nR1,WK,T1\n",
    "stop_times.txt": "trip_id,arrival_time,departure_time,stop_id,stop_sequence\nT1,08:00:00,08:00:00,S1,1\n",
    "calendar.txt": (
        "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
        "WK,1,1,1,1,1,0,0,20200101,20991231\n"
    ),
}


def write_gtfs_zip(path: Path, tables: Optional[dict] = None) -> Path:
    """Write a small GTFS archive."""
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in (tables if tables is not None else GTFS_TABLES).items():
            archive.writestr(name, content)
    return path


@pytest.fixture
def gtfs_zip(tmp_path: Path) -> Path:
    """A valid GTFS archive with service until 2099."""
    return write_gtfs_zip(tmp_path / "gtfs.zip")


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Transactional session factory bound to the in-memory engine."""
    maker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return make_session_factory(maker)


@pytest.fixture
def config(tmp_path: Path) -> FeedManagerConfig:
    """Configuration rooted in a temporary directory."""
    return FeedManagerConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        database_url="sqlite://",
    )


@pytest.fixture
def validator() -> MagicMock:
    """Validator returning a clean result unless reconfigured."""
    mock = MagicMock()
    mock.validate.return_value = ValidationResult(last_calendar_date=date(2099, 12, 31))
    return mock


@pytest.fixture
def publisher() -> MagicMock:
    """External publisher accepting every submission."""
    return MagicMock()


@pytest.fixture
def deploy_target() -> MagicMock:
    """Deploy target accepting every trigger."""
    mock = MagicMock()
    mock.trigger = AsyncMock(return_value=DeployOutcome.ACCEPTED)
    return mock


@pytest.fixture
def event_bus() -> EventBus:
    bus = EventBus()
    bus.enable_history()
    return bus


@pytest.fixture
def context(config, session_factory, validator, publisher, deploy_target, event_bus) -> JobContext:
    """Job context with mocked collaborators."""
    return JobContext(
        config=config,
        session_factory=session_factory,
        validator=validator,
        deploy_target=deploy_target,
        publisher=publisher,
        event_bus=event_bus,
    )


class RecordBuilder:
    """Creates database records for tests."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def project(self, **kwargs: Any) -> Project:
        kwargs.setdefault("name", "Test Project")
        with self.session_factory() as session:
            return ProjectRepository(session).create(**kwargs)

    def feed_source(self, project: Project, **kwargs: Any) -> FeedSource:
        kwargs.setdefault("name", "Mock Feed Source")
        kwargs.setdefault("retrieval_method", RetrievalMethod.MANUAL)
        with self.session_factory() as session:
            return FeedSourceRepository(session).create(project_id=project.id, **kwargs)

    def feed_version(self, feed_source: FeedSource, **kwargs: Any) -> FeedVersion:
        with self.session_factory() as session:
            repo = FeedVersionRepository(session)
            kwargs.setdefault("version", repo.next_version_number(feed_source.id))
            kwargs.setdefault("namespace", f"ns-{kwargs['version']}")
            return repo.create(feed_source_id=feed_source.id, **kwargs)

    def server(self, **kwargs: Any) -> OtpServer:
        kwargs.setdefault("name", "Test Server")
        kwargs.setdefault("internal_url", "http://otp.example")
        with self.session_factory() as session:
            return OtpServerRepository(session).create(**kwargs)

    def deployment(self, project: Project, server: Optional[OtpServer] = None) -> Deployment:
        summaries = [{"server_id": server.id}] if server else []
        with self.session_factory() as session:
            return DeploymentRepository(session).create(
                project_id=project.id,
                name="Pinned",
                deploy_job_summaries=summaries,
            )

    def agency_id(self, feed_source: FeedSource, value: str) -> None:
        with self.session_factory() as session:
            ExternalPropertyRepository(session).set_value(feed_source.id, "MTC", "AgencyId", value)

    def update_project(self, project: Project, **kwargs: Any) -> None:
        with self.session_factory() as session:
            ProjectRepository(session).update(project.id, **kwargs)

    def update_feed_source(self, feed_source: FeedSource, **kwargs: Any) -> FeedSource:
        with self.session_factory() as session:
            return FeedSourceRepository(session).update(feed_source.id, **kwargs)

    def get_version(self, version_id: str) -> FeedVersion:
        with self.session_factory() as session:
            return FeedVersionRepository(session).get_by_id(version_id)


@pytest.fixture
def records(session_factory) -> RecordBuilder:
    return RecordBuilder(session_factory)
