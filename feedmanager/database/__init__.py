"""Persistence layer for projects, feed sources, feed versions and deployments."""

from feedmanager.database.connection import (
    SessionFactory,
    create_tables,
    get_db_session,
    get_session_maker,
    make_session_factory,
)
from feedmanager.database.models import (
    Base,
    Deployment,
    ExternalFeedSourceProperty,
    FeedSource,
    FeedVersion,
    FetchIntervalUnit,
    OtpServer,
    Project,
    RetrievalMethod,
)

__all__ = [
    "Base",
    "Deployment",
    "ExternalFeedSourceProperty",
    "FeedSource",
    "FeedVersion",
    "FetchIntervalUnit",
    "OtpServer",
    "Project",
    "RetrievalMethod",
    "SessionFactory",
    "create_tables",
    "get_db_session",
    "get_session_maker",
    "make_session_factory",
]
