"""Daemon service for the feed manager."""

from feedmanager.daemon.service import FeedManagerDaemon, build_job_context, run_daemon

__all__ = ["FeedManagerDaemon", "build_job_context", "run_daemon"]
