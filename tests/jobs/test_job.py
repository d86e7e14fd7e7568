"""Tests for the MonitorableJob lifecycle."""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from feedmanager.errors import ConfigurationError, ErrorCategory
from feedmanager.events import Event, EventBus, EventType
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobState, JobStatus, JobType


class RecordingJob(MonitorableJob):
    """Job whose logic is supplied by the test."""

    def __init__(self, logic=None, event_bus: Optional[EventBus] = None) -> None:
        super().__init__(JobType.VALIDATE_FEED, event_bus=event_bus)
        self.logic = logic
        self.calls: List[str] = []

    async def job_logic(self) -> None:
        self.calls.append("logic")
        if self.logic is not None:
            await self.logic(self)

    async def on_start(self) -> None:
        self.calls.append("start")

    async def on_complete(self) -> None:
        self.calls.append("complete")

    async def on_error(self) -> None:
        self.calls.append("error")


class TestJobStatus:
    """Tests for the JobStatus dataclass."""

    def test_initial_status(self) -> None:
        """Test a new status is pending with no error."""
        status = JobStatus()
        assert status.state == JobState.PENDING
        assert status.error is False
        assert status.completed is False

    def test_first_failure_wins(self) -> None:
        """Test a second fail() does not overwrite the first message."""
        status = JobStatus()
        status.start()
        status.fail("first")
        status.fail("second")
        assert status.message == "first"

    def test_complete_after_fail_is_noop(self) -> None:
        """Test complete() leaves a failed status alone."""
        status = JobStatus()
        status.start()
        status.fail("broken")
        status.complete()
        assert status.state == JobState.FAILED
        assert status.error is True
        assert status.message == "broken"

    def test_to_dict(self) -> None:
        """Test status serialization."""
        status = JobStatus()
        status.start()
        status.complete()
        data = status.to_dict()
        assert data["state"] == "succeeded"
        assert data["message"] == "Job complete!"
        assert data["duration_ms"] is not None


class TestMonitorableJob:
    """Tests for MonitorableJob.run()."""

    @pytest.mark.asyncio
    async def test_success_sets_job_complete(self) -> None:
        """Test a job without errors ends with 'Job complete!'."""
        job = RecordingJob()
        status = await job.run()

        assert status.state == JobState.SUCCEEDED
        assert status.error is False
        assert status.message == "Job complete!"
        assert job.calls == ["start", "logic", "complete"]

    @pytest.mark.asyncio
    async def test_custom_completion_message_is_kept(self) -> None:
        """Test a job may complete itself with its own message."""
        async def logic(job: MonitorableJob) -> None:
            job.status.complete("Feed has not changed.")

        status = await RecordingJob(logic).run()
        assert status.message == "Feed has not changed."
        assert status.error is False

    @pytest.mark.asyncio
    async def test_feed_manager_error_becomes_status(self) -> None:
        """Test a raised FeedManagerError is captured with its category."""
        async def logic(job: MonitorableJob) -> None:
            raise ConfigurationError("Pinned deployment does not exist. Cancelling auto-deploy.")

        job = RecordingJob(logic)
        status = await job.run()

        assert status.error is True
        assert status.message == "Pinned deployment does not exist. Cancelling auto-deploy."
        assert status.category == ErrorCategory.CONFIGURATION
        assert status.details["category"] == "configuration"
        assert job.calls == ["start", "logic", "error"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(self) -> None:
        """Test run() converts unexpected exceptions into a failed status."""
        async def logic(job: MonitorableJob) -> None:
            raise ZeroDivisionError("division by zero")

        status = await RecordingJob(logic).run()

        assert status.error is True
        assert status.category == ErrorCategory.UNEXPECTED
        assert status.exception_type == "ZeroDivisionError"
        assert "division by zero" in status.message

    @pytest.mark.asyncio
    async def test_fail_without_raising(self) -> None:
        """Test a job can fail itself and return normally."""
        async def logic(job: MonitorableJob) -> None:
            job.fail("Nope", category=ErrorCategory.CONTENT)

        status = await RecordingJob(logic).run()
        assert status.error is True
        assert status.message == "Nope"
        assert status.category == ErrorCategory.CONTENT

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_change_outcome(self) -> None:
        """Test an exception in on_complete is logged, not propagated."""
        job = RecordingJob()
        job.on_complete = AsyncMock(side_effect=RuntimeError("hook"))

        status = await job.run()
        assert status.state == JobState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_emits_lifecycle_events(self) -> None:
        """Test started and complete events are published on the bus."""
        bus = EventBus()
        received: List[Event] = []

        async def handler(event: Event) -> None:
            received.append(event)

        bus.subscribe_all(handler)
        job = RecordingJob(event_bus=bus)
        await job.run()

        assert [e.event_type for e in received] == [EventType.JOB_STARTED, EventType.JOB_COMPLETE]
        assert all(e.correlation_id == job.job_id for e in received)

    @pytest.mark.asyncio
    async def test_emits_failed_event(self) -> None:
        """Test a failed job publishes JOB_FAILED."""
        bus = EventBus()
        bus.enable_history()

        async def logic(job: MonitorableJob) -> None:
            raise RuntimeError("boom")

        await RecordingJob(logic, event_bus=bus).run()
        assert len(bus.get_history(EventType.JOB_FAILED)) == 1


class TestSubjobs:
    """Tests for subjob ownership."""

    def test_last_subjob_absent_when_empty(self) -> None:
        """Test last_subjob is None before any subjob is appended."""
        assert RecordingJob().last_subjob is None

    def test_subjobs_in_append_order(self) -> None:
        """Test subjobs are recorded in order and know their parent."""
        parent = RecordingJob()
        first = parent.add_subjob(RecordingJob())
        second = parent.add_subjob(RecordingJob())

        assert parent.subjobs == [first, second]
        assert parent.last_subjob is second
        assert second.parent is parent
        assert second.root is parent

    def test_subjob_inherits_event_bus(self) -> None:
        """Test a subjob without a bus uses its parent's."""
        bus = EventBus()
        parent = RecordingJob(event_bus=bus)
        child = parent.add_subjob(RecordingJob())
        assert child._event_bus is bus

    def test_to_dict_includes_subjobs(self) -> None:
        """Test serialization nests subjobs."""
        parent = RecordingJob()
        parent.add_subjob(RecordingJob())
        data = parent.to_dict()
        assert data["job_type"] == "validate_feed"
        assert len(data["subjobs"]) == 1


class TestCancellation:
    """Tests for task cancellation while a job runs."""

    @pytest.mark.asyncio
    async def test_cancelled_task_marks_job_cancelled(self) -> None:
        """Test cancelling the running task leaves a CANCELLED status."""
        started = asyncio.Event()

        async def logic(job: MonitorableJob) -> None:
            started.set()
            await asyncio.sleep(60)

        job = RecordingJob(logic)
        task = asyncio.create_task(job.run())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert job.status.state == JobState.CANCELLED
        assert job.status.message == "Job cancelled."
        assert job.status.completed is True
        assert job.calls == ["start", "logic"]

    def test_cancel_after_success_is_noop(self) -> None:
        """Test a terminal status is not overwritten by cancel()."""
        status = JobStatus()
        status.start()
        status.complete()
        status.cancel("Job cancelled.")
        assert status.state == JobState.SUCCEEDED
