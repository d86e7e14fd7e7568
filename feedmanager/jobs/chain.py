"""Guard-gated job chains.

A chain is an ordered list of stages, each a job factory with an optional
guard. Stages run one after another inside the chain's own ``run()``:

- a stage whose predecessor failed is never reached, and the chain fails
  with the predecessor's message;
- a stage whose guard is false is never constructed, so it does not appear
  in the subjob list at all;
- otherwise the job is built, appended as a subjob and run.

Guards and factories receive the chain itself, so they can read the jobs
of earlier stages (``chain.subjobs``, ``chain.last_subjob``).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from feedmanager.events import Event, EventBus, EventType
from feedmanager.jobs.job import MonitorableJob
from feedmanager.jobs.status import JobState, JobType

logger = logging.getLogger(__name__)

JobFactory = Callable[["JobChain"], MonitorableJob]
Guard = Callable[["JobChain"], bool]


@dataclass(frozen=True)
class Stage:
    """One step of a chain.

    Attributes:
        name: Stage name used in logs and outcomes
        factory: Builds the stage's job; only called when the guard passes
        guard: Predicate evaluated after the previous stage finished
    """

    name: str
    factory: JobFactory
    guard: Optional[Guard] = None


class StageOutcome(Enum):
    """What happened to a stage in one chain run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    GUARDED = "guarded"
    NOT_REACHED = "not_reached"


@dataclass
class ChainOutcome:
    """Per-stage record of a chain run, in stage order."""

    stages: Dict[str, StageOutcome] = field(default_factory=dict)

    def record(self, stage: Stage, outcome: StageOutcome) -> None:
        self.stages[stage.name] = outcome

    @property
    def ran(self) -> List[str]:
        return [
            name for name, outcome in self.stages.items()
            if outcome in (StageOutcome.SUCCEEDED, StageOutcome.FAILED)
        ]

    def __str__(self) -> str:
        return ", ".join(f"{name}={outcome.value}" for name, outcome in self.stages.items())


class JobChain(MonitorableJob):
    """Runs stages in order with short-circuit on failure.

    Example:
        chain = JobChain([
            Stage("fetch", lambda c: FetchFeedJob(...)),
            Stage("validate", lambda c: ValidateFeedJob(...),
                  guard=lambda c: c.last_subjob.feed_version_id is not None),
        ])
        status = await chain.run()
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        job_type: JobType = JobType.PROCESS_FEED,
        name: Optional[str] = None,
        owner: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        super().__init__(job_type, name=name, owner=owner, event_bus=event_bus)
        self.stages = list(stages)
        self.outcome = ChainOutcome()

    async def job_logic(self) -> None:
        total = len(self.stages)
        failed: Optional[MonitorableJob] = None

        for index, stage in enumerate(self.stages):
            if failed is not None:
                self.outcome.record(stage, StageOutcome.NOT_REACHED)
                continue

            if stage.guard is not None and not stage.guard(self):
                self.outcome.record(stage, StageOutcome.GUARDED)
                logger.debug(f"Chain {self.job_id}: guard for stage '{stage.name}' is false")
                await self._emit_guarded(stage)
                continue

            job = self.add_subjob(stage.factory(self))
            self.status.update(f"Running {stage.name}...", 100.0 * index / total)
            await job.run()

            if job.status.state == JobState.FAILED:
                self.outcome.record(stage, StageOutcome.FAILED)
                failed = job
            else:
                self.outcome.record(stage, StageOutcome.SUCCEEDED)

        logger.info(f"Chain {self.name} ({self.job_id}): {self.outcome}")

        if failed is not None:
            self.fail(failed.status.message, category=failed.status.category)

    async def _emit_guarded(self, stage: Stage) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(
            event_type=EventType.STAGE_GUARDED,
            payload={"job_id": self.job_id, "stage": stage.name},
            correlation_id=self.root.job_id,
            source=self.name,
        ))
