# engine.py
from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, Sequence

from .executor import BuildExecutor, BuildResult, StageRunner
from .fingerprint import ContentReader, FileContentReader
from .model import BuildPlan, ResourceBudget, ScheduleReport, Service, ServiceEvent, Stage
from .planner import CacheInvalidationEngine
from .probes import CommandProbeExecutor, ProbeExecutor
from .scheduler import ServiceScheduler, Starter
from .store import FingerprintStore


class Engine:
    """
    Entry point wiring the planner, build executor and scheduler together.

      plan_build(stages)          -> BuildPlan
      build(stages, runner)       -> BuildResult (commits fingerprints on success)
      schedule(services, budget)  -> iterator of ServiceEvent
      up(services, budget)        -> ScheduleReport
      abort()                     -> stop builds and startup in progress
    """

    def __init__(
        self,
        *,
        store: Optional[FingerprintStore] = None,
        reader: Optional[ContentReader] = None,
        probes: Optional[ProbeExecutor] = None,
        starter: Optional[Starter] = None,
        context: str | Path = ".",
        max_workers: int | None = None,
        fail_fast: bool = True,
    ):
        self.store = store if store is not None else FingerprintStore()
        self.reader = reader if reader is not None else FileContentReader(context)
        self.cache = CacheInvalidationEngine(self.store, self.reader)
        self.executor = BuildExecutor(self.cache, max_workers=max_workers, fail_fast=fail_fast)
        self.scheduler = ServiceScheduler(
            probes if probes is not None else CommandProbeExecutor(cwd=str(context)),
            starter=starter,
            max_workers=max_workers,
        )

    def plan_build(self, stages: Sequence[Stage]) -> BuildPlan:
        return self.cache.plan(stages)

    def build(self, stages: Sequence[Stage], runner: StageRunner) -> BuildResult:
        plan = self.plan_build(stages)
        return self.executor.execute(plan, runner)

    def schedule(
        self,
        services: Sequence[Service],
        budget: Optional[ResourceBudget] = None,
        *,
        build_plan: Optional[BuildPlan] = None,
    ) -> Iterator[ServiceEvent]:
        return self.scheduler.schedule(services, budget, build_plan=build_plan)

    def up(
        self,
        services: Sequence[Service],
        budget: Optional[ResourceBudget] = None,
        *,
        build_plan: Optional[BuildPlan] = None,
        on_event=None,
    ) -> ScheduleReport:
        return self.scheduler.run(services, budget, build_plan=build_plan, on_event=on_event)

    def abort(self) -> None:
        self.executor.abort()
        self.scheduler.abort()
