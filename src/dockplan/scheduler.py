# scheduler.py
from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .dag import build_dag, topo_sort, transitive_dependents
from .errors import (
    DependencyFailedError,
    HealthCheckExhaustedError,
    ServiceStartError,
    UnknownStageReferenceError,
)
from .model import (
    TRANSITIONS,
    BuildPlan,
    HealthCheck,
    ResourceBudget,
    ScheduleReport,
    Service,
    ServiceEvent,
    ServiceState,
)
from .probes import ProbeExecutor
from .resources import ResourcePolicyEnforcer

Starter = Callable[[Service], None]

PENDING = ServiceState.PENDING
STARTING = ServiceState.STARTING
HEALTH_CHECKING = ServiceState.HEALTH_CHECKING
HEALTHY = ServiceState.HEALTHY
FAILED = ServiceState.FAILED
STOPPED = ServiceState.STOPPED

# a dependency in one of these states will never become Healthy in this run
DEAD = (FAILED, STOPPED)

# how often a pending probe checks for abort
ABORT_POLL = 0.05


@dataclass
class _Done:
    service: str
    future: Future


class ServiceScheduler:
    """
    Health-gated startup over the service dependency graph.

    Workers (one per started service) only *propose* transitions through a
    queue; the loop in _drive() is the single writer of `states`, so every
    emitted event is applied in the order it is observed.

    The scheduler keeps its states between calls: scheduling again only acts
    on services that are still Pending. Healthy services are never restarted
    and Failed/Stopped services are not retried.
    """

    def __init__(
        self,
        probes: ProbeExecutor,
        *,
        starter: Optional[Starter] = None,
        max_workers: int | None = None,
    ):
        self.probes = probes
        self.starter = starter
        self.max_workers = max_workers
        self.states: Dict[str, ServiceState] = {}
        self.errors: Dict[str, Exception] = {}
        self._abort = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Stop every non-terminal service; nothing new is started."""
        self._abort.set()

    def validate(
        self,
        services: Sequence[Service],
        budget: Optional[ResourceBudget] = None,
        build_plan: Optional[BuildPlan] = None,
    ) -> Dict[str, float]:
        """
        Structural checks, in order: graph (duplicates, unknown needs,
        cycles), build references, resource declarations, budget.
        Returns the accounted resource totals.
        """
        topo_sort(services, kind="service")
        if build_plan is not None:
            for svc in services:
                if svc.build is not None and svc.build not in build_plan:
                    raise UnknownStageReferenceError(svc.name, svc.build, build_plan.order)
        return ResourcePolicyEnforcer(budget).validate(services)

    def schedule(
        self,
        services: Sequence[Service],
        budget: Optional[ResourceBudget] = None,
        *,
        build_plan: Optional[BuildPlan] = None,
    ) -> Iterator[ServiceEvent]:
        """
        Validate, then return the stream of transitions.

        Validation errors are raised here, before any service leaves Pending.
        """
        services = list(services)
        self.validate(services, budget, build_plan)
        adj, _ = build_dag(services, kind="service")

        for svc in services:
            state = self.states.setdefault(svc.name, PENDING)
            # interrupted mid-flight by an earlier run: start over from Pending
            if state in (STARTING, HEALTH_CHECKING):
                self.states[svc.name] = PENDING
        return self._drive(services, adj)

    def run(
        self,
        services: Sequence[Service],
        budget: Optional[ResourceBudget] = None,
        *,
        build_plan: Optional[BuildPlan] = None,
        on_event: Optional[Callable[[ServiceEvent], None]] = None,
    ) -> ScheduleReport:
        """Drain schedule() and summarize."""
        report = ScheduleReport()
        for event in self.schedule(services, budget, build_plan=build_plan):
            report.events.append(event)
            if on_event is not None:
                on_event(event)
        for svc in services:
            report.states[svc.name] = self.states[svc.name]
            if svc.name in self.errors:
                report.errors[svc.name] = self.errors[svc.name]
        report.blocked = [
            e.service for e in report.events if e.blocked
        ]
        return report

    # ------------------------------------------------------------------
    # Coordinator
    # ------------------------------------------------------------------

    def _blocked_by(self, adj: Dict[str, Set[str]], by_name: Dict[str, Service]) -> Dict[str, List[str]]:
        """Pending services mapped to the Failed/Stopped services upstream of them."""
        blocked: Dict[str, List[str]] = {}
        for dead in (n for n in by_name if self.states[n] in DEAD):
            for name in transitive_dependents(adj, [dead]):
                if self.states[name] is PENDING:
                    blocked.setdefault(name, []).append(dead)
        return blocked

    def _apply(self, event: ServiceEvent) -> ServiceEvent:
        current = self.states[event.service]
        if event.state is not current and event.state not in TRANSITIONS[current]:
            raise RuntimeError(f"Illegal transition for {event.service}: {current.value} -> {event.state.value}")
        self.states[event.service] = event.state
        if event.error is not None:
            self.errors[event.service] = event.error
        return event

    def _drive(self, services: List[Service], adj: Dict[str, Set[str]]) -> Iterator[ServiceEvent]:
        by_name = {s.name: s for s in services}
        events: "queue.Queue" = queue.Queue()
        in_flight: Set[str] = set()
        reported_blocked: Set[str] = set()

        max_workers = self.max_workers or max(1, len(services))
        pool = ThreadPoolExecutor(max_workers=max_workers)
        finished = False

        try:
            while True:
                # report dependents that can no longer start
                blocked = {} if self._abort.is_set() else self._blocked_by(adj, by_name)
                for name in by_name:
                    dead = blocked.get(name)
                    if dead and name not in reported_blocked:
                        reported_blocked.add(name)
                        err = DependencyFailedError(service=name, failed=dead)
                        yield self._apply(ServiceEvent(name, PENDING, PENDING, error=err))

                # start everything eligible, in declaration order
                if not self._abort.is_set():
                    for name, svc in by_name.items():
                        if (
                            self.states[name] is PENDING
                            and name not in in_flight
                            and name not in reported_blocked
                            and all(self.states[d] is HEALTHY for d in svc.depends_on())
                        ):
                            in_flight.add(name)
                            fut = pool.submit(self._bring_up, svc, events)
                            fut.add_done_callback(lambda f, n=name: events.put(_Done(n, f)))

                if not in_flight:
                    break

                item = events.get()
                if isinstance(item, _Done):
                    in_flight.discard(item.service)
                    exc = item.future.exception()
                    if exc is not None and not self.states[item.service].terminal:
                        err = ServiceStartError(item.service, f"{type(exc).__name__}: {exc}")
                        yield self._apply(ServiceEvent(item.service, self.states[item.service], FAILED, error=err))
                    continue

                yield self._apply(item)

            # abort: everything not terminal ends Stopped
            if self._abort.is_set():
                for name in by_name:
                    state = self.states[name]
                    if not state.terminal:
                        yield self._apply(ServiceEvent(name, state, STOPPED))
            finished = True
        finally:
            if not finished:
                # consumer walked away mid-stream
                self._abort.set()
            pool.shutdown(wait=True)
            if not finished:
                while True:
                    try:
                        item = events.get_nowait()
                    except queue.Empty:
                        break
                    if isinstance(item, ServiceEvent):
                        self._apply(item)
                for name in by_name:
                    if not self.states[name].terminal:
                        self.states[name] = STOPPED
            # an abort is consumed by the run it stopped, never by the next one
            self._abort.clear()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _bring_up(self, svc: Service, events: "queue.Queue") -> None:
        name = svc.name
        events.put(ServiceEvent(name, PENDING, STARTING))

        if self._abort.is_set():
            events.put(ServiceEvent(name, STARTING, STOPPED))
            return

        if self.starter is not None:
            try:
                self.starter(svc)
            except Exception as e:
                events.put(ServiceEvent(name, STARTING, FAILED, error=ServiceStartError(name, str(e))))
                return

        if self._abort.is_set():
            events.put(ServiceEvent(name, STARTING, STOPPED))
            return

        check = svc.healthcheck
        if check is None:
            # no contract: started counts as healthy
            events.put(ServiceEvent(name, STARTING, HEALTHY))
            return

        events.put(ServiceEvent(name, STARTING, HEALTH_CHECKING))
        self._health_check(svc, check, events)

    def _start_probe(self, svc: Service, check: HealthCheck) -> Future:
        """Run one probe on its own daemon thread; a hung probe must not hold the service."""
        fut: Future = Future()

        def target() -> None:
            if not fut.set_running_or_notify_cancel():
                return
            try:
                fut.set_result(bool(self.probes.probe(svc, check)))
            except Exception as e:
                fut.set_exception(e)

        threading.Thread(target=target, name=f"probe-{svc.name}", daemon=True).start()
        return fut

    def _probe_once(self, svc: Service, check: HealthCheck) -> Tuple[Optional[bool], Optional[str]]:
        """
        (True, None) healthy, (False, reason) failed, (None, None) when an
        abort arrived while waiting for the probe.
        """
        fut = self._start_probe(svc, check)
        deadline = time.monotonic() + check.timeout if check.timeout > 0 else None

        while not fut.done():
            if self._abort.is_set():
                return None, None
            step = ABORT_POLL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False, f"probe timed out (timeout={check.timeout}s)"
                step = min(step, remaining)
            wait([fut], timeout=step)

        exc = fut.exception()
        if exc is not None:
            return False, f"{type(exc).__name__}: {exc}"
        if not fut.result():
            return False, "probe reported unhealthy"
        return True, None

    def _health_check(self, svc: Service, check: HealthCheck, events: "queue.Queue") -> None:
        name = svc.name
        budget = max(1, check.retries)
        started = time.monotonic()
        failures = 0
        attempt = 0

        while True:
            attempt += 1
            ok, last_error = self._probe_once(svc, check)
            if ok is None or self._abort.is_set():
                events.put(ServiceEvent(name, HEALTH_CHECKING, STOPPED, attempt=attempt))
                return
            if ok:
                events.put(ServiceEvent(name, HEALTH_CHECKING, HEALTHY, attempt=attempt))
                return

            # failures inside start_period do not count against retries
            if time.monotonic() - started >= check.start_period:
                failures += 1
            if failures >= budget:
                err = HealthCheckExhaustedError(
                    service=name,
                    attempts=attempt,
                    retries=check.retries,
                    last_error=last_error,
                )
                events.put(ServiceEvent(name, HEALTH_CHECKING, FAILED, error=err, attempt=attempt))
                return

            # interval sleep doubles as the abort wait
            if self._abort.wait(check.interval):
                events.put(ServiceEvent(name, HEALTH_CHECKING, STOPPED, attempt=attempt))
                return
