# model.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------
# Build side
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class InputFingerprint:
    """
    Digest over everything a stage consumes.

    `manifest` is kept for explainability (what was hashed), the same way
    cache manifests are stored next to artifacts.
    """
    digest: str
    manifest: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def short(self) -> str:
        return self.digest[:12]

    def to_dict(self) -> Dict[str, Any]:
        return {"digest": self.digest, "manifest": self.manifest}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> InputFingerprint:
        return cls(digest=data["digest"], manifest=dict(data.get("manifest") or {}))


@dataclass(frozen=True)
class Stage:
    """
    One step of a multi-stage build.

    Dependencies are the stages named in `copy_from`, plus `base` when it
    names another stage of the same build (otherwise `base` is an external
    image reference).
    """
    name: str
    instructions: Tuple[str, ...] = ()
    files: Tuple[str, ...] = ()
    copy_from: Tuple[str, ...] = ()
    base: Optional[str] = None
    args: Dict[str, str] = field(default_factory=dict, hash=False)
    fingerprint: Optional[InputFingerprint] = None

    def depends_on(self, known: Optional[set] = None) -> List[str]:
        """Upstream stage names, in declaration order, without duplicates."""
        deps: List[str] = []
        if self.base is not None and (known is None or self.base in known):
            deps.append(self.base)
        for name in self.copy_from:
            if name not in deps:
                deps.append(name)
        return deps

    def with_fingerprint(self, fingerprint: InputFingerprint) -> Stage:
        if self.fingerprint is not None:
            raise ValueError(f"Stage '{self.name}' is already fingerprinted")
        return replace(self, fingerprint=fingerprint)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"


@dataclass(frozen=True)
class PlannedStage:
    stage: Stage
    status: CacheStatus
    reason: str

    @property
    def name(self) -> str:
        return self.stage.name

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


@dataclass(frozen=True)
class BuildPlan:
    """Ordered, cache-annotated stage list. Dependencies always come first."""
    stages: Tuple[PlannedStage, ...]

    def __iter__(self):
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    def __getitem__(self, name: str) -> PlannedStage:
        for planned in self.stages:
            if planned.name == name:
                return planned
        raise KeyError(name)

    def __contains__(self, name: object) -> bool:
        return any(p.name == name for p in self.stages)

    @property
    def order(self) -> List[str]:
        return [p.name for p in self.stages]

    def misses(self) -> List[PlannedStage]:
        return [p for p in self.stages if not p.hit]

    def hits(self) -> List[PlannedStage]:
        return [p for p in self.stages if p.hit]

    def status_of(self, name: str) -> CacheStatus:
        return self[name].status

    def fingerprints(self) -> Dict[str, InputFingerprint]:
        out: Dict[str, InputFingerprint] = {}
        for p in self.stages:
            if p.stage.fingerprint is not None:
                out[p.name] = p.stage.fingerprint
        return out

    def levels(self) -> List[List[str]]:
        """Group the plan into batches whose members have no path between them."""
        from .dag import build_dag, topo_levels

        adj, indeg = build_dag([p.stage for p in self.stages], kind="stage")
        return topo_levels(adj, indeg)


# ---------------------------------------------------------------------
# Service side
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class HealthCheck:
    """
    Health-check contract.

    `test` is handed to the probe executor as-is (a shell command for the
    command executor). Times are in seconds.
    """
    test: Any
    interval: float = 5.0
    timeout: float = 3.0
    retries: int = 3
    start_period: float = 0.0


@dataclass(frozen=True)
class Resources:
    cpu: Optional[float] = None       # cores
    memory: Optional[int] = None      # bytes

    def get(self, resource: str) -> Optional[float]:
        return getattr(self, resource)


@dataclass(frozen=True)
class ResourceBudget:
    """Aggregate ceiling for the sum of every service limit. None = unbounded."""
    cpu: Optional[float] = None
    memory: Optional[int] = None

    def get(self, resource: str) -> Optional[float]:
        return getattr(self, resource)


@dataclass(frozen=True)
class Service:
    name: str
    needs: Tuple[str, ...] = ()
    healthcheck: Optional[HealthCheck] = None
    request: Resources = field(default_factory=Resources)
    limit: Resources = field(default_factory=Resources)
    build: Optional[str] = None

    def depends_on(self, known: Optional[set] = None) -> List[str]:
        deps: List[str] = []
        for name in self.needs:
            if name not in deps:
                deps.append(name)
        return deps


class ServiceState(str, Enum):
    PENDING = "Pending"
    STARTING = "Starting"
    HEALTH_CHECKING = "HealthChecking"
    HEALTHY = "Healthy"
    FAILED = "Failed"
    STOPPED = "Stopped"

    @property
    def terminal(self) -> bool:
        return self in (ServiceState.HEALTHY, ServiceState.FAILED, ServiceState.STOPPED)


# Legal moves of the per-service machine.
TRANSITIONS: Dict[ServiceState, Tuple[ServiceState, ...]] = {
    ServiceState.PENDING: (ServiceState.STARTING, ServiceState.STOPPED),
    ServiceState.STARTING: (ServiceState.HEALTH_CHECKING, ServiceState.HEALTHY, ServiceState.FAILED, ServiceState.STOPPED),
    ServiceState.HEALTH_CHECKING: (ServiceState.HEALTHY, ServiceState.FAILED, ServiceState.STOPPED),
    ServiceState.HEALTHY: (),
    ServiceState.FAILED: (),
    ServiceState.STOPPED: (),
}


@dataclass(frozen=True)
class ServiceEvent:
    """
    One observed transition.

    A blocked dependent is reported with previous == state == PENDING and a
    DependencyFailedError in `error`.
    """
    service: str
    previous: ServiceState
    state: ServiceState
    error: Optional[Exception] = None
    attempt: Optional[int] = None

    @property
    def blocked(self) -> bool:
        return self.state is ServiceState.PENDING and self.error is not None

    def __str__(self) -> str:
        if self.blocked:
            return f"{self.service}: blocked ({self.error})"
        text = f"{self.service}: {self.previous.value} -> {self.state.value}"
        if self.error is not None:
            text += f" ({self.error})"
        return text


@dataclass
class ScheduleReport:
    states: Dict[str, ServiceState] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)
    blocked: List[str] = field(default_factory=list)
    events: List[ServiceEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s is ServiceState.HEALTHY for s in self.states.values())

    @property
    def failed(self) -> List[str]:
        return [n for n, s in self.states.items() if s is ServiceState.FAILED]
