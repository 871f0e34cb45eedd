# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class PlanError(Exception):
    """Base class for everything dockplan raises on purpose."""


# ----------------------------------------------------------------------
# Structural errors (raised before any side effect)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class DuplicateNameError(PlanError):
    kind: str          # "stage" | "service"
    names: List[str]

    def __str__(self) -> str:
        return f"Duplicate {self.kind} names found: {self.names}"


@dataclass(eq=False)
class CyclicStageError(PlanError):
    cycle: List[str]

    def __str__(self) -> str:
        return f"Stage graph has a cycle: {' -> '.join(self.cycle)}"


@dataclass(eq=False)
class UnknownStageReferenceError(PlanError):
    stage: str
    reference: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"'{self.stage}' references unknown stage '{self.reference}'. "
            f"Known stages: {self.known}"
        )


@dataclass(eq=False)
class CyclicServiceError(PlanError):
    cycle: List[str]

    def __str__(self) -> str:
        return f"Service dependencies have a cycle: {' -> '.join(self.cycle)}"


@dataclass(eq=False)
class UnknownServiceReferenceError(PlanError):
    service: str
    reference: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Service '{self.service}' needs unknown service '{self.reference}'. "
            f"Known services: {self.known}"
        )


@dataclass(eq=False)
class InvalidResourceDeclarationError(PlanError):
    service: str
    resource: str
    request: float
    limit: float

    def __str__(self) -> str:
        return (
            f"Service '{self.service}' requests {self.resource}={self.request} "
            f"above its own limit {self.limit}"
        )


@dataclass(eq=False)
class BudgetExceededError(PlanError):
    resource: str
    total: float
    ceiling: float
    services: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Declared {self.resource} limits total {self.total}, "
            f"above the configured ceiling {self.ceiling}"
        )


@dataclass(eq=False)
class SpecLoadError(PlanError):
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass(eq=False)
class PlanCommitError(PlanError):
    message: str

    def __str__(self) -> str:
        return self.message


# ----------------------------------------------------------------------
# Runtime errors (local to one stage or service)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class HealthCheckExhaustedError(PlanError):
    service: str
    attempts: int
    retries: int
    last_error: Optional[str] = None

    def __str__(self) -> str:
        text = f"Service '{self.service}' failed {self.attempts} health probe(s) (retries={self.retries})"
        if self.last_error:
            text += f": {self.last_error}"
        return text


@dataclass(eq=False)
class DependencyFailedError(PlanError):
    service: str
    failed: List[str]

    def __str__(self) -> str:
        return f"Service '{self.service}' is blocked by failed dependency: {', '.join(self.failed)}"


@dataclass(eq=False)
class ServiceStartError(PlanError):
    service: str
    message: str

    def __str__(self) -> str:
        return f"Service '{self.service}' failed to start: {self.message}"


@dataclass(eq=False)
class StageFailure(PlanError):
    stage: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.stage}] build failed (exit={self.exit_code}): {self.cmd}"
