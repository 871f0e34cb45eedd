# dsl.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .model import HealthCheck, Resources, Service, Stage
from .resources import parse_cpu, parse_memory


def stage(
    name: str,
    *instructions: str,
    base: Optional[str] = None,
    files: Optional[List[str]] = None,
    copy_from: Optional[List[str]] = None,
    args: Optional[Dict[str, Any]] = None,
) -> Stage:
    """
    stage("deps", "RUN pip install -r requirements.txt",
          base="python:3.12-slim", files=["requirements.txt"])
    """
    return Stage(
        name=name,
        instructions=tuple(instructions),
        files=tuple(files or []),
        copy_from=tuple(copy_from or []),
        base=base,
        # force values to str for stable hashing
        args={k: str(v) for k, v in (args or {}).items()},
    )


def healthcheck(
    test: Any,
    *,
    interval: float = 5.0,
    timeout: float = 3.0,
    retries: int = 3,
    start_period: float = 0.0,
) -> HealthCheck:
    if retries < 0:
        raise ValueError("healthcheck retries must be >= 0")
    return HealthCheck(
        test=test if isinstance(test, str) else tuple(test),
        interval=interval,
        timeout=timeout,
        retries=retries,
        start_period=start_period,
    )


def service(
    name: str,
    *,
    needs: Optional[List[str]] = None,
    healthcheck: Optional[HealthCheck] = None,
    cpu: Any = None,
    memory: Any = None,
    cpu_request: Any = None,
    memory_request: Any = None,
    build: Optional[str] = None,
) -> Service:
    """
    `cpu`/`memory` are limits, `*_request` are reservations. Quantities take
    Compose-style values: cpu=0.5 or "500m", memory="512M".
    """
    return Service(
        name=name,
        needs=tuple(needs or []),
        healthcheck=healthcheck,
        request=Resources(cpu=parse_cpu(cpu_request), memory=parse_memory(memory_request)),
        limit=Resources(cpu=parse_cpu(cpu), memory=parse_memory(memory)),
        build=build,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StageBuilder:
    def __init__(self, name: str):
        self.name = name
        self._base: Optional[str] = None
        self._instructions: list[str] = []
        self._files: list[str] = []
        self._copy_from: list[str] = []
        self._args: dict[str, str] = {}

    def from_(self, base: str):
        self._base = base
        return self

    def run(self, *instructions: str):
        self._instructions.extend(instructions)
        return self

    def with_files(self, *patterns: str):
        self._files.extend(patterns)
        return self

    def copy(self, from_stage: str, instruction: str | None = None):
        """Consume another stage's output; optionally record the COPY line."""
        if from_stage not in self._copy_from:
            self._copy_from.append(from_stage)
        if instruction:
            self._instructions.append(instruction)
        return self

    def with_args(self, **args):
        self._args.update({k: str(v) for k, v in args.items()})
        return self

    def build(self) -> Stage:
        if not self._instructions:
            raise ValueError(f"Stage '{self.name}' has no instructions")
        return stage(
            self.name,
            *self._instructions,
            base=self._base,
            files=self._files,
            copy_from=self._copy_from,
            args=self._args,
        )


def stage_builder(name: str) -> StageBuilder:
    """Convenience: stage_builder('app').from_('deps').run(...).build()"""
    return StageBuilder(name)


# ---------------------------------------------------------------------
# Stack helpers (single-file story)
# ---------------------------------------------------------------------

def build(*stages: Stage) -> List[Stage]:
    """
    Stack files can write:
        from dockplan import build, stage

        def stages():
            return build(stage(...), stage(...))

    Or use STAGES directly:
        STAGES = build(stage(...), stage(...))
    """
    return list(stages)


def compose(*services: Service) -> List[Service]:
    """Same as build() for the service side: SERVICES = compose(service(...), ...)."""
    return list(services)
