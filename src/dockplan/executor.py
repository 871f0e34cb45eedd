# executor.py
from __future__ import annotations

import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .dag import build_dag
from .errors import StageFailure
from .model import BuildPlan, Stage
from .planner import CacheInvalidationEngine
from .ui.console import get_console

StageRunner = Callable[[Stage], None]

OK = "ok"
SKIPPED = "skipped(cache)"
FAILED = "failed"
BLOCKED = "blocked"
ABORTED = "aborted"


@dataclass
class BuildResult:
    results: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, Exception] = field(default_factory=dict)
    committed: bool = False
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return all(s in (OK, SKIPPED) for s in self.results.values()) and not self.aborted


# ----------------------------------------------------------------------
# Stage runners
# ----------------------------------------------------------------------

class ShellStageRunner:
    """
    Runs one shell command per stage, e.g.
      "docker build --target {stage} -t app:{stage} ."

    Placeholders: {stage}, {fingerprint} (short digest), {base}.
    """

    def __init__(
        self,
        template: str,
        *,
        cwd: str | Path = ".",
        env: Optional[Dict[str, str]] = None,
    ):
        self.template = template
        self.cwd = Path(cwd).resolve()
        self.env = dict(env or {})

    def command_for(self, stage: Stage) -> str:
        fp = stage.fingerprint.short if stage.fingerprint is not None else ""
        return self.template.format(stage=stage.name, fingerprint=fp, base=stage.base or "")

    def __call__(self, stage: Stage) -> None:
        cmd = self.command_for(stage)
        env = os.environ.copy()
        env.update(self.env)
        env.update({f"DOCKPLAN_ARG_{k.upper()}": v for k, v in stage.args.items()})

        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(self.cwd),
            env=env,
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            raise StageFailure(
                stage=stage.name,
                cmd=cmd,
                exit_code=proc.returncode,
                stdout=proc.stdout[-4000:],
                stderr=proc.stderr[-4000:],
            )


# ----------------------------------------------------------------------
# Execution phase
# ----------------------------------------------------------------------

class BuildExecutor:
    """
    Drives a BuildPlan to completion.

    - hit stages are skipped
    - miss stages run through `run_stage` as soon as their upstream is done,
      independent stages in parallel
    - fingerprints are committed once, and only if every stage succeeded
      and no abort was requested
    """

    def __init__(
        self,
        engine: CacheInvalidationEngine,
        *,
        max_workers: int | None = None,
        fail_fast: bool = True,
    ):
        self.engine = engine
        self.max_workers = max_workers
        self.fail_fast = fail_fast
        self._abort = threading.Event()

    def abort(self) -> None:
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def _stopping(self, failed: bool) -> bool:
        return self._abort.is_set() or (self.fail_fast and failed)

    def execute(self, plan: BuildPlan, run_stage: StageRunner) -> BuildResult:
        console = get_console()

        by_name = {p.name: p for p in plan}
        adj, indeg = build_dag([p.stage for p in plan], kind="stage")
        ready: List[str] = [name for name in plan.order if indeg[name] == 0]
        result = BuildResult()
        failed = False

        max_workers = self.max_workers
        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(1, c - 1)

        def unlock(name: str) -> None:
            for nxt in sorted(adj[name], key=plan.order.index):
                indeg[nxt] -= 1
                if indeg[nxt] == 0:
                    ready.append(nxt)

        in_flight: Dict = {}

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            while ready or in_flight:
                # schedule everything currently ready, in plan order
                while ready and not self._stopping(failed):
                    name = ready.pop(0)
                    planned = by_name[name]
                    if planned.hit:
                        result.results[name] = SKIPPED
                        console.print_stage_done(name, SKIPPED)
                        unlock(name)
                        continue
                    console.print_stage_start(name)
                    fut = pool.submit(run_stage, planned.stage)
                    in_flight[fut] = name

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready stages
                fut = next(as_completed(list(in_flight.keys())))
                name = in_flight.pop(fut)

                try:
                    fut.result()
                    result.results[name] = OK
                    console.print_stage_done(name, OK)
                    unlock(name)
                except Exception as e:
                    result.results[name] = FAILED
                    result.errors[name] = e
                    console.print_failure(name, str(e), getattr(e, "exit_code", None))
                    failed = True

        result.aborted = self._abort.is_set()
        # an abort is consumed by the build it stopped
        self._abort.clear()
        for name in plan.order:
            if name not in result.results:
                result.results[name] = ABORTED if result.aborted else BLOCKED

        if result.ok:
            self.engine.commit(plan)
            result.committed = True
            console.print_cache_committed(len(plan))
        else:
            reason = "aborted" if result.aborted else "build failed"
            console.print_cache_not_committed(reason)

        return result
