# planner.py
from __future__ import annotations

import difflib
import threading
import weakref
from dataclasses import replace
from typing import Dict, List, Sequence, Set

from .dag import topo_sort
from .errors import PlanCommitError
from .fingerprint import ContentReader, compute_fingerprint
from .model import BuildPlan, CacheStatus, InputFingerprint, PlannedStage, Stage
from .store import FingerprintStore
from .ui.console import get_console


def _warn_unmatched_bases(stages: Sequence[Stage], known: Set[str]) -> None:
    """A bare `base` (no tag, registry or digest) that names no stage is most likely a typo."""
    for stage in stages:
        base = stage.base
        if base is None or base in known or any(c in base for c in ":/@"):
            continue
        message = f"Stage '{stage.name}' base '{base}' matches no stage; treating it as an external image"
        close = difflib.get_close_matches(base, sorted(known), n=1)
        if close:
            message += f" (did you mean '{close[0]}'?)"
        get_console().print_warning(message)


class CacheInvalidationEngine:
    """
    Decides hit/miss per stage and owns the single commit of fingerprints.

    Planning only reads the store. Fingerprints reach the store through
    commit(), which the build executor calls once every stage of the plan
    has been produced.
    """

    def __init__(self, store: FingerprintStore, reader: ContentReader):
        self.store = store
        self.reader = reader
        # id() of every live plan already written; entries leave with their plan
        self._committed: Set[int] = set()
        self._lock = threading.Lock()

    def plan(self, stages: Sequence[Stage]) -> BuildPlan:
        # plans always start from unfingerprinted declarations
        declared = [replace(s, fingerprint=None) for s in stages]
        ordered = topo_sort(declared, kind="stage")
        known = {s.name for s in ordered}
        _warn_unmatched_bases(ordered, known)
        recorded = self.store.snapshot()

        computed: Dict[str, InputFingerprint] = {}
        missed: Set[str] = set()
        planned: List[PlannedStage] = []

        for stage in ordered:
            deps = stage.depends_on(known)
            fp = compute_fingerprint(stage, computed, self.reader)
            computed[stage.name] = fp

            forced_by = [d for d in deps if d in missed]
            previous = recorded.get(stage.name)
            if forced_by:
                status = CacheStatus.MISS
                reason = f"upstream rebuilt: {', '.join(forced_by)}"
            elif previous is None:
                status = CacheStatus.MISS
                reason = "no previous fingerprint"
            elif previous.digest != fp.digest:
                status = CacheStatus.MISS
                reason = f"inputs changed ({previous.short} -> {fp.short})"
            else:
                status = CacheStatus.HIT
                reason = f"cache hit ({fp.short})"

            if status is CacheStatus.MISS:
                missed.add(stage.name)
            planned.append(PlannedStage(stage=stage.with_fingerprint(fp), status=status, reason=reason))

        return BuildPlan(stages=tuple(planned))

    def commit(self, plan: BuildPlan) -> None:
        """Write every fingerprint of `plan` to the store, at most once per plan."""
        with self._lock:
            key = id(plan)
            if key in self._committed:
                raise PlanCommitError("Build plan was already committed")
            self.store.commit(plan.fingerprints())
            self._committed.add(key)
            weakref.finalize(plan, self._committed.discard, key)


def plan_build(
    stages: Sequence[Stage],
    store: FingerprintStore,
    reader: ContentReader,
) -> BuildPlan:
    return CacheInvalidationEngine(store, reader).plan(stages)
