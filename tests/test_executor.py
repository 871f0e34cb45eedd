"""Tests for running a build plan and the commit that follows it."""
import threading

import pytest

from dockplan.dsl import stage
from dockplan.errors import StageFailure
from dockplan.executor import ABORTED, BLOCKED, FAILED, OK, SKIPPED, BuildExecutor, ShellStageRunner


class Recorder:
    def __init__(self, fail=()):
        self.fail = set(fail)
        self.ran = []
        self._lock = threading.Lock()

    def __call__(self, s):
        with self._lock:
            self.ran.append(s.name)
        if s.name in self.fail:
            raise RuntimeError(f"{s.name} broke")


@pytest.fixture
def chain():
    return [
        stage("A", "RUN a", files=["requirements.txt"]),
        stage("B", "RUN b", base="A"),
        stage("D", "RUN d", copy_from=["B"]),
    ]


class TestBuildExecutor:
    def test_runs_misses_in_dependency_order_and_commits(self, engine, store, chain):
        runner = Recorder()
        result = BuildExecutor(engine, max_workers=2).execute(engine.plan(chain), runner)

        assert runner.ran == ["A", "B", "D"]
        assert result.results == {"A": OK, "B": OK, "D": OK}
        assert result.ok
        assert result.committed
        assert store.commits == 1

    def test_hits_are_skipped(self, engine, chain):
        executor = BuildExecutor(engine, max_workers=2)
        executor.execute(engine.plan(chain), Recorder())

        runner = Recorder()
        result = executor.execute(engine.plan(chain), runner)
        assert runner.ran == []
        assert set(result.results.values()) == {SKIPPED}

    def test_failure_blocks_dependents_and_skips_commit(self, engine, store, chain):
        result = BuildExecutor(engine, max_workers=2).execute(engine.plan(chain), Recorder(fail={"B"}))

        assert result.results == {"A": OK, "B": FAILED, "D": BLOCKED}
        assert isinstance(result.errors["B"], RuntimeError)
        assert not result.ok
        assert not result.committed
        assert store.commits == 0
        assert len(store) == 0

    def test_independent_branch_keeps_going_without_fail_fast(self, engine, abc_stages):
        stages = abc_stages + [stage("E", "RUN e", base="B")]
        runner = Recorder(fail={"B"})
        result = BuildExecutor(engine, max_workers=1, fail_fast=False).execute(engine.plan(stages), runner)

        assert result.results["C"] == OK
        assert result.results["E"] == BLOCKED

    def test_abort_discards_fingerprints(self, engine, store, chain):
        executor = BuildExecutor(engine, max_workers=1)

        def runner(s):
            if s.name == "A":
                executor.abort()

        result = executor.execute(engine.plan(chain), runner)
        assert result.aborted
        assert result.results == {"A": OK, "B": ABORTED, "D": ABORTED}
        assert not result.committed
        assert store.commits == 0
        assert not executor.aborted

    def test_abort_before_execute_is_honoured(self, engine, store, chain):
        executor = BuildExecutor(engine, max_workers=1)
        executor.abort()

        runner = Recorder()
        result = executor.execute(engine.plan(chain), runner)
        assert runner.ran == []
        assert result.results == {"A": ABORTED, "B": ABORTED, "D": ABORTED}
        assert not result.committed
        assert store.commits == 0

        # consumed by the aborted build; the next one runs normally
        result = executor.execute(engine.plan(chain), runner)
        assert runner.ran == ["A", "B", "D"]
        assert result.committed

    def test_failed_build_rebuilds_next_time(self, engine, chain):
        executor = BuildExecutor(engine, max_workers=2)
        executor.execute(engine.plan(chain), Recorder(fail={"D"}))

        plan = engine.plan(chain)
        assert [p.name for p in plan.misses()] == ["A", "B", "D"]


class TestShellStageRunner:
    def test_command_placeholders(self, engine, chain):
        planned = engine.plan(chain)["B"].stage
        runner = ShellStageRunner("build --target {stage} --from {base} -t app:{fingerprint}")
        assert runner.command_for(planned) == f"build --target B --from A -t app:{planned.fingerprint.short}"

    def test_nonzero_exit_raises(self, tmp_path):
        runner = ShellStageRunner("echo building {stage}; exit 3", cwd=tmp_path)
        with pytest.raises(StageFailure) as exc:
            runner(stage("A", "RUN a"))
        assert exc.value.exit_code == 3
        assert exc.value.stage == "A"
        assert "building A" in exc.value.stdout

    def test_build_args_are_exported(self, tmp_path):
        runner = ShellStageRunner('test "$DOCKPLAN_ARG_MODE" = prod', cwd=tmp_path)
        runner(stage("A", "RUN a", args={"mode": "prod"}))
        with pytest.raises(StageFailure):
            runner(stage("A", "RUN a", args={"mode": "dev"}))
