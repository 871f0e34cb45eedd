"""End-to-end tests through the Engine entry point."""
from dockplan import Engine, ResourceBudget, ServiceState
from dockplan.probes import CallableProbeExecutor


def test_build_then_up(reader, abc_stages, web_stack):
    engine = Engine(reader=reader, probes=CallableProbeExecutor())

    plan = engine.plan_build(abc_stages)
    assert [p.name for p in plan.misses()] == ["A", "B", "C"]

    built = []
    result = engine.build(abc_stages, lambda s: built.append(s.name))
    assert result.committed
    assert sorted(built) == ["A", "B", "C"]
    assert engine.plan_build(abc_stages).misses() == []

    report = engine.up(web_stack, ResourceBudget(cpu=1), build_plan=plan)
    assert report.ok


def test_schedule_stream(web_stack):
    engine = Engine(probes=CallableProbeExecutor())
    events = list(engine.schedule(web_stack))
    assert events[0].service == "db"
    assert engine.scheduler.states["web"] is ServiceState.HEALTHY


def test_abort_stops_startup(web_stack):
    engine = Engine(probes=CallableProbeExecutor())
    stream = engine.schedule(web_stack)
    for event in stream:
        if event.state is ServiceState.HEALTHY:
            engine.abort()

    assert engine.scheduler.states["db"] is ServiceState.HEALTHY
    assert engine.scheduler.states["api"] is ServiceState.STOPPED
    assert engine.executor.aborted
