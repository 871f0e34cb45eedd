"""Tests for health probe executors."""
import pytest

from dockplan.dsl import healthcheck, service
from dockplan.probes import CallableProbeExecutor, CommandProbeExecutor, _command_for


@pytest.mark.parametrize(
    "test,expected",
    [
        ("pg_isready", "pg_isready"),
        (("CMD-SHELL", "pg_isready", "-q"), "pg_isready -q"),
        (("CMD", "pg_isready", "-q"), ["pg_isready", "-q"]),
        (("NONE",), None),
        (("curl", "-f", "localhost"), ["curl", "-f", "localhost"]),
    ],
)
def test_command_forms(test, expected):
    assert _command_for(test) == expected


class TestCommandProbeExecutor:
    def test_exit_code_decides(self, tmp_path):
        probes = CommandProbeExecutor(cwd=str(tmp_path))
        svc = service("db")
        assert probes.probe(svc, healthcheck("true"))
        assert not probes.probe(svc, healthcheck(["CMD", "false"]))

    def test_service_name_is_exported(self, tmp_path):
        probes = CommandProbeExecutor(cwd=str(tmp_path), env={"EXPECTED": "db"})
        check = healthcheck('test "$DOCKPLAN_SERVICE" = "$EXPECTED"')
        assert probes.probe(service("db"), check)
        assert not probes.probe(service("api"), check)

    def test_missing_binary_is_unhealthy(self):
        check = healthcheck(["CMD", "definitely-not-a-real-binary-dockplan"])
        assert not CommandProbeExecutor().probe(service("db"), check)

    def test_timeout_is_unhealthy(self):
        check = healthcheck(["CMD", "sleep", "5"], timeout=0.2)
        assert not CommandProbeExecutor().probe(service("db"), check)

    def test_disabled_check_passes(self):
        assert CommandProbeExecutor().probe(service("db"), healthcheck(["NONE"]))


def test_callable_probes_default_and_calls():
    probes = CallableProbeExecutor({"db": lambda s: False}, default=lambda s: s.name == "api")
    check = healthcheck("ignored")
    assert not probes.probe(service("db"), check)
    assert probes.probe(service("api"), check)
    assert not probes.probe(service("web"), check)
    assert probes.calls == {"db": 1, "api": 1, "web": 1}
