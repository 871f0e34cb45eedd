# probes.py
from __future__ import annotations

import os
import subprocess
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Union

from .model import HealthCheck, Service


class ProbeExecutor(Protocol):
    """Black-box health oracle: True means the probe passed."""

    def probe(self, service: Service, check: HealthCheck) -> bool:
        ...


def _command_for(test) -> Optional[Union[str, List[str]]]:
    """
    Normalize a Compose-style healthcheck test.

      "pg_isready"                      -> shell string
      ["CMD-SHELL", "pg_isready -q"]    -> shell string
      ["CMD", "pg_isready", "-q"]       -> argv list
      ["NONE"]                          -> None (probe disabled, always passes)
    """
    if isinstance(test, str):
        return test
    parts = [str(p) for p in test]
    if not parts:
        return None
    head = parts[0].upper()
    if head == "NONE":
        return None
    if head == "CMD-SHELL":
        return " ".join(parts[1:])
    if head == "CMD":
        return parts[1:]
    return parts


class CommandProbeExecutor:
    """Runs the healthcheck test as a local command; exit code 0 = healthy."""

    def __init__(self, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None):
        self.cwd = cwd
        self.env = dict(env or {})

    def probe(self, service: Service, check: HealthCheck) -> bool:
        cmd = _command_for(check.test)
        if cmd is None:
            return True

        env = os.environ.copy()
        env.update(self.env)
        env["DOCKPLAN_SERVICE"] = service.name

        try:
            proc = subprocess.run(
                cmd,
                shell=isinstance(cmd, str),
                cwd=self.cwd,
                env=env,
                text=True,
                capture_output=True,
                timeout=check.timeout if check.timeout > 0 else None,
            )
        except subprocess.TimeoutExpired:
            return False
        except FileNotFoundError:
            return False
        return proc.returncode == 0


class CallableProbeExecutor:
    """
    Probes backed by Python callables, keyed by service name.

    A callable receives the Service and returns a truthy value when healthy.
    Services without an entry use `default` (passing when it is None).
    """

    def __init__(
        self,
        probes: Optional[Mapping[str, Callable[[Service], bool]]] = None,
        *,
        default: Optional[Callable[[Service], bool]] = None,
    ):
        self.probes: Dict[str, Callable[[Service], bool]] = dict(probes or {})
        self.default = default
        self.calls: Dict[str, int] = {}

    def probe(self, service: Service, check: HealthCheck) -> bool:
        self.calls[service.name] = self.calls.get(service.name, 0) + 1
        fn = self.probes.get(service.name, self.default)
        if fn is None:
            return True
        return bool(fn(service))
