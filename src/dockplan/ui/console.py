"""Console output for dockplan: plans, stage builds and service transitions."""

from __future__ import annotations

import sys
import traceback
from typing import Dict, List, Optional

RULE_WIDTH = 40

# status -> marker shown in front of a name
_MARKERS = {
    "hit": "=",
    "miss": "+",
    "ok": "*",
    "skipped(cache)": "=",
    "healthy": "*",
    "failed": "x",
    "blocked": "!",
    "aborted": "-",
    "stopped": "-",
}


def _marker(status: str) -> str:
    return _MARKERS.get(status.lower(), "?")


class Console:
    """
    Single sink for everything dockplan shows the user.

    Regular output goes to stdout, errors and debug lines to stderr.
    With debug=True failures keep their full text and exceptions print a traceback.
    """

    def __init__(self, debug: bool = False):
        self.debug = debug

    def _err(self, text: str = "") -> None:
        print(text, file=sys.stderr)

    # -------------------- sections --------------------

    def print_header(self, title: str) -> None:
        print(f"\n{title}")
        print("-" * len(title))

    def print_plan_started(self, stack: str, stage_count: int, service_count: int) -> None:
        print("\nPLAN STARTED")
        print(f"Stack: {stack}")
        print(f"Stages: {stage_count}  Services: {service_count}")

    def print_plan_stage(self, name: str, status: str, reason: str) -> None:
        print(f"  {_marker(status)} {name} [{status}] {reason}")

    def print_levels(self, levels: List[List[str]]) -> None:
        """One line per batch of stages that can build in parallel."""
        for idx, level in enumerate(levels, start=1):
            print(f"  batch {idx}: {', '.join(level)}")

    # -------------------- build --------------------

    def print_stage_start(self, name: str) -> None:
        print(f"STAGE: {name}")

    def print_stage_done(self, name: str, status: str) -> None:
        print(f"STAGE: {name} ({status})")

    def print_cache_committed(self, count: int) -> None:
        print(f"CACHE: committed {count} fingerprint(s)")

    def print_cache_not_committed(self, reason: str) -> None:
        print(f"CACHE: not committed ({reason})")

    def print_failure(self, name: str, reason: str, exit_code: Optional[int] = None) -> None:
        print(f"FAILED: {name}" + (f" (exit={exit_code})" if exit_code is not None else ""))
        if not reason:
            reason = "Unknown error"
        print(f"Error: {reason if self.debug else reason.splitlines()[0]}")

    # -------------------- services --------------------

    def print_transition(self, text: str) -> None:
        print(f"SERVICE: {text}")

    def print_blocked(self, names: List[str]) -> None:
        if names:
            print(f"BLOCKED: {', '.join(names)}")

    # -------------------- summaries --------------------

    def print_results(self, results: Dict[str, str]) -> None:
        """Final status per stage or service."""
        print("\n" + "=" * RULE_WIDTH)
        print("RESULTS")
        print("=" * RULE_WIDTH)
        for name, status in results.items():
            print(f"  {_marker(status)} {name}: {status.upper()}")

    def print_info(self, message: str) -> None:
        print(message)

    # -------------------- errors --------------------

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[List[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Structured error block on stderr:

            ERROR: <title>
            <message>
              <detail lines>

            <suggestion>
        """
        self._err(f"\nERROR: {title}")
        self._err(message)
        for detail in details or []:
            self._err(f"  {detail}")
        if suggestion:
            self._err(f"\n{suggestion}")

    def print_warning(self, message: str) -> None:
        self._err(f"WARNING: {message}")

    def print_exception(self, exc: BaseException) -> None:
        if self.debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._err(f"Error: {exc}")

    def print_debug(self, message: str) -> None:
        if self.debug:
            self._err(f"[DEBUG] {message}")


# Process-wide console, replaced by the CLI according to --debug
_console: Optional[Console] = None


def get_console() -> Console:
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console
