from __future__ import annotations
import os

from .model import ResourceBudget
from .resources import parse_cpu, parse_memory

STATE_DIR = os.environ.get("DOCKPLAN_STATE_DIR", ".dockplan")
STACK_FILE = os.environ.get("DOCKPLAN_STACK_FILE", "dockplan_stack.py")
MAX_WORKERS = int(os.environ["DOCKPLAN_MAX_WORKERS"]) if os.environ.get("DOCKPLAN_MAX_WORKERS") else None
CPU_BUDGET = os.environ.get("DOCKPLAN_CPU_BUDGET")
MEMORY_BUDGET = os.environ.get("DOCKPLAN_MEMORY_BUDGET")


def budget_from(cpu=None, memory=None) -> ResourceBudget | None:
    """Budget from explicit values, falling back to the environment. None if neither is set."""
    cpu = cpu if cpu is not None else CPU_BUDGET
    memory = memory if memory is not None else MEMORY_BUDGET
    if cpu is None and memory is None:
        return None
    return ResourceBudget(cpu=parse_cpu(cpu), memory=parse_memory(memory))
