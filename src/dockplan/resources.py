# resources.py
from __future__ import annotations

import re
from typing import Dict, Optional, Sequence

from .errors import BudgetExceededError, InvalidResourceDeclarationError
from .model import ResourceBudget, Service

RESOURCES = ("cpu", "memory")

_MEMORY_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "ki": 1024,
    "m": 1024 ** 2,
    "mb": 1024 ** 2,
    "mi": 1024 ** 2,
    "g": 1024 ** 3,
    "gb": 1024 ** 3,
    "gi": 1024 ** 3,
    "t": 1024 ** 4,
    "tb": 1024 ** 4,
    "ti": 1024 ** 4,
}

_QUANTITY = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([a-zA-Z]*)\s*$")


def parse_cpu(value) -> Optional[float]:
    """
    CPU quantity in cores.
      0.5 / "0.5" -> 0.5
      "500m"      -> 0.5 (millicores)
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = _QUANTITY.match(str(value))
    if not m:
        raise ValueError(f"Invalid cpu quantity: {value!r}")
    number, unit = float(m.group(1)), m.group(2).lower()
    if unit == "":
        return number
    if unit == "m":
        return number / 1000.0
    raise ValueError(f"Invalid cpu unit in {value!r}")


def parse_memory(value) -> Optional[int]:
    """
    Memory quantity in bytes.
      "512m" / "512M" / "512Mi" -> 536870912
      1073741824 (int)          -> as-is
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    m = _QUANTITY.match(str(value))
    if not m:
        raise ValueError(f"Invalid memory quantity: {value!r}")
    number, unit = float(m.group(1)), m.group(2).lower()
    if unit not in _MEMORY_UNITS:
        raise ValueError(f"Invalid memory unit in {value!r}")
    return int(number * _MEMORY_UNITS[unit])


def accounted(service: Service, resource: str) -> float:
    """What a service counts against the budget: its limit, else its request, else 0."""
    limit = service.limit.get(resource)
    if limit is not None:
        return limit
    request = service.request.get(resource)
    return request if request is not None else 0


class ResourcePolicyEnforcer:
    """Rejects invalid plans before any service is started."""

    def __init__(self, budget: Optional[ResourceBudget] = None):
        self.budget = budget

    def check_declarations(self, services: Sequence[Service]) -> None:
        for svc in services:
            for resource in RESOURCES:
                request = svc.request.get(resource)
                limit = svc.limit.get(resource)
                if request is not None and limit is not None and request > limit:
                    raise InvalidResourceDeclarationError(
                        service=svc.name,
                        resource=resource,
                        request=request,
                        limit=limit,
                    )

    def totals(self, services: Sequence[Service]) -> Dict[str, float]:
        # 9 places: 0.1 + 0.2 cores must equal a 0.3 ceiling
        return {r: round(sum(accounted(s, r) for s in services), 9) for r in RESOURCES}

    def check_budget(self, services: Sequence[Service]) -> Dict[str, float]:
        totals = self.totals(services)
        if self.budget is None:
            return totals
        for resource in RESOURCES:
            ceiling = self.budget.get(resource)
            if ceiling is not None and totals[resource] > ceiling:
                raise BudgetExceededError(
                    resource=resource,
                    total=totals[resource],
                    ceiling=ceiling,
                    services=[s.name for s in services if accounted(s, resource)],
                )
        return totals

    def validate(self, services: Sequence[Service]) -> Dict[str, float]:
        """Declarations first, then the aggregate budget. Returns the totals."""
        self.check_declarations(services)
        return self.check_budget(services)


def validate_resources(
    services: Sequence[Service],
    budget: Optional[ResourceBudget] = None,
) -> Dict[str, float]:
    return ResourcePolicyEnforcer(budget).validate(services)
