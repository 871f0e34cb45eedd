# loader.py
from __future__ import annotations

import json
import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import SpecLoadError
from .model import HealthCheck, ResourceBudget, Resources, Service, Stage
from .resources import parse_cpu, parse_memory


@dataclass
class Stack:
    """Resolved build stages, services and budget."""
    stages: List[Stage] = field(default_factory=list)
    services: List[Service] = field(default_factory=list)
    budget: Optional[ResourceBudget] = None
    source: str = ""


# -------------------- JSON schema --------------------

class HealthCheckDoc(BaseModel):
    test: Union[str, List[str]]
    interval: float = Field(5.0, ge=0)
    timeout: float = Field(3.0, ge=0)
    retries: int = Field(3, ge=0)
    start_period: float = Field(0.0, ge=0)


class ResourcesDoc(BaseModel):
    cpu: Optional[Union[float, str]] = None
    memory: Optional[Union[int, str]] = None


class StageDoc(BaseModel):
    name: str
    instructions: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    copy_from: List[str] = Field(default_factory=list)
    base: Optional[str] = None
    args: Dict[str, str] = Field(default_factory=dict)


class ServiceDoc(BaseModel):
    name: str
    needs: List[str] = Field(default_factory=list)
    healthcheck: Optional[HealthCheckDoc] = None
    request: ResourcesDoc = Field(default_factory=ResourcesDoc)
    limit: ResourcesDoc = Field(default_factory=ResourcesDoc)
    build: Optional[str] = None


class StackDoc(BaseModel):
    stages: List[StageDoc] = Field(default_factory=list)
    services: List[ServiceDoc] = Field(default_factory=list)
    budget: Optional[ResourcesDoc] = None


# -------------------- conversions --------------------

def _resources(doc: ResourcesDoc) -> Resources:
    return Resources(cpu=parse_cpu(doc.cpu), memory=parse_memory(doc.memory))


def _stage_from_doc(doc: StageDoc) -> Stage:
    return Stage(
        name=doc.name,
        instructions=tuple(doc.instructions),
        files=tuple(doc.files),
        copy_from=tuple(doc.copy_from),
        base=doc.base,
        args=dict(doc.args),
    )


def _service_from_doc(doc: ServiceDoc) -> Service:
    check = None
    if doc.healthcheck is not None:
        hc = doc.healthcheck
        check = HealthCheck(
            test=hc.test if isinstance(hc.test, str) else tuple(hc.test),
            interval=hc.interval,
            timeout=hc.timeout,
            retries=hc.retries,
            start_period=hc.start_period,
        )
    return Service(
        name=doc.name,
        needs=tuple(doc.needs),
        healthcheck=check,
        request=_resources(doc.request),
        limit=_resources(doc.limit),
        build=doc.build,
    )


def stack_from_dict(data: Dict[str, Any], *, source: str = "<dict>") -> Stack:
    try:
        doc = StackDoc.model_validate(data)
        budget = None
        if doc.budget is not None:
            res = _resources(doc.budget)
            budget = ResourceBudget(cpu=res.cpu, memory=res.memory)
        return Stack(
            stages=[_stage_from_doc(s) for s in doc.stages],
            services=[_service_from_doc(s) for s in doc.services],
            budget=budget,
            source=source,
        )
    except ValidationError as e:
        raise SpecLoadError(source, str(e)) from e
    except ValueError as e:
        # bad resource quantities
        raise SpecLoadError(source, str(e)) from e


def _resources_to_dict(res: Resources) -> Dict[str, Any]:
    return {k: v for k, v in (("cpu", res.cpu), ("memory", res.memory)) if v is not None}


def stack_to_dict(stack: Stack) -> Dict[str, Any]:
    """Reverse of stack_from_dict(): a JSON-ready document."""
    stages = []
    for s in stack.stages:
        d: Dict[str, Any] = {"name": s.name, "instructions": list(s.instructions)}
        if s.files:
            d["files"] = list(s.files)
        if s.copy_from:
            d["copy_from"] = list(s.copy_from)
        if s.base is not None:
            d["base"] = s.base
        if s.args:
            d["args"] = dict(s.args)
        stages.append(d)

    services = []
    for svc in stack.services:
        d = {"name": svc.name, "needs": list(svc.needs)}
        if svc.healthcheck is not None:
            hc = svc.healthcheck
            d["healthcheck"] = {
                "test": hc.test if isinstance(hc.test, str) else list(hc.test),
                "interval": hc.interval,
                "timeout": hc.timeout,
                "retries": hc.retries,
                "start_period": hc.start_period,
            }
        if _resources_to_dict(svc.request):
            d["request"] = _resources_to_dict(svc.request)
        if _resources_to_dict(svc.limit):
            d["limit"] = _resources_to_dict(svc.limit)
        if svc.build is not None:
            d["build"] = svc.build
        services.append(d)

    out: Dict[str, Any] = {"stages": stages, "services": services}
    if stack.budget is not None:
        out["budget"] = {
            k: v for k, v in (("cpu", stack.budget.cpu), ("memory", stack.budget.memory)) if v is not None
        }
    return out


# -------------------- Python stack files --------------------

def _collect(globals_dict: Dict[str, Any], func: str, const: str, kind: type, path: Path) -> List:
    items = None
    if func in globals_dict and callable(globals_dict[func]):
        items = globals_dict[func]()
    elif const in globals_dict:
        items = globals_dict[const]
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(i, kind) for i in items):
        raise SpecLoadError(
            str(path),
            f"{func}() / {const} must be a List[{kind.__name__}]",
        )
    return items


def _load_python(path: Path) -> Stack:
    """
    The file may define:
      - stages() -> List[Stage]     or STAGES = [...]
      - services() -> List[Service] or SERVICES = [...]
      - BUDGET = ResourceBudget(...) (optional)
    """
    module_name = f"dockplan_stack_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    stages = _collect(globals_dict, "stages", "STAGES", Stage, path)
    services = _collect(globals_dict, "services", "SERVICES", Service, path)
    if not stages and not services:
        raise SpecLoadError(str(path), "defines neither stages nor services")

    budget = globals_dict.get("BUDGET")
    if budget is not None and not isinstance(budget, ResourceBudget):
        raise SpecLoadError(str(path), "BUDGET must be a ResourceBudget")

    return Stack(stages=stages, services=services, budget=budget, source=str(path))


def load_stack(path: str | Path) -> Stack:
    """Load a stack from a .py stack file or a .json document."""
    stack_path = Path(path).expanduser().resolve()
    if not stack_path.exists():
        raise SpecLoadError(str(stack_path), "stack file not found")

    if stack_path.suffix == ".py":
        return _load_python(stack_path)
    if stack_path.suffix == ".json":
        try:
            data = json.loads(stack_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise SpecLoadError(str(stack_path), f"invalid JSON: {e}") from e
        return stack_from_dict(data, source=str(stack_path))

    raise SpecLoadError(str(stack_path), f"unsupported stack file type: {stack_path.suffix!r}")
