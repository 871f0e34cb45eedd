from .dsl import stage, healthcheck, service, stage_builder, StageBuilder, build, compose
from .engine import Engine
from .model import ResourceBudget, Service, ServiceState, Stage
from .errors import PlanError

__all__ = [
    "stage",
    "healthcheck",
    "service",
    "stage_builder",
    "StageBuilder",
    "build",
    "compose",
    "Engine",
    "ResourceBudget",
    "Service",
    "ServiceState",
    "Stage",
    "PlanError",
]
