"""Change planning: dependency graph, plan model, and plan engine."""

from eks_orchestrator.plan.engine import PlanEngine, desired_resources
from eks_orchestrator.plan.graph import DependencyGraph
from eks_orchestrator.plan.models import (
    ChangeAction,
    ChangePlan,
    ChangeStep,
    derive_token,
    step_id_for,
)

__all__ = [
    "ChangeAction",
    "ChangePlan",
    "ChangeStep",
    "DependencyGraph",
    "PlanEngine",
    "derive_token",
    "desired_resources",
    "step_id_for",
]
