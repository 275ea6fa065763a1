"""Run report: per-step terminal status, attempts, errors, and timings.

Serialised (``to_sorted_json``) the report looks like::

    {
      "cluster_name": "CdkProjectsStack-eks-cluster",
      "elapsed_seconds": 812.4,
      "outcome": "PARTIAL_FAILURE",
      "spec_hash": "9f2c...",
      "steps": [
        {"action": "create", "attempts": 1, "elapsed_seconds": 640.2,
         "error": "", "resource_id": "cluster", "status": "SUCCEEDED", ...},
        ...
      ]
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from eks_orchestrator.errors import Cancelled, PartialFailure


class StepStatus(str, Enum):
    """Per-step state machine: PENDING → IN_PROGRESS → SUCCEEDED | FAILED, or SKIPPED."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RunOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    CANCELLED = "CANCELLED"


@dataclass
class StepResult:
    """What happened to one :class:`~eks_orchestrator.plan.models.ChangeStep`."""

    step_id: str
    resource_id: str
    action: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    error: str = ""
    error_type: str = ""
    skipped_because: str = ""
    provider_id: str = ""
    elapsed_seconds: float = 0.0

    @property
    def retried(self) -> bool:
        return self.attempts > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "error": self.error,
            "error_type": self.error_type,
            "provider_id": self.provider_id,
            "resource_id": self.resource_id,
            "skipped_because": self.skipped_because,
            "status": self.status.value,
            "step_id": self.step_id,
        }


@dataclass
class RunReport:
    """Aggregate outcome of one executor run."""

    cluster_name: str
    spec_hash: str
    outcome: RunOutcome = RunOutcome.SUCCEEDED
    steps: List[StepResult] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def result(self, step_id: str) -> StepResult:
        for r in self.steps:
            if r.step_id == step_id:
                return r
        raise KeyError(step_id)

    def _with(self, status: StepStatus) -> List[str]:
        return [r.resource_id for r in self.steps if r.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with(StepStatus.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with(StepStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with(StepStatus.SKIPPED)

    @property
    def retried(self) -> List[str]:
        return [r.resource_id for r in self.steps if r.retried]

    @property
    def ok(self) -> bool:
        return self.outcome == RunOutcome.SUCCEEDED

    def raise_for_outcome(self) -> None:
        """Raise :class:`PartialFailure` or :class:`Cancelled` unless the run succeeded."""
        if self.outcome == RunOutcome.CANCELLED:
            raise Cancelled(self)
        if self.outcome == RunOutcome.PARTIAL_FAILURE:
            raise PartialFailure(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_name": self.cluster_name,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "outcome": self.outcome.value,
            "spec_hash": self.spec_hash,
            "steps": [r.to_dict() for r in self.steps],
        }

    def to_sorted_json(self, indent: int = 2) -> str:
        """Serialise with sorted keys for deterministic output."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)
