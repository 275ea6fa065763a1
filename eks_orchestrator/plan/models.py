"""Change plan value types.

A :class:`ChangePlan` is transient: it is produced by the plan engine for
one apply and consumed by the executor.  Its steps are already in
execution order (topological, ties broken by resource id).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from eks_orchestrator.config.models import ClusterSpec
from eks_orchestrator.state.drift import DriftItem
from eks_orchestrator.state.models import ResourceKind


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


_SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
    ChangeAction.NOOP: " ",
}


def step_id_for(action: ChangeAction, resource_id: str) -> str:
    return f"{action.value}:{resource_id}"


def derive_token(spec_hash: str, step_id: str, previous_token: str = "") -> str:
    """Idempotency token for a step.

    Stable across retries and resumed runs of the same plan; distinct for
    the next change of the same resource because the previous record's
    token is chained in.
    """
    raw = f"{spec_hash}:{step_id}:{previous_token}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@dataclass
class ChangeStep:
    """One unit of work against one resource.

    Attributes:
        resource_id: Target resource (``cluster``, ``nodegroup/mng1``, ...).
        action: create / update / delete / noop.
        depends_on: Step ids that must succeed first.
        requires: Resource ids this resource depends on (persisted on the record).
        desired: Attributes after the step.
        previous: Attributes recorded before the step.
        target: The spec object the provider call needs (None for deletes).
        token: Idempotency token handed to the provider.
        forget: Delete of a resource already gone; only the record is dropped.
    """

    resource_id: str
    action: ChangeAction
    depends_on: Tuple[str, ...] = ()
    requires: Tuple[str, ...] = ()
    desired: Dict[str, Any] = field(default_factory=dict)
    previous: Dict[str, Any] = field(default_factory=dict)
    target: Any = None
    token: str = ""
    reason: str = ""
    forget: bool = False

    @property
    def step_id(self) -> str:
        return step_id_for(self.action, self.resource_id)

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind(self.resource_id.split("/", 1)[0])

    @property
    def name(self) -> str:
        return self.resource_id.split("/", 1)[-1]

    def changed_attributes(self) -> Dict[str, Tuple[Any, Any]]:
        keys = sorted(set(self.desired) | set(self.previous))
        return {
            k: (self.previous.get(k), self.desired.get(k))
            for k in keys
            if self.previous.get(k) != self.desired.get(k)
        }


@dataclass
class ChangePlan:
    """Ordered list of steps plus the context they were planned in."""

    cluster_name: str
    spec_hash: str
    steps: List[ChangeStep] = field(default_factory=list)
    spec: Optional[ClusterSpec] = None
    teardown: bool = False
    overridden_drift: List[DriftItem] = field(default_factory=list)

    def step(self, step_id: str) -> ChangeStep:
        for s in self.steps:
            if s.step_id == step_id:
                return s
        raise KeyError(step_id)

    def by_resource(self) -> Dict[str, ChangeStep]:
        return {s.resource_id: s for s in self.steps}

    @property
    def changes(self) -> List[ChangeStep]:
        return [s for s in self.steps if s.action != ChangeAction.NOOP]

    @property
    def is_noop(self) -> bool:
        return not self.changes

    def counts(self) -> Dict[str, int]:
        out = {a.value: 0 for a in ChangeAction}
        for s in self.steps:
            out[s.action.value] += 1
        return out

    # -- rendering --------------------------------------------------------

    def render(self) -> str:
        """Human-readable diff of the plan."""
        lines = [f"Plan for cluster {self.cluster_name} (spec {self.spec_hash[:12]}):"]
        for s in self.steps:
            line = f"  {_SYMBOLS[s.action]} {s.action.value:<7} {s.resource_id}"
            if s.reason:
                line += f"  [{s.reason}]"
            lines.append(line)
            if s.action == ChangeAction.UPDATE:
                for key, (old, new) in s.changed_attributes().items():
                    lines.append(f"        {key}: {old!r} -> {new!r}")
            if s.depends_on and s.action != ChangeAction.NOOP:
                lines.append(f"        after: {', '.join(s.depends_on)}")
        c = self.counts()
        lines.append(
            f"Plan: {c['create']} to create, {c['update']} to update, "
            f"{c['delete']} to delete, {c['noop']} unchanged."
        )
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_name": self.cluster_name,
            "counts": self.counts(),
            "spec_hash": self.spec_hash,
            "steps": [
                {
                    "action": s.action.value,
                    "changes": {k: list(v) for k, v in s.changed_attributes().items()},
                    "depends_on": list(s.depends_on),
                    "reason": s.reason,
                    "resource_id": s.resource_id,
                    "step_id": s.step_id,
                }
                for s in self.steps
            ],
            "teardown": self.teardown,
        }
