"""Exception taxonomy for the orchestrator.

Callers branch on the class, never on the message:

- :class:`InvalidSpec`: the cluster spec itself is wrong; never retried.
- :class:`PlanConflict` / :class:`DriftDetected`: planning refused to
  produce a plan; nothing was mutated.
- :class:`ProviderTransient`: retried automatically by the executor.
- :class:`ProviderPermanent`: the step is marked failed immediately.
- :class:`PartialFailure` / :class:`Cancelled`: run-level outcomes that
  carry the full :class:`~eks_orchestrator.executor.report.RunReport`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from eks_orchestrator.executor.report import RunReport
    from eks_orchestrator.state.drift import DriftItem


class OrchestratorError(Exception):
    """Base class for every error raised by this package."""


class InvalidSpec(OrchestratorError):
    """The supplied cluster spec failed validation."""

    def __init__(self, message: str, *, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class PlanConflict(OrchestratorError):
    """The dependency graph cannot be ordered (e.g. an add-on cycle)."""

    def __init__(self, message: str, *, cycle: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.cycle = cycle or []


class DriftDetected(OrchestratorError):
    """Live state diverged from the last recorded apply."""

    def __init__(self, items: "List[DriftItem]") -> None:
        ids = ", ".join(item.resource_id for item in items)
        super().__init__(
            f"Drift detected on {len(items)} resource(s): {ids}. "
            "Re-run with --force to reconcile."
        )
        self.items = items


class ProviderError(OrchestratorError):
    """A provider call failed for a specific resource."""

    def __init__(
        self,
        message: str,
        *,
        resource_id: str = "",
        cause: Optional[BaseException] = None,
        code: str = "",
    ) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.cause = cause
        self.code = code

    def __str__(self) -> str:
        base = super().__str__()
        if self.resource_id:
            return f"[{self.resource_id}] {base}"
        return base


class ProviderTransient(ProviderError):
    """Retryable provider failure (throttling, 5xx, in-flight operation)."""


class ProviderPermanent(ProviderError):
    """Non-retryable provider failure."""


class RunFailed(OrchestratorError):
    """Base for run-level outcomes that did not fully succeed."""

    outcome: str = ""

    def __init__(self, report: "RunReport", message: Any = None) -> None:
        super().__init__(message or self._summary(report))
        self.report = report

    def _summary(self, report: "RunReport") -> str:
        return (
            f"Run {self.outcome}: {len(report.succeeded)} succeeded, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped."
        )


class PartialFailure(RunFailed):
    """At least one step failed; its dependents were skipped."""

    outcome = "partially failed"


class Cancelled(RunFailed):
    """The run was cancelled before every step reached a terminal state."""

    outcome = "cancelled"
