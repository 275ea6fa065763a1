"""Plan execution with bounded concurrency, retries, and cancellation."""

from eks_orchestrator.executor.report import (
    RunOutcome,
    RunReport,
    StepResult,
    StepStatus,
)
from eks_orchestrator.executor.runner import Executor, RetryPolicy

__all__ = [
    "Executor",
    "RetryPolicy",
    "RunOutcome",
    "RunReport",
    "StepResult",
    "StepStatus",
]
