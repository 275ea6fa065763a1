"""Plan executor.

Runs a :class:`ChangePlan` against a provider with bounded concurrency:

- a step starts only once every step it depends on has SUCCEEDED;
- independent steps run in parallel, at most ``max_workers`` at a time;
- transient provider errors are retried with capped exponential backoff,
  reusing the step's idempotency token on every attempt;
- a successful step's record is persisted before any dependent starts;
- a failed step skips its transitive dependents, other branches go on;
- cancellation starts nothing new, lets in-flight calls finish, and
  reports the rest as SKIPPED.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from eks_orchestrator.errors import ProviderPermanent, ProviderTransient
from eks_orchestrator.executor.report import RunOutcome, RunReport, StepResult, StepStatus
from eks_orchestrator.plan.graph import DependencyGraph, graph_from
from eks_orchestrator.plan.models import ChangeAction, ChangePlan, ChangeStep
from eks_orchestrator.provider.base import CancelToken, ProviderAdapter, ProviderRequest
from eks_orchestrator.state.models import ResourceKind, ResourceRecord
from eks_orchestrator.state.store import StateStore

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for :class:`ProviderTransient` errors."""

    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based)."""
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


@dataclass
class _Outcome:
    ok: bool
    record: Optional[ResourceRecord] = None
    error: str = ""
    error_type: str = ""
    cancelled: bool = False


class Executor:
    """Drives the provider through a plan and records results."""

    def __init__(
        self,
        provider: ProviderAdapter,
        store: StateStore,
        *,
        max_workers: int = 4,
        retry: Optional[RetryPolicy] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.provider = provider
        self.store = store
        self.max_workers = max_workers
        self.retry = retry or RetryPolicy()
        self._sleep_fn = sleep_fn

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(self, plan: ChangePlan, cancel: Optional[CancelToken] = None) -> RunReport:
        """Run *plan* to completion (or cancellation) and return the report.

        Never raises for step failures; call
        :meth:`RunReport.raise_for_outcome` for exception-style handling.
        """
        cancel = cancel or CancelToken()
        started = time.monotonic()
        steps: Dict[str, ChangeStep] = {s.step_id: s for s in plan.steps}
        results: Dict[str, StepResult] = {
            s.step_id: StepResult(s.step_id, s.resource_id, s.action.value) for s in plan.steps
        }
        graph = graph_from({s.step_id: s.depends_on for s in plan.steps})

        logger.info(
            "Executing plan for %s: %d step(s), max_workers=%d",
            plan.cluster_name, len(plan.steps), self.max_workers,
        )

        in_flight: Dict[Future, str] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="eks-step") as pool:
            while True:
                if not cancel.cancelled:
                    self._start_ready(plan, steps, results, in_flight, pool, cancel)
                if not in_flight:
                    break
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    sid = in_flight.pop(fut)
                    self._finish(sid, fut.result(), results, graph)

        for result in results.values():
            if result.status == StepStatus.PENDING:
                result.status = StepStatus.SKIPPED
                result.skipped_because = CANCELLED_REASON if cancel.cancelled else "blocked"

        report = RunReport(
            cluster_name=plan.cluster_name,
            spec_hash=plan.spec_hash,
            steps=[results[s.step_id] for s in plan.steps],
            elapsed_seconds=time.monotonic() - started,
        )
        report.outcome = self._outcome(report, cancel)
        if report.outcome == RunOutcome.SUCCEEDED:
            self._finalize(plan)

        logger.info(
            "Plan for %s finished: %s (%d succeeded, %d failed, %d skipped)",
            plan.cluster_name, report.outcome.value,
            len(report.succeeded), len(report.failed), len(report.skipped),
        )
        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _start_ready(
        self,
        plan: ChangePlan,
        steps: Dict[str, ChangeStep],
        results: Dict[str, StepResult],
        in_flight: Dict[Future, str],
        pool: ThreadPoolExecutor,
        cancel: CancelToken,
    ) -> None:
        progressed = True
        while progressed:
            progressed = False
            for step in plan.steps:
                result = results[step.step_id]
                if result.status != StepStatus.PENDING:
                    continue
                if not all(results[d].status == StepStatus.SUCCEEDED for d in step.depends_on):
                    continue
                if step.action == ChangeAction.NOOP:
                    # Nothing to call; release dependents straight away.
                    result.status = StepStatus.SUCCEEDED
                    progressed = True
                    continue
                if len(in_flight) >= self.max_workers:
                    return
                result.status = StepStatus.IN_PROGRESS
                logger.debug("Starting %s", step.step_id)
                fut = pool.submit(self._run_step, plan, step, result, cancel)
                in_flight[fut] = step.step_id

    def _finish(
        self,
        step_id: str,
        outcome: _Outcome,
        results: Dict[str, StepResult],
        graph: DependencyGraph,
    ) -> None:
        result = results[step_id]
        if outcome.ok:
            result.status = StepStatus.SUCCEEDED
            if outcome.record is not None:
                result.provider_id = outcome.record.provider_id
            return

        result.error = outcome.error
        result.error_type = outcome.error_type
        if outcome.cancelled:
            # Dependents stay PENDING and are reported cancelled at the end.
            result.status = StepStatus.SKIPPED
            result.skipped_because = CANCELLED_REASON
            logger.warning("Step %s cancelled: %s", step_id, outcome.error)
            return

        result.status = StepStatus.FAILED
        logger.error("Step %s failed: %s", step_id, outcome.error)

        for child in sorted(graph.transitive_dependents(step_id)):
            child_result = results[child]
            if child_result.status == StepStatus.PENDING:
                child_result.status = StepStatus.SKIPPED
                child_result.skipped_because = step_id

    @staticmethod
    def _outcome(report: RunReport, cancel: CancelToken) -> RunOutcome:
        if cancel.cancelled and (report.failed or report.skipped):
            return RunOutcome.CANCELLED
        if report.failed or report.skipped:
            return RunOutcome.PARTIAL_FAILURE
        return RunOutcome.SUCCEEDED

    # ------------------------------------------------------------------
    # One step (runs on a worker thread)
    # ------------------------------------------------------------------

    def _run_step(
        self, plan: ChangePlan, step: ChangeStep, result: StepResult, cancel: CancelToken,
    ) -> _Outcome:
        started = time.monotonic()
        try:
            return self._attempt_step(plan, step, result, cancel)
        finally:
            result.elapsed_seconds = time.monotonic() - started

    def _attempt_step(
        self, plan: ChangePlan, step: ChangeStep, result: StepResult, cancel: CancelToken,
    ) -> _Outcome:
        request = ProviderRequest(token=step.token, cancel=cancel)
        while True:
            result.attempts += 1
            try:
                record = self._dispatch(plan, step, request)
            except ProviderTransient as exc:
                if result.attempts >= self.retry.max_attempts:
                    return _Outcome(
                        ok=False,
                        error=f"{exc} (gave up after {result.attempts} attempts)",
                        error_type=type(exc).__name__,
                    )
                if not cancel.cancelled:
                    delay = self.retry.delay(result.attempts)
                    logger.warning(
                        "%s: transient error on attempt %d, retrying in %.1fs: %s",
                        step.step_id, result.attempts, delay, exc,
                    )
                    self._sleep(delay, cancel)
                if cancel.cancelled:
                    return _Outcome(
                        ok=False,
                        error=f"{exc} (cancelled before retry)",
                        error_type=type(exc).__name__,
                        cancelled=True,
                    )
                continue
            except ProviderPermanent as exc:
                return _Outcome(ok=False, error=str(exc), error_type=type(exc).__name__)
            except Exception as exc:
                logger.exception("%s: unexpected error", step.step_id)
                return _Outcome(ok=False, error=str(exc), error_type=type(exc).__name__)

            try:
                return _Outcome(ok=True, record=self._persist(plan, step, record))
            except ProviderPermanent as exc:
                return _Outcome(ok=False, error=str(exc), error_type=type(exc).__name__)
            except OSError as exc:
                return _Outcome(
                    ok=False,
                    error=f"could not record {step.resource_id}: {exc}",
                    error_type=type(exc).__name__,
                )

    def _sleep(self, seconds: float, cancel: CancelToken) -> None:
        if self._sleep_fn is not None:
            self._sleep_fn(seconds)
        else:
            cancel.wait(seconds)

    def _dispatch(
        self, plan: ChangePlan, step: ChangeStep, request: ProviderRequest,
    ) -> Optional[ResourceRecord]:
        if step.forget:
            logger.info("%s: already gone, dropping record", step.resource_id)
            return None

        p = self.provider
        name = plan.cluster_name
        kind = step.kind
        action = step.action

        if kind == ResourceKind.CLUSTER:
            if action == ChangeAction.CREATE:
                return p.create_cluster(step.target, request)
            if action == ChangeAction.UPDATE:
                return p.update_cluster(step.target, request)
            return p.delete_cluster(name, request)

        if kind == ResourceKind.NODEGROUP:
            if action == ChangeAction.CREATE:
                return p.create_node_group(name, step.target, request)
            if action == ChangeAction.UPDATE:
                return p.update_node_group(name, step.target, request)
            return p.delete_node_group(name, step.name, request)

        if kind == ResourceKind.ADDON:
            if action == ChangeAction.DELETE:
                return p.uninstall_add_on(name, step.name, request)
            return p.install_add_on(name, step.target, request)

        if action == ChangeAction.DELETE:
            return p.unbind_team_access(name, step.name, request)
        return p.bind_team_access(name, step.target, request)

    def _persist(
        self, plan: ChangePlan, step: ChangeStep, live: Optional[ResourceRecord],
    ) -> Optional[ResourceRecord]:
        if step.action == ChangeAction.DELETE:
            self.store.remove(step.resource_id)
            return live

        if live is None:
            raise ProviderPermanent(
                f"{step.action.value} returned no record for {step.resource_id}",
                resource_id=step.resource_id,
            )
        record = live.model_copy(
            update={
                "attributes": dict(step.desired),
                "depends_on": list(step.requires),
                "spec_hash": plan.spec_hash,
                "token": step.token,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        self.store.save(record)
        return record

    def _finalize(self, plan: ChangePlan) -> None:
        if plan.teardown:
            self.store.clear_spec()
        elif plan.spec is not None:
            self.store.snapshot_spec(plan.spec)
