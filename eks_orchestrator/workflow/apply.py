"""End-to-end workflows behind the CLI: plan, apply, destroy, drift, state.

Each ``run_*`` function loads the spec file, wires provider, state store,
plan engine and executor together, prints progress through
:mod:`eks_orchestrator.ui` and returns one of the ``EXIT_*`` constants.
Errors are logged and mapped to exit codes here; nothing below the CLI
calls ``sys.exit``.

Exit codes::

    0  success (or nothing to do)
    1  invalid spec / plan conflict
    2  AWS or provider failure
    3  drift detected
    4  partial failure (some steps failed or were skipped)
    5  cancelled
"""

from __future__ import annotations

import json
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from eks_orchestrator import ui
from eks_orchestrator.config.loader import SpecFile, load_spec_file
from eks_orchestrator.config.models import ClusterSpec
from eks_orchestrator.errors import (
    Cancelled,
    DriftDetected,
    InvalidSpec,
    OrchestratorError,
    PartialFailure,
    PlanConflict,
    ProviderError,
)
from eks_orchestrator.executor.report import RunReport
from eks_orchestrator.executor.runner import Executor, RetryPolicy
from eks_orchestrator.plan.engine import PlanEngine
from eks_orchestrator.plan.models import ChangePlan
from eks_orchestrator.provider import build_provider
from eks_orchestrator.provider.base import CancelToken, ProviderAdapter
from eks_orchestrator.provider.memory import InMemoryProvider
from eks_orchestrator.state.drift import run_drift_check
from eks_orchestrator.state.store import FileStateStore, StateStore

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_INVALID = 1
EXIT_AWS_FAILURE = 2
EXIT_DRIFT = 3
EXIT_PARTIAL_FAILURE = 4
EXIT_CANCELLED = 5

#: Called with the rendered plan; return False to abort before any mutation.
ConfirmFn = Callable[[ChangePlan], bool]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Workspace:
    """Everything one workflow invocation needs, built from a spec file."""

    spec_file: SpecFile
    provider: ProviderAdapter
    store: StateStore

    @property
    def cluster(self) -> ClusterSpec:
        return self.spec_file.cluster

    def engine(self) -> PlanEngine:
        return PlanEngine(self.provider, self.store)

    def executor(self, *, sleep_fn: Optional[Callable[[float], None]] = None) -> Executor:
        settings = self.spec_file.orchestrator
        return Executor(
            self.provider,
            self.store,
            max_workers=settings.max_workers,
            retry=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.base_delay,
                max_delay=settings.max_delay,
            ),
            sleep_fn=sleep_fn,
        )


def open_workspace(
    spec_path: str | Path,
    *,
    backend: Optional[str] = None,
    region: Optional[str] = None,
    provider: Optional[ProviderAdapter] = None,
    store: Optional[StateStore] = None,
) -> Workspace:
    """Load *spec_path* and build the provider and state store for it.

    *backend* overrides ``provider.backend`` from the file.  *provider*
    and *store* bypass construction entirely (used in tests).

    Raises:
        InvalidSpec: the file does not validate.
        RuntimeError: AWS credentials could not be resolved.
        ValueError: unknown backend name.
    """
    spec_file = load_spec_file(spec_path)
    if backend:
        spec_file = spec_file.model_copy(
            update={"provider": spec_file.provider.model_copy(update={"backend": backend})},
        )
    cluster = spec_file.cluster

    if store is None:
        state_dir = spec_file.orchestrator.state_dir
        root = Path(state_dir).expanduser() if state_dir else None
        store = FileStateStore(cluster.name, root=root)
    if provider is None:
        provider = build_provider(spec_file.provider, region=region or cluster.region)
        if isinstance(provider, InMemoryProvider):
            # A fresh fake knows nothing; resume from what earlier runs recorded.
            provider.seed(cluster.name, store.load()[1])

    logger.info(
        "Workspace: cluster=%s backend=%s region=%s",
        cluster.name, spec_file.provider.backend, cluster.region,
    )
    return Workspace(spec_file=spec_file, provider=provider, store=store)


# ---------------------------------------------------------------------------
# Exit code mapping
# ---------------------------------------------------------------------------


def exit_code_for(exc: BaseException) -> int:
    """Map an exception raised by a workflow step to an ``EXIT_*`` code."""
    if isinstance(exc, Cancelled):
        return EXIT_CANCELLED
    if isinstance(exc, PartialFailure):
        return EXIT_PARTIAL_FAILURE
    if isinstance(exc, DriftDetected):
        return EXIT_DRIFT
    if isinstance(exc, (InvalidSpec, PlanConflict, ValueError)):
        return EXIT_INVALID
    if isinstance(exc, (ProviderError, RuntimeError)):
        return EXIT_AWS_FAILURE
    return EXIT_INVALID


def _failed(what: str, exc: BaseException) -> int:
    code = exit_code_for(exc)
    logger.error("%s failed: %s", what, exc)
    if isinstance(exc, DriftDetected):
        for item in exc.items:
            ui.warn(f"{item.resource_id}: {item.status.value}")
        ui.info("Re-run with --force to reconcile the drifted resources.")
    else:
        ui.fail(f"{what} failed: {exc}")
    return code


# Expected failures while loading or planning.
_PLAN_ERRORS = (OrchestratorError, RuntimeError, ValueError)


# ---------------------------------------------------------------------------
# Execution helpers
# ---------------------------------------------------------------------------


def execute_plan(
    ws: Workspace,
    plan: ChangePlan,
    *,
    cancel: Optional[CancelToken] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> RunReport:
    """Run *plan*, turning Ctrl-C into a cooperative cancel.

    The first interrupt stops new steps from starting; in-flight provider
    calls run to completion and their records are persisted.
    """
    cancel = cancel or CancelToken()

    def _on_interrupt(signum, frame):
        if not cancel.cancelled:
            logger.warning("Interrupted; finishing in-flight steps before stopping.")
            ui.warn("Interrupted: waiting for in-flight steps to finish ...")
        cancel.cancel()

    installed = False
    previous = None
    try:
        previous = signal.signal(signal.SIGINT, _on_interrupt)
        installed = True
    except ValueError:
        # Not on the main thread; the caller owns cancellation.
        pass

    try:
        return ws.executor(sleep_fn=sleep_fn).execute(plan, cancel=cancel)
    finally:
        if installed:
            signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)


def _record_run(ws: Workspace, report: RunReport, *, as_json: bool) -> int:
    """Persist and print *report*; return its exit code."""
    if isinstance(ws.store, FileStateStore):
        run_id = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        try:
            ws.store.write_report(run_id, report.to_sorted_json())
        except OSError as exc:
            logger.warning("Could not write run report: %s", exc)

    if as_json:
        ui.emit_json(report.to_sorted_json())
    else:
        ui.render_report(report)

    try:
        report.raise_for_outcome()
    except (PartialFailure, Cancelled) as exc:
        logger.error("%s", exc)
        return exit_code_for(exc)
    return EXIT_SUCCESS


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


def run_plan(
    spec_path: str | Path,
    *,
    backend: Optional[str] = None,
    force: bool = False,
    as_json: bool = False,
    workspace: Optional[Workspace] = None,
) -> int:
    """Compute and print the plan for *spec_path* without mutating anything."""
    try:
        ws = workspace or open_workspace(spec_path, backend=backend)
        plan = ws.engine().plan(ws.cluster, force=force)
    except _PLAN_ERRORS as exc:
        return _failed("Plan", exc)

    if as_json:
        ui.emit_json(json.dumps(plan.to_dict(), indent=2, sort_keys=True))
    else:
        ui.render_plan(plan)
    return EXIT_SUCCESS


def run_apply(
    spec_path: str | Path,
    *,
    backend: Optional[str] = None,
    force: bool = False,
    confirm: Optional[ConfirmFn] = None,
    as_json: bool = False,
    workspace: Optional[Workspace] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> int:
    """Plan, confirm and execute convergence to *spec_path*.

    Re-running after a partial failure resumes: steps whose records
    already match the spec plan as noops, the rest are retried with the
    same idempotency tokens.
    """
    try:
        ws = workspace or open_workspace(spec_path, backend=backend)
        plan = ws.engine().plan(ws.cluster, force=force)
    except _PLAN_ERRORS as exc:
        return _failed("Plan", exc)

    if not as_json:
        ui.render_plan(plan)
    if plan.is_noop:
        logger.info("No changes for %s", plan.cluster_name)
    elif confirm is not None and not confirm(plan):
        ui.warn("Apply aborted; nothing was changed.")
        return EXIT_SUCCESS

    if not as_json:
        ui.phase("APPLY")
    report = execute_plan(ws, plan, sleep_fn=sleep_fn)
    return _record_run(ws, report, as_json=as_json)


def run_destroy(
    spec_path: str | Path,
    *,
    backend: Optional[str] = None,
    force: bool = False,
    confirm: Optional[ConfirmFn] = None,
    as_json: bool = False,
    workspace: Optional[Workspace] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> int:
    """Delete every recorded resource of the cluster named in *spec_path*."""
    try:
        ws = workspace or open_workspace(spec_path, backend=backend)
        plan = ws.engine().plan_teardown(ws.cluster.name, force=force)
    except _PLAN_ERRORS as exc:
        return _failed("Teardown plan", exc)

    if plan.is_noop:
        ui.info(f"Nothing recorded for {plan.cluster_name}; nothing to destroy.")
        return EXIT_SUCCESS
    if not as_json:
        ui.render_plan(plan)
    if confirm is not None and not confirm(plan):
        ui.warn("Destroy aborted; nothing was changed.")
        return EXIT_SUCCESS

    if not as_json:
        ui.phase("DESTROY")
    report = execute_plan(ws, plan, sleep_fn=sleep_fn)
    return _record_run(ws, report, as_json=as_json)


def run_drift_check_workflow(
    spec_path: str | Path,
    *,
    backend: Optional[str] = None,
    as_json: bool = False,
    workspace: Optional[Workspace] = None,
) -> int:
    """Compare recorded resources with live state.

    Returns ``EXIT_DRIFT`` when anything is missing or drifted,
    ``EXIT_AWS_FAILURE`` when a resource could not be described.
    """
    try:
        ws = workspace or open_workspace(spec_path, backend=backend)
        _, records = ws.store.load()
    except _PLAN_ERRORS as exc:
        return _failed("Drift check", exc)

    report = run_drift_check(ws.provider, records, cluster_name=ws.cluster.name)
    if as_json:
        ui.emit_json(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        ui.render_drift(report)

    if report.has_drift:
        return EXIT_DRIFT
    if report.has_errors:
        return EXIT_AWS_FAILURE
    return EXIT_SUCCESS


def run_show_state(
    spec_path: str | Path,
    *,
    as_json: bool = False,
    store: Optional[StateStore] = None,
) -> int:
    """Print what the state store holds for the cluster in *spec_path*.

    Needs no provider, so no AWS credentials.
    """
    try:
        spec_file = load_spec_file(spec_path)
    except InvalidSpec as exc:
        return _failed("Loading spec", exc)

    if store is None:
        state_dir = spec_file.orchestrator.state_dir
        store = FileStateStore(
            spec_file.cluster.name, root=Path(state_dir).expanduser() if state_dir else None,
        )
    spec, records = store.load()

    if as_json:
        payload = {
            "cluster_name": spec_file.cluster.name,
            "records": [records[rid].model_dump(mode="json") for rid in sorted(records)],
            "spec_hash": spec.spec_hash() if spec else None,
        }
        ui.emit_json(json.dumps(payload, indent=2, sort_keys=True))
    else:
        ui.phase(f"STATE {spec_file.cluster.name}")
        ui.render_state(spec, records)
    return EXIT_SUCCESS
