"""Orchestration workflows (plan, apply, destroy, drift, state, env, vpc)."""

from eks_orchestrator.workflow.apply import (
    EXIT_AWS_FAILURE,
    EXIT_CANCELLED,
    EXIT_DRIFT,
    EXIT_INVALID,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS,
    Workspace,
    execute_plan,
    exit_code_for,
    open_workspace,
    run_apply,
    run_destroy,
    run_drift_check_workflow,
    run_plan,
    run_show_state,
)
from eks_orchestrator.workflow.network import (
    run_env,
    run_vpc_check,
    run_vpc_details,
    run_vpc_list,
)

__all__ = [
    "EXIT_AWS_FAILURE",
    "EXIT_CANCELLED",
    "EXIT_DRIFT",
    "EXIT_INVALID",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_SUCCESS",
    "Workspace",
    "execute_plan",
    "exit_code_for",
    "open_workspace",
    "run_apply",
    "run_destroy",
    "run_drift_check_workflow",
    "run_env",
    "run_plan",
    "run_show_state",
    "run_vpc_check",
    "run_vpc_details",
    "run_vpc_list",
]
