"""Resource records, persistence, and drift detection."""

from eks_orchestrator.state.drift import (
    UNHEALTHY_STATUSES,
    DriftItem,
    DriftReport,
    DriftStatus,
    check_record_drift,
    diff_observed,
    run_drift_check,
)
from eks_orchestrator.state.models import ResourceKind, ResourceRecord, kind_of
from eks_orchestrator.state.store import FileStateStore, StateStore, config_dir

__all__ = [
    "DriftItem",
    "DriftReport",
    "DriftStatus",
    "FileStateStore",
    "ResourceKind",
    "ResourceRecord",
    "StateStore",
    "UNHEALTHY_STATUSES",
    "check_record_drift",
    "config_dir",
    "diff_observed",
    "kind_of",
    "run_drift_check",
]
