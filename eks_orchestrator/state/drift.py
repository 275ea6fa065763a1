"""Drift detection for recorded resources.

Compares each persisted :class:`ResourceRecord` against what the provider
reports live, without mutating anything.  A resource has drifted when:

- the provider no longer knows it (deleted out of band),
- it sits in an unhealthy status, or
- any observed attribute recorded at apply time now reads differently.

Exit code convention: ``3`` = drift detected (CLI ``eks-orchestrator drift``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from eks_orchestrator.errors import ProviderError
from eks_orchestrator.state.models import ResourceRecord

if TYPE_CHECKING:
    from eks_orchestrator.provider.base import ProviderAdapter

logger = logging.getLogger(__name__)

#: Live statuses that count as drift regardless of attributes.
UNHEALTHY_STATUSES = frozenset({
    "CREATE_FAILED",
    "DELETE_FAILED",
    "DEGRADED",
    "FAILED",
})


# ---------------------------------------------------------------------------
# DriftStatus
# ---------------------------------------------------------------------------


class DriftStatus(str, Enum):
    """Outcome of a single drift check."""

    OK = "OK"
    MISSING = "MISSING"
    DRIFTED = "DRIFTED"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# DriftItem: a single check result
# ---------------------------------------------------------------------------


@dataclass
class DriftItem:
    """Result of checking one recorded resource."""

    resource_id: str
    status: DriftStatus
    expected: Dict[str, Any] = field(default_factory=dict)
    actual: Dict[str, Any] = field(default_factory=dict)
    error: str = ""
    live: Optional[ResourceRecord] = field(default=None, repr=False)
    exc: Optional[ProviderError] = field(default=None, repr=False)

    @property
    def drifted(self) -> bool:
        return self.status in (DriftStatus.MISSING, DriftStatus.DRIFTED)


# ---------------------------------------------------------------------------
# DriftReport: aggregate
# ---------------------------------------------------------------------------


@dataclass
class DriftReport:
    """Aggregate drift report for a cluster."""

    cluster_name: str
    items: List[DriftItem] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return any(i.drifted for i in self.items)

    @property
    def has_errors(self) -> bool:
        return any(i.status == DriftStatus.ERROR for i in self.items)

    @property
    def drifted(self) -> List[DriftItem]:
        return [i for i in self.items if i.drifted]

    @property
    def errors(self) -> List[DriftItem]:
        return [i for i in self.items if i.status == DriftStatus.ERROR]

    def by_resource(self) -> Dict[str, DriftItem]:
        return {i.resource_id: i for i in self.items}

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a plain dict (sorted for determinism)."""
        return {
            "cluster_name": self.cluster_name,
            "has_drift": self.has_drift,
            "items": [
                {
                    "actual": i.actual,
                    "error": i.error,
                    "expected": i.expected,
                    "resource_id": i.resource_id,
                    "status": i.status.value,
                }
                for i in sorted(self.items, key=lambda i: i.resource_id)
            ],
        }


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


def diff_observed(
    recorded: Mapping[str, Any], live: Mapping[str, Any],
) -> Dict[str, Any]:
    """Return ``{key: (recorded, live)}`` for keys present in both that differ."""
    return {
        key: (recorded[key], live[key])
        for key in sorted(recorded.keys() & live.keys())
        if recorded[key] != live[key]
    }


def check_record_drift(
    provider: "ProviderAdapter", cluster_name: str, record: ResourceRecord,
) -> DriftItem:
    """Describe *record* live and classify it."""
    try:
        live = provider.describe_resource(cluster_name, record)
    except ProviderError as exc:
        return DriftItem(
            resource_id=record.resource_id,
            status=DriftStatus.ERROR,
            error=str(exc),
            exc=exc,
        )

    if live is None:
        return DriftItem(
            resource_id=record.resource_id,
            status=DriftStatus.MISSING,
            expected={"status": record.status},
            actual={"status": "<not found>"},
        )

    if live.status in UNHEALTHY_STATUSES:
        return DriftItem(
            resource_id=record.resource_id,
            status=DriftStatus.DRIFTED,
            expected={"status": record.status},
            actual={"status": live.status},
            live=live,
        )

    changed = diff_observed(record.observed, live.observed)
    if changed:
        return DriftItem(
            resource_id=record.resource_id,
            status=DriftStatus.DRIFTED,
            expected={k: v[0] for k, v in changed.items()},
            actual={k: v[1] for k, v in changed.items()},
            live=live,
        )

    return DriftItem(resource_id=record.resource_id, status=DriftStatus.OK, live=live)


# ---------------------------------------------------------------------------
# Top-level drift check
# ---------------------------------------------------------------------------


def run_drift_check(
    provider: "ProviderAdapter",
    records: Mapping[str, ResourceRecord],
    *,
    cluster_name: str = "",
) -> DriftReport:
    """Check every record and return a :class:`DriftReport`."""
    report = DriftReport(cluster_name=cluster_name or "unknown")
    for resource_id in sorted(records):
        item = check_record_drift(provider, cluster_name, records[resource_id])
        if item.drifted:
            logger.warning(
                "Drift on %s: expected=%s actual=%s",
                resource_id, item.expected, item.actual,
            )
        elif item.status == DriftStatus.ERROR:
            logger.warning("Drift check failed for %s: %s", resource_id, item.error)
        report.items.append(item)
    return report
