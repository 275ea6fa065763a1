"""Colorized console output for eks-orchestrator workflows.

Thin wrapper around :mod:`rich` that degrades gracefully when stdout
is not a TTY (e.g. piped, CI, cron).  All user-facing status messages
should flow through this module; ``logger.*`` calls are kept for
structured file logging.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from eks_orchestrator.aws.vpc import EksReadiness, VpcDetails, VpcInfo
    from eks_orchestrator.config.models import ClusterSpec
    from eks_orchestrator.executor.report import RunReport
    from eks_orchestrator.plan.models import ChangePlan
    from eks_orchestrator.state.drift import DriftReport
    from eks_orchestrator.state.models import ResourceRecord

# Shared console; force_terminal=None lets Rich decide.
console = Console(stderr=False, force_terminal=None)

# ── Symbols ────────────────────────────────────────────────────────────────

_PASS = "[bold green]✓[/]"
_FAIL = "[bold red]✗[/]"
_WARN = "[bold yellow]⚠[/]"
_ARROW = "[bold cyan]›[/]"
_DOT = "[dim]·[/]"

_SYMBOL_STYLE = {
    "+": "green",
    "~": "yellow",
    "-": "red",
}

_STATUS_STYLE = {
    "SUCCEEDED": "green",
    "FAILED": "bold red",
    "SKIPPED": "yellow",
    "PENDING": "dim",
    "IN_PROGRESS": "cyan",
    "OK": "green",
    "MISSING": "bold red",
    "DRIFTED": "yellow",
    "ERROR": "red",
}

# ── Phase headers ──────────────────────────────────────────────────────────


def phase(title: str) -> None:
    """Print a bold phase header (e.g. ``PLAN``, ``APPLY``)."""
    console.print()
    console.print(f"[bold blue]── {title} ──[/]")


# ── Status lines ───────────────────────────────────────────────────────────


def ok(msg: str) -> None:
    console.print(f"  {_PASS} {msg}")


def fail(msg: str) -> None:
    console.print(f"  {_FAIL} [red]{msg}[/]")


def warn(msg: str) -> None:
    console.print(f"  {_WARN} [yellow]{msg}[/]")


def step(msg: str) -> None:
    """Cyan arrow + action message (in-progress)."""
    console.print(f"  {_ARROW} {msg}")


def info(msg: str) -> None:
    console.print(f"  {_DOT} [dim]{msg}[/]")


def detail(key: str, value: str) -> None:
    """Key-value pair, indented."""
    console.print(f"    [bold]{key}[/]: {value}")


# ── Banners / panels ──────────────────────────────────────────────────────


def success_panel(title: str, body: str) -> None:
    console.print()
    console.print(
        Panel(body, title=f"[bold green]{title}[/]", border_style="green", padding=(1, 2))
    )


def error_panel(title: str, body: str) -> None:
    console.print()
    console.print(
        Panel(body, title=f"[bold red]{title}[/]", border_style="red", padding=(1, 2))
    )


def elapsed_str(seconds: float) -> str:
    """Format seconds as ``Xm Ys``."""
    m, s = divmod(int(seconds), 60)
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"


# ── Domain renderers ──────────────────────────────────────────────────────


def render_plan(plan: "ChangePlan") -> None:
    """Print *plan* as a colored diff."""
    phase(f"PLAN {plan.cluster_name}")
    for line in plan.render().splitlines():
        style = _SYMBOL_STYLE.get(line.lstrip()[:1], "") if line.startswith("  ") else ""
        if line.startswith("        "):
            style = "dim"
        console.print(f"[{style}]{escape(line)}[/]" if style else escape(line), highlight=False)
    for item in plan.overridden_drift:
        warn(f"overriding drift on {item.resource_id} ({item.status.value})")


def render_report(report: "RunReport") -> None:
    """Print a per-step table and an outcome panel for *report*."""
    table = Table(title=f"Run report: {report.cluster_name}", show_lines=False)
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Elapsed", justify="right")
    table.add_column("Error / reason")
    for r in report.steps:
        style = _STATUS_STYLE.get(r.status.value, "")
        reason = r.error or (f"skipped: {r.skipped_because}" if r.skipped_because else "")
        table.add_row(
            r.step_id,
            f"[{style}]{r.status.value}[/]" if style else r.status.value,
            str(r.attempts),
            elapsed_str(r.elapsed_seconds),
            escape(reason),
        )
    console.print()
    console.print(table)

    body = (
        f"{len(report.succeeded)} succeeded, {len(report.failed)} failed, "
        f"{len(report.skipped)} skipped in {elapsed_str(report.elapsed_seconds)}"
    )
    if report.ok:
        success_panel(report.outcome.value, body)
    else:
        error_panel(report.outcome.value, body)


def render_drift(report: "DriftReport") -> None:
    """Print one line per checked resource."""
    phase(f"DRIFT {report.cluster_name}")
    if not report.items:
        info("no recorded resources")
        return
    for item in sorted(report.items, key=lambda i: i.resource_id):
        if item.status.value == "OK":
            ok(item.resource_id)
        elif item.status.value == "ERROR":
            fail(f"{item.resource_id}: {escape(item.error)}")
        else:
            warn(f"{item.resource_id}: {item.status.value}")
            for key in sorted(set(item.expected) | set(item.actual)):
                if item.expected.get(key) != item.actual.get(key):
                    detail(key, escape(f"{item.expected.get(key)!r} -> {item.actual.get(key)!r}"))


def render_state(spec: "Optional[ClusterSpec]", records: "Dict[str, ResourceRecord]") -> None:
    """Print the last-applied spec hash and one row per recorded resource."""
    if spec is not None:
        detail("last applied spec", spec.spec_hash()[:12])
    else:
        info("no successful apply recorded")
    if not records:
        info("no resource records")
        return
    table = Table(show_lines=False)
    table.add_column("Resource")
    table.add_column("Status")
    table.add_column("Provider id")
    table.add_column("Updated")
    for rid in sorted(records):
        rec = records[rid]
        table.add_row(rid, rec.status or "-", escape(rec.provider_id or "-"), rec.updated_at)
    console.print(table)


def emit_json(payload: str) -> None:
    """Print machine-readable output without Rich markup or wrapping."""
    console.print(payload, markup=False, highlight=False, soft_wrap=True)


# ── VPC helper output ─────────────────────────────────────────────────────


def render_vpcs(vpcs: "List[VpcInfo]") -> None:
    table = Table(title="VPCs")
    table.add_column("VPC id")
    table.add_column("Name")
    table.add_column("CIDR")
    table.add_column("State")
    for v in vpcs:
        table.add_row(v.vpc_id, escape(v.name or "-"), v.cidr_block, v.state)
    console.print(table)


def render_vpc_details(details: "VpcDetails") -> None:
    phase(f"VPC {details.vpc.vpc_id}")
    detail("name", escape(details.vpc.name or "-"))
    detail("cidr", details.vpc.cidr_block)
    table = Table(title="Subnets")
    table.add_column("Subnet id")
    table.add_column("AZ")
    table.add_column("CIDR")
    table.add_column("Public IP")
    table.add_column("Name")
    for s in details.subnets:
        table.add_row(
            s.subnet_id, s.availability_zone, s.cidr_block,
            "yes" if s.map_public_ip_on_launch else "no", escape(s.name or "-"),
        )
    console.print(table)
    detail("internet gateways", ", ".join(details.internet_gateways) or "none")
    if details.nat_gateways:
        for nat in details.nat_gateways:
            detail("nat gateway", f"{nat['nat_gateway_id']} ({nat['state']}) in {nat['subnet_id']}")
    else:
        detail("nat gateways", "none")


def render_readiness(readiness: "EksReadiness") -> None:
    phase(f"EKS CHECK {readiness.vpc_id}")
    detail("subnets", str(readiness.subnet_count))
    detail("availability zones", ", ".join(readiness.availability_zones) or "none")
    for problem in readiness.problems:
        fail(problem)
    for warning in readiness.warnings:
        warn(warning)
    if readiness.ok:
        ok("VPC meets the EKS subnet requirements")
