"""CLI entry point for eks-orchestrator, built on cli-core-yo.

Provides ``plan``, ``apply``, ``destroy``, ``drift`` and ``state`` for
converging an EKS cluster to a YAML spec, plus ``init``, ``env`` and
``vpc`` helpers for getting an account ready.

Usage::

    eks-orchestrator init --account 123456789012 --region us-east-1
    eks-orchestrator plan --spec cluster.yaml
    eks-orchestrator apply --spec cluster.yaml --yes
    eks-orchestrator drift --spec cluster.yaml
    eks-orchestrator vpc check vpc-0abc1234
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import typer
from cli_core_yo import output
from cli_core_yo.app import create_app
from cli_core_yo.runtime import _reset, initialize
from cli_core_yo.spec import CliSpec, XdgSpec

# ── App specification ────────────────────────────────────────────────────────

spec = CliSpec(
    prog_name="eks-orchestrator",
    app_display_name="EKS Blueprint Orchestrator",
    dist_name="eks-blueprint-orchestrator",
    root_help=(
        "Converge an Amazon EKS cluster (node groups, add-ons, team access) "
        "to a declarative YAML spec."
    ),
    xdg=XdgSpec(app_dir_name="eks-orchestrator"),
)

app = create_app(spec)

vpc_app = typer.Typer(help="Inspect VPCs and check them for EKS readiness.")
app.add_typer(vpc_app, name="vpc")

# Set by the root callback; read by commands that can print JSON.
_json_mode = {"enabled": False}


# ── Root callback (global options) ───────────────────────────────────────────


@app.callback()
def _root_callback(
    json_flag: bool = typer.Option(
        False, "--json", "-j", help="Output as JSON."
    ),
) -> None:
    """EKS Blueprint Orchestrator control plane."""
    _reset()
    debug = os.environ.get("CLI_CORE_YO_DEBUG") == "1"
    xdg_paths = app._cli_core_yo_xdg_paths  # type: ignore[attr-defined]
    initialize(spec, xdg_paths, json_mode=json_flag, debug=debug)
    _json_mode["enabled"] = json_flag


def _debug(enabled: bool) -> None:
    if enabled:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("eks_orchestrator").setLevel(logging.DEBUG)


def _confirm(yes: bool):
    """Return a plan confirmation callback; None skips the prompt."""
    if yes or _json_mode["enabled"]:
        return None

    def ask(plan) -> bool:
        c = plan.counts()
        return typer.confirm(
            f"Apply {c['create']} create, {c['update']} update, {c['delete']} delete?",
            default=False,
        )

    return ask


# Shared options
_SPEC_OPT = typer.Option(
    "cluster.yaml", "--spec", "-s", help="Path to the cluster spec YAML."
)
_BACKEND_OPT = typer.Option(
    None,
    "--backend",
    help="Provider backend (eks | memory). Overrides provider.backend in the cluster file.",
)
_DEBUG_OPT = typer.Option(False, "--debug", help="Enable debug logging.")
_REGION_OPT = typer.Option(None, "--region", help="AWS region. Defaults to CDK_DEFAULT_REGION / AWS_DEFAULT_REGION.")
_PROFILE_OPT = typer.Option(None, "--profile", help="AWS CLI profile. Defaults to AWS_PROFILE env var.")


# ── plan command ─────────────────────────────────────────────────────────────


@app.command()
def plan(
    spec_path: str = _SPEC_OPT,
    backend: Optional[str] = _BACKEND_OPT,
    force: bool = typer.Option(
        False, "--force", help="Plan through detected drift instead of failing."
    ),
    debug: bool = _DEBUG_OPT,
) -> None:
    """Show what ``apply`` would change, without changing anything.

    Exit codes: 0 = ok, 1 = invalid spec or dependency cycle,
    2 = AWS error, 3 = drift detected (use --force).
    """
    from eks_orchestrator.workflow.apply import run_plan

    _debug(debug)
    rc = run_plan(spec_path, backend=backend, force=force, as_json=_json_mode["enabled"])
    raise typer.Exit(rc)


# ── apply command ────────────────────────────────────────────────────────────


@app.command()
def apply(
    spec_path: str = _SPEC_OPT,
    backend: Optional[str] = _BACKEND_OPT,
    force: bool = typer.Option(
        False, "--force", help="Reconcile drifted resources instead of failing."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    debug: bool = _DEBUG_OPT,
) -> None:
    """Converge the cluster to the cluster file.

    Safe to re-run after a failure: completed steps are not repeated.

    Exit codes: 0 = converged, 1 = invalid spec, 2 = AWS error,
    3 = drift detected, 4 = partial failure, 5 = cancelled.
    """
    from eks_orchestrator.workflow.apply import run_apply

    _debug(debug)
    if not _json_mode["enabled"]:
        output.action(f"Applying {spec_path} ...")
    rc = run_apply(
        spec_path,
        backend=backend,
        force=force,
        confirm=_confirm(yes),
        as_json=_json_mode["enabled"],
    )
    raise typer.Exit(rc)


# ── destroy command ──────────────────────────────────────────────────────────


@app.command()
def destroy(
    spec_path: str = _SPEC_OPT,
    backend: Optional[str] = _BACKEND_OPT,
    force: bool = typer.Option(
        False, "--force", help="Proceed even if live state drifted."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    debug: bool = _DEBUG_OPT,
) -> None:
    """Delete every resource recorded for the cluster file (dependents first)."""
    from eks_orchestrator.workflow.apply import run_destroy

    _debug(debug)
    if not _json_mode["enabled"]:
        output.action(f"Destroying resources recorded for {spec_path} ...")
    rc = run_destroy(
        spec_path,
        backend=backend,
        force=force,
        confirm=_confirm(yes),
        as_json=_json_mode["enabled"],
    )
    raise typer.Exit(rc)


# ── drift command ────────────────────────────────────────────────────────────


@app.command()
def drift(
    spec_path: str = _SPEC_OPT,
    backend: Optional[str] = _BACKEND_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """Compare recorded resources with what is live.

    Exit codes: 0 = no drift, 3 = drift detected, 2 = error.
    """
    from eks_orchestrator.workflow.apply import EXIT_DRIFT, EXIT_SUCCESS, run_drift_check_workflow

    _debug(debug)
    rc = run_drift_check_workflow(spec_path, backend=backend, as_json=_json_mode["enabled"])
    if not _json_mode["enabled"]:
        if rc == EXIT_DRIFT:
            output.warn("Drift detected.")
        elif rc == EXIT_SUCCESS:
            output.success("No drift detected.")
    raise typer.Exit(rc)


# ── state command ────────────────────────────────────────────────────────────


@app.command()
def state(
    spec_path: str = _SPEC_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """Show the recorded resources for the cluster file."""
    from eks_orchestrator.workflow.apply import run_show_state

    _debug(debug)
    raise typer.Exit(run_show_state(spec_path, as_json=_json_mode["enabled"]))


# ── init command ─────────────────────────────────────────────────────────────


@app.command()
def init(
    account: Optional[str] = typer.Option(
        None, "--account", help="12-digit AWS account id. Defaults to CDK_DEFAULT_ACCOUNT."
    ),
    region: Optional[str] = _REGION_OPT,
    vpc_id: Optional[str] = typer.Option(
        None, "--vpc-id", help="Use an existing VPC instead of creating one."
    ),
    stack_id: str = typer.Option(
        "CdkProjectsStack", "--stack-id", help="Prefix for the cluster name."
    ),
    spec_path: str = typer.Option("cluster.yaml", "--output", "-o", help="Where to write the spec."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing file."),
) -> None:
    """Write the default blueprint spec (one node group, stock add-ons)."""
    from pathlib import Path

    from pydantic import ValidationError

    from eks_orchestrator.aws.context import resolve_region
    from eks_orchestrator.config.loader import default_blueprint_spec, write_spec_file
    from eks_orchestrator.errors import InvalidSpec
    from eks_orchestrator.workflow.apply import EXIT_INVALID, EXIT_SUCCESS

    account_id = account or os.environ.get("CDK_DEFAULT_ACCOUNT", "")
    if not account_id:
        output.error("No account id: pass --account or run `eks-orchestrator env` first.")
        raise typer.Exit(EXIT_INVALID)
    if Path(spec_path).exists() and not overwrite:
        output.error(f"{spec_path} already exists (use --overwrite).")
        raise typer.Exit(EXIT_INVALID)

    try:
        cluster = default_blueprint_spec(
            account_id, resolve_region(region), vpc_id=vpc_id, stack_id=stack_id,
        )
    except (InvalidSpec, ValidationError) as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_INVALID) from exc

    dest = write_spec_file(cluster, spec_path)
    output.success(f"Wrote {dest} for cluster {cluster.name}")
    raise typer.Exit(EXIT_SUCCESS)


# ── env command ──────────────────────────────────────────────────────────────


@app.command()
def env(
    path: str = typer.Option(".env", "--path", help="File to write."),
    region: Optional[str] = _REGION_OPT,
    profile: Optional[str] = _PROFILE_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """Resolve the AWS account and region and write them to a .env file."""
    from eks_orchestrator.workflow.network import run_env

    _debug(debug)
    output.action("Resolving AWS account and region ...")
    raise typer.Exit(run_env(path, region=region, profile=profile))


# ── vpc commands ─────────────────────────────────────────────────────────────


@vpc_app.command("list")
def vpc_list(
    region: Optional[str] = _REGION_OPT,
    profile: Optional[str] = _PROFILE_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """List the VPCs in the region."""
    from eks_orchestrator.workflow.network import run_vpc_list

    _debug(debug)
    raise typer.Exit(
        run_vpc_list(region=region, profile=profile, as_json=_json_mode["enabled"])
    )


@vpc_app.command("details")
def vpc_details(
    vpc_id: str = typer.Argument(..., help="VPC id (vpc-...)."),
    region: Optional[str] = _REGION_OPT,
    profile: Optional[str] = _PROFILE_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """Show subnets, internet gateways and NAT gateways of a VPC."""
    from eks_orchestrator.workflow.network import run_vpc_details

    _debug(debug)
    raise typer.Exit(
        run_vpc_details(vpc_id, region=region, profile=profile, as_json=_json_mode["enabled"])
    )


@vpc_app.command("check")
def vpc_check(
    vpc_id: str = typer.Argument(..., help="VPC id (vpc-...)."),
    region: Optional[str] = _REGION_OPT,
    profile: Optional[str] = _PROFILE_OPT,
    debug: bool = _DEBUG_OPT,
) -> None:
    """Check a VPC for EKS readiness (>= 2 subnets across >= 2 AZs).

    Exit codes: 0 = ready, 1 = not ready, 2 = AWS error.
    """
    from eks_orchestrator.workflow.network import run_vpc_check

    _debug(debug)
    raise typer.Exit(
        run_vpc_check(vpc_id, region=region, profile=profile, as_json=_json_mode["enabled"])
    )


# ── Entry point ──────────────────────────────────────────────────────────────


def main() -> int:
    """Run the CLI and return an exit code."""
    try:
        app()
        return 0
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
