"""EKS Blueprint Orchestrator - declarative EKS cluster control plane.

Converges an Amazon EKS cluster (control plane, managed node groups,
add-ons, team access) to a YAML spec: plans the change set against
recorded and live state, executes it with bounded concurrency and
retries, and records every completed step so a failed run can resume.
"""

try:
    from importlib.metadata import version

    __version__ = version("eks-blueprint-orchestrator")
except Exception:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
