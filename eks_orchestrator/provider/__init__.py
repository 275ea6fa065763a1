"""Provider adapters: the contract, the in-memory fake, and the EKS backend."""

from __future__ import annotations

from typing import Optional

from eks_orchestrator.config.loader import ProviderSettings
from eks_orchestrator.provider.base import (
    CancelToken,
    ProviderAdapter,
    ProviderRequest,
    make_record,
    select_version,
)
from eks_orchestrator.provider.memory import InMemoryProvider

BACKENDS = ("eks", "memory")


def build_provider(
    settings: ProviderSettings,
    *,
    region: Optional[str] = None,
) -> ProviderAdapter:
    """Instantiate the backend named by ``settings.backend``.

    The EKS backend resolves credentials through :class:`AWSContext`
    (STS call); the memory backend needs nothing.
    """
    if settings.backend == "memory":
        return InMemoryProvider()
    if settings.backend == "eks":
        from eks_orchestrator.aws.context import AWSContext
        from eks_orchestrator.provider.eks import EksProvider

        return EksProvider(AWSContext.build(region=region, profile=settings.profile), settings)
    raise ValueError(
        f"Unknown provider backend '{settings.backend}' (expected one of: {', '.join(BACKENDS)})"
    )


__all__ = [
    "BACKENDS",
    "CancelToken",
    "InMemoryProvider",
    "ProviderAdapter",
    "ProviderRequest",
    "build_provider",
    "make_record",
    "select_version",
]
