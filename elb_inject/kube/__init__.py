"""Kubernetes cluster boundary: cached pod reads and annotation writes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..models import Instance


@runtime_checkable
class InstanceStore(Protocol):
    """Protocol for the cluster-state cache the reconciler reads from and writes to."""

    def get(self, namespace: str, name: str) -> Instance | None:
        """Return the cached pod, or None if it no longer exists."""
        ...

    def persist(self, instance: Instance) -> None:
        """Write the instance's annotations back to the cluster. Raises InstanceUpdateError."""
        ...
