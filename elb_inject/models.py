"""Data models for observed pods, work item keys and delete events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .exceptions import InvalidKeyError

PHASE_RUNNING = "Running"


@dataclass(frozen=True)
class Instance:
    """A pod as seen by the controller. Read-only except for annotations written via with_annotation()."""

    namespace: str
    name: str
    phase: str = "Unknown"
    ip: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""

    @property
    def key(self) -> str:
        return make_key(self.namespace, self.name)

    @property
    def is_running(self) -> bool:
        return self.phase == PHASE_RUNNING

    def annotation(self, key: str) -> str:
        """Return an annotation value, empty string when absent."""
        return self.annotations.get(key) or ""

    def with_annotation(self, key: str, value: str) -> Instance:
        """Return a copy of this instance with one annotation set."""
        return Instance(
            namespace=self.namespace,
            name=self.name,
            phase=self.phase,
            ip=self.ip,
            annotations={**self.annotations, key: value},
            resource_version=self.resource_version,
        )

    @classmethod
    def from_pod(cls, pod: Any) -> Instance:
        """Build an Instance from a kubernetes V1Pod."""
        metadata = pod.metadata
        status = pod.status
        return cls(
            namespace=metadata.namespace or "",
            name=metadata.name,
            phase=(status.phase if status is not None else None) or "Unknown",
            ip=(status.pod_ip if status is not None else None) or "",
            annotations=dict(metadata.annotations or {}),
            resource_version=metadata.resource_version or "",
        )


def make_key(namespace: str, name: str) -> str:
    """Format a namespace/name key; cluster-scoped objects use the bare name."""
    return f"{namespace}/{name}" if namespace else name


def split_key(key: str) -> tuple[str, str]:
    """Split a namespace/name key. Raises InvalidKeyError for malformed keys."""
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise InvalidKeyError(f"unexpected key format: {key!r}")


# ── Delete events ───────────────────────────────────────────────────


@dataclass(frozen=True)
class FullObject:
    """Delete event carrying the final known state of the pod."""

    instance: Instance

    @property
    def key(self) -> str:
        return self.instance.key

    @property
    def annotations(self) -> dict[str, str]:
        return self.instance.annotations


@dataclass(frozen=True)
class KeyOnly:
    """Delete event whose final state is unknown (missed during a watch gap).

    Carries the key and the annotations last seen in the informer cache.
    """

    namespace: str
    name: str
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return make_key(self.namespace, self.name)


DeleteEvent = Union[FullObject, KeyOnly]
