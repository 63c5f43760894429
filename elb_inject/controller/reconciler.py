"""Per-pod synchronization: decide, call ELBv2, record the result as a pod annotation."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol

from ..config import ControllerConfig
from ..exceptions import ElbInjectError, InvalidKeyError
from ..kube import InstanceStore
from ..models import DeleteEvent, Instance, split_key

logger = logging.getLogger(__name__)


class OutcomeKind(enum.Enum):
    SUCCESS = "success"
    SKIP = "skip"  # nothing to do, do not retry
    RETRY = "retry"  # transient failure, requeue with backoff
    ACTIONABLE = "actionable"  # permanent failure a human has to fix


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    reason: str = ""
    error: Exception | None = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def skip(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.SKIP, reason=reason)

    @classmethod
    def retry(cls, error: Exception) -> Outcome:
        return cls(OutcomeKind.RETRY, reason=str(error), error=error)

    @classmethod
    def actionable(cls, error: Exception) -> Outcome:
        return cls(OutcomeKind.ACTIONABLE, reason=str(error), error=error)


class TargetRegistrar(Protocol):
    def register(self, target_group_name: str, ip: str) -> bool: ...

    def deregister(self, target_group_name: str, ip: str) -> None: ...


class Reconciler:
    """Registers running, annotated pods with their target group exactly once."""

    def __init__(self, config: ControllerConfig, store: InstanceStore, registrar: TargetRegistrar):
        self._store = store
        self._registrar = registrar
        self._excluded = frozenset(config.excluded_namespaces)
        self._tg_annotation = config.target_group_annotation
        self._status_annotation = config.status_annotation

    # ── Eligibility ─────────────────────────────────────────────────

    def should_inject(self, instance: Instance) -> bool:
        """Namespace not excluded, target group requested, not registered yet."""
        return self._wants_target_group(instance) and not instance.annotation(self._status_annotation)

    def is_eligible(self, instance: Instance) -> bool:
        """should_inject() and the pod is running."""
        return instance.is_running and self.should_inject(instance)

    # ── Register path ───────────────────────────────────────────────

    def sync(self, key: str) -> Outcome:
        """Bring one pod's registration up to date. Always re-reads the pod from the store."""
        try:
            namespace, name = split_key(key)
        except InvalidKeyError:
            logger.warning("Invalid resource key: %s", key)
            return Outcome.skip("invalid key")

        instance = self._store.get(namespace, name)
        if instance is None:
            logger.info("Pod %s no longer exists", key, extra={"pod": key})
            return Outcome.skip("not found")

        if not instance.is_running:
            logger.debug("Pod %s is %s", key, instance.phase, extra={"pod": key})
            return Outcome.skip("not running")

        # Double check, the pod may have changed while queued
        if not self._wants_target_group(instance):
            return Outcome.skip("not eligible")

        if instance.annotation(self._status_annotation):
            return Outcome.skip("already registered")

        if not instance.ip:
            logger.debug("Pod %s is running but has no IP yet", key, extra={"pod": key})
            return Outcome.skip("no address")

        target_group = instance.annotation(self._tg_annotation)
        log_extra = {"pod": key, "target_group": target_group, "ip": instance.ip}
        logger.info("[Register] Attaching [%s %s] to target group [%s]", key, instance.ip, target_group, extra=log_extra)
        try:
            registered = self._registrar.register(target_group, instance.ip)
        except ElbInjectError as exc:
            return Outcome.retry(exc)
        if not registered:
            # Nothing reached the load balancer, so the pod must stay unmarked
            return Outcome.skip("dry-run")

        logger.debug("Adding status annotation to pod %s", key, extra=log_extra)
        try:
            self._store.persist(instance.with_annotation(self._status_annotation, instance.ip))
        except ElbInjectError as exc:
            return Outcome.retry(exc)

        logger.info(
            "[Register] Attached [%s %s] to target group [%s]", key, instance.ip, target_group, extra=log_extra,
        )
        return Outcome.success()

    # ── Deregister path ─────────────────────────────────────────────

    def deregister(self, event: DeleteEvent) -> Outcome:
        """Remove a deleted pod's IP from its target group. Never retried; failures are actionable.

        The IP comes from the status annotation, since pods deleted quickly may never
        have reported one in their status.
        """
        ip, target_group = self.deregister_details(event)
        if not ip or not target_group:
            return Outcome.skip("not registered")

        log_extra = {"pod": event.key, "target_group": target_group, "ip": ip}
        logger.info("[Deregister] [%s %s] from [%s]", event.key, ip, target_group, extra=log_extra)
        try:
            self._registrar.deregister(target_group, ip)
        except ElbInjectError as exc:
            logger.error(
                "[Deregister] [%s %s] from [%s] failed. Reason: %s", event.key, ip, target_group, exc,
                extra=log_extra,
            )
            return Outcome.actionable(exc)

        logger.info("[Deregister] [%s %s] from [%s] successfully", event.key, ip, target_group, extra=log_extra)
        return Outcome.success()

    def deregister_details(self, event: DeleteEvent) -> tuple[str, str]:
        """Return (ip, target group) recorded on a deleted pod."""
        return (
            event.annotations.get(self._status_annotation) or "",
            event.annotations.get(self._tg_annotation) or "",
        )

    def _wants_target_group(self, instance: Instance) -> bool:
        return instance.namespace not in self._excluded and bool(instance.annotation(self._tg_annotation))
