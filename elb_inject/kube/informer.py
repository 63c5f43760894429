"""List-then-watch pod informer with an in-memory cache, and the InstanceStore built on it."""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Callable

from kubernetes import watch
from kubernetes.client import ApiException

from ..exceptions import InstanceUpdateError
from ..models import DeleteEvent, FullObject, Instance, KeyOnly, make_key

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30

AddHandler = Callable[[Instance], None]
UpdateHandler = Callable[[Instance, Instance], None]
DeleteHandler = Callable[[DeleteEvent], None]


class PodInformer:
    """Keeps a cache of all pods in sync with the API server and fans out change notifications.

    An initial list seeds the cache (emitting adds), then a watch streams changes from the
    list's resourceVersion. When the watch expires (410 Gone) the pods are re-listed and the
    cache is diffed against the fresh list; pods that vanished during the gap are reported as
    KeyOnly deletes because their final state was never observed.
    """

    def __init__(self, core_api: Any, watch_timeout_seconds: int = 300):
        self._api = core_api
        self._watch_timeout = watch_timeout_seconds
        self._cache: dict[str, Instance] = {}
        # key -> resourceVersion of our own write the watch has not delivered yet
        self._pending_writes: dict[str, str] = {}
        self._lock = threading.Lock()
        self._handlers: list[tuple[AddHandler, UpdateHandler, DeleteHandler]] = []
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def add_event_handler(self, on_add: AddHandler, on_update: UpdateHandler, on_delete: DeleteHandler) -> None:
        self._handlers.append((on_add, on_update, on_delete))

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def get(self, namespace: str, name: str) -> Instance | None:
        with self._lock:
            return self._cache.get(make_key(namespace, name))

    def store(self, instance: Instance) -> None:
        """Overwrite a cache entry with the object returned by a successful write.

        Watch events for the pod are ignored until the event carrying this write's
        resourceVersion arrives, so an event already in flight cannot roll the cache back.
        """
        with self._lock:
            self._cache[instance.key] = instance
            if instance.resource_version:
                self._pending_writes[instance.key] = instance.resource_version

    def stop(self) -> None:
        """Request a stop and interrupt any open watch stream."""
        self._stop.set()
        with self._watcher_lock:
            active = self._active_watcher
        if active is not None:
            active.stop()

    # ── Main loop ───────────────────────────────────────────────────

    def run(self) -> None:
        """List then watch pods until stop() is called."""
        resource_version: str | None = None
        backoff_seconds = 1

        while not self._stop.is_set():
            try:
                if resource_version is None:
                    resource_version = self._relist()
                    self._synced.set()
                resource_version = self._watch(resource_version)
                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    resource_version = None
                    continue
                logger.error("Pod watch failed (status=%s): %s", exc.status, exc.reason)
                self._sleep_backoff(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)
            except Exception:
                logger.exception("Unexpected error in pod watch")
                self._sleep_backoff(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)

        logger.info("Pod informer stopped")

    def _sleep_backoff(self, seconds: float) -> None:
        jittered = seconds * (0.5 + random.random())  # noqa: S311
        self._stop.wait(timeout=jittered)

    def _relist(self) -> str:
        """List all pods, replace the cache and emit the differences. Returns the list resourceVersion."""
        pod_list = self._api.list_pod_for_all_namespaces()
        fresh = {inst.key: inst for inst in (Instance.from_pod(p) for p in pod_list.items)}

        with self._lock:
            previous = self._cache
            self._cache = fresh
            self._pending_writes.clear()

        for key, inst in fresh.items():
            old = previous.get(key)
            if old is None:
                self._emit_add(inst)
            else:
                self._emit_update(old, inst)

        for key, old in previous.items():
            if key not in fresh:
                logger.info("Pod %s deleted while the watch was down", key, extra={"pod": key})
                self._emit_delete(KeyOnly(namespace=old.namespace, name=old.name, annotations=old.annotations))

        logger.info("Listed %d pods", len(fresh))
        return pod_list.metadata.resource_version

    def _watch(self, resource_version: str) -> str:
        watcher = watch.Watch()
        with self._watcher_lock:
            self._active_watcher = watcher
        try:
            stream = watcher.stream(
                self._api.list_pod_for_all_namespaces,
                resource_version=resource_version,
                timeout_seconds=self._watch_timeout,
            )
            for event in stream:
                if self._stop.is_set():
                    break
                obj = event.get("object")
                if obj is None or getattr(obj, "metadata", None) is None:
                    continue
                if obj.metadata.resource_version:
                    resource_version = obj.metadata.resource_version
                self._handle_event(str(event.get("type", "")), Instance.from_pod(obj))
        finally:
            with self._watcher_lock:
                self._active_watcher = None
        return resource_version

    def _handle_event(self, event_type: str, inst: Instance) -> None:
        if event_type == "DELETED":
            with self._lock:
                self._cache.pop(inst.key, None)
                self._pending_writes.pop(inst.key, None)
            self._emit_delete(FullObject(inst))
            return

        if event_type not in ("ADDED", "MODIFIED"):
            return

        with self._lock:
            pending = self._pending_writes.get(inst.key)
            if pending is not None:
                if inst.resource_version != pending:
                    logger.debug("Ignoring stale event for %s at %s", inst.key, inst.resource_version)
                    return
                del self._pending_writes[inst.key]
            old = self._cache.get(inst.key)
            self._cache[inst.key] = inst
        if old is None:
            self._emit_add(inst)
        else:
            self._emit_update(old, inst)

    # ── Handler fan-out ─────────────────────────────────────────────

    def _emit_add(self, inst: Instance) -> None:
        for on_add, _, _ in self._handlers:
            self._call(on_add, inst)

    def _emit_update(self, old: Instance, new: Instance) -> None:
        for _, on_update, _ in self._handlers:
            self._call(on_update, old, new)

    def _emit_delete(self, event: DeleteEvent) -> None:
        for _, _, on_delete in self._handlers:
            self._call(on_delete, event)

    @staticmethod
    def _call(handler: Callable[..., None], *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception("Event handler %s failed", getattr(handler, "__name__", handler))


class PodStore:
    """InstanceStore backed by the informer cache, writing annotations with a merge patch."""

    def __init__(self, informer: PodInformer, core_api: Any):
        self._informer = informer
        self._api = core_api

    def get(self, namespace: str, name: str) -> Instance | None:
        return self._informer.get(namespace, name)

    def persist(self, instance: Instance) -> None:
        body = {"metadata": {"annotations": dict(instance.annotations)}}
        try:
            pod = self._api.patch_namespaced_pod(instance.name, instance.namespace, body)
        except ApiException as exc:
            raise InstanceUpdateError(
                f"Patching pod {instance.key} failed: {exc.reason}", status_code=exc.status,
            ) from exc
        self._informer.store(Instance.from_pod(pod))
