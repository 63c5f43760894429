"""Control loop: filter pod events, queue keys, drain the queue with a pool of workers."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from ..models import DeleteEvent, Instance
from ..notifier import WebhookNotifier, format_deregister_alert
from .reconciler import OutcomeKind, Reconciler
from .workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)

SYNC_POLL_SECONDS = 0.1


class Controller:
    """Turns pod add/update/delete notifications into register/deregister calls.

    Add and update events are filtered and their keys queued; workers pull keys and run
    Reconciler.sync(). Deletes are handled inline, since there is no object left to requeue.
    """

    def __init__(self, reconciler: Reconciler, queue: RateLimitingQueue, notifier: WebhookNotifier):
        self._reconciler = reconciler
        self._queue = queue
        self._notifier = notifier
        self._workers: list[threading.Thread] = []

    # ── Event filters ───────────────────────────────────────────────

    def on_add(self, instance: Instance) -> None:
        if self._reconciler.is_eligible(instance):
            logger.debug("Queueing pod %s", instance.key, extra={"pod": instance.key})
            self._queue.add(instance.key)
            return
        logger.debug("Ignoring pod %s", instance.key, extra={"pod": instance.key})

    def on_update(self, old: Instance, new: Instance) -> None:
        # Resyncs and replayed events carry an unchanged resourceVersion
        if old.resource_version == new.resource_version:
            return
        self.on_add(new)

    def on_delete(self, event: DeleteEvent) -> None:
        outcome = self._reconciler.deregister(event)
        if outcome.kind is not OutcomeKind.ACTIONABLE:
            return
        ip, target_group = self._reconciler.deregister_details(event)
        self._notifier.notify(format_deregister_alert(event.key, ip, target_group, outcome.error))

    # ── Workers ─────────────────────────────────────────────────────

    def process_next_work_item(self) -> bool:
        """Process one key. Returns False once the queue has shut down."""
        key, shutdown = self._queue.get()
        if shutdown:
            return False

        try:
            self._process(key)
        finally:
            self._queue.done(key)
        return True

    def _process(self, key: str) -> None:
        logger.debug("[Register] Start: %s", key, extra={"pod": key})
        try:
            outcome = self._reconciler.sync(key)
        except Exception:
            logger.exception("Unhandled error syncing %s, requeueing", key, extra={"pod": key})
            self._queue.add_rate_limited(key)
            return

        if outcome.kind is OutcomeKind.RETRY:
            logger.warning(
                "Sync of %s failed: %s, requeueing", key, outcome.reason,
                extra={"pod": key, "outcome": outcome.kind.value},
            )
            self._queue.add_rate_limited(key)
            return

        # SUCCESS and SKIP both end the item; ACTIONABLE is not produced by sync()
        logger.debug(
            "Sync of %s finished: %s %s", key, outcome.kind.value, outcome.reason,
            extra={"pod": key, "outcome": outcome.kind.value},
        )
        self._queue.forget(key)

    def _run_worker(self) -> None:
        while self.process_next_work_item():
            pass

    def run(
        self,
        workers: int,
        stop_event: threading.Event,
        has_synced: Callable[[], bool] | None = None,
    ) -> None:
        """Start the worker pool and block until stop_event is set, then drain and join."""
        logger.info("Starting controller")

        if has_synced is not None:
            logger.info("Waiting for informer caches to sync")
            while not has_synced():
                if stop_event.wait(SYNC_POLL_SECONDS):
                    self._queue.shut_down()
                    logger.info("Stopped before caches synced")
                    return

        logger.info("Starting workers", extra={"workers": workers})
        self._workers = [
            threading.Thread(target=self._run_worker, name=f"worker-{i}", daemon=True)
            for i in range(workers)
        ]
        for thread in self._workers:
            thread.start()

        stop_event.wait()
        logger.info("Shutting down workers")
        self._queue.shut_down()
        for thread in self._workers:
            thread.join()
        logger.info("Controller stopped")
