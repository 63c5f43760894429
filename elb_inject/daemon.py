"""Process wiring: Kubernetes and AWS clients, informer, controller, signal handling."""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from .aws.elbv2_client import LoadBalancerClient
from .config import AppConfig, KubernetesConfig
from .controller.engine import Controller
from .controller.reconciler import Reconciler
from .controller.workqueue import RateLimitingQueue, default_controller_rate_limiter
from .exceptions import ConfigError
from .kube.informer import PodInformer, PodStore
from .notifier import WebhookNotifier

logger = logging.getLogger(__name__)

QUEUE_NAME = "ELB Register"


class Daemon:
    """Runs the pod informer and the controller workers until SIGTERM/SIGINT."""

    def __init__(self, config: AppConfig):
        self._config = config
        self._stop = threading.Event()

        core_api = self._build_core_api(config.kubernetes)
        ctrl = config.controller

        logger.info("Setting up AWS")
        self._lb = LoadBalancerClient(config.aws, cache_ttl_seconds=ctrl.target_group_cache_ttl_seconds)

        self._informer = PodInformer(core_api, watch_timeout_seconds=config.kubernetes.watch_timeout_seconds)
        store = PodStore(self._informer, core_api)
        queue = RateLimitingQueue(
            default_controller_rate_limiter(ctrl.retry_base_delay_seconds, ctrl.retry_max_delay_seconds),
            name=QUEUE_NAME,
        )
        self._controller = Controller(
            Reconciler(ctrl, store, self._lb),
            queue,
            WebhookNotifier(config.notifications),
        )

        logger.info("Setting up event handlers")
        self._informer.add_event_handler(
            self._controller.on_add, self._controller.on_update, self._controller.on_delete,
        )

    @staticmethod
    def _build_core_api(kube: KubernetesConfig) -> k8s_client.CoreV1Api:
        try:
            if kube.in_cluster:
                k8s_config.load_incluster_config()
            else:
                k8s_config.load_kube_config(
                    config_file=kube.kubeconfig or None,
                    context=kube.context or None,
                )
        except ConfigException as exc:
            raise ConfigError(f"Error building kubeconfig: {exc}") from exc
        return k8s_client.CoreV1Api()

    def run(self) -> None:
        """Start the informer thread and block in the controller until shutdown."""
        self._install_signal_handlers()

        informer_thread = threading.Thread(target=self._informer.run, name="pod-informer", daemon=True)
        informer_thread.start()

        try:
            self._controller.run(
                self._config.controller.workers,
                self._stop,
                has_synced=self._informer.has_synced,
            )
        finally:
            self._informer.stop()
            informer_thread.join(timeout=5)
        logger.info("Daemon stopped")

    def stop(self) -> None:
        self._stop.set()

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)
        signal.signal(signal.SIGHUP, self._handle_reload)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        self._stop.set()

    def _handle_reload(self, signum: int, frame: FrameType | None) -> None:
        logger.info("Received SIGHUP, invalidating target group cache")
        self._lb.directory.invalidate()
