"""Tests for daemon wiring and signal handling."""

import signal
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.config.config_exception import ConfigException

from elb_inject.config import AppConfig, AWSConfig, ControllerConfig, KubernetesConfig
from elb_inject.daemon import Daemon
from elb_inject.exceptions import ConfigError


@pytest.fixture
def patched():
    with patch("elb_inject.daemon.k8s_config") as kcfg, \
            patch("elb_inject.daemon.k8s_client") as kclient, \
            patch("elb_inject.daemon.LoadBalancerClient") as lb, \
            patch("elb_inject.daemon.PodInformer") as informer:
        yield MagicMock(kcfg=kcfg, kclient=kclient, lb=lb, informer=informer)


def _config(**kube):
    return AppConfig(
        aws=AWSConfig(region="us-west-2"),
        kubernetes=KubernetesConfig(**kube),
        controller=ControllerConfig(workers=3, target_group_cache_ttl_seconds=60),
    )


class TestDaemon:
    def test_in_cluster_config(self, patched):
        Daemon(_config(in_cluster=True))
        patched.kcfg.load_incluster_config.assert_called_once()
        patched.kcfg.load_kube_config.assert_not_called()

    def test_kubeconfig_file_and_context(self, patched):
        Daemon(_config(kubeconfig="/tmp/kube.yaml", context="staging"))
        patched.kcfg.load_kube_config.assert_called_once_with(config_file="/tmp/kube.yaml", context="staging")

    def test_kubeconfig_failure_is_config_error(self, patched):
        patched.kcfg.load_kube_config.side_effect = ConfigException("no config")
        with pytest.raises(ConfigError, match="kubeconfig"):
            Daemon(_config())

    def test_wiring(self, patched):
        Daemon(_config())
        patched.lb.assert_called_once_with(AWSConfig(region="us-west-2"), cache_ttl_seconds=60)
        handler_args = patched.informer.return_value.add_event_handler.call_args.args
        assert [h.__name__ for h in handler_args] == ["on_add", "on_update", "on_delete"]

    def test_sighup_invalidates_target_group_cache(self, patched):
        daemon = Daemon(_config())
        daemon._handle_reload(signal.SIGHUP, None)
        patched.lb.return_value.directory.invalidate.assert_called_once()

    def test_run_until_stopped(self, patched):
        daemon = Daemon(_config())
        daemon._handle_shutdown(signal.SIGTERM, None)
        with patch.object(daemon, "_install_signal_handlers"), \
                patch.object(daemon._controller, "run") as run:
            daemon.run()
        args, kwargs = run.call_args
        assert args[0] == 3
        assert args[1].is_set()
        patched.informer.return_value.stop.assert_called_once()
