"""Tests for the CLI entry point."""

from unittest.mock import patch

import yaml

from elb_inject.cli import main
from elb_inject.exceptions import ConfigError


class TestCLI:
    def test_validate_valid_config(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"aws": {"region": "us-west-2"}}))
        result = main(["--validate", "-c", str(config_path)])
        assert result == 0

    def test_validate_invalid_config(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"aws": {}}))
        result = main(["--validate", "-c", str(config_path)])
        assert result == 1

    def test_missing_config_file(self):
        result = main(["-c", "/nonexistent/config.yaml", "--validate"])
        assert result == 1

    def test_invalid_workers_override(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"aws": {"region": "us-west-2"}}))
        result = main(["--validate", "--workers", "0", "-c", str(config_path)])
        assert result == 1

    @patch("elb_inject.cli.Daemon")
    def test_overrides_reach_daemon(self, MockDaemon, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"aws": {"region": "us-west-2"}}))
        result = main(["--dry-run", "--workers", "5", "-c", str(config_path)])
        assert result == 0
        config = MockDaemon.call_args.args[0]
        assert config.aws.dry_run is True
        assert config.controller.workers == 5
        MockDaemon.return_value.run.assert_called_once()

    @patch("elb_inject.cli.Daemon")
    def test_fatal_bootstrap_error(self, MockDaemon, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"aws": {"region": "us-west-2"}}))
        MockDaemon.side_effect = ConfigError("Error building kubeconfig")
        result = main(["-c", str(config_path)])
        assert result == 1
