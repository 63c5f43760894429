"""Argument parsing, configuration loading, and daemon bootstrap."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys

from botocore.exceptions import BotoCoreError, ClientError

from .config import AppConfig, load_config
from .daemon import Daemon
from .exceptions import ConfigError, ElbInjectError
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="elb-inject",
        description="Registers annotated Kubernetes pods with AWS ELBv2 target groups",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log target registrations instead of calling the ELBv2 API",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of concurrent workers (overrides controller.workers)",
    )
    return parser


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.dry_run:
        config = dataclasses.replace(config, aws=dataclasses.replace(config.aws, dry_run=True))
    if args.workers is not None:
        if args.workers < 1:
            raise ConfigError("--workers must be >= 1")
        config = dataclasses.replace(
            config, controller=dataclasses.replace(config.controller, workers=args.workers),
        )
    return config


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = _apply_overrides(load_config(args.config), args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return 0

    try:
        daemon = Daemon(config)
        daemon.run()
    except (ElbInjectError, BotoCoreError, ClientError) as exc:
        logger.error("Fatal error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
