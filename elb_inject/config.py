"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
import types
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

DEFAULT_TARGET_GROUP_ANNOTATION = "devops.apixio.com/elb-inject-target-group-name"
DEFAULT_STATUS_ANNOTATION = "devops.apixio.com/elb-inject-status"


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


@dataclass(frozen=True)
class AWSConfig:
    region: str = ""
    credential_profile: str = ""  # empty = use default boto3 credential chain
    assume_role_arn: str = ""
    api_retries: int = 3
    dry_run: bool = False


@dataclass(frozen=True)
class KubernetesConfig:
    in_cluster: bool = False
    kubeconfig: str = ""  # empty = ~/.kube/config
    context: str = ""
    watch_timeout_seconds: int = 300


@dataclass(frozen=True)
class ControllerConfig:
    workers: int = 2
    excluded_namespaces: list[str] = field(
        default_factory=lambda: ["kube-system", "kube-public", "monitor"]
    )
    target_group_annotation: str = DEFAULT_TARGET_GROUP_ANNOTATION
    status_annotation: str = DEFAULT_STATUS_ANNOTATION
    target_group_cache_ttl_seconds: float = 300
    retry_base_delay_seconds: float = 0.005
    retry_max_delay_seconds: float = 1000


@dataclass(frozen=True)
class NotificationConfig:
    webhook_url: str = ""  # empty = alerts are only logged
    timeout: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    aws: AWSConfig = field(default_factory=AWSConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_dataclass_type(ft: Any) -> type | None:
    """Return the underlying dataclass type from a type annotation (handles Optional/X|None)."""
    if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
        return ft
    if isinstance(ft, types.UnionType) or getattr(ft, "__origin__", None) is typing.Union:
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    return None


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str):
            ft = eval(ft, globals(), {cls.__name__: cls})  # noqa: S307
        dc_type = _get_dataclass_type(ft)
        if dc_type is not None and isinstance(value, dict):
            kwargs[key] = _build_nested(dc_type, value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    try:
        config = _build_nested(AppConfig, raw)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    _validate(config)
    return config


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.aws.region:
        raise ConfigError("aws.region is required")

    if config.aws.api_retries < 0:
        raise ConfigError("aws.api_retries must be >= 0")

    ctrl = config.controller
    if ctrl.workers < 1:
        raise ConfigError("controller.workers must be >= 1")

    if not isinstance(ctrl.excluded_namespaces, list):
        raise ConfigError("controller.excluded_namespaces must be a list")

    if not ctrl.target_group_annotation or not ctrl.status_annotation:
        raise ConfigError("controller annotation keys must not be empty")

    if ctrl.target_group_annotation == ctrl.status_annotation:
        raise ConfigError("controller.target_group_annotation and status_annotation must differ")

    if ctrl.target_group_cache_ttl_seconds <= 0:
        raise ConfigError("controller.target_group_cache_ttl_seconds must be > 0")

    if ctrl.retry_base_delay_seconds <= 0 or ctrl.retry_max_delay_seconds <= 0:
        raise ConfigError("controller retry delays must be > 0")

    if ctrl.retry_base_delay_seconds > ctrl.retry_max_delay_seconds:
        raise ConfigError("controller.retry_base_delay_seconds must be <= retry_max_delay_seconds")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
