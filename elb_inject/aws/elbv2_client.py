"""AWS boto3 client for registering pod IPs with ELBv2 target groups."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AWSConfig
from ..exceptions import DeregisterFailed, LoadBalancerAPIError, TargetGroupNotFound
from .target_groups import DEFAULT_TTL_SECONDS, TargetGroupDirectory

logger = logging.getLogger(__name__)

ROLE_SESSION_NAME = "elb-inject"


class LoadBalancerClient:
    """Registers and deregisters single IP targets against named target groups."""

    def __init__(self, aws_config: AWSConfig, cache_ttl_seconds: float = DEFAULT_TTL_SECONDS):
        self._config = aws_config
        self._dry_run = aws_config.dry_run

        session = self._build_session(aws_config)
        botocore_config = Config(retries={"max_attempts": aws_config.api_retries, "mode": "standard"})
        self._elbv2 = session.client("elbv2", config=botocore_config)
        self.directory = TargetGroupDirectory(self._elbv2, ttl_seconds=cache_ttl_seconds)

        if self._dry_run:
            logger.warning("Dry-run mode: target registrations will only be logged")

    @staticmethod
    def _build_session(aws_config: AWSConfig) -> boto3.Session:
        session_kwargs: dict[str, Any] = {"region_name": aws_config.region}
        if aws_config.credential_profile:
            session_kwargs["profile_name"] = aws_config.credential_profile
        session = boto3.Session(**session_kwargs)

        if not aws_config.assume_role_arn:
            return session

        logger.info("Assuming role: %s", aws_config.assume_role_arn)
        creds = session.client("sts").assume_role(
            RoleArn=aws_config.assume_role_arn,
            RoleSessionName=ROLE_SESSION_NAME,
        )["Credentials"]
        return boto3.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            region_name=aws_config.region,
        )

    def register(self, target_group_name: str, ip: str) -> bool:
        """Register one IP with the named target group. Returns False in dry-run mode.

        Raises TargetGroupNotFound if the name does not resolve, LoadBalancerAPIError
        if RegisterTargets fails. Registering an already registered IP is a no-op on the AWS side.
        """
        arn = self.directory.resolve(target_group_name)
        if arn is None:
            raise TargetGroupNotFound(target_group_name, ip=ip)

        if self._dry_run:
            logger.info("[dry-run] register %s -> %s", ip, arn, extra={"target_group": target_group_name})
            return False

        try:
            self._elbv2.register_targets(TargetGroupArn=arn, Targets=[{"Id": ip}])
        except (BotoCoreError, ClientError) as exc:
            logger.error("Can not register %s to target group %s. Reason: %s", ip, target_group_name, exc)
            raise LoadBalancerAPIError(
                f"RegisterTargets failed: {exc}", target_group=target_group_name, ip=ip,
            ) from exc
        return True

    def deregister(self, target_group_name: str, ip: str) -> None:
        """Deregister one IP from the named target group.

        Raises TargetGroupNotFound if the name does not resolve, DeregisterFailed
        (carrying the resolved ARN) if DeregisterTargets fails.
        """
        arn = self.directory.resolve(target_group_name)
        if arn is None:
            raise TargetGroupNotFound(target_group_name, ip=ip)

        if self._dry_run:
            logger.info("[dry-run] deregister %s -> %s", ip, arn, extra={"target_group": target_group_name})
            return

        try:
            self._elbv2.deregister_targets(TargetGroupArn=arn, Targets=[{"Id": ip}])
        except (BotoCoreError, ClientError) as exc:
            logger.error("Can not deregister %s from target group %s. Reason: %s", ip, target_group_name, exc)
            raise DeregisterFailed(
                str(exc), target_group=target_group_name, ip=ip, target_group_arn=arn,
            ) from exc
