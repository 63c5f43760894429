"""Custom exception hierarchy for the ELB inject controller."""


class ElbInjectError(Exception):
    """Base exception for all controller errors."""


class ConfigError(ElbInjectError):
    """Invalid or missing configuration."""


class InvalidKeyError(ElbInjectError):
    """A work item key could not be split into namespace/name."""


class InstanceUpdateError(ElbInjectError):
    """Persisting pod metadata back to the cluster failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TargetGroupLookupError(ElbInjectError, LookupError):
    """Listing target groups from the ELBv2 API failed."""


class LoadBalancerAPIError(ElbInjectError):
    """Error returned by the ELBv2 register/deregister API."""

    def __init__(self, message: str, target_group: str = "", ip: str = ""):
        super().__init__(message)
        self.target_group = target_group
        self.ip = ip


class TargetGroupNotFound(LoadBalancerAPIError):
    """The target group name did not resolve to an ARN."""

    def __init__(self, target_group: str, ip: str = ""):
        super().__init__(f"Target group '{target_group}' not found", target_group=target_group, ip=ip)


class DeregisterFailed(LoadBalancerAPIError):
    """DeregisterTargets failed after the target group was resolved.

    Carries the resolved ARN so the alert can include a ready-to-run remediation command.
    """

    def __init__(self, message: str, target_group: str, ip: str, target_group_arn: str):
        super().__init__(message, target_group=target_group, ip=ip)
        self.target_group_arn = target_group_arn
