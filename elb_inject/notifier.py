"""Best-effort Slack-style webhook notifications for failures that need a human."""

from __future__ import annotations

import logging

import requests

from .config import NotificationConfig

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts plain-text alerts to an incoming webhook. Delivery failures are logged, never raised."""

    def __init__(self, config: NotificationConfig):
        self._url = config.webhook_url
        self._timeout = config.timeout
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"

    def notify(self, message: str) -> bool:
        """Send a message. Returns True if the webhook accepted it."""
        if not self._url:
            logger.warning("No webhook configured, alert not sent: %s", message)
            return False

        try:
            resp = self._session.post(self._url, json={"text": message}, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.error("Webhook delivery failed: %s", exc)
            logger.error(message)
            return False

        if resp.status_code >= 400:
            logger.error("Webhook returned HTTP %d: %s", resp.status_code, resp.text)
            logger.error(message)
            return False

        return True


def format_deregister_alert(pod: str, ip: str, target_group: str, error: Exception) -> str:
    """Build the alert text for a deregistration that must be fixed by hand."""
    arn = getattr(error, "target_group_arn", "")
    if arn:
        remediation = f"aws elbv2 deregister-targets --target-group-arn {arn} --targets Id={ip}"
    else:
        remediation = f"aws elbv2 describe-target-groups --names {target_group}"
    return (
        f"```Can not deregister pod {pod}[{ip}] from {target_group}. Reason: {error} \n"
        f" {remediation}```"
    )
