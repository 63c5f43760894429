"""TTL-bounded cache of target group name -> ARN, refreshed from DescribeTargetGroups."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import TargetGroupLookupError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
PAGE_SIZE = 400
TARGET_TYPE_IP = "ip"


class TargetGroupDirectory:
    """Resolves target group names to ARNs, serving from an in-memory table.

    The table only holds target groups with target type "ip". A miss or an expired
    table triggers a full paginated listing which replaces the table wholesale.
    Names that are still absent after a refresh resolve to None.
    """

    def __init__(
        self,
        elbv2: Any,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._elbv2 = elbv2
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._table: dict[str, str] = {}
        self._expires_at: float | None = None

    def resolve(self, name: str) -> str | None:
        """Return the ARN for a target group name, or None if it does not exist."""
        with self._lock:
            if self._is_fresh():
                arn = self._table.get(name)
                if arn is not None:
                    return arn

        with self._refresh_lock:
            # Another thread may have refreshed while we waited
            with self._lock:
                if self._is_fresh() and name in self._table:
                    return self._table[name]
            self._refresh_locked()

        with self._lock:
            arn = self._table.get(name)
        if arn is None:
            logger.error("Target group %s is not found", name, extra={"target_group": name})
        return arn

    def refresh(self) -> int:
        """Unconditionally reload the table. Returns the number of cached target groups."""
        with self._refresh_lock:
            self._refresh_locked()
        with self._lock:
            return len(self._table)

    def invalidate(self) -> None:
        """Expire the table so the next resolve() reloads it."""
        with self._lock:
            self._expires_at = None
        logger.info("Target group cache invalidated")

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the current name -> ARN table."""
        with self._lock:
            return dict(self._table)

    # ── Internals ───────────────────────────────────────────────────

    def _is_fresh(self) -> bool:
        return self._expires_at is not None and self._clock() < self._expires_at

    def _refresh_locked(self) -> None:
        table = self._list_ip_target_groups()
        with self._lock:
            self._table = table
            self._expires_at = self._clock() + self._ttl
        logger.debug("Target groups available: %s", table, extra={"target_groups": len(table)})

    def _list_ip_target_groups(self) -> dict[str, str]:
        table: dict[str, str] = {}
        paginator = self._elbv2.get_paginator("describe_target_groups")
        try:
            for page in paginator.paginate(PaginationConfig={"PageSize": PAGE_SIZE}):
                for tg in page.get("TargetGroups", []):
                    if tg.get("TargetType") == TARGET_TYPE_IP:
                        table[tg["TargetGroupName"]] = tg["TargetGroupArn"]
        except (BotoCoreError, ClientError) as exc:
            logger.error("Can not describe target groups: %s", exc)
            raise TargetGroupLookupError(f"DescribeTargetGroups failed: {exc}") from exc
        return table
