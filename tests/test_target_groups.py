"""Tests for the target group directory cache."""

import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from elb_inject.aws.target_groups import TargetGroupDirectory
from elb_inject.exceptions import TargetGroupLookupError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tg(name, target_type="ip"):
    return {
        "TargetGroupName": name,
        "TargetGroupArn": f"arn:aws:elasticloadbalancing:us-west-2:123456789012:targetgroup/{name}/abc",
        "TargetType": target_type,
    }


FOUR_GROUPS_PAGES = [
    {"TargetGroups": [_tg("dmai-test-0"), _tg("dmai-test-1")]},
    {"TargetGroups": [_tg("dmai-test-2"), _tg("dmai-instances", target_type="instance")]},
]


def _elbv2(pages):
    """Mock elbv2 client whose describe_target_groups paginator yields the given pages on every call."""
    elbv2 = MagicMock()
    paginator = MagicMock()
    paginator.paginate.side_effect = lambda **kw: iter(pages)
    elbv2.get_paginator.return_value = paginator
    return elbv2


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestResolve:
    def test_resolves_ip_target_group(self):
        directory = TargetGroupDirectory(_elbv2(FOUR_GROUPS_PAGES))
        assert directory.resolve("dmai-test-0") == _tg("dmai-test-0")["TargetGroupArn"]

    def test_non_ip_target_groups_are_not_cached(self):
        directory = TargetGroupDirectory(_elbv2(FOUR_GROUPS_PAGES))
        directory.resolve("dmai-test-0")
        table = directory.snapshot()
        assert set(table) == {"dmai-test-0", "dmai-test-1", "dmai-test-2"}
        assert "dmai-instances" not in table

    def test_instance_type_group_resolves_to_none(self):
        directory = TargetGroupDirectory(_elbv2(FOUR_GROUPS_PAGES))
        assert directory.resolve("dmai-instances") is None

    def test_unknown_name_returns_none(self):
        directory = TargetGroupDirectory(_elbv2(FOUR_GROUPS_PAGES))
        assert directory.resolve("nope") is None

    def test_uses_paginator_with_page_size(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        TargetGroupDirectory(elbv2).resolve("dmai-test-0")
        elbv2.get_paginator.assert_called_once_with("describe_target_groups")
        elbv2.get_paginator.return_value.paginate.assert_called_once_with(
            PaginationConfig={"PageSize": 400},
        )

    def test_snapshot_is_a_copy(self):
        directory = TargetGroupDirectory(_elbv2(FOUR_GROUPS_PAGES))
        directory.resolve("dmai-test-0")
        directory.snapshot().clear()
        assert len(directory.snapshot()) == 3


class TestTTL:
    def test_two_resolves_within_ttl_list_once(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        clock = FakeClock()
        directory = TargetGroupDirectory(elbv2, ttl_seconds=300, clock=clock)

        directory.resolve("dmai-test-0")
        clock.now += 299
        directory.resolve("dmai-test-1")

        assert elbv2.get_paginator.return_value.paginate.call_count == 1

    def test_resolve_after_ttl_lists_again(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        clock = FakeClock()
        directory = TargetGroupDirectory(elbv2, ttl_seconds=300, clock=clock)

        directory.resolve("dmai-test-0")
        clock.now += 301
        directory.resolve("dmai-test-0")

        assert elbv2.get_paginator.return_value.paginate.call_count == 2

    def test_miss_forces_refresh(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        directory = TargetGroupDirectory(elbv2, clock=FakeClock())
        directory.resolve("dmai-test-0")
        directory.resolve("created-later")
        assert elbv2.get_paginator.return_value.paginate.call_count == 2

    def test_refresh_replaces_table(self):
        pages = [{"TargetGroups": [_tg("old")]}]
        elbv2 = _elbv2(pages)
        directory = TargetGroupDirectory(elbv2, clock=FakeClock())
        assert directory.resolve("old") is not None

        pages[:] = [{"TargetGroups": [_tg("new")]}]
        directory.refresh()

        assert set(directory.snapshot()) == {"new"}

    def test_invalidate_forces_listing(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        directory = TargetGroupDirectory(elbv2, clock=FakeClock())
        directory.resolve("dmai-test-0")
        directory.invalidate()
        directory.resolve("dmai-test-0")
        assert elbv2.get_paginator.return_value.paginate.call_count == 2


class TestErrors:
    def test_listing_failure_raises_lookup_error(self):
        elbv2 = MagicMock()
        elbv2.get_paginator.return_value.paginate.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DescribeTargetGroups",
        )
        directory = TargetGroupDirectory(elbv2)
        with pytest.raises(TargetGroupLookupError):
            directory.resolve("dmai-test-0")
        with pytest.raises(LookupError):
            directory.resolve("dmai-test-0")

    def test_failed_listing_is_not_cached(self):
        elbv2 = _elbv2(FOUR_GROUPS_PAGES)
        paginator = elbv2.get_paginator.return_value
        error = ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "DescribeTargetGroups")
        paginator.paginate.side_effect = [error, iter(FOUR_GROUPS_PAGES)]
        directory = TargetGroupDirectory(elbv2, clock=FakeClock())

        with pytest.raises(TargetGroupLookupError):
            directory.resolve("dmai-test-0")
        assert directory.snapshot() == {}
        assert directory.resolve("dmai-test-0") is not None


class TestConcurrency:
    def test_concurrent_resolves_share_one_listing(self):
        release = threading.Event()
        elbv2 = MagicMock()

        def slow_paginate(**kw):
            release.wait(timeout=5)
            return iter(FOUR_GROUPS_PAGES)

        elbv2.get_paginator.return_value.paginate.side_effect = slow_paginate
        directory = TargetGroupDirectory(elbv2, clock=FakeClock())

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(directory.resolve("dmai-test-0")))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        release.set()
        for t in threads:
            t.join(timeout=5)

        assert len(results) == 5
        assert all(r == _tg("dmai-test-0")["TargetGroupArn"] for r in results)
        assert elbv2.get_paginator.return_value.paginate.call_count == 1
