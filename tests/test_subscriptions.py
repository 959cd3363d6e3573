"""Tests for tiers, scan ceilings and subscription access."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from isbnscout.subscriptions import (
    UNLIMITED,
    ScanLimitService,
    canonical_tier,
    check_subscription_access,
    get_subscription_limits,
    has_reached_scan_limit,
    start_of_month,
)
from scout_shared.models import User
from scout_shared.utils import isoformat

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def make_user(**fields) -> User:
    return User(id=1, username="u", email="u@example.com", **fields)


@pytest.mark.unit
class TestTiers:
    def test_limits_per_tier(self):
        assert get_subscription_limits("trial").scans_per_month == 10
        assert get_subscription_limits("basic").scans_per_month == 100
        assert get_subscription_limits("pro").scans_per_month == UNLIMITED
        assert get_subscription_limits("enterprise").api_access

    def test_legacy_and_unknown_tiers(self):
        assert canonical_tier("pro_monthly") == "pro"
        assert canonical_tier("elite_yearly") == "enterprise"
        assert canonical_tier("platinum") == "trial"
        assert canonical_tier(None) == "trial"

    def test_has_reached_scan_limit(self):
        assert not has_reached_scan_limit("basic", 99)
        assert has_reached_scan_limit("basic", 100)
        assert not has_reached_scan_limit("pro", 10_000)

    def test_start_of_month(self):
        assert start_of_month(NOW) == datetime(2024, 5, 1, tzinfo=timezone.utc)


@pytest.mark.unit
class TestSubscriptionAccess:
    def test_active_trial(self):
        user = make_user(trial_ends_at=isoformat(NOW + timedelta(days=3, hours=1)))
        status = check_subscription_access(user, NOW)

        assert status.has_access
        assert status.days_remaining == 4
        assert status.error is None

    def test_expired_trial(self):
        user = make_user(trial_ends_at=isoformat(NOW - timedelta(days=1)))
        status = check_subscription_access(user, NOW)

        assert not status.has_access
        assert status.error == "trial_expired"
        assert status.days_remaining == 0

    def test_active_paid_plan(self):
        user = make_user(subscription_tier="pro", subscription_expires_at=isoformat(NOW + timedelta(days=20)))
        status = check_subscription_access(user, NOW)

        assert status.has_access
        assert status.days_remaining == 20

    def test_past_due_plan(self):
        user = make_user(subscription_tier="basic", subscription_status="past_due")
        status = check_subscription_access(user, NOW)

        assert not status.has_access
        assert status.error == "subscription_inactive"

    def test_lapsed_paid_plan(self):
        user = make_user(subscription_tier="pro", subscription_expires_at=isoformat(NOW - timedelta(days=1)))
        assert check_subscription_access(user, NOW).error == "subscription_expired"

    def test_free_tier_active(self):
        assert check_subscription_access(make_user(subscription_tier="free"), NOW).has_access

    def test_unknown_tier(self):
        status = check_subscription_access(make_user(subscription_tier="platinum"), NOW)
        assert status.error == "no_active_subscription"


@pytest.mark.database
class TestScanLimitService:
    def test_counts_only_this_month(self, db_manager):
        user = db_manager.create_user("u", "u@example.com", "hash")
        db_manager.upsert_book(user.id, {"isbn": "1", "title": "April", "scanned_at": "2024-04-30T23:00:00+00:00"})
        db_manager.upsert_book(user.id, {"isbn": "2", "title": "May", "scanned_at": "2024-05-02T09:00:00+00:00"})
        limits = ScanLimitService(db_manager)

        assert limits.scans_this_month(user, NOW) == 1
        info = limits.scan_limit_info(user, NOW)
        assert (info.scans_used, info.scans_limit, info.scans_remaining, info.percent_used) == (1, 10, 9, 10)

    def test_blocks_at_limit(self, db_manager):
        user = db_manager.create_user("u", "u@example.com", "hash")
        for index in range(10):
            db_manager.upsert_book(user.id, {
                "isbn": str(index), "title": "T", "scanned_at": "2024-05-02T09:00:00+00:00",
            })

        decision = ScanLimitService(db_manager).can_scan(user, NOW)

        assert not decision.allowed
        assert decision.scans_used == 10
        assert "10 scans/month" in decision.message

    def test_unlimited_info(self, db_manager):
        user = db_manager.create_user("u", "u@example.com", "hash")
        user.subscription_tier = "pro"
        info = ScanLimitService(db_manager).scan_limit_info(user, NOW)

        assert info.is_unlimited
        assert info.scans_remaining is None
