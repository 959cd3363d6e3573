"""Subscription tiers, monthly scan ceilings and access checks."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from scout_shared.database import DatabaseManager
from scout_shared.models import ScanLimitInfo, User
from scout_shared.utils import isoformat, parse_timestamp, utc_now

UNLIMITED = -1
DEFAULT_TRIAL_DAYS = 14


@dataclass(frozen=True)
class SubscriptionLimits:
    scans_per_month: int
    auto_list: bool
    ai_features: bool
    repricing: bool
    api_access: bool


SUBSCRIPTION_LIMITS: Dict[str, SubscriptionLimits] = {
    "trial": SubscriptionLimits(10, False, False, False, False),
    "free": SubscriptionLimits(10, False, False, False, False),
    "basic": SubscriptionLimits(100, False, False, False, False),
    "pro": SubscriptionLimits(UNLIMITED, True, True, True, False),
    "enterprise": SubscriptionLimits(UNLIMITED, True, True, True, True),
}

# Plan names used by older checkout flows.
LEGACY_TIERS = {
    "pro_monthly": "pro",
    "pro_yearly": "pro",
    "elite_monthly": "enterprise",
    "elite_yearly": "enterprise",
}

PAID_TIERS = frozenset({"basic", "pro", "enterprise"} | set(LEGACY_TIERS))


def canonical_tier(tier: Optional[str]) -> str:
    tier = (tier or "trial").lower()
    tier = LEGACY_TIERS.get(tier, tier)
    return tier if tier in SUBSCRIPTION_LIMITS else "trial"


def get_subscription_limits(tier: Optional[str]) -> SubscriptionLimits:
    return SUBSCRIPTION_LIMITS[canonical_tier(tier)]


def has_reached_scan_limit(tier: Optional[str], scans_used: int) -> bool:
    limit = get_subscription_limits(tier).scans_per_month
    if limit == UNLIMITED:
        return False
    return scans_used >= limit


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class ScanDecision:
    allowed: bool
    scans_used: int
    scans_limit: int
    message: Optional[str] = None


class ScanLimitService:
    """Counts this month's scans for a user against their tier's ceiling."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def scans_this_month(self, user: User, now: Optional[datetime] = None) -> int:
        since = start_of_month(now or utc_now())
        return self.db.count_books_scanned_since(user.id, isoformat(since))

    def can_scan(self, user: User, now: Optional[datetime] = None) -> ScanDecision:
        used = self.scans_this_month(user, now)
        limit = get_subscription_limits(user.subscription_tier).scans_per_month
        if has_reached_scan_limit(user.subscription_tier, used):
            return ScanDecision(
                allowed=False,
                scans_used=used,
                scans_limit=limit,
                message=f"You've reached your {limit} scans/month limit. Upgrade to continue scanning.",
            )
        return ScanDecision(allowed=True, scans_used=used, scans_limit=limit)

    def scan_limit_info(self, user: User, now: Optional[datetime] = None) -> ScanLimitInfo:
        used = self.scans_this_month(user, now)
        limit = get_subscription_limits(user.subscription_tier).scans_per_month
        if limit == UNLIMITED:
            return ScanLimitInfo(used, UNLIMITED, None, 0, True)
        return ScanLimitInfo(
            scans_used=used,
            scans_limit=limit,
            scans_remaining=max(0, limit - used),
            percent_used=min(100, round(used / limit * 100)) if limit else 100,
            is_unlimited=False,
        )


@dataclass
class SubscriptionStatus:
    has_access: bool
    tier: str
    status: str
    expires_at: Optional[str] = None
    trial_ends_at: Optional[str] = None
    days_remaining: Optional[int] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _days_until(when: Optional[datetime], now: datetime) -> Optional[int]:
    if when is None:
        return None
    return max(0, math.ceil((when - now).total_seconds() / 86400))


def check_subscription_access(user: User, now: Optional[datetime] = None) -> SubscriptionStatus:
    """Decide whether ``user`` may scan: an unexpired trial or an active paid plan."""
    now = now or utc_now()
    tier = user.subscription_tier or "trial"
    status = user.subscription_status or "inactive"

    if tier == "trial":
        trial_ends = parse_timestamp(user.trial_ends_at)
        active = trial_ends is not None and trial_ends > now and status == "active"
        result = SubscriptionStatus(
            has_access=active,
            tier=tier,
            status=status,
            trial_ends_at=user.trial_ends_at,
            days_remaining=_days_until(trial_ends, now) or 0,
        )
        if not active:
            result.error = "trial_expired"
            result.message = "Your free trial has ended. Please subscribe to continue scanning."
        return result

    if tier == "free":
        active = status == "active"
        return SubscriptionStatus(
            has_access=active,
            tier=tier,
            status=status,
            error=None if active else "subscription_inactive",
            message=None if active else f"Your subscription is {status}.",
        )

    if tier in PAID_TIERS:
        expires = parse_timestamp(user.subscription_expires_at)
        result = SubscriptionStatus(
            has_access=True,
            tier=tier,
            status=status,
            expires_at=user.subscription_expires_at,
            days_remaining=_days_until(expires, now),
        )
        if status != "active":
            result.has_access = False
            result.error = "subscription_inactive"
            result.message = f"Your subscription is {status}. Please update your payment method."
        elif expires is not None and expires < now:
            result.has_access = False
            result.error = "subscription_expired"
            result.message = "Your subscription has expired. Please renew to continue scanning."
        return result

    return SubscriptionStatus(
        has_access=False,
        tier=tier,
        status=status,
        error="no_active_subscription",
        message="No active subscription found. Please subscribe to continue scanning.",
    )
