"""Scan allowance for visitors who have not signed up yet."""
from __future__ import annotations

import hashlib
import logging
from datetime import timedelta
from typing import Dict, Mapping, Optional

from scout_shared.database import DatabaseManager
from scout_shared.models import TrialStatus, User
from scout_shared.utils import isoformat, utc_now

logger = logging.getLogger(__name__)

TRIAL_SCAN_LIMIT = 10
TRIAL_RETENTION_DAYS = 90


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or remote_addr or "unknown"


def fingerprint(ip: str, user_agent: Optional[str]) -> str:
    """Stable, anonymous visitor id: first 16 hex chars of sha256("ip:user-agent")."""
    raw = f"{ip or 'unknown'}:{user_agent or 'unknown'}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


class TrialService:
    def __init__(self, db: DatabaseManager, scan_limit: int = TRIAL_SCAN_LIMIT):
        self.db = db
        self.scan_limit = scan_limit

    def get_trial_status(self, visitor: str) -> TrialStatus:
        row = self.db.get_trial_scan(visitor)
        used = int(row["scans_used"]) if row else 0
        remaining = max(0, self.scan_limit - used)
        return TrialStatus(
            scans_used=used,
            scans_limit=self.scan_limit,
            scans_remaining=remaining,
            is_trial_active=remaining > 0,
            requires_upgrade=remaining == 0,
        )

    def record_trial_scan(self, visitor: str) -> TrialStatus:
        self.db.record_trial_scan(visitor)
        logger.info("Trial scan recorded for %s...", visitor[:8])
        return self.get_trial_status(visitor)

    def counts_against_trial(self, user: Optional[User]) -> bool:
        """Paid subscribers are exempt; visitors and trial accounts share the per-visitor allowance."""
        return user is None or not user.subscription_tier or user.subscription_tier == "trial"

    def can_scan(self, user: Optional[User], visitor: str) -> bool:
        if not self.counts_against_trial(user):
            return True
        return self.get_trial_status(visitor).scans_remaining > 0

    def get_trial_stats(self) -> Dict[str, int]:
        return self.db.trial_stats(self.scan_limit)

    def cleanup_old_trials(self, days: int = TRIAL_RETENTION_DAYS) -> int:
        removed = self.db.delete_trials_before(isoformat(utc_now() - timedelta(days=days)))
        logger.info("Cleaned up %d old trial records", removed)
        return removed
