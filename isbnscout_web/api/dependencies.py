"""Dependency injection for FastAPI routes."""
from __future__ import annotations

import sqlite3
import threading
from typing import Callable, Dict, Generator, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from isbnscout.errors import AuthError, SubscriptionRequired
from isbnscout.rate_limit import API_LIMIT, LOGIN_LIMIT, PRICING_LIMIT, SIGNUP_LIMIT, SlidingWindowRateLimiter
from isbnscout.service import ScoutService
from isbnscout.subscriptions import check_subscription_access
from isbnscout.trial import client_ip, fingerprint
from scout_shared.database import DatabaseManager
from scout_shared.models import User

from ..config import settings

# Global ScoutService instance (shared across requests)
_scout_service: Optional[ScoutService] = None
_service_lock = threading.Lock()

bearer_scheme = HTTPBearer(auto_error=False)

RATE_LIMITERS: Dict[str, SlidingWindowRateLimiter] = {
    "login": SlidingWindowRateLimiter(*LOGIN_LIMIT),
    "signup": SlidingWindowRateLimiter(*SIGNUP_LIMIT),
    "pricing": SlidingWindowRateLimiter(*PRICING_LIMIT),
    "api": SlidingWindowRateLimiter(*API_LIMIT),
}


class ThreadSafeDatabaseManager(DatabaseManager):
    """Database manager sharing one connection across FastAPI's worker threads."""

    def __init__(self, db_path):
        self._conn: Optional[sqlite3.Connection] = None  # set before super().__init__ opens it
        super().__init__(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        """
        Open the shared connection on first use.

        Overrides the per-thread connection with ``check_same_thread=False`` so
        that sync route handlers running in the threadpool reuse it.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def build_service() -> ScoutService:
    return ScoutService(
        db=ThreadSafeDatabaseManager(settings.DATABASE_PATH),
        google_books_api_key=settings.GOOGLE_BOOKS_API_KEY,
        ebay_app_id=settings.EBAY_APP_ID,
        ebay_cert_id=settings.EBAY_CERT_ID,
        ebay_marketplace=settings.EBAY_MARKETPLACE,
        ebay_sandbox=settings.EBAY_SANDBOX,
        amazon_access_key=settings.AMAZON_ACCESS_KEY,
        amazon_secret_key=settings.AMAZON_SECRET_KEY,
        amazon_partner_tag=settings.AMAZON_PARTNER_TAG,
        amazon_country=settings.AMAZON_COUNTRY,
        stripe_secret_key=settings.STRIPE_SECRET_KEY,
        stripe_webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        resend_api_key=settings.RESEND_API_KEY,
        email_from=settings.EMAIL_FROM,
        app_url=settings.APP_URL,
        sync_remote_url=settings.SYNC_REMOTE_URL,
        sync_remote_token=settings.SYNC_REMOTE_TOKEN,
        trial_days=settings.TRIAL_DAYS,
    )


def get_service() -> Generator[ScoutService, None, None]:
    """
    FastAPI dependency that provides the ScoutService.

    The service is created once and reused across requests.
    """
    global _scout_service

    if _scout_service is None:
        with _service_lock:
            if _scout_service is None:
                _scout_service = build_service()

    yield _scout_service


def cleanup_service() -> None:
    """Close database connections and HTTP sessions on shutdown."""
    global _scout_service
    if _scout_service is not None:
        _scout_service.close()
        _scout_service = None


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Optional[str]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials


def optional_user(
    token: Optional[str] = Depends(bearer_token),
    service: ScoutService = Depends(get_service),
) -> Optional[User]:
    return service.auth.user_for_token(token)


def current_user(user: Optional[User] = Depends(optional_user)) -> User:
    if user is None:
        raise AuthError("Not authenticated")
    return user


def require_subscription(user: User = Depends(current_user)) -> User:
    status = check_subscription_access(user)
    if not status.has_access:
        raise SubscriptionRequired(
            status.message or "Subscription required",
            code=status.error,
            tier=status.tier,
            status=status.status,
        )
    return user


def request_ip(request: Request) -> str:
    return client_ip(request.headers, request.client.host if request.client else None)


def visitor_fingerprint(request: Request) -> str:
    return fingerprint(request_ip(request), request.headers.get("user-agent"))


def rate_limit(name: str) -> Callable[[Request], None]:
    """Dependency factory: 429 once the caller's IP exceeds the named limit."""
    limiter = RATE_LIMITERS[name]

    def check(request: Request) -> None:
        key = request_ip(request)
        if not limiter.allow(key):
            retry_after = int(limiter.retry_after(key)) + 1
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later.",
                headers={"Retry-After": str(retry_after)},
            )

    return check
