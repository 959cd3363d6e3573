"""Account signup, login and bearer tokens."""
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from scout_shared.database import DatabaseManager
from scout_shared.models import User
from scout_shared.utils import isoformat, utc_now

from .errors import AuthError, Conflict, ValidationFailed
from .subscriptions import DEFAULT_TRIAL_DAYS

logger = logging.getLogger(__name__)

TOKEN_TTL_DAYS = 30
MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class Session:
    user: User
    token: str


class AuthService:
    def __init__(self, db: DatabaseManager, trial_days: int = DEFAULT_TRIAL_DAYS):
        self.db = db
        self.trial_days = trial_days

    def signup(self, username: str, email: str, password: str) -> Session:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if len(username) < 3:
            raise ValidationFailed("Username must be at least 3 characters")
        if not _EMAIL_RE.match(email):
            raise ValidationFailed("Invalid email address")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.db.get_user_by_email(email):
            raise Conflict("Email already registered", code="email_taken")
        if self.db.get_user_by_username(username):
            raise Conflict("Username already taken", code="username_taken")

        now = utc_now()
        user = self.db.create_user(
            username,
            email,
            generate_password_hash(password),
            subscription_tier="trial",
            trial_started_at=isoformat(now),
            trial_ends_at=isoformat(now + timedelta(days=self.trial_days)),
        )
        logger.info("New account %s (trial ends %s)", user.id, user.trial_ends_at)
        return Session(user=user, token=self.issue_token(user))

    def login(self, email: str, password: str) -> Session:
        user = self.db.get_user_by_email((email or "").strip())
        if user is None or not check_password_hash(user.password_hash, password or ""):
            raise AuthError("Invalid credentials", code="invalid_credentials")
        return Session(user=user, token=self.issue_token(user))

    def issue_token(self, user: User) -> str:
        token = secrets.token_urlsafe(32)
        expires = utc_now() + timedelta(days=TOKEN_TTL_DAYS)
        self.db.create_token(user.id, token, isoformat(expires))
        return token

    def logout(self, token: str) -> bool:
        return self.db.delete_token(token)

    def user_for_token(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        return self.db.get_user_for_token(token)

    def change_password(self, user: User, current: str, new: str) -> None:
        if not check_password_hash(user.password_hash, current or ""):
            raise AuthError("Invalid credentials", code="invalid_credentials")
        if len(new or "") < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        self.db.update_user(user.id, password_hash=generate_password_hash(new))
