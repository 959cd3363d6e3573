"""Tests for signup, login and bearer tokens."""
from __future__ import annotations

import pytest

from isbnscout.auth import AuthService
from isbnscout.errors import AuthError, Conflict, ValidationFailed
from scout_shared.database import DatabaseManager
from scout_shared.utils import parse_timestamp


@pytest.fixture
def auth(db_manager: DatabaseManager) -> AuthService:
    return AuthService(db_manager, trial_days=14)


@pytest.mark.database
class TestSignup:
    def test_signup_starts_trial(self, auth: AuthService):
        session = auth.signup(" reseller ", "Reseller@Example.com", "correct-horse")

        user = session.user
        assert user.username == "reseller"
        assert user.email == "reseller@example.com"
        assert user.subscription_tier == "trial"
        started = parse_timestamp(user.trial_started_at)
        ends = parse_timestamp(user.trial_ends_at)
        assert (ends - started).days == 14
        assert user.password_hash != "correct-horse"
        assert auth.user_for_token(session.token).id == user.id

    @pytest.mark.parametrize(
        "username, email, password",
        [
            ("ab", "a@example.com", "long-enough"),
            ("reseller", "not-an-email", "long-enough"),
            ("reseller", "a@example.com", "short"),
        ],
    )
    def test_signup_validation(self, auth: AuthService, username, email, password):
        with pytest.raises(ValidationFailed):
            auth.signup(username, email, password)

    def test_duplicate_email(self, auth: AuthService):
        auth.signup("reseller", "reseller@example.com", "correct-horse")
        with pytest.raises(Conflict) as excinfo:
            auth.signup("someone", "RESELLER@example.com", "correct-horse")
        assert excinfo.value.code == "email_taken"

    def test_duplicate_username(self, auth: AuthService):
        auth.signup("reseller", "reseller@example.com", "correct-horse")
        with pytest.raises(Conflict) as excinfo:
            auth.signup("reseller", "other@example.com", "correct-horse")
        assert excinfo.value.code == "username_taken"


@pytest.mark.database
class TestLogin:
    def test_login_and_logout(self, auth: AuthService):
        auth.signup("reseller", "reseller@example.com", "correct-horse")

        session = auth.login("reseller@example.com", "correct-horse")

        assert auth.user_for_token(session.token).username == "reseller"
        assert auth.logout(session.token)
        assert auth.user_for_token(session.token) is None
        assert not auth.logout(session.token)

    def test_wrong_password(self, auth: AuthService):
        auth.signup("reseller", "reseller@example.com", "correct-horse")
        with pytest.raises(AuthError):
            auth.login("reseller@example.com", "wrong-horse")

    def test_unknown_email(self, auth: AuthService):
        with pytest.raises(AuthError):
            auth.login("ghost@example.com", "correct-horse")

    def test_missing_token(self, auth: AuthService):
        assert auth.user_for_token(None) is None
        assert auth.user_for_token("not-a-token") is None

    def test_expired_token(self, auth: AuthService, db_manager: DatabaseManager):
        user = auth.signup("reseller", "reseller@example.com", "correct-horse").user
        db_manager.create_token(user.id, "stale", "2020-01-01T00:00:00+00:00")
        assert auth.user_for_token("stale") is None

    def test_change_password(self, auth: AuthService, db_manager: DatabaseManager):
        user = auth.signup("reseller", "reseller@example.com", "correct-horse").user

        with pytest.raises(AuthError):
            auth.change_password(user, "wrong", "new-password")
        with pytest.raises(ValidationFailed):
            auth.change_password(user, "correct-horse", "short")

        auth.change_password(user, "correct-horse", "new-password")
        assert auth.login("reseller@example.com", "new-password").user.id == user.id
