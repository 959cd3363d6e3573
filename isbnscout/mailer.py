"""Transactional email through the Resend HTTP API."""
from __future__ import annotations

import logging
import os
from datetime import datetime
from html import escape
from typing import Any, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_SENDER = "ISBN Scout <onboarding@resend.dev>"


class MailerError(Exception):
    """Raised when Resend rejects a message."""


def _page(heading: str, *paragraphs: str, cta: Optional[str] = None, cta_url: Optional[str] = None) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    if cta and cta_url:
        body += f'<p><a href="{escape(cta_url)}" style="background:#2563eb;color:#fff;padding:10px 18px;border-radius:6px;text-decoration:none">{escape(cta)}</a></p>'
    return f"<div style=\"font-family:sans-serif;max-width:560px\"><h2>{escape(heading)}</h2>{body}<p>- The ISBN Scout team</p></div>"


class ResendMailer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        app_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY")
        self.sender = sender or os.getenv("EMAIL_FROM") or DEFAULT_SENDER
        self.app_url = (app_url or os.getenv("APP_URL") or "http://localhost:8000").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, to: Union[str, List[str]], subject: str, html: str) -> bool:
        """Send one message. Returns False without sending when no API key is configured."""
        if not self.enabled:
            logger.info("Email disabled, not sending %r to %s", subject, to)
            return False
        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [to] if isinstance(to, str) else list(to),
            "subject": subject,
            "html": html,
        }
        try:
            response = self.session.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise MailerError(f"Resend request failed: {exc}") from exc
        if response.status_code >= 400:
            raise MailerError(f"Resend error {response.status_code}: {response.text[:200]}")
        logger.info("Sent %r to %s", subject, payload["to"])
        return True

    def check_api_key(self) -> bool:
        """Used by the maintenance script to confirm the key is accepted."""
        if not self.enabled:
            return False
        response = self.session.get(
            "https://api.resend.com/domains",
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        return response.status_code == 200

    def send_welcome(self, username: str, email: str, trial_days: int = 14) -> bool:
        return self.send(
            email,
            "Welcome to ISBN Scout - Your Book Scanning Journey Starts Now!",
            _page(
                f"Welcome, {username}!",
                f"Your {trial_days}-day free trial has started. Scan a barcode to see Amazon and eBay prices side by side.",
                cta="Start scanning",
                cta_url=f"{self.app_url}/scan",
            ),
        )

    def send_trial_expiring(self, username: str, email: str, days_remaining: int, trial_ends_at: datetime) -> bool:
        return self.send(
            email,
            f"Your ISBN Scout trial expires in {days_remaining} days",
            _page(
                f"Hi {username}, your trial is almost over",
                f"Your free trial ends on {trial_ends_at:%d %B %Y}. Subscribe to keep scanning.",
                cta="Choose a plan",
                cta_url=f"{self.app_url}/subscription",
            ),
        )

    def send_trial_expired(self, username: str, email: str) -> bool:
        return self.send(
            email,
            "Your ISBN Scout trial has ended",
            _page(
                f"Hi {username}, your trial has ended",
                "Your scan history is safe. Pick a plan to carry on scanning.",
                cta="Choose a plan",
                cta_url=f"{self.app_url}/subscription",
            ),
        )

    def send_subscription_confirmation(self, username: str, email: str, plan_name: str, amount: float, interval: str) -> bool:
        return self.send(
            email,
            f"Your {plan_name} subscription is now active!",
            _page(
                f"Thanks, {username}!",
                f"You're on {escape(plan_name)} at £{amount:.2f}/{escape(interval)}.",
            ),
        )

    def send_payment_receipt(self, username: str, email: str, amount: float, plan_name: str) -> bool:
        return self.send(
            email,
            f"Payment receipt - £{amount:.2f} for {plan_name}",
            _page(f"Hi {username}", f"We received your payment of £{amount:.2f} for {escape(plan_name)}."),
        )
