"""
Stripe subscriptions over Stripe's REST API.

Checkout sessions are created with form-encoded requests authenticated by the
secret key; webhooks are verified with the ``Stripe-Signature`` HMAC scheme
before any user row is touched.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from scout_shared.database import DatabaseManager
from scout_shared.utils import isoformat

from .mailer import MailerError

logger = logging.getLogger(__name__)

STRIPE_API_URL = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE = 300


class BillingError(Exception):
    """Raised for Stripe configuration, API or signature problems."""


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: float
    interval: str = "month"
    features: Tuple[str, ...] = field(default_factory=tuple)


PLANS: Dict[str, Plan] = {
    "free": Plan("free", "Starter", 0.0, features=("10 scans/month", "Basic price comparison")),
    "basic": Plan("basic", "Basic", 9.99, features=("100 scans/month", "Full price comparison", "Manual listing")),
    "pro": Plan("pro", "Pro", 24.99, features=("Unlimited scans", "AI features", "Auto-listing", "Priority support")),
    "enterprise": Plan("enterprise", "Enterprise", 99.99, features=("Everything in Pro", "White label", "API access", "Dedicated support")),
}


def _flatten(data: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """Encode nested dicts/lists the way Stripe expects: ``a[b][0][c]=value``."""
    pairs: List[Tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            pairs.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for index, entry in enumerate(value):
                entry_name = f"{name}[{index}]"
                if isinstance(entry, dict):
                    pairs.extend(_flatten(entry, entry_name))
                else:
                    pairs.append((entry_name, str(entry)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        elif value is not None:
            pairs.append((name, str(value)))
    return pairs


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


class StripeBilling:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 20.0,
    ):
        self.secret_key = secret_key if secret_key is not None else os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret if webhook_secret is not None else os.getenv("STRIPE_WEBHOOK_SECRET")
        self.session = session or requests.Session()
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _post(self, path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_configured():
            raise BillingError("Stripe not configured. Set STRIPE_SECRET_KEY environment variable.")
        try:
            response = self.session.post(
                f"{STRIPE_API_URL}{path}",
                data=_flatten(data),
                auth=(self.secret_key, ""),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BillingError(f"Stripe request failed: {exc}") from exc
        return self._decode(response)

    def _get(self, path: str) -> Dict[str, Any]:
        if not self.is_configured():
            raise BillingError("Stripe not configured. Set STRIPE_SECRET_KEY environment variable.")
        try:
            response = self.session.get(f"{STRIPE_API_URL}{path}", auth=(self.secret_key, ""), timeout=self.timeout)
        except requests.RequestException as exc:
            raise BillingError(f"Stripe request failed: {exc}") from exc
        return self._decode(response)

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json() if response.content else {}
        except ValueError as exc:
            raise BillingError(f"Stripe returned invalid JSON (HTTP {response.status_code})") from exc
        if response.status_code >= 400:
            message = (payload.get("error") or {}).get("message") or f"HTTP {response.status_code}"
            raise BillingError(f"Stripe error: {message}")
        return payload

    def create_customer(self, email: str, user_id: int) -> str:
        customer = self._post("/customers", {"email": email, "metadata": {"user_id": user_id}})
        return customer["id"]

    def create_checkout_session(
        self,
        plan_id: str,
        customer_id: Optional[str],
        success_url: str,
        cancel_url: str,
        user_id: Optional[int] = None,
    ) -> Dict[str, str]:
        plan = PLANS.get(plan_id)
        if plan is None:
            raise BillingError(f"Invalid plan ID: {plan_id}")
        if plan.price == 0:
            raise BillingError("Cannot create checkout session for free plan")

        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{
                "price_data": {
                    "currency": "gbp",
                    "product_data": {"name": plan.name, "description": ", ".join(plan.features)},
                    "recurring": {"interval": plan.interval},
                    "unit_amount": int(round(plan.price * 100)),
                },
                "quantity": 1,
            }],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "billing_address_collection": "required",
            "metadata": {"planId": plan_id},
            "subscription_data": {"metadata": {"planId": plan_id}},
        }
        if customer_id:
            params["customer"] = customer_id
        if user_id is not None:
            params["client_reference_id"] = str(user_id)
        checkout = self._post("/checkout/sessions", params)
        return {"url": checkout.get("url", ""), "session_id": checkout.get("id", "")}

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return self._get(f"/checkout/sessions/{session_id}")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        portal = self._post("/billing_portal/sessions", {"customer": customer_id, "return_url": return_url})
        return portal["url"]

    def verify_webhook(self, payload: bytes, signature_header: Optional[str], now: Optional[float] = None) -> Dict[str, Any]:
        """Check the ``Stripe-Signature`` header and return the decoded event."""
        if not self.webhook_secret:
            raise BillingError("Stripe webhook secret not configured")
        if not signature_header:
            raise BillingError("Missing stripe signature")
        parts: Dict[str, List[str]] = {}
        for item in signature_header.split(","):
            key, _, value = item.strip().partition("=")
            parts.setdefault(key, []).append(value)
        try:
            timestamp = int(parts["t"][0])
        except (KeyError, ValueError) as exc:
            raise BillingError("Malformed stripe signature") from exc
        expected = compute_signature(payload, timestamp, self.webhook_secret)
        if not any(hmac.compare_digest(expected, candidate) for candidate in parts.get("v1", [])):
            raise BillingError("Invalid stripe signature")
        now = time.time() if now is None else now
        if abs(now - timestamp) > SIGNATURE_TOLERANCE:
            raise BillingError("Stripe signature timestamp outside tolerance")
        try:
            return json.loads(payload.decode("utf-8"))
        except ValueError as exc:
            raise BillingError("Webhook payload is not valid JSON") from exc


def _timestamp(value: Any) -> Optional[str]:
    if not value:
        return None
    return isoformat(datetime.fromtimestamp(int(value), tz=timezone.utc))


def _notify(send: Callable[..., Any], *args: Any) -> None:
    try:
        send(*args)
    except MailerError as exc:
        logger.warning("Billing email failed: %s", exc)


def apply_webhook_event(event: Dict[str, Any], db: DatabaseManager, mailer: Any = None) -> Dict[str, Any]:
    """Update the matching user for a verified Stripe event. Returns what was done."""
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}
    customer_id = obj.get("customer")

    user = db.get_user_by_stripe_customer(customer_id) if customer_id else None
    if user is None and obj.get("client_reference_id"):
        user = db.get_user(int(obj["client_reference_id"]))
    if user is None:
        logger.warning("Stripe event %s for unknown customer %s", event_type, customer_id)
        return {"type": event_type, "handled": False}

    if event_type == "checkout.session.completed":
        plan_id = (obj.get("metadata") or {}).get("planId") or "pro"
        db.update_user(
            user.id,
            subscription_tier=plan_id,
            subscription_status="active",
            stripe_customer_id=customer_id or user.stripe_customer_id,
            stripe_subscription_id=obj.get("subscription"),
        )
        plan = PLANS.get(plan_id)
        if mailer is not None and plan is not None:
            _notify(mailer.send_subscription_confirmation, user.username, user.email, plan.name, plan.price, plan.interval)
    elif event_type == "customer.subscription.updated":
        db.update_user(
            user.id,
            subscription_status=obj.get("status", user.subscription_status),
            subscription_expires_at=_timestamp(obj.get("current_period_end")),
        )
    elif event_type == "customer.subscription.deleted":
        db.update_user(user.id, subscription_status="cancelled", subscription_tier="trial")
    elif event_type == "invoice.payment_failed":
        db.update_user(user.id, subscription_status="past_due")
    elif event_type == "invoice.payment_succeeded":
        amount = (obj.get("amount_paid") or 0) / 100
        logger.info("Payment of £%.2f received from user %s", amount, user.id)
        plan = PLANS.get(user.subscription_tier or "")
        if mailer is not None and plan is not None:
            _notify(mailer.send_payment_receipt, user.username, user.email, amount, plan.name)
    else:
        return {"type": event_type, "handled": False, "user_id": user.id}

    logger.info("Applied Stripe event %s to user %s", event_type, user.id)
    return {"type": event_type, "handled": True, "user_id": user.id}
