"""eBay Browse API pricing for UK book listings."""
from __future__ import annotations

import base64
import logging
import os
import threading
import time
from statistics import mean
from typing import Any, Callable, Dict, List, Optional

import requests

from .models import EbayListingSummary, EbayPriceData

logger = logging.getLogger(__name__)

PRODUCTION_API = "https://api.ebay.com"
SANDBOX_API = "https://api.sandbox.ebay.com"
BOOKS_CATEGORY_ID = "267"
OAUTH_SCOPE = "https://api.ebay.com/oauth/api_scope"
TOKEN_EXPIRY_BUFFER = 300
DAILY_CALL_LIMIT = 5000


class EbayPricingError(Exception):
    """Raised when the Browse API cannot be reached or is not configured."""


def _retry_with_exponential_backoff(
    func: Callable[[], requests.Response],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
) -> requests.Response:
    """Call ``func`` until it stops answering 429/503, sleeping longer each time."""
    delay = initial_delay
    for attempt in range(max_retries + 1):
        response = func()
        if response.status_code in (429, 503) and attempt < max_retries:
            wait_time = min(delay, max_delay)
            logger.warning(
                "eBay rate limited (HTTP %s), retrying in %.1fs (attempt %d/%d)",
                response.status_code, wait_time, attempt + 1, max_retries + 1,
            )
            time.sleep(wait_time)
            delay *= backoff_factor
            continue
        return response
    return response


def _price_value(item: Dict[str, Any]) -> Optional[float]:
    price = item.get("price") or {}
    try:
        return float(price.get("value"))
    except (TypeError, ValueError):
        return None


class EbayPricingClient:
    def __init__(
        self,
        app_id: Optional[str] = None,
        cert_id: Optional[str] = None,
        *,
        marketplace: str = "EBAY_GB",
        sandbox: Optional[bool] = None,
        session: Optional[requests.Session] = None,
        usage_callback: Optional[Callable[[str], Any]] = None,
        sleep_on_retry: bool = True,
    ):
        self.app_id = app_id if app_id is not None else os.getenv("EBAY_APP_ID")
        self.cert_id = cert_id if cert_id is not None else os.getenv("EBAY_CERT_ID")
        if sandbox is None:
            sandbox = os.getenv("EBAY_SANDBOX", "false").lower() in ("true", "1", "yes")
        self.base_url = SANDBOX_API if sandbox else PRODUCTION_API
        self.marketplace = marketplace
        self.session = session or requests.Session()
        self.usage_callback = usage_callback
        self.max_retries = 3 if sleep_on_retry else 0
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(self.app_id and self.cert_id)

    def get_access_token(self) -> str:
        """Client-credentials token, cached until five minutes before it expires."""
        if not self.is_configured():
            raise EbayPricingError("eBay API credentials not configured")
        with self._lock:
            now = time.time()
            if self._token and now < self._token_expires_at - TOKEN_EXPIRY_BUFFER:
                return self._token
            basic = base64.b64encode(f"{self.app_id}:{self.cert_id}".encode()).decode()
            try:
                response = self.session.post(
                    f"{self.base_url}/identity/v1/oauth2/token",
                    headers={
                        "Authorization": f"Basic {basic}",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    data={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
                    timeout=15,
                )
            except requests.RequestException as exc:
                raise EbayPricingError(f"eBay OAuth request failed: {exc}") from exc
            if response.status_code != 200:
                raise EbayPricingError(f"eBay OAuth failed: HTTP {response.status_code}")
            try:
                payload = response.json()
                self._token = payload["access_token"]
            except (ValueError, KeyError, TypeError) as exc:
                raise EbayPricingError("eBay OAuth returned no access token") from exc
            self._token_expires_at = now + int(payload.get("expires_in", 7200))
            return self._token

    def _search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        token = self.get_access_token()
        response = _retry_with_exponential_backoff(
            lambda: self.session.get(
                f"{self.base_url}/buy/browse/v1/item_summary/search",
                params={
                    "q": query,
                    "category_ids": BOOKS_CATEGORY_ID,
                    "limit": str(limit),
                    "sort": "price",
                },
                headers={
                    "Authorization": f"Bearer {token}",
                    "X-EBAY-C-MARKETPLACE-ID": self.marketplace,
                },
                timeout=30,
            ),
            max_retries=self.max_retries,
        )
        if self.usage_callback is not None:
            self.usage_callback("ebay")
        if response.status_code != 200:
            raise EbayPricingError(f"eBay Browse API error: HTTP {response.status_code}")
        return list(response.json().get("itemSummaries") or [])

    def _summarise(self, isbn: str, items: List[Dict[str, Any]]) -> Optional[EbayPriceData]:
        priced = [(item, _price_value(item)) for item in items]
        priced = [(item, price) for item, price in priced if price is not None]
        if not priced:
            return None
        prices = [price for _, price in priced]
        currency = (priced[0][0].get("price") or {}).get("currency") or "GBP"
        listings = [
            EbayListingSummary(
                title=item.get("title", ""),
                price=price,
                condition=item.get("condition"),
                url=item.get("itemWebUrl"),
                image_url=(item.get("image") or {}).get("imageUrl"),
            )
            for item, price in priced[:5]
        ]
        return EbayPriceData(
            isbn=isbn,
            current_price=round(prices[0], 2),
            average_price=round(mean(prices), 2),
            min_price=round(min(prices), 2),
            max_price=round(max(prices), 2),
            active_listings=len(prices),
            currency=currency,
            listings=listings,
        )

    def get_price_by_isbn(self, isbn: str) -> Optional[EbayPriceData]:
        items = self._search(isbn, limit=50)
        data = self._summarise(isbn, items)
        if data is None:
            logger.info("No eBay listings for %s", isbn)
        return data

    def search_by_title(self, title: str, limit: int = 20) -> Optional[EbayPriceData]:
        items = self._search(title, limit=limit)
        return self._summarise("", items)
