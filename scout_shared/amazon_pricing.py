"""
Amazon Product Advertising API (PA-API 5) pricing for the UK marketplace.

Books are looked up by their ISBN-10, which doubles as the ASIN. The client is
optional: without credentials ``get_price_by_isbn`` returns ``None``.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

from amazon_paapi import AmazonApi

from .models import AmazonPriceData
from .utils import clean_isbn, isbn13_to_isbn10

logger = logging.getLogger(__name__)


def _dig(obj: Any, *path: str) -> Any:
    for name in path:
        if obj is None:
            return None
        obj = getattr(obj, name, None)
    return obj


class AmazonPricingClient:
    """
    Thin wrapper around ``AmazonApi``.

    Free tier limits:
    - 1 request per second
    - 8,640 requests per day
    """

    def __init__(
        self,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        partner_tag: Optional[str] = None,
        country: Optional[str] = None,
        api: Any = None,
    ):
        self.access_key = access_key or os.getenv("AMAZON_ACCESS_KEY")
        self.secret_key = secret_key or os.getenv("AMAZON_SECRET_KEY")
        self.partner_tag = partner_tag or os.getenv("AMAZON_PARTNER_TAG")
        self.country = country or os.getenv("AMAZON_COUNTRY", "UK")
        self.api = api
        if self.api is None and self.is_configured():
            self.api = AmazonApi(self.access_key, self.secret_key, self.partner_tag, self.country)

        self._last_request_time = 0.0
        self._min_interval = 1.0

    def is_configured(self) -> bool:
        return all([self.access_key, self.secret_key, self.partner_tag])

    def _rate_limit(self) -> None:
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_interval:
            time.sleep(self._min_interval - elapsed)
        self._last_request_time = time.time()

    def get_price_by_isbn(self, isbn: str) -> Optional[AmazonPriceData]:
        if self.api is None:
            return None
        cleaned = clean_isbn(isbn)
        asin = isbn13_to_isbn10(cleaned) if len(cleaned) == 13 else cleaned
        if not asin:
            logger.info("ISBN %s has no ISBN-10 form, skipping Amazon lookup", cleaned)
            return None

        self._rate_limit()
        items = self.api.get_items([asin])
        if not items:
            return None
        return self._parse_item(cleaned, items[0])

    def _parse_item(self, isbn: str, item: Any) -> AmazonPriceData:
        listings = _dig(item, "offers", "listings") or []
        listing = listings[0] if listings else None
        price = _dig(listing, "price", "amount")
        list_price = _dig(listing, "saving_basis", "amount")
        currency = _dig(listing, "price", "currency") or "GBP"
        return AmazonPriceData(
            isbn=isbn,
            price=float(price) if price is not None else None,
            list_price=float(list_price) if list_price is not None else None,
            currency=currency,
            asin=getattr(item, "asin", None),
            title=_dig(item, "item_info", "title", "display_value"),
            url=getattr(item, "detail_page_url", None),
        )
