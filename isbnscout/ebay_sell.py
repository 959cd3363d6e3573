"""eBay Sell (Inventory + Offer) API client used to publish book listings.

Listing on eBay is three calls: ``PUT /inventory_item/{sku}`` describes the
book, ``POST /offer`` prices it, and ``POST /offer/{id}/publish`` makes it
live. Repricing looks the offer up by SKU and posts to
``bulk_update_price_quantity``. The caller supplies the seller's OAuth user
token, which ISBNScout keeps in the ``api_credentials`` table.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from scout_shared.models import Book

logger = logging.getLogger(__name__)

SELL_API_URL = "https://api.ebay.com/sell/inventory/v1"
SANDBOX_SELL_API_URL = "https://api.sandbox.ebay.com/sell/inventory/v1"
BOOKS_CATEGORY_ID = "261186"

CONDITION_MAP = {
    "new": "NEW",
    "like new": "LIKE_NEW",
    "like_new": "LIKE_NEW",
    "very good": "USED_VERY_GOOD",
    "very_good": "USED_VERY_GOOD",
    "good": "USED_GOOD",
    "acceptable": "USED_ACCEPTABLE",
}


class EbaySellError(Exception):
    """Raised when eBay Sell API returns an error."""


def ebay_condition(condition: str) -> str:
    return CONDITION_MAP.get((condition or "").strip().lower(), "USED_GOOD")


def make_sku(book: Book) -> str:
    return f"ISBN-{book.isbn}-{book.id}"


class EbaySellClient:
    """Client for eBay Sell APIs (Inventory and Offer)."""

    def __init__(
        self,
        access_token: str,
        marketplace_id: str = "EBAY_GB",
        merchant_location_key: str = "default_location",
        listing_policies: Optional[Dict[str, str]] = None,
        sandbox: bool = False,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        if not access_token:
            raise EbaySellError("eBay user token is required to create listings")
        self.access_token = access_token
        self.marketplace_id = marketplace_id
        self.merchant_location_key = merchant_location_key
        self.listing_policies = listing_policies or {}
        self.base_url = SANDBOX_SELL_API_URL if sandbox else SELL_API_URL
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_credentials(cls, credentials: Dict[str, Any], **kwargs: Any) -> "EbaySellClient":
        policies = {
            key: credentials[name]
            for key, name in (
                ("fulfillmentPolicyId", "fulfillment_policy_id"),
                ("paymentPolicyId", "payment_policy_id"),
                ("returnPolicyId", "return_policy_id"),
            )
            if credentials.get(name)
        }
        return cls(
            access_token=credentials.get("user_token") or credentials.get("access_token") or "",
            merchant_location_key=credentials.get("merchant_location_key", "default_location"),
            listing_policies=policies,
            sandbox=bool(credentials.get("sandbox")),
            **kwargs,
        )

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Content-Language": "en-GB",
            "Accept": "application/json",
        }
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{endpoint}",
                headers=headers,
                json=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("eBay request failed: %s", e)
            raise EbaySellError(f"Request failed: {e}") from e

        if response.status_code in (200, 201, 204):
            return response.json() if response.content else {}

        error_data = response.json() if response.content else {}
        errors = error_data.get("errors") or [{}]
        raise EbaySellError(f"eBay API error {response.status_code}: {errors[0].get('message', 'Unknown error')}")

    def create_inventory_item(self, sku: str, book: Book, condition: str, quantity: int = 1,
                              description: Optional[str] = None) -> None:
        product: Dict[str, Any] = {
            "title": book.title[:80],
            "description": description or book.title,
            "isbn": [book.isbn],
        }
        if book.author:
            product["aspects"] = {"Author": [book.author]}
        if book.thumbnail:
            product["imageUrls"] = [book.thumbnail]
        payload = {
            "product": product,
            "condition": ebay_condition(condition),
            "availability": {"shipToLocationAvailability": {"quantity": quantity}},
        }
        logger.info("Creating eBay inventory item %s", sku)
        self._make_request("PUT", f"/inventory_item/{sku}", data=payload)

    def create_offer(self, sku: str, price: float, quantity: int, description: str) -> str:
        payload = {
            "sku": sku,
            "marketplaceId": self.marketplace_id,
            "format": "FIXED_PRICE",
            "availableQuantity": quantity,
            "categoryId": BOOKS_CATEGORY_ID,
            "listingDescription": description,
            "pricingSummary": {"price": {"value": f"{price:.2f}", "currency": "GBP"}},
            "merchantLocationKey": self.merchant_location_key,
        }
        if self.listing_policies:
            payload["listingPolicies"] = self.listing_policies
        response = self._make_request("POST", "/offer", data=payload)
        offer_id = response.get("offerId")
        if not offer_id:
            raise EbaySellError(f"No offer ID returned: {response}")
        return offer_id

    def publish_offer(self, offer_id: str) -> Optional[str]:
        response = self._make_request("POST", f"/offer/{offer_id}/publish")
        listing_id = response.get("listingId")
        if not listing_id:
            logger.warning("Offer %s published but no listing ID returned", offer_id)
        return listing_id

    def list_book(self, book: Book, price: float, condition: str, quantity: int = 1,
                  description: Optional[str] = None) -> str:
        """Create, price and publish a listing. Returns the eBay listing id (or offer id)."""
        sku = make_sku(book)
        text = description or f"{book.title} by {book.author or 'Unknown'}. Condition: {condition}."
        self.create_inventory_item(sku, book, condition, quantity, text)
        offer_id = self.create_offer(sku, price, quantity, text)
        listing_id = self.publish_offer(offer_id)
        logger.info("Listed %s on eBay: offer=%s listing=%s", book.isbn, offer_id, listing_id)
        return listing_id or offer_id

    def find_offer_id(self, sku: str) -> str:
        response = self._make_request("GET", f"/offer?sku={sku}")
        offers = response.get("offers") or []
        if not offers or not offers[0].get("offerId"):
            raise EbaySellError(f"No eBay offer found for {sku}")
        return offers[0]["offerId"]

    def update_price(self, book: Book, price: float, quantity: int = 1) -> str:
        """Change the price of a live listing. Returns the offer id that was updated."""
        sku = make_sku(book)
        offer_id = self.find_offer_id(sku)
        payload = {
            "requests": [{
                "sku": sku,
                "shipToLocationAvailability": {"quantity": quantity},
                "offers": [{
                    "offerId": offer_id,
                    "availableQuantity": quantity,
                    "price": {"value": f"{price:.2f}", "currency": "GBP"},
                }],
            }]
        }
        response = self._make_request("POST", "/bulk_update_price_quantity", data=payload)
        for entry in response.get("responses") or []:
            if entry.get("statusCode", 200) >= 400:
                errors = entry.get("errors") or [{}]
                raise EbaySellError(f"eBay price update failed: {errors[0].get('message', 'Unknown error')}")
        logger.info("Repriced eBay offer %s (%s) to £%.2f", offer_id, sku, price)
        return offer_id
